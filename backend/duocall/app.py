"""FastAPI WebRTC Signaling Relay with Room Support.

룸 기반 1:1 통화를 위한 시그널링 릴레이 서버입니다. 미디어는 피어 간에
직접 흐르고, 서버는 룸 멤버십 관리와 세션 설명/ICE candidate 중계만 합니다.

주요 기능:
    - 룸 참가/퇴장, 참가자 입/퇴장 알림
    - offer/answer/ice-candidate 중계
    - 룸별 로스터(ID, 이름) 스냅샷 전달
    - 룸 목록/헬스체크/ICE 서버 조회 API

Architecture:
    - SignalRelay: 수신 프레임 처리와 룸 브로드캐스트
    - RoomDirectory: 룸 멤버십과 룸별 잠금
    - PeerRegistry: 연결별 피어 레코드
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from glob import glob
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import server_config
from .modules.rooms import RoomDirectory, SignalRelay
from .routes import health_router, signaling_router, init_relay


def cleanup_old_logs(log_dir: str = server_config.LOG_DIR,
                     retention_days: int = server_config.LOG_RETENTION_DAYS) -> int:
    """오래된 로그 파일을 삭제합니다.

    Args:
        log_dir: 로그 디렉토리 경로
        retention_days: 보관 기간 (일)

    Returns:
        삭제된 파일 수
    """
    if not log_dir or not os.path.exists(log_dir):
        return 0

    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for log_file in glob(os.path.join(log_dir, "server_*.log")):
        try:
            date_str = os.path.basename(log_file).replace("server_", "").replace(".log", "")
            file_date = datetime.strptime(date_str, "%Y%m%d")

            if file_date < cutoff_date:
                os.remove(log_file)
                deleted_count += 1
        except (ValueError, OSError):
            continue

    return deleted_count


def configure_logging(log_dir: str = server_config.LOG_DIR, level: str = server_config.LOG_LEVEL) -> None:
    """콘솔과 일자별 파일(server_YYYYMMDD.log)로 로그를 남기도록 설정합니다.

    log_dir가 비어 있으면 콘솔에만 출력합니다.
    """
    handlers: List[logging.Handler] = [logging.StreamHandler()]  # 콘솔 출력
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        log_filename = os.path.join(log_dir, f"server_{datetime.now().strftime('%Y%m%d')}.log")
        handlers.append(logging.FileHandler(log_filename, encoding="utf-8"))  # 파일 저장

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


configure_logging()
logger = logging.getLogger(__name__)
logger.info(f"로깅 초기화 완료: level={server_config.LOG_LEVEL}")


# 글로벌 릴레이 인스턴스
relay = SignalRelay(
    directory=RoomDirectory(capacity=server_config.ROOM_CAPACITY),
    max_name_length=server_config.MAX_NAME_LENGTH,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI 앱의 생명주기를 관리하는 컨텍스트 매니저.

    Args:
        app (FastAPI): FastAPI 애플리케이션 인스턴스

    Yields:
        None: 앱이 실행되는 동안 제어를 반환

    Note:
        - 시작: 오래된 로그 정리
        - 종료: 남은 연결을 모두 룸에서 퇴장 처리
    """
    logger.info("시그널링 릴레이 시작 중...")

    deleted_logs = cleanup_old_logs()
    if deleted_logs > 0:
        logger.info(f"오래된 로그 파일 {deleted_logs}개 정리 완료 ({server_config.LOG_RETENTION_DAYS}일 이상)")

    yield

    logger.info("서버 종료 중...")
    for peer in list(relay.registry.peers.values()):
        await relay.disconnect(peer)


app = FastAPI(title="duocall Signaling Relay", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=server_config.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(health_router)
app.include_router(signaling_router)

# WebSocket 시그널링 라우터에 릴레이 인스턴스 전달
init_relay(relay)


@app.get("/")
async def root():
    """서버 상태 확인 엔드포인트 (Health check).

    Returns:
        dict: 서버 상태 정보
            - status (str): 서버 상태
            - service (str): 서비스 이름
    """
    return {"status": "ok", "service": "duocall Signaling Relay"}


def main():
    import uvicorn
    uvicorn.run(app, host=server_config.HOST, port=server_config.PORT, log_level="info")


if __name__ == "__main__":
    main()
