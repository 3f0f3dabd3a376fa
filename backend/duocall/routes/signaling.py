"""시그널링 WebSocket 라우터.

클라이언트 연결마다 릴레이에 피어를 등록하고, 수신 프레임을 순서대로
릴레이에 넘깁니다. 룸 참가/퇴장, offer/answer/ice-candidate 중계는
SignalRelay가 담당합니다.
"""

import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..modules.rooms import SignalRelay

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 릴레이 참조 (app.py에서 설정됨)
_relay: Optional[SignalRelay] = None


def init_relay(relay: SignalRelay) -> None:
    """릴레이 인스턴스를 설정합니다.

    app.py에서 호출하여 글로벌 릴레이 참조를 설정합니다.

    Args:
        relay: SignalRelay 인스턴스
    """
    global _relay
    _relay = relay
    logger.info("시그널링 라우터 릴레이 초기화 완료")


def get_relay() -> Optional[SignalRelay]:
    return _relay


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """시그널링 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - join: 룸 참가 (roomId, 선택적 name)
        - offer / answer / ice-candidate: 같은 룸의 다른 참가자에게 중계
        - leave: 다른 참가자에게 중계 후 퇴장

    연결이 끊기면 참가 중이던 룸에서 퇴장 처리되고 남은 참가자에게
    peer-left와 새 로스터가 전달됩니다.

    Args:
        websocket: FastAPI WebSocket 연결 객체
    """
    if _relay is None:
        logger.error("릴레이가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()
    peer = _relay.connect(websocket)
    logger.info(f"연결 {peer.connection_id} 수락됨")

    try:
        while True:
            raw = await websocket.receive_text()
            await _relay.handle_frame(peer, raw)

    except WebSocketDisconnect:
        logger.info(f"연결 {peer.connection_id} 끊김 (peer={peer.peer_id})")
    except Exception as e:
        logger.error(f"연결 {peer.connection_id} 처리 중 오류: {e}")
    finally:
        await _relay.disconnect(peer)
        logger.info(f"연결 {peer.connection_id} 정리 완료")
