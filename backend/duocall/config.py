"""duocall 설정.

시그널링 서버 포트, 로그, ICE 서버, 협상 타임아웃 등 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent / "config" / ".env"
load_dotenv(_env_path)


# ============================================================
# 서버 설정
# ============================================================

@dataclass(frozen=True)
class ServerConfig:
    """시그널링 서버 설정."""

    # 바인딩 주소/포트
    HOST: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    PORT: int = field(default_factory=lambda: int(os.getenv("PORT", "3000")))

    # 로그
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    LOG_DIR: str = field(default_factory=lambda: os.getenv("LOG_DIR", "logs"))
    LOG_RETENTION_DAYS: int = field(
        default_factory=lambda: int(os.getenv("LOG_RETENTION_DAYS", "60"))
    )

    # 룸당 최대 참가자 수 (0 = 제한 없음)
    ROOM_CAPACITY: int = field(default_factory=lambda: int(os.getenv("ROOM_CAPACITY", "0")))

    # 표시 이름 최대 길이
    MAX_NAME_LENGTH: int = field(
        default_factory=lambda: int(os.getenv("MAX_NAME_LENGTH", "64"))
    )

    # CORS 허용 origin (쉼표 구분)
    ALLOWED_ORIGINS: str = field(default_factory=lambda: os.getenv("ALLOWED_ORIGINS", "*"))

    @property
    def allowed_origins(self) -> List[str]:
        """CORS origin 리스트."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


# ============================================================
# ICE Server 설정
# ============================================================

@dataclass(frozen=True)
class ICEServerConfig:
    """ICE 서버 설정.

    TURN 인프라는 외부에서 제공되며 여기서는 주소와 자격증명만 전달합니다.
    """

    TURN_SERVER_URL: Optional[str] = field(default_factory=lambda: os.getenv("TURN_SERVER_URL"))
    TURN_USERNAME: Optional[str] = field(default_factory=lambda: os.getenv("TURN_USERNAME"))
    TURN_CREDENTIAL: Optional[str] = field(default_factory=lambda: os.getenv("TURN_CREDENTIAL"))

    STUN_SERVER_URL: Optional[str] = field(default_factory=lambda: os.getenv("STUN_SERVER_URL"))

    # 기본 공개 STUN 서버 (fallback)
    DEFAULT_STUN_SERVERS: Tuple[str, ...] = (
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
    )

    @property
    def has_turn_server(self) -> bool:
        """TURN 서버 설정 완료 여부."""
        return all([self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL])

    def as_dicts(self) -> List[dict]:
        """브라우저 RTCPeerConnection 형식의 ICE 서버 리스트."""
        servers = []
        if self.STUN_SERVER_URL:
            servers.append({"urls": self.STUN_SERVER_URL})
        for url in self.DEFAULT_STUN_SERVERS:
            servers.append({"urls": url})
        if self.has_turn_server:
            servers.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return servers


# ============================================================
# 협상(클라이언트) 설정
# ============================================================

@dataclass(frozen=True)
class ConnectionConfig:
    """클라이언트 협상 관련 설정."""

    # offer 전송 후 answer 대기 최대 시간 (초)
    NEGOTIATION_TIMEOUT: float = field(
        default_factory=lambda: float(os.getenv("NEGOTIATION_TIMEOUT", "15"))
    )

    # 기본 시그널링 서버 주소
    SIGNALING_URL: str = field(
        default_factory=lambda: os.getenv("SIGNALING_URL", "ws://localhost:3000/ws")
    )


# ============================================================
# 싱글톤 인스턴스
# ============================================================

server_config = ServerConfig()
ice_config = ICEServerConfig()
connection_config = ConnectionConfig()

logger.debug(f"[Config] .env 경로: {_env_path} (존재: {_env_path.exists()})")
