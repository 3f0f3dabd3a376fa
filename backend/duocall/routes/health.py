"""Health Check 및 조회 API 라우터."""

from fastapi import APIRouter

from ..config import ice_config
from .signaling import get_relay

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health_check():
    """릴레이 상태를 확인합니다.

    Returns:
        dict: 상태와 현재 연결/룸 수
    """
    relay = get_relay()
    if relay is None:
        return {"status": "not_initialized"}

    return {
        "status": "ok",
        "connections": len(relay.registry),
        "rooms": len(relay.directory.rooms),
    }


@router.get("/rooms")
async def get_rooms():
    """활성화된 모든 룸의 목록을 조회합니다.

    Returns:
        dict: {"rooms": [{"room_id", "peer_count", "peers"}, ...]}
    """
    relay = get_relay()
    return {"rooms": relay.directory.get_room_list() if relay else []}


@router.get("/ice-servers")
async def get_ice_servers():
    """브라우저 클라이언트가 사용할 ICE 서버 설정을 제공합니다.

    TURN 자격증명은 서버 환경변수에서만 관리됩니다.

    Examples:
        [
            {"urls": "stun:stun.l.google.com:19302"},
            {"urls": "turn:turn.example.com:3478", "username": "u", "credential": "p"}
        ]
    """
    return ice_config.as_dicts()
