"""연결별 피어 레지스트리.

웹소켓 연결 하나당 Peer 레코드 하나를 관리합니다. 연결 객체에 속성을 직접
붙이지 않고, 연결 ID를 키로 명시적인 레코드를 조회합니다.

Classes:
    Peer: 연결의 식별자, 표시 이름, 현재 룸 정보
    PeerRegistry: 연결 ID → Peer 매핑
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Peer:
    """시그널링 연결 하나를 나타내는 데이터 클래스.

    동일성(identity)으로 비교되므로 같은 연결의 Peer는 항상 같은 객체입니다.

    Attributes:
        connection_id (str): 레지스트리 키 (연결 수락 시 생성)
        connection (Any): 텍스트 프레임을 보낼 수 있는 웹소켓 객체
        peer_id (Optional[str]): 첫 join 시 생성되며 연결이 끝날 때까지 유지됨
        name (Optional[str]): 표시 이름
        room_id (Optional[str]): 현재 참가한 룸 ID (없으면 None)

    Examples:
        >>> peer = Peer(connection_id="c-1", connection=websocket)
        >>> peer.in_room
        False
    """
    connection_id: str
    connection: Any = field(repr=False)
    peer_id: Optional[str] = None
    name: Optional[str] = None
    room_id: Optional[str] = None

    @property
    def in_room(self) -> bool:
        return self.room_id is not None

    @property
    def is_open(self) -> bool:
        """전송 채널이 아직 열려 있는지 여부."""
        return getattr(self.connection, "client_state", None) == WebSocketState.CONNECTED

    async def send(self, text: str) -> None:
        await self.connection.send_text(text)


class PeerRegistry:
    """연결 ID로 Peer 레코드를 관리하는 클래스.

    Attributes:
        peers (Dict[str, Peer]): 연결 ID → Peer
    """

    def __init__(self):
        self.peers: Dict[str, Peer] = {}

    def register(self, connection: Any) -> Peer:
        """새 연결을 등록하고 Peer 레코드를 반환합니다."""
        connection_id = str(uuid.uuid4())
        peer = Peer(connection_id=connection_id, connection=connection)
        self.peers[connection_id] = peer
        logger.debug(f"Connection {connection_id} registered")
        return peer

    def get(self, connection_id: str) -> Optional[Peer]:
        return self.peers.get(connection_id)

    def unregister(self, peer: Peer) -> None:
        """연결 종료 시 레코드를 제거합니다. 이미 없으면 무시합니다."""
        if self.peers.pop(peer.connection_id, None) is not None:
            logger.debug(f"Connection {peer.connection_id} unregistered")

    def assign_identity(self, peer: Peer, name: Optional[str], max_name_length: int = 64) -> None:
        """join 시 피어 ID와 표시 이름을 지정합니다.

        피어 ID는 첫 join에서만 생성되어 연결 수명 동안 유지됩니다.
        이름이 비어 있으면 ID 기반 기본 이름을 사용합니다.
        """
        if peer.peer_id is None:
            peer.peer_id = str(uuid.uuid4())

        cleaned = (name or "").strip()[:max_name_length]
        peer.name = cleaned or f"Guest-{peer.peer_id[:4]}"

    def __len__(self) -> int:
        return len(self.peers)
