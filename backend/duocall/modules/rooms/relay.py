"""시그널링 릴레이 모듈.

룸 디렉토리를 이용해 시그널링 메시지를 룸 참가자에게 전달합니다.
잘못된 프레임, 알 수 없는 종류, 룸 밖 피어의 릴레이 요청은 모두 경계에서
흡수되며 호출자에게 예외를 던지지 않습니다.

주요 기능:
    - join/leave 처리 (welcome, room-peers, peer-joined, peer-left, roster)
    - 룸 브로드캐스트 (특정 피어 제외, 전송 실패 격리)
    - offer/answer/ice-candidate/leave 중계

Join Flow:
    1. 다른 룸에 있으면 먼저 그 룸에서 퇴장 (룸 전환)
    2. 룸 잠금 획득, 정원 확인
    3. ID/이름 지정 후 멤버십 추가
    4. 새 피어에게 welcome, 기존 피어들에게 peer-joined
    5. 새 피어에게 room-peers (참가 전 인원)
    6. 전체 참가자에게 roster
"""
import logging
from typing import Any, Optional

from ..shared import messages
from ..shared.messages import MessageKind, RELAYABLE_KINDS, SignalMessage, parse_frame
from .directory import RoomDirectory
from .registry import Peer, PeerRegistry
from .roster import RosterPublisher

logger = logging.getLogger(__name__)


class SignalRelay:
    """룸 기반 시그널링 릴레이.

    Attributes:
        registry (PeerRegistry): 연결별 피어 레코드
        directory (RoomDirectory): 룸 멤버십
        roster (RosterPublisher): 로스터 스냅샷 발행기
        max_name_length (int): 표시 이름 최대 길이

    Examples:
        >>> relay = SignalRelay()
        >>> peer = relay.connect(websocket)
        >>> await relay.handle_frame(peer, '{"type": "join", "roomId": "abc"}')
        >>> await relay.disconnect(peer)
    """

    def __init__(
        self,
        registry: Optional[PeerRegistry] = None,
        directory: Optional[RoomDirectory] = None,
        max_name_length: int = 64,
    ):
        self.registry = registry or PeerRegistry()
        self.directory = directory or RoomDirectory()
        self.roster = RosterPublisher(self)
        self.max_name_length = max_name_length

    # ------------------------------------------------------------
    # 연결 수명
    # ------------------------------------------------------------

    def connect(self, connection: Any) -> Peer:
        """새 연결을 레지스트리에 등록합니다."""
        return self.registry.register(connection)

    async def disconnect(self, peer: Peer) -> None:
        """연결 종료: leave 처리 후 레코드를 제거합니다."""
        await self.leave(peer)
        self.registry.unregister(peer)

    # ------------------------------------------------------------
    # 전송
    # ------------------------------------------------------------

    async def send_direct(self, peer: Peer, message: SignalMessage) -> bool:
        """특정 피어 한 명에게 메시지를 보냅니다.

        Returns:
            bool: 전송 성공 여부. 닫힌 연결이나 전송 오류면 False
        """
        if not peer.is_open:
            return False
        try:
            await peer.send(message.encode())
            return True
        except Exception as e:
            logger.error(f"Failed to send '{message.kind.value}' to peer {peer.peer_id}: {e}")
            return False

    async def deliver(self, room_id: str, message: SignalMessage, except_peer: Optional[Peer]) -> int:
        """룸 잠금을 보유한 상태에서 참가자 스냅샷에 메시지를 전달합니다.

        한 참가자의 전송 실패가 다른 참가자 전달을 막지 않습니다.

        Returns:
            int: 전달에 성공한 참가자 수
        """
        delivered = 0
        for member in self.directory.members(room_id):
            if member is except_peer:
                continue
            if await self.send_direct(member, message):
                delivered += 1
        return delivered

    async def broadcast(self, room_id: str, message: SignalMessage, except_peer: Optional[Peer] = None) -> int:
        """룸의 모든 참가자(except_peer 제외)에게 메시지를 전달합니다."""
        async with self.directory.locked(room_id):
            return await self.deliver(room_id, message, except_peer)

    # ------------------------------------------------------------
    # 멤버십
    # ------------------------------------------------------------

    async def join(self, peer: Peer, room_id: str, name: Optional[str] = None) -> bool:
        """피어를 룸에 참가시킵니다.

        이미 다른 룸에 있으면 그 룸에서 먼저 퇴장합니다(룸 전환).
        같은 룸에 다시 join하면 아무 작업도 하지 않습니다.

        Args:
            peer (Peer): 참가할 피어
            room_id (str): 룸 ID (비어 있지 않은 문자열)
            name (Optional[str]): 요청된 표시 이름

        Returns:
            bool: 참가 여부. 잘못된 룸 ID, 정원 초과, 중복 참가면 False
        """
        if not isinstance(room_id, str) or not room_id:
            logger.debug("룸 ID 없는 join 무시")
            return False

        if peer.room_id == room_id:
            logger.debug(f"Peer {peer.peer_id} already in room '{room_id}'")
            return False

        if peer.room_id is not None:
            logger.info(f"Peer {peer.peer_id} switching room '{peer.room_id}' -> '{room_id}'")
            await self.leave(peer)

        async with self.directory.locked(room_id):
            if self.directory.is_full(room_id):
                logger.warning(f"Room '{room_id}' is full ({self.directory.capacity}), join rejected")
                return False

            self.registry.assign_identity(peer, name, self.max_name_length)
            pre_count = self.directory.add_member(peer, room_id)

            await self.send_direct(peer, messages.welcome(peer.peer_id, peer.name))
            await self.deliver(room_id, messages.peer_joined(room_id), except_peer=peer)
            await self.send_direct(peer, messages.room_peers(room_id, pre_count))
            await self.roster.publish(room_id)
        return True

    async def leave(self, peer: Peer) -> Optional[str]:
        """피어를 현재 룸에서 퇴장시킵니다. 멱등적입니다.

        Returns:
            Optional[str]: 퇴장한 룸 ID. 룸에 없었으면 None
        """
        room_id = peer.room_id
        if room_id is None:
            return None

        async with self.directory.locked(room_id):
            if self.directory.remove_member(peer) is None:
                return None
            await self.deliver(room_id, messages.peer_left(room_id), except_peer=peer)
            await self.roster.publish(room_id)
        return room_id

    # ------------------------------------------------------------
    # 중계
    # ------------------------------------------------------------

    async def relay(self, kind: MessageKind, room_id: Optional[str], payload: Any, sender: Peer) -> int:
        """offer/answer/ice-candidate/leave를 같은 룸의 다른 참가자에게 중계합니다.

        sender가 해당 룸의 참가자가 아니거나 허용되지 않은 종류면 아무 효과가 없습니다.

        Returns:
            int: 전달된 참가자 수
        """
        if kind not in RELAYABLE_KINDS or room_id is None:
            return 0

        async with self.directory.locked(room_id):
            if not self.directory.is_member(sender, room_id):
                logger.debug(f"Non-member relay '{kind.value}' ignored")
                return 0
            message = messages.relayed(kind, room_id, payload)
            return await self.deliver(room_id, message, except_peer=sender)

    async def handle_frame(self, peer: Peer, raw: Any) -> None:
        """수신 프레임 하나를 끝까지 처리합니다."""
        message = parse_frame(raw)
        if message is None:
            return

        kind = message.kind
        if kind is MessageKind.JOIN:
            await self.join(peer, messages.join_room_id(message), messages.join_name(message))

        elif kind in (MessageKind.OFFER, MessageKind.ANSWER, MessageKind.ICE_CANDIDATE):
            await self.relay(kind, peer.room_id, message.payload, peer)

        elif kind is MessageKind.LEAVE:
            await self.relay(kind, peer.room_id, message.payload, peer)
            await self.leave(peer)

        elif kind in (
            MessageKind.WELCOME,
            MessageKind.ROOM_PEERS,
            MessageKind.PEER_JOINED,
            MessageKind.PEER_LEFT,
            MessageKind.ROSTER,
        ):
            logger.debug(f"Server-only message '{kind.value}' from client ignored")

        else:
            logger.debug(f"Unhandled message kind: {kind}")
