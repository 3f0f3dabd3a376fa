"""룸 디렉토리 모듈.

룸 ID → 참가자 집합 매핑을 관리합니다. 룸은 첫 참가 시 자동 생성되고
마지막 참가자가 나가면 즉시 삭제됩니다.

Architecture:
    - rooms: Dict[str, Dict[str, Peer]] - 룸 ID → {connection_id: Peer}
    - 룸별 asyncio.Lock: 같은 룸의 join/leave/broadcast를 직렬화하고
      서로 다른 룸은 경합하지 않음

Thread Safety:
    - asyncio 단일 스레드 환경 기준
    - 멤버십 변경(add_member/remove_member)은 해당 룸의 locked() 안에서 호출해야 함

Examples:
    >>> directory = RoomDirectory()
    >>> async with directory.locked("abc"):
    ...     directory.add_member(peer, "abc")
    0
    >>> directory.room_count("abc")
    1
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional

from ..shared.messages import RosterEntry
from .registry import Peer

logger = logging.getLogger(__name__)


@dataclass
class _RoomLock:
    lock: asyncio.Lock
    users: int = 0


class RoomDirectory:
    """룸과 참가자를 관리하는 클래스.

    Attributes:
        rooms (Dict[str, Dict[str, Peer]]): 룸 ID를 키로 하는 참가자 맵
        capacity (int): 룸당 최대 참가자 수 (0이면 제한 없음)

    Invariants:
        - 한 Peer는 동시에 최대 하나의 룸에만 존재
        - 참가자가 0명인 룸은 rooms에 존재하지 않음
    """

    def __init__(self, capacity: int = 0):
        # room_id -> {connection_id: Peer}
        self.rooms: Dict[str, Dict[str, Peer]] = {}
        self.capacity = capacity

        # room_id -> lock (사용 중인 동안만 유지)
        self._locks: Dict[str, _RoomLock] = {}

    @asynccontextmanager
    async def locked(self, room_id: str) -> AsyncIterator[None]:
        """룸 단위 배타 잠금.

        잠금 객체는 대기자를 포함한 사용자가 모두 빠지면 제거됩니다.
        """
        entry = self._locks.get(room_id)
        if entry is None:
            entry = _RoomLock(lock=asyncio.Lock())
            self._locks[room_id] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[room_id]

    def is_full(self, room_id: str) -> bool:
        return self.capacity > 0 and self.room_count(room_id) >= self.capacity

    def add_member(self, peer: Peer, room_id: str) -> int:
        """피어를 룸에 추가하고 추가 전 참가자 수를 반환합니다.

        룸이 없으면 생성합니다. 피어는 다른 룸에 속해 있으면 안 됩니다.

        Args:
            peer (Peer): 참가할 피어 (peer_id, name 지정 완료 상태)
            room_id (str): 룸 ID

        Returns:
            int: 참가 전 룸의 인원 수

        Raises:
            ValueError: 피어가 이미 다른 룸에 속해 있는 경우
        """
        if peer.room_id is not None and peer.room_id != room_id:
            raise ValueError(f"peer {peer.peer_id} is already in room {peer.room_id!r}")

        members = self.rooms.get(room_id)
        if members is None:
            members = {}
            self.rooms[room_id] = members
            logger.info(f"Room '{room_id}' created")

        pre_count = len(members)
        members[peer.connection_id] = peer
        peer.room_id = room_id

        logger.info(f"Peer '{peer.name}' ({peer.peer_id}) joined room '{room_id}'. "
                    f"Room has {len(members)} peers")
        return pre_count

    def remove_member(self, peer: Peer) -> Optional[str]:
        """피어를 현재 룸에서 제거합니다.

        룸이 비면 즉시 삭제합니다. 룸에 없는 피어는 아무 작업도 하지 않습니다.

        Returns:
            Optional[str]: 피어가 속해 있던 룸 ID. 없었으면 None
        """
        room_id = peer.room_id
        if room_id is None:
            return None

        peer.room_id = None
        members = self.rooms.get(room_id)
        if members is None or members.pop(peer.connection_id, None) is None:
            return None

        if not members:
            del self.rooms[room_id]
            logger.info(f"Room '{room_id}' deleted (empty)")
        else:
            logger.info(f"Peer '{peer.name}' ({peer.peer_id}) left room '{room_id}'. "
                        f"Room has {len(members)} peers")
        return room_id

    def members(self, room_id: str) -> List[Peer]:
        """룸의 현재 참가자 스냅샷."""
        return list(self.rooms.get(room_id, {}).values())

    def is_member(self, peer: Peer, room_id: Optional[str]) -> bool:
        if room_id is None:
            return False
        return peer.connection_id in self.rooms.get(room_id, {})

    def roster(self, room_id: str) -> List[RosterEntry]:
        """룸 참가자의 (ID, 이름) 목록."""
        return [RosterEntry(id=p.peer_id, name=p.name) for p in self.members(room_id)]

    def room_count(self, room_id: str) -> int:
        return len(self.rooms.get(room_id, {}))

    def get_room_list(self) -> List[dict]:
        """모든 룸의 요약 정보를 반환합니다.

        Returns:
            List[dict]: room_id, peer_count, peers(id, name) 를 담은 딕셔너리 리스트
        """
        return [
            {
                "room_id": room_id,
                "peer_count": len(members),
                "peers": [{"id": p.peer_id, "name": p.name} for p in members.values()],
            }
            for room_id, members in self.rooms.items()
        ]
