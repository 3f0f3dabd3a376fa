"""로스터 발행 모듈.

룸 멤버십이 바뀔 때마다 전체 참가자 목록을 다시 계산해 룸의 모든 참가자
(방금 들어온 피어 포함)에게 스냅샷으로 전송합니다. 증분(diff)은 보내지 않습니다.
"""
import logging
from typing import TYPE_CHECKING

from ..shared import messages

if TYPE_CHECKING:
    from .relay import SignalRelay

logger = logging.getLogger(__name__)


class RosterPublisher:
    """룸 로스터 스냅샷을 브로드캐스트합니다."""

    def __init__(self, relay: "SignalRelay"):
        self.relay = relay

    async def publish(self, room_id: str) -> int:
        """룸 잠금을 보유한 상태에서 로스터를 전송합니다.

        Returns:
            int: 로스터를 받은 참가자 수. 룸이 없으면 0
        """
        entries = self.relay.directory.roster(room_id)
        if not entries:
            return 0

        message = messages.roster(room_id, entries)
        delivered = await self.relay.deliver(room_id, message, except_peer=None)
        logger.debug(f"Roster for room '{room_id}' published to {delivered} peers "
                     f"({len(entries)} entries)")
        return delivered
