"""룸 시그널링 모듈.

Classes:
    Peer: 연결별 피어 레코드
    PeerRegistry: 연결 ID → Peer 매핑
    RoomDirectory: 룸 멤버십 및 룸별 잠금
    SignalRelay: join/leave/브로드캐스트/중계
    RosterPublisher: 로스터 스냅샷 발행
"""

from .registry import Peer, PeerRegistry
from .directory import RoomDirectory
from .relay import SignalRelay
from .roster import RosterPublisher

__all__ = [
    "Peer",
    "PeerRegistry",
    "RoomDirectory",
    "SignalRelay",
    "RosterPublisher",
]
