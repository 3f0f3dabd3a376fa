"""duocall 모듈 패키지.

Subpackages:
    shared: 릴레이와 클라이언트가 공유하는 메시지 모델
    rooms: 서버 측 룸 디렉토리와 시그널링 릴레이
    negotiation: 클라이언트 측 협상 오케스트레이터
"""

from .rooms import Peer, PeerRegistry, RoomDirectory, SignalRelay
from .shared import MessageKind, SignalMessage, parse_frame

__all__ = [
    "Peer",
    "PeerRegistry",
    "RoomDirectory",
    "SignalRelay",
    "MessageKind",
    "SignalMessage",
    "parse_frame",
]
