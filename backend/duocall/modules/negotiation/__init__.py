"""클라이언트 측 협상 모듈.

Classes:
    NegotiationOrchestrator: 원격 피어 한 명과의 offer/answer/candidate 조율
    NegotiationSession: 관계별 협상 상태
    AiortcMediaEngine: aiortc 기반 미디어 엔진
    LocalMedia: 로컬 트랙 집합
    WebSocketTransport: websockets 기반 시그널링 전송
"""

from .states import InvalidTransition, NegotiationEvent, NegotiationState, Role, next_state
from .session import NegotiationSession
from .engine import AiortcMediaEngine, MediaEngine, MediaEngineError, build_rtc_configuration
from .media import LocalMedia, MediaProvider, MediaUnavailableError, MuteableAudioTrack, PlayerMediaProvider
from .transport import SignalingTransport, WebSocketTransport, pump
from .orchestrator import NegotiationOrchestrator

__all__ = [
    "InvalidTransition",
    "NegotiationEvent",
    "NegotiationState",
    "Role",
    "next_state",
    "NegotiationSession",
    "AiortcMediaEngine",
    "MediaEngine",
    "MediaEngineError",
    "build_rtc_configuration",
    "LocalMedia",
    "MediaProvider",
    "MediaUnavailableError",
    "MuteableAudioTrack",
    "PlayerMediaProvider",
    "SignalingTransport",
    "WebSocketTransport",
    "pump",
    "NegotiationOrchestrator",
]
