"""협상 상태 머신 정의.

상태와 이벤트를 열거형으로 정의하고, 허용된 전이를 표로 관리합니다.
표에 없는 전이는 InvalidTransition으로 거부됩니다.

    Idle --local_media_ready--> AwaitingRole
    AwaitingRole --peer_joined--> Initiating --offer_sent--> Negotiating
    AwaitingRole --offer_received--> Responding --remote_applied--> Negotiating
    Negotiating --answer_received / answer_sent--> Connected
    Connected --tracks_changed--> Renegotiating --answer_received--> Connected
    (any) --close--> Closed
"""

from enum import Enum
from typing import Dict, Tuple


class Role(str, Enum):
    """세션 내 역할."""

    UNDETERMINED = "undetermined"
    INITIATOR = "initiator"
    RESPONDER = "responder"


class NegotiationState(str, Enum):
    IDLE = "idle"
    AWAITING_ROLE = "awaiting-role"
    INITIATING = "initiating"
    RESPONDING = "responding"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    RENEGOTIATING = "renegotiating"
    CLOSED = "closed"


class NegotiationEvent(str, Enum):
    LOCAL_MEDIA_READY = "local-media-ready"
    PEER_JOINED = "peer-joined"
    OFFER_RECEIVED = "offer-received"
    OFFER_SENT = "offer-sent"
    REMOTE_APPLIED = "remote-applied"
    ANSWER_SENT = "answer-sent"
    ANSWER_RECEIVED = "answer-received"
    TRACKS_CHANGED = "tracks-changed"
    CYCLE_ABANDONED = "cycle-abandoned"
    NEGOTIATION_FAILED = "negotiation-failed"
    PEER_LEFT = "peer-left"
    CLOSE = "close"


class InvalidTransition(Exception):
    """현재 상태에서 허용되지 않는 이벤트."""

    def __init__(self, state: NegotiationState, event: NegotiationEvent):
        super().__init__(f"{event.value} is not valid in state {state.value}")
        self.state = state
        self.event = event


S = NegotiationState
E = NegotiationEvent

TRANSITIONS: Dict[Tuple[NegotiationState, NegotiationEvent], NegotiationState] = {
    (S.IDLE, E.LOCAL_MEDIA_READY): S.AWAITING_ROLE,

    (S.AWAITING_ROLE, E.PEER_JOINED): S.INITIATING,
    (S.AWAITING_ROLE, E.OFFER_RECEIVED): S.RESPONDING,

    (S.INITIATING, E.OFFER_SENT): S.NEGOTIATING,
    (S.RESPONDING, E.REMOTE_APPLIED): S.NEGOTIATING,

    (S.NEGOTIATING, E.ANSWER_RECEIVED): S.CONNECTED,
    (S.NEGOTIATING, E.ANSWER_SENT): S.CONNECTED,
    # 재협상 사이클 실패/타임아웃: 기존 협상 상태 유지
    (S.NEGOTIATING, E.CYCLE_ABANDONED): S.CONNECTED,
    (S.RESPONDING, E.CYCLE_ABANDONED): S.CONNECTED,
    (S.RENEGOTIATING, E.CYCLE_ABANDONED): S.CONNECTED,

    # 첫 협상 실패: 역할 대기로 복귀
    (S.INITIATING, E.NEGOTIATION_FAILED): S.AWAITING_ROLE,
    (S.RESPONDING, E.NEGOTIATION_FAILED): S.AWAITING_ROLE,
    (S.NEGOTIATING, E.NEGOTIATION_FAILED): S.AWAITING_ROLE,

    # 연결 후 트랙 변경 → 재협상
    (S.CONNECTED, E.TRACKS_CHANGED): S.RENEGOTIATING,
    (S.RENEGOTIATING, E.OFFER_SENT): S.NEGOTIATING,

    # 상대의 재협상 offer
    (S.CONNECTED, E.OFFER_RECEIVED): S.RESPONDING,
    # offer 충돌 시 응답자 쪽이 상대 offer를 수용
    (S.NEGOTIATING, E.OFFER_RECEIVED): S.RESPONDING,

    # 상대 퇴장: 관계 종료 후 다음 상대를 기다림
    (S.INITIATING, E.PEER_LEFT): S.AWAITING_ROLE,
    (S.RESPONDING, E.PEER_LEFT): S.AWAITING_ROLE,
    (S.NEGOTIATING, E.PEER_LEFT): S.AWAITING_ROLE,
    (S.CONNECTED, E.PEER_LEFT): S.AWAITING_ROLE,
    (S.RENEGOTIATING, E.PEER_LEFT): S.AWAITING_ROLE,
}

# Closed는 모든 비종료 상태에서 도달 가능하며 이후 전이는 없다
for _state in NegotiationState:
    if _state is not S.CLOSED:
        TRANSITIONS[(_state, E.CLOSE)] = S.CLOSED


def next_state(state: NegotiationState, event: NegotiationEvent) -> NegotiationState:
    """전이표에 따라 다음 상태를 계산합니다.

    Raises:
        InvalidTransition: 허용되지 않는 전이
    """
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransition(state, event) from None
