"""원격 피어 한 명과의 협상 세션."""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List

from .engine import MediaEngine
from .states import Role


@dataclass(eq=False)
class NegotiationSession:
    """원격 피어와의 관계 하나를 나타냅니다.

    Attributes:
        engine (MediaEngine): 이 관계 전용 미디어 엔진
        role (Role): 역할 (initiator/responder/undetermined)
        established (bool): offer/answer 사이클이 한 번 이상 완료되었는지 여부
        pending_offer (bool): 로컬 offer가 answer를 기다리는 중인지 여부
        renegotiate_pending (bool): 진행 중인 사이클이 끝난 뒤 재협상이 필요한지 여부
        cycle (int): 보낸 offer 수 (타임아웃 식별용)
        pending_candidates (Deque[dict]): 원격 설명 전에 도착해 보류 중인 candidate
        applied_candidates (int): 적용에 성공한 원격 candidate 수
        senders (Dict[Any, Any]): 로컬 트랙 → 엔진 sender
        warnings (List[str]): 기록된 비치명적 상황
    """
    engine: MediaEngine
    role: Role = Role.UNDETERMINED
    established: bool = False
    pending_offer: bool = False
    renegotiate_pending: bool = False
    cycle: int = 0
    pending_candidates: Deque[Dict[str, Any]] = field(default_factory=deque)
    applied_candidates: int = 0
    senders: Dict[Any, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
