"""시그널링 메시지 모델.

클라이언트와 릴레이 사이에서 오가는 모든 프레임은 하나의 JSON 객체이며
``{"type": ..., "roomId": ..., "payload": ...}`` 형태를 가집니다.
이 모듈은 메시지 종류(tagged union)와 프레임 파싱/직렬화를 담당합니다.

세션 설명(offer/answer)과 ICE candidate는 내용을 해석하지 않고
불투명한 payload로만 전달합니다.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    """시그널링 메시지 종류."""

    JOIN = "join"
    WELCOME = "welcome"
    PEER_JOINED = "peer-joined"
    ROOM_PEERS = "room-peers"
    ROSTER = "roster"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    LEAVE = "leave"
    PEER_LEFT = "peer-left"


# 피어 간 릴레이가 허용되는 메시지 종류
RELAYABLE_KINDS = frozenset({
    MessageKind.OFFER,
    MessageKind.ANSWER,
    MessageKind.ICE_CANDIDATE,
    MessageKind.LEAVE,
})


class RosterEntry(BaseModel):
    """로스터 항목 (피어 ID, 표시 이름)."""

    id: str
    name: str


class SignalMessage(BaseModel):
    """시그널링 메시지 한 건.

    Attributes:
        kind: 메시지 종류 (와이어에서는 ``type``)
        room_id: 관련 룸 ID (와이어에서는 ``roomId``, welcome에는 없음)
        payload: 종류별 payload. offer/answer/ice-candidate는 불투명 객체
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="allow")

    kind: MessageKind = Field(alias="type")
    room_id: Optional[str] = Field(default=None, alias="roomId")
    payload: Any = None

    def to_wire(self) -> Dict[str, Any]:
        """와이어 형식 딕셔너리로 변환합니다."""
        data: Dict[str, Any] = {"type": self.kind.value}
        if self.room_id is not None:
            data["roomId"] = self.room_id
        data["payload"] = self.payload if self.payload is not None else {}
        return data

    def encode(self) -> str:
        """JSON 텍스트 프레임으로 직렬화합니다."""
        return json.dumps(self.to_wire(), separators=(",", ":"))


def parse_frame(raw: Union[str, bytes, Dict[str, Any]]) -> Optional[SignalMessage]:
    """수신 프레임을 SignalMessage로 파싱합니다.

    JSON이 아니거나, 객체가 아니거나, 알 수 없는 종류이거나, 스키마에 맞지 않는
    프레임은 예외 없이 None을 반환합니다.

    Args:
        raw: 텍스트/바이트 프레임 또는 이미 디코딩된 딕셔너리

    Returns:
        Optional[SignalMessage]: 파싱된 메시지. 버려야 하는 프레임이면 None

    Examples:
        >>> parse_frame('{"type": "join", "roomId": "abc"}').kind
        <MessageKind.JOIN: 'join'>
        >>> parse_frame("not json") is None
        True
    """
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            logger.debug("잘못된 JSON 프레임 무시")
            return None
    else:
        data = raw

    if not isinstance(data, dict):
        logger.debug("객체가 아닌 프레임 무시")
        return None

    try:
        return SignalMessage.model_validate(data)
    except ValidationError:
        logger.debug(f"스키마 불일치 프레임 무시: type={data.get('type')!r}")
        return None


def join_name(message: SignalMessage) -> Optional[str]:
    """join 메시지에서 요청된 표시 이름을 꺼냅니다.

    payload.name(참조 클라이언트 형식)을 우선하고, 없으면 최상위 name을 봅니다.
    """
    payload = message.payload
    if isinstance(payload, dict) and isinstance(payload.get("name"), str):
        return payload["name"]
    name = (message.model_extra or {}).get("name")
    return name if isinstance(name, str) else None


def join_room_id(message: SignalMessage) -> Optional[str]:
    """join 메시지의 룸 ID. 봉투의 roomId를 우선하고 payload.roomId도 허용합니다."""
    if message.room_id:
        return message.room_id
    payload = message.payload
    if isinstance(payload, dict) and isinstance(payload.get("roomId"), str):
        return payload["roomId"] or None
    return None


# ============================================================
# 메시지 생성 헬퍼
# ============================================================

def welcome(peer_id: str, name: str) -> SignalMessage:
    return SignalMessage(kind=MessageKind.WELCOME, payload={"id": peer_id, "name": name})


def room_peers(room_id: str, count: int) -> SignalMessage:
    return SignalMessage(kind=MessageKind.ROOM_PEERS, room_id=room_id, payload={"count": count})


def peer_joined(room_id: str) -> SignalMessage:
    return SignalMessage(kind=MessageKind.PEER_JOINED, room_id=room_id, payload={})


def peer_left(room_id: str) -> SignalMessage:
    return SignalMessage(kind=MessageKind.PEER_LEFT, room_id=room_id, payload={})


def roster(room_id: str, entries: List[RosterEntry]) -> SignalMessage:
    return SignalMessage(
        kind=MessageKind.ROSTER,
        room_id=room_id,
        payload={"roster": [entry.model_dump() for entry in entries]},
    )


def join(room_id: str, name: Optional[str] = None) -> SignalMessage:
    payload = {"name": name} if name else {}
    return SignalMessage(kind=MessageKind.JOIN, room_id=room_id, payload=payload)


def relayed(kind: MessageKind, room_id: Optional[str], payload: Any) -> SignalMessage:
    """피어 간 전달 메시지(offer/answer/ice-candidate/leave)를 만듭니다."""
    return SignalMessage(kind=kind, room_id=room_id, payload=payload)
