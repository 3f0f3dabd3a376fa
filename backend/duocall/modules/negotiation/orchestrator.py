"""협상 오케스트레이터 모듈.

원격 피어 한 명과의 세션 설명(offer/answer) 교환 시점을 결정하고, 비동기로
도착하는 ICE candidate를 올바른 순서로 적용하며, 관계당 진행 중인 offer/answer
사이클을 항상 하나로 유지하는 클라이언트 측 상태 머신입니다.

역할 결정:
    - 릴레이는 peer-joined를 기존 참가자에게만 보냄
    - peer-joined를 받은 쪽이 initiator가 되어 offer를 생성/전송
    - 새로 들어온 쪽은 room-peers만 받고 responder로서 offer를 기다림

재협상:
    - 화면 공유 시작/중지(송신 트랙 집합 변경) → 새 offer
    - 음소거는 로컬 처리만 하며 재협상하지 않음
    - 사이클 진행 중 요청은 renegotiate_pending 플래그로 미뤄졌다가 완료 후 실행

Candidate 순서:
    - 원격 설명이 생기기 전에 도착한 candidate는 큐에 보관(경고 기록)
    - 원격 설명 적용 직후 도착 순서대로 적용

실패 처리:
    - 로컬 미디어 획득 실패: 상태 메시지만 보고하고 계속 진행
    - 원격 설명/candidate 적용 실패: 기록 후 세션 유지
    - 전송 채널 끊김: Closed, 로컬 미디어 해제

Examples:
    >>> orchestrator = NegotiationOrchestrator(transport, AiortcMediaEngine, LocalMedia(provider))
    >>> await orchestrator.start("abc", name="alice")
    >>> await orchestrator.handle(message)      # 수신 메시지마다
    >>> await orchestrator.start_screen_share()
    >>> await orchestrator.leave()
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from ...config import connection_config
from ..shared import messages
from ..shared.messages import MessageKind, RosterEntry, SignalMessage
from .engine import MediaEngine, MediaEngineError
from .media import LocalMedia, MediaUnavailableError
from .session import NegotiationSession
from .states import InvalidTransition, NegotiationEvent, NegotiationState, Role, next_state
from .transport import SignalingTransport

logger = logging.getLogger(__name__)

S = NegotiationState
E = NegotiationEvent

# 관계가 존재하는 동안의 상태
_RELATIONSHIP_STATES = frozenset({
    S.INITIATING, S.RESPONDING, S.NEGOTIATING, S.CONNECTED, S.RENEGOTIATING,
})


class NegotiationOrchestrator:
    """원격 피어 한 명과의 협상을 관리하는 상태 머신.

    Attributes:
        transport (SignalingTransport): 릴레이로 메시지를 보내는 채널
        engine_factory (Callable[[], MediaEngine]): 관계마다 새 엔진을 만드는 팩토리
        media (LocalMedia): 로컬 트랙 집합
        state (NegotiationState): 현재 상태
        session (Optional[NegotiationSession]): 현재 원격 피어와의 세션
        room_id (Optional[str]): 참가한 룸
        self_id / self_name: welcome으로 받은 자신의 식별 정보
        roster (List[RosterEntry]): 마지막 로스터 스냅샷
        status (Optional[str]): 마지막 상태 메시지
        warnings (List[str]): 기록된 비치명적 상황

    Thread Safety:
        수신 메시지와 트랙 변경은 하나의 asyncio.Lock으로 직렬화됩니다.
        leave/연결 끊김 처리는 잠금을 기다리지 않고 즉시 Closed로 전환합니다.
    """

    def __init__(
        self,
        transport: SignalingTransport,
        engine_factory: Callable[[], MediaEngine],
        media: Optional[LocalMedia] = None,
        on_status: Optional[Callable[[str], None]] = None,
        on_remote_track: Optional[Callable[[Any], Awaitable[None]]] = None,
        negotiation_timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.engine_factory = engine_factory
        self.media = media or LocalMedia()
        self.on_status = on_status
        self.on_remote_track = on_remote_track
        self.negotiation_timeout = (
            connection_config.NEGOTIATION_TIMEOUT if negotiation_timeout is None else negotiation_timeout
        )

        self.state = S.IDLE
        self.session: Optional[NegotiationSession] = None
        self.room_id: Optional[str] = None
        self.self_id: Optional[str] = None
        self.self_name: Optional[str] = None
        self.roster: List[RosterEntry] = []
        self.status: Optional[str] = None
        self.warnings: List[str] = []

        self._lock = asyncio.Lock()
        self._timeout_task: Optional[asyncio.Task] = None

    @property
    def role(self) -> Role:
        return self.session.role if self.session else Role.UNDETERMINED

    # ------------------------------------------------------------
    # 상태/보고
    # ------------------------------------------------------------

    def _fire(self, event: NegotiationEvent) -> NegotiationState:
        new_state = next_state(self.state, event)
        logger.debug(f"[Negotiation] {self.state.value} --{event.value}--> {new_state.value}")
        self.state = new_state
        return new_state

    def _report(self, text: str) -> None:
        self.status = text
        logger.info(f"[Negotiation] {text}")
        if self.on_status:
            self.on_status(text)

    def _record(self, text: str) -> None:
        """비치명적 상황을 기록하고 호출자에게 보고합니다."""
        logger.warning(f"[Negotiation] {text}")
        self.warnings.append(text)
        if self.session is not None:
            self.session.warnings.append(text)
        self.status = text
        if self.on_status:
            self.on_status(text)

    async def _send(self, message: SignalMessage) -> bool:
        if self.state is S.CLOSED:
            return False
        try:
            await self.transport.send(message)
            return True
        except ConnectionError as e:
            logger.error(f"[Negotiation] '{message.kind.value}' 전송 실패: {e}")
            return False

    async def _guard(self, step: Callable[..., Awaitable[None]], *args: Any) -> None:
        try:
            await step(*args)
        except InvalidTransition as exc:
            if self.state is S.CLOSED:
                logger.debug(f"[Negotiation] 종료 후 전이 무시: {exc}")
            else:
                self._record(f"ignored: {exc}")

    # ------------------------------------------------------------
    # 수명 주기
    # ------------------------------------------------------------

    async def start(self, room_id: str, name: Optional[str] = None) -> bool:
        """로컬 미디어를 준비하고 룸에 join합니다.

        마이크를 얻지 못해도 오디오 없이 계속 진행합니다.

        Returns:
            bool: join 요청을 보냈는지 여부
        """
        async with self._lock:
            if self.state is not S.IDLE:
                logger.warning(f"[Negotiation] start() ignored in state {self.state.value}")
                return False

            self.room_id = room_id
            try:
                await self.media.open_microphone()
            except MediaUnavailableError as e:
                self._report(f"microphone unavailable, continuing without audio ({e})")

            self._fire(E.LOCAL_MEDIA_READY)
            return await self._send(messages.join(room_id, name))

    def _shutdown(self, reason: str) -> Optional[MediaEngine]:
        """Closed로 전환하고 로컬 미디어를 즉시 해제합니다.

        Returns:
            Optional[MediaEngine]: 닫아야 할 엔진
        """
        self._cancel_timeout()
        self.state = next_state(self.state, E.CLOSE)
        self.media.release()
        session, self.session = self.session, None
        self._report(reason)
        return session.engine if session else None

    async def leave(self) -> None:
        """룸을 떠납니다. 로컬 미디어는 즉시 해제되고 이후 메시지는 무시됩니다."""
        if self.state is S.CLOSED:
            return
        room_id = self.room_id
        engine = self._shutdown("left the room")
        if room_id is not None:
            try:
                await self.transport.send(messages.relayed(MessageKind.LEAVE, room_id, {}))
            except ConnectionError as e:
                logger.warning(f"[Negotiation] leave 전송 실패: {e}")
        if engine is not None:
            await engine.close()

    async def on_transport_closed(self) -> None:
        """시그널링 연결이 끊겼을 때 호출됩니다."""
        if self.state is S.CLOSED:
            return
        engine = self._shutdown("signaling connection closed")
        if engine is not None:
            await engine.close()

    # ------------------------------------------------------------
    # 수신 메시지
    # ------------------------------------------------------------

    async def handle(self, message: SignalMessage) -> None:
        """릴레이에서 받은 메시지 하나를 처리합니다."""
        async with self._lock:
            if self.state in (S.IDLE, S.CLOSED):
                logger.debug(f"[Negotiation] '{message.kind.value}' ignored in state {self.state.value}")
                return

            kind = message.kind
            payload = message.payload

            if kind is MessageKind.WELCOME:
                self._on_welcome(payload)

            elif kind is MessageKind.ROOM_PEERS:
                self._on_room_peers(payload)

            elif kind is MessageKind.ROSTER:
                self._on_roster(payload)

            elif kind is MessageKind.PEER_JOINED:
                await self._guard(self._on_peer_joined)

            elif kind is MessageKind.OFFER:
                await self._guard(self._on_offer, payload)

            elif kind is MessageKind.ANSWER:
                await self._guard(self._on_answer, payload)

            elif kind is MessageKind.ICE_CANDIDATE:
                await self._on_remote_candidate(payload)

            elif kind in (MessageKind.PEER_LEFT, MessageKind.LEAVE):
                await self._guard(self._on_peer_left)

            elif kind is MessageKind.JOIN:
                logger.debug("[Negotiation] join from relay ignored")

            else:
                logger.debug(f"[Negotiation] unhandled message kind: {kind}")

    def _on_welcome(self, payload: Any) -> None:
        if isinstance(payload, dict):
            self.self_id = payload.get("id")
            self.self_name = payload.get("name") or self.self_name
        logger.info(f"[Negotiation] welcome: id={self.self_id}, name={self.self_name}")

    def _on_room_peers(self, payload: Any) -> None:
        count = payload.get("count", 0) if isinstance(payload, dict) else 0
        if count:
            self._ensure_session()
            self._report(f"joined room with {count} peer(s), waiting for an offer")
        else:
            self._report("joined empty room, waiting for a peer")

    def _on_roster(self, payload: Any) -> None:
        entries = payload.get("roster", []) if isinstance(payload, dict) else []
        roster: List[RosterEntry] = []
        for entry in entries if isinstance(entries, list) else []:
            try:
                roster.append(RosterEntry.model_validate(entry))
            except ValidationError:
                logger.debug(f"[Negotiation] invalid roster entry skipped: {entry!r}")
        # 스냅샷 전체 교체
        self.roster = roster

    async def _on_peer_joined(self) -> None:
        if self.session is not None:
            await self._end_relationship()

        session = self._ensure_session()
        session.role = Role.INITIATOR
        self._fire(E.PEER_JOINED)
        self._report("peer joined, sending offer")
        await self._send_offer(session)

    async def _on_offer(self, payload: Any) -> None:
        session = self._ensure_session()

        if self.state is S.NEGOTIATING and session.pending_offer:
            if session.role is Role.INITIATOR:
                self._record("offer collision: remote offer ignored while local offer is in flight")
                return
            self._cancel_timeout()
            session.pending_offer = False
            session.renegotiate_pending = True
            self._record("offer collision: local offer abandoned in favour of remote offer")

        if session.role is Role.UNDETERMINED:
            session.role = Role.RESPONDER

        first = not session.established
        self._fire(E.OFFER_RECEIVED)

        try:
            await session.engine.set_remote_description(payload)
        except MediaEngineError as e:
            self._record(f"could not apply remote offer: {e}")
            self._fire(E.NEGOTIATION_FAILED if first else E.CYCLE_ABANDONED)
            await self._after_connected(session)
            return
        self._fire(E.REMOTE_APPLIED)
        await self._flush_candidates(session)

        try:
            answer = await session.engine.create_answer()
        except MediaEngineError as e:
            self._record(f"could not create answer: {e}")
            self._fire(E.NEGOTIATION_FAILED if first else E.CYCLE_ABANDONED)
            await self._after_connected(session)
            return

        self._fire(E.ANSWER_SENT)
        session.established = True
        await self._send(messages.relayed(MessageKind.ANSWER, self.room_id, answer))
        self._report("answered offer")

        # answer에는 offer에 없던 비디오를 실을 수 없으므로 직접 재협상
        if first and self.media.has_screen:
            session.renegotiate_pending = True
        await self._after_connected(session)

    async def _on_answer(self, payload: Any) -> None:
        session = self.session
        if session is None or not session.pending_offer or self.state is not S.NEGOTIATING:
            self._record("unexpected answer ignored")
            return

        session.pending_offer = False
        self._cancel_timeout()

        try:
            await session.engine.set_remote_description(payload)
        except MediaEngineError as e:
            self._record(f"could not apply remote answer: {e}")
            self._fire(E.CYCLE_ABANDONED if session.established else E.NEGOTIATION_FAILED)
            await self._after_connected(session)
            return

        self._fire(E.ANSWER_RECEIVED)
        session.established = True
        await self._flush_candidates(session)
        self._report("connected")
        await self._after_connected(session)

    async def _on_remote_candidate(self, payload: Any) -> None:
        if not payload:
            logger.debug("[Negotiation] end-of-candidates")
            return

        session = self._ensure_session()
        if not session.engine.has_remote_description:
            session.pending_candidates.append(payload)
            self._record("ICE candidate arrived before remote description; queued")
            return
        await self._apply_candidate(session, payload)

    async def _on_peer_left(self) -> None:
        # client leave 뒤에 서버 peer-left가 한 번 더 옴
        if self.session is None and self.state not in _RELATIONSHIP_STATES:
            logger.debug("[Negotiation] peer-left without a relationship ignored")
            return
        await self._end_relationship()
        self._report("peer left the room")

    # ------------------------------------------------------------
    # 로컬 트랙 변경
    # ------------------------------------------------------------

    async def start_screen_share(self) -> bool:
        """화면 공유를 시작합니다. 연결된 상태면 재협상합니다.

        Returns:
            bool: 공유 시작 여부. 캡처가 취소/미지원이면 False
        """
        async with self._lock:
            if self.state is S.CLOSED or self.media.has_screen:
                return False
            try:
                tracks = await self.media.open_screen()
            except MediaUnavailableError as e:
                self._report(f"screen share cancelled or unsupported ({e})")
                return False

            self._watch_screen_end(tracks)
            await self._guard(self._tracks_changed, tracks, [])
            self._report("screen share started")
            return True

    async def stop_screen_share(self) -> bool:
        """화면 공유를 중지합니다. 연결된 상태면 재협상합니다."""
        async with self._lock:
            if self.state is S.CLOSED:
                return False
            tracks = self.media.close_screen()
            if not tracks:
                return False
            await self._guard(self._tracks_changed, [], tracks)
            self._report("screen share stopped")
            return True

    def set_muted(self, muted: bool) -> bool:
        """마이크 음소거. 트랙 집합이 바뀌지 않으므로 재협상하지 않습니다."""
        if not self.media.set_muted(muted):
            return False
        self._report("microphone muted" if muted else "microphone unmuted")
        return True

    def _watch_screen_end(self, tracks: List[Any]) -> None:
        """캡처 소스 쪽에서 화면 공유가 끝나면 공유를 중지합니다."""
        video = next((t for t in tracks if t.kind == "video"), None)
        if video is None:
            return

        @video.on("ended")
        def on_ended():
            if video in self.media.screen_tracks:
                asyncio.ensure_future(self.stop_screen_share())

    async def _tracks_changed(self, added: List[Any], removed: List[Any]) -> None:
        session = self.session
        if session is None:
            # 관계가 생기면 현재 트랙 집합으로 첫 협상을 함
            return

        for track in added:
            self._attach(session, track)
        for track in removed:
            sender = session.senders.pop(track, None)
            if sender is None:
                continue
            try:
                await session.engine.remove_track(sender)
            except MediaEngineError as e:
                self._record(f"could not remove track: {e}")

        if self.state is S.CONNECTED:
            self._fire(E.TRACKS_CHANGED)
            await self._send_offer(session)
        elif self.state is S.NEGOTIATING:
            session.renegotiate_pending = True
            logger.info("[Negotiation] renegotiation deferred until current cycle completes")

    # ------------------------------------------------------------
    # 세션 내부
    # ------------------------------------------------------------

    def _ensure_session(self) -> NegotiationSession:
        if self.session is None:
            engine = self.engine_factory()
            engine.on_local_candidate = self._send_local_candidate
            engine.on_remote_track = self._on_remote_track
            session = NegotiationSession(engine=engine)
            self.session = session
            for track in self.media.tracks():
                self._attach(session, track)
            logger.info("[Negotiation] new session created")
        return self.session

    def _attach(self, session: NegotiationSession, track: Any) -> None:
        try:
            session.senders[track] = session.engine.add_track(track)
        except MediaEngineError as e:
            self._record(f"could not add {getattr(track, 'kind', 'media')} track: {e}")

    async def _end_relationship(self) -> None:
        self._cancel_timeout()
        session, self.session = self.session, None
        if self.state in _RELATIONSHIP_STATES:
            self._fire(E.PEER_LEFT)
        if session is not None:
            await session.engine.close()

    async def _send_offer(self, session: NegotiationSession) -> None:
        try:
            offer = await session.engine.create_offer()
        except MediaEngineError as e:
            self._record(f"could not create offer: {e}")
            self._fire(E.CYCLE_ABANDONED if session.established else E.NEGOTIATION_FAILED)
            return

        session.cycle += 1
        session.pending_offer = True
        session.renegotiate_pending = False
        self._fire(E.OFFER_SENT)
        await self._send(messages.relayed(MessageKind.OFFER, self.room_id, offer))
        self._arm_timeout(session, session.cycle)

    async def _after_connected(self, session: NegotiationSession) -> None:
        """완료된 사이클 뒤 미뤄둔 재협상을 실행합니다."""
        if session is not self.session or self.state is not S.CONNECTED:
            return
        if session.renegotiate_pending:
            self._fire(E.TRACKS_CHANGED)
            await self._send_offer(session)

    async def _apply_candidate(self, session: NegotiationSession, candidate: Dict[str, Any]) -> None:
        try:
            await session.engine.add_ice_candidate(candidate)
            session.applied_candidates += 1
        except MediaEngineError as e:
            self._record(f"could not apply ICE candidate: {e}")

    async def _flush_candidates(self, session: NegotiationSession) -> None:
        if session.pending_candidates:
            logger.info(f"[Negotiation] applying {len(session.pending_candidates)} queued candidate(s)")
        while session.pending_candidates:
            await self._apply_candidate(session, session.pending_candidates.popleft())

    async def _send_local_candidate(self, candidate: Dict[str, Any]) -> None:
        if self.state is S.CLOSED or self.room_id is None:
            return
        await self._send(messages.relayed(MessageKind.ICE_CANDIDATE, self.room_id, candidate))

    async def _on_remote_track(self, track: Any) -> None:
        self._report(f"receiving remote {getattr(track, 'kind', 'media')}")
        if self.on_remote_track:
            await self.on_remote_track(track)

    # ------------------------------------------------------------
    # answer 대기 타임아웃
    # ------------------------------------------------------------

    def _arm_timeout(self, session: NegotiationSession, cycle: int) -> None:
        self._cancel_timeout()
        if self.negotiation_timeout and self.negotiation_timeout > 0:
            self._timeout_task = asyncio.ensure_future(self._expire(session, cycle))

    def _cancel_timeout(self) -> None:
        task, self._timeout_task = self._timeout_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _expire(self, session: NegotiationSession, cycle: int) -> None:
        await asyncio.sleep(self.negotiation_timeout)
        async with self._lock:
            if session is not self.session or not session.pending_offer or session.cycle != cycle:
                return
            if self.state is not S.NEGOTIATING:
                return
            self._timeout_task = None
            session.pending_offer = False
            self._record(f"no answer within {self.negotiation_timeout}s; offer abandoned")
            await self._guard(self._abandon_cycle, session)

    async def _abandon_cycle(self, session: NegotiationSession) -> None:
        self._fire(E.CYCLE_ABANDONED if session.established else E.NEGOTIATION_FAILED)
        await self._after_connected(session)
