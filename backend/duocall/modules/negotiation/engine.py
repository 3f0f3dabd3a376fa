"""미디어 엔진 어댑터.

세션 설명 생성, ICE 경로 탐색, 암호화, 코덱 선택은 외부 미디어 엔진이 담당합니다.
협상 오케스트레이터는 MediaEngine 프로토콜만 알고, 세션 설명과 candidate는
해석하지 않은 딕셔너리로 주고받습니다.

Classes:
    MediaEngine: 오케스트레이터가 사용하는 엔진 인터페이스
    MediaEngineError: 엔진 작업 실패
    AiortcMediaEngine: aiortc RTCPeerConnection 기반 구현

See Also:
    aiortc Documentation: https://aiortc.readthedocs.io/
"""
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)
from aiortc.sdp import candidate_from_sdp, candidate_to_sdp

from ...config import ICEServerConfig, ice_config

logger = logging.getLogger(__name__)

CandidateCallback = Callable[[Dict[str, Any]], Awaitable[None]]
TrackCallback = Callable[[Any], Awaitable[None]]


class MediaEngineError(Exception):
    """미디어 엔진이 세션 설명이나 candidate 처리에 실패했을 때 발생합니다."""


class MediaEngine(Protocol):
    """협상 프리미티브를 제공하는 외부 미디어 엔진.

    Attributes:
        on_local_candidate: 로컬 ICE candidate가 생길 때마다 호출 (trickle)
        on_remote_track: 원격 트랙 수신 시 호출
    """

    on_local_candidate: Optional[CandidateCallback]
    on_remote_track: Optional[TrackCallback]

    @property
    def has_remote_description(self) -> bool: ...

    def add_track(self, track: Any) -> Any: ...

    async def remove_track(self, sender: Any) -> None: ...

    async def create_offer(self) -> Dict[str, Any]: ...

    async def create_answer(self) -> Dict[str, Any]: ...

    async def set_remote_description(self, description: Dict[str, Any]) -> None: ...

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


def build_rtc_configuration(config: ICEServerConfig = ice_config) -> RTCConfiguration:
    """ICE 서버 설정으로 RTCConfiguration을 만듭니다."""
    ice_servers = []

    if config.STUN_SERVER_URL:
        ice_servers.append(RTCIceServer(urls=[config.STUN_SERVER_URL]))

    for stun_url in config.DEFAULT_STUN_SERVERS:
        ice_servers.append(RTCIceServer(urls=[stun_url]))

    if config.has_turn_server:
        ice_servers.append(RTCIceServer(
            urls=[config.TURN_SERVER_URL],
            username=config.TURN_USERNAME,
            credential=config.TURN_CREDENTIAL,
        ))
        logger.info(f"[WebRTC] TURN 서버 설정: {config.TURN_SERVER_URL}")
    else:
        logger.debug("[WebRTC] TURN 서버 설정 없음 - STUN만 사용")

    return RTCConfiguration(iceServers=ice_servers)


def _parse_candidate(candidate_data: Dict[str, Any]):
    """브라우저 형식 candidate 딕셔너리를 aiortc RTCIceCandidate로 변환합니다.

    ``{"candidate": {...}}`` 처럼 한 번 더 감싼 형식도 허용합니다.
    """
    inner = candidate_data.get("candidate", "")
    if isinstance(inner, dict):
        candidate_str = inner.get("candidate", "")
        sdp_mid = inner.get("sdpMid")
        sdp_mline_index = inner.get("sdpMLineIndex")
    else:
        candidate_str = inner
        sdp_mid = candidate_data.get("sdpMid")
        sdp_mline_index = candidate_data.get("sdpMLineIndex")

    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]

    ice_candidate = candidate_from_sdp(candidate_str)
    ice_candidate.sdpMid = sdp_mid
    ice_candidate.sdpMLineIndex = sdp_mline_index
    return ice_candidate


class AiortcMediaEngine:
    """aiortc RTCPeerConnection을 감싼 MediaEngine 구현.

    aiortc의 예외는 모두 MediaEngineError로 바꿔서 올립니다.

    aiortc는 rollback을 지원하지 않으므로, 로컬 offer가 대기 중일 때 원격 offer가
    오면 현재 송신 트랙으로 RTCPeerConnection을 새로 만들어 되돌립니다.
    이때 전송 계층(ICE/DTLS)도 새로 맺어집니다.

    Examples:
        >>> engine = AiortcMediaEngine()
        >>> sender = engine.add_track(microphone_track)
        >>> offer = await engine.create_offer()
        >>> await engine.set_remote_description(answer)
        >>> await engine.close()
    """

    def __init__(self, configuration: Optional[RTCConfiguration] = None):
        self.on_local_candidate: Optional[CandidateCallback] = None
        self.on_remote_track: Optional[TrackCallback] = None

        self._configuration = configuration or build_rtc_configuration()
        self._pc = self._create_peer_connection()
        # rollback 전에 내준 sender -> 현재 연결의 sender
        self._forwarded: Dict[Any, Any] = {}

    def _create_peer_connection(self) -> RTCPeerConnection:
        pc = RTCPeerConnection(configuration=self._configuration)

        @pc.on("icecandidate")
        async def on_ice_candidate(candidate):
            if candidate and self.on_local_candidate:
                await self.on_local_candidate({
                    "candidate": "candidate:" + candidate_to_sdp(candidate),
                    "sdpMid": candidate.sdpMid,
                    "sdpMLineIndex": candidate.sdpMLineIndex,
                })

        @pc.on("track")
        async def on_track(track: MediaStreamTrack):
            logger.info(f"[WebRTC] 원격 {track.kind} 트랙 수신")
            if self.on_remote_track:
                await self.on_remote_track(track)

        @pc.on("connectionstatechange")
        async def on_connection_state_change():
            logger.info(f"[WebRTC] 연결 상태: {pc.connectionState}")

        return pc

    @property
    def signaling_state(self) -> str:
        return self._pc.signalingState

    @property
    def has_remote_description(self) -> bool:
        return self._pc.remoteDescription is not None

    def add_track(self, track: MediaStreamTrack) -> Any:
        try:
            return self._pc.addTrack(track)
        except Exception as e:
            raise MediaEngineError(f"addTrack failed: {e}") from e

    async def remove_track(self, sender: Any) -> None:
        """송신 트랙을 분리하고 해당 transceiver를 수신 전용으로 바꿉니다.

        rollback 전에 받은 sender면 같은 트랙을 보내는 현재 sender로 바꿔 처리합니다.
        """
        sender = self._forwarded.get(sender, sender)
        try:
            for transceiver in self._pc.getTransceivers():
                if transceiver.sender is sender:
                    result = sender.replaceTrack(None)
                    if inspect.isawaitable(result):
                        await result
                    transceiver.direction = "recvonly"
        except Exception as e:
            raise MediaEngineError(f"removeTrack failed: {e}") from e

    async def _rollback(self) -> None:
        """대기 중인 로컬 offer를 버리고 송신 트랙을 유지한 채 연결을 새로 만듭니다."""
        old = self._pc
        moved = []
        for sender in old.getSenders():
            if sender.track is not None:
                moved.append((sender, sender.track))
                # 닫히는 sender가 트랙을 멈추지 않도록 먼저 분리
                sender.replaceTrack(None)

        self._pc = self._create_peer_connection()
        await old.close()

        replaced = {sender: self._pc.addTrack(track) for sender, track in moved}
        self._forwarded = {
            original: replaced.get(current, current)
            for original, current in self._forwarded.items()
        }
        self._forwarded.update(replaced)
        logger.info(f"[WebRTC] 로컬 offer rollback: 송신 트랙 {len(moved)}개로 연결 재생성")

    async def _local_description(self, description: RTCSessionDescription) -> Dict[str, Any]:
        await self._pc.setLocalDescription(description)
        local = self._pc.localDescription
        return {"sdp": local.sdp, "type": local.type}

    async def create_offer(self) -> Dict[str, Any]:
        try:
            return await self._local_description(await self._pc.createOffer())
        except Exception as e:
            raise MediaEngineError(f"createOffer failed: {e}") from e

    async def create_answer(self) -> Dict[str, Any]:
        try:
            return await self._local_description(await self._pc.createAnswer())
        except Exception as e:
            raise MediaEngineError(f"createAnswer failed: {e}") from e

    async def set_remote_description(self, description: Dict[str, Any]) -> None:
        try:
            if description.get("type") == "offer" and self._pc.signalingState == "have-local-offer":
                await self._rollback()
            await self._pc.setRemoteDescription(
                RTCSessionDescription(sdp=description["sdp"], type=description["type"])
            )
        except Exception as e:
            raise MediaEngineError(f"setRemoteDescription failed: {e}") from e

    async def add_ice_candidate(self, candidate: Dict[str, Any]) -> None:
        try:
            await self._pc.addIceCandidate(_parse_candidate(candidate))
        except Exception as e:
            raise MediaEngineError(f"addIceCandidate failed: {e}") from e

    async def close(self) -> None:
        await self._pc.close()
