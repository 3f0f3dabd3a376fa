"""로컬 미디어 관리 모듈.

마이크/화면 캡처 자체는 외부 MediaProvider가 담당하고, 이 모듈은 획득한 트랙의
보관, 음소거, 해제를 담당합니다.

Classes:
    MediaUnavailableError: 로컬 미디어를 얻을 수 없음 (권한 거부, 장치 없음 등)
    MuteableAudioTrack: 음소거 시 무음 프레임을 내보내는 오디오 트랙
    PlayerMediaProvider: aiortc MediaPlayer 기반 캡처
    LocalMedia: 현재 로컬 트랙 집합
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from av import AudioFrame

logger = logging.getLogger(__name__)


class MediaUnavailableError(Exception):
    """로컬 미디어를 얻을 수 없을 때 발생합니다."""


class MediaProvider(Protocol):
    async def microphone(self) -> MediaStreamTrack: ...

    async def screen(self) -> List[MediaStreamTrack]: ...


class MuteableAudioTrack(MediaStreamTrack):
    """원본 오디오 트랙을 감싸 음소거를 지원하는 트랙.

    음소거는 송신 트랙 집합을 바꾸지 않으므로 재협상이 필요 없습니다.
    음소거 중에는 원본 프레임을 계속 소비하면서 샘플만 0으로 채웁니다.

    Attributes:
        kind (str): 트랙 종류 ("audio")
        track (MediaStreamTrack): 원본 오디오 트랙
        muted (bool): 음소거 여부
    """
    kind = "audio"

    def __init__(self, track: MediaStreamTrack):
        super().__init__()
        self.track = track
        self.muted = False

    async def recv(self) -> AudioFrame:
        frame = await self.track.recv()
        if self.muted:
            for plane in frame.planes:
                plane.update(bytes(plane.buffer_size))
        return frame

    def stop(self) -> None:
        super().stop()
        self.track.stop()


class PlayerMediaProvider:
    """aiortc MediaPlayer로 장치/파일에서 트랙을 엽니다.

    Examples:
        >>> provider = PlayerMediaProvider(audio_source="default", audio_format="pulse",
        ...                                screen_source=":0.0", screen_format="x11grab")
        >>> track = await provider.microphone()
    """

    def __init__(
        self,
        audio_source: Optional[str] = None,
        audio_format: Optional[str] = None,
        screen_source: Optional[str] = None,
        screen_format: Optional[str] = None,
        screen_options: Optional[Dict[str, str]] = None,
    ):
        self.audio_source = audio_source
        self.audio_format = audio_format
        self.screen_source = screen_source
        self.screen_format = screen_format
        self.screen_options = screen_options or {}

    @staticmethod
    def _open(source: Optional[str], format: Optional[str], options: Dict[str, str], what: str) -> MediaPlayer:
        if not source:
            raise MediaUnavailableError(f"{what} source not configured")
        try:
            return MediaPlayer(source, format=format, options=options)
        except Exception as e:
            raise MediaUnavailableError(f"{what} unavailable: {e}") from e

    async def microphone(self) -> MediaStreamTrack:
        player = self._open(self.audio_source, self.audio_format, {}, "microphone")
        if player.audio is None:
            raise MediaUnavailableError("microphone source has no audio")
        return player.audio

    async def screen(self) -> List[MediaStreamTrack]:
        player = self._open(self.screen_source, self.screen_format, self.screen_options, "screen")
        tracks = [t for t in (player.video, player.audio) if t is not None]
        if not tracks:
            raise MediaUnavailableError("screen source has no tracks")
        return tracks


class LocalMedia:
    """로컬에서 송신 중인 트랙 집합.

    Attributes:
        provider (Optional[MediaProvider]): 캡처 제공자. None이면 모든 획득이 실패
        microphone (Optional[MuteableAudioTrack]): 마이크 트랙
        screen_tracks (List[MediaStreamTrack]): 화면 공유 트랙 (비디오, 선택적 오디오)
    """

    def __init__(self, provider: Optional[MediaProvider] = None):
        self.provider = provider
        self.microphone: Optional[MuteableAudioTrack] = None
        self.screen_tracks: List[Any] = []

    @property
    def has_screen(self) -> bool:
        return bool(self.screen_tracks)

    @property
    def muted(self) -> bool:
        return self.microphone is not None and self.microphone.muted

    def tracks(self) -> List[Any]:
        """현재 송신할 모든 트랙."""
        tracks: List[Any] = []
        if self.microphone is not None:
            tracks.append(self.microphone)
        tracks.extend(self.screen_tracks)
        return tracks

    async def open_microphone(self) -> MuteableAudioTrack:
        """마이크를 엽니다. 이미 열려 있으면 그대로 반환합니다.

        Raises:
            MediaUnavailableError: 제공자가 없거나 장치를 열 수 없는 경우
        """
        if self.microphone is not None:
            return self.microphone
        if self.provider is None:
            raise MediaUnavailableError("no media provider configured")
        self.microphone = MuteableAudioTrack(await self.provider.microphone())
        logger.info("마이크 트랙 획득")
        return self.microphone

    async def open_screen(self) -> List[Any]:
        """화면 공유 트랙을 엽니다.

        Raises:
            MediaUnavailableError: 제공자가 없거나 캡처가 취소/미지원인 경우
        """
        if self.provider is None:
            raise MediaUnavailableError("no media provider configured")
        self.screen_tracks = list(await self.provider.screen())
        logger.info(f"화면 공유 트랙 {len(self.screen_tracks)}개 획득")
        return self.screen_tracks

    def close_screen(self) -> List[Any]:
        """화면 공유 트랙을 중지하고 제거된 트랙 리스트를 반환합니다."""
        tracks, self.screen_tracks = self.screen_tracks, []
        for track in tracks:
            track.stop()
        return tracks

    def set_muted(self, muted: bool) -> bool:
        """마이크 음소거를 설정합니다. 마이크가 없으면 False."""
        if self.microphone is None:
            return False
        self.microphone.muted = muted
        return True

    def release(self) -> None:
        """보유한 모든 로컬 트랙을 중지합니다."""
        self.close_screen()
        if self.microphone is not None:
            self.microphone.stop()
            self.microphone = None
        logger.info("로컬 미디어 해제")
