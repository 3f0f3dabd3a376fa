"""시그널링 전송 계층 (클라이언트).

websockets 클라이언트로 릴레이에 연결해 프레임을 주고받습니다.
연결이 끊기면 오케스트레이터는 Closed 상태가 되고 로컬 미디어를 해제합니다.

Examples:
    >>> transport = WebSocketTransport("ws://localhost:3000/ws")
    >>> await transport.connect()
    >>> orchestrator = NegotiationOrchestrator(transport, AiortcMediaEngine, media)
    >>> await orchestrator.start("abc", name="alice")
    >>> await pump(transport, orchestrator)
"""
import logging
from typing import TYPE_CHECKING, AsyncIterator, Protocol

import websockets

from ..shared.messages import SignalMessage, parse_frame

if TYPE_CHECKING:
    from .orchestrator import NegotiationOrchestrator

logger = logging.getLogger(__name__)


class SignalingTransport(Protocol):
    """오케스트레이터가 메시지를 보내는 채널.

    send는 채널이 닫혀 있으면 ConnectionError를 발생시킵니다.
    """

    async def send(self, message: SignalMessage) -> None: ...


class WebSocketTransport:
    """websockets 기반 시그널링 전송.

    Attributes:
        url (str): 릴레이 WebSocket 주소
    """

    def __init__(self, url: str, ping_interval: float = 20, ping_timeout: float = 10):
        self.url = url
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self._ws = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        logger.info(f"🔌 시그널링 서버 연결 중: {self.url}")
        self._ws = await websockets.connect(
            self.url,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_timeout,
        )
        logger.info("✅ 시그널링 서버 연결됨")

    async def send(self, message: SignalMessage) -> None:
        if self._ws is None:
            raise ConnectionError("signaling transport is not connected")
        try:
            await self._ws.send(message.encode())
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionError(f"signaling transport closed: {e}") from e

    async def messages(self) -> AsyncIterator[SignalMessage]:
        """수신 메시지를 순서대로 내보냅니다. 파싱 불가 프레임은 건너뜁니다."""
        if self._ws is None:
            return
        try:
            async for raw in self._ws:
                message = parse_frame(raw)
                if message is not None:
                    yield message
        except websockets.exceptions.ConnectionClosed as e:
            logger.error(f"❌ 시그널링 연결 끊김: {e}")
        finally:
            self._ws = None

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()


async def pump(transport: WebSocketTransport, orchestrator: "NegotiationOrchestrator") -> None:
    """연결이 끊길 때까지 수신 메시지를 오케스트레이터에 전달합니다."""
    try:
        async for message in transport.messages():
            await orchestrator.handle(message)
    finally:
        await orchestrator.on_transport_closed()

