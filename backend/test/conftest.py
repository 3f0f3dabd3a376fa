"""Shared fixtures for relay and negotiation tests."""

import asyncio
import json
from typing import List, Optional

import pytest
from starlette.websockets import WebSocketState

from duocall.modules.rooms import RoomDirectory, SignalRelay


class FakeConnection:
    """In-memory stand-in for a server-side WebSocket.

    Frames are recorded as decoded dicts and, when a queue is given, also
    forwarded as raw text so a client can consume them.
    """

    def __init__(self, fail: bool = False, queue: Optional[asyncio.Queue] = None):
        self.client_state = WebSocketState.CONNECTED
        self.fail = fail
        self.queue = queue
        self.sent: List[dict] = []

    async def send_text(self, text: str) -> None:
        if self.fail:
            raise RuntimeError("broken pipe")
        self.sent.append(json.loads(text))
        if self.queue is not None:
            self.queue.put_nowait(text)

    def kinds(self) -> List[str]:
        return [m["type"] for m in self.sent]

    def of(self, kind: str) -> List[dict]:
        return [m for m in self.sent if m["type"] == kind]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def relay():
    return SignalRelay()


@pytest.fixture
def small_relay():
    return SignalRelay(directory=RoomDirectory(capacity=2), max_name_length=8)
