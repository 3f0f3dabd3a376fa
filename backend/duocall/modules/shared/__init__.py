"""Shared message types for the relay and the client orchestrator."""

from .messages import (
    MessageKind,
    RELAYABLE_KINDS,
    RosterEntry,
    SignalMessage,
    parse_frame,
)

__all__ = [
    "MessageKind",
    "RELAYABLE_KINDS",
    "RosterEntry",
    "SignalMessage",
    "parse_frame",
]
