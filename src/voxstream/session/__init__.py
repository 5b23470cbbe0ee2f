"""Chat sessions — models, persistence boundary and the reconciliation controller."""

from voxstream.session.cache import ToggledFilesCache
from voxstream.session.controller import SessionController
from voxstream.session.guard import PendingSessionGuard, SessionPhase
from voxstream.session.models import ChatMessage, ChatSession, ReasoningData
from voxstream.session.store import JsonlSessionStore, SessionStore
from voxstream.session.wire import EventType, Wire, WireEvent

__all__ = [
    "ChatMessage",
    "ChatSession",
    "ReasoningData",
    "SessionStore",
    "JsonlSessionStore",
    "PendingSessionGuard",
    "SessionPhase",
    "SessionController",
    "ToggledFilesCache",
    "EventType",
    "Wire",
    "WireEvent",
]
