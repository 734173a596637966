"""
Service layer for the presence feature.
"""

from .broadcaster import LocalBroadcaster, PresenceBroadcaster, RedisBroadcaster, build_broadcaster
from .peer import PresencePeer, WebSocketPeer
from .presence_service import PRESENCE_PATH, PresenceService, presence_service
from .registry import ConnectionRegistry

__all__ = [
    "ConnectionRegistry",
    "LocalBroadcaster",
    "PresenceBroadcaster",
    "RedisBroadcaster",
    "build_broadcaster",
    "PresencePeer",
    "WebSocketPeer",
    "PRESENCE_PATH",
    "PresenceService",
    "presence_service",
]
