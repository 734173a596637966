"""
Domain exports for the presence feature.
"""

from .models import (
    ACK_MESSAGE,
    ACTIVITY_MESSAGE_TYPES,
    CLOSE_MISSING_APPLIER_ID,
    CLOSE_SUPERSEDED,
    STATUS_ACTIVE,
    STATUS_CHANGE_MESSAGE,
    STATUS_IDLE,
    STATUS_INACTIVE,
    STATUS_OFFLINE,
    Applier,
    ApplierStatus,
    PresenceConnection,
    ack_message,
    now_ms,
    status_change_message,
)

__all__ = [
    "ACK_MESSAGE",
    "ACTIVITY_MESSAGE_TYPES",
    "CLOSE_MISSING_APPLIER_ID",
    "CLOSE_SUPERSEDED",
    "STATUS_ACTIVE",
    "STATUS_CHANGE_MESSAGE",
    "STATUS_IDLE",
    "STATUS_INACTIVE",
    "STATUS_OFFLINE",
    "Applier",
    "ApplierStatus",
    "PresenceConnection",
    "ack_message",
    "now_ms",
    "status_change_message",
]
