"""
Applier presence feature package.

Holds the WebSocket presence tracker end to end: applier status models,
the appliers repository, the connection registry, status fan-out and the
socket/HTTP routes.
"""

from .api.router import router as presence_router  # noqa: F401
from .services.presence_service import PresenceService, presence_service  # noqa: F401
from .domain.models import Applier, PresenceConnection  # noqa: F401
