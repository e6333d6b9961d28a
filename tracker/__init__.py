"""Multi-source manga chapter tracker."""

from .config import TrackerConfig
from .service import InvalidSourceError, SyncReport, TrackerService, WorkNotFoundError

__all__ = ["InvalidSourceError", "SyncReport", "TrackerConfig", "TrackerService", "WorkNotFoundError"]
