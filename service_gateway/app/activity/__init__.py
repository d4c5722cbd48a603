"""
Activity logging: classification, bounded history and live streaming.
"""

from .bus import ActivityEventBus, ActivitySubscription
from .classifier import Classification, classify
from .middleware import ActivityLogMiddleware
from .models import ActivityCategory, ActivityLogEntry, Severity
from .stream import activity_event_stream

__all__ = [
    "ActivityCategory",
    "ActivityEventBus",
    "ActivityLogEntry",
    "ActivityLogMiddleware",
    "ActivitySubscription",
    "Classification",
    "Severity",
    "activity_event_stream",
    "classify",
]
