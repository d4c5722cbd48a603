"""
Activity log data model.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ActivityCategory(str, Enum):
    AUTHENTICATION = "Authentication"
    USERS = "Users"
    ROLES = "Roles"
    PERMISSIONS = "Permissions"
    IOT = "IoT"
    ORION = "Orion"
    SYSTEM = "System"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class ActivityLogEntry:
    """One completed inbound request, as shown on the activity dashboard."""

    id: str
    timestamp: datetime
    user_id: Optional[str]
    username: Optional[str]
    status_code: int
    duration_ms: int
    message: str
    category: ActivityCategory
    severity: Severity
    method: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "userId": self.user_id,
            "username": self.username,
            "statusCode": self.status_code,
            "durationMs": self.duration_ms,
            "message": self.message,
            "category": self.category.value,
            "severity": self.severity.value,
            "method": self.method,
            "path": self.path,
        }
