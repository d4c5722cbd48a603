"""
Classification of completed requests into activity log messages.

``classify`` is pure and total: every (method, path, status) gets a message,
a category and a severity.
"""

import re
from typing import Callable, List, NamedTuple, Optional, Tuple

from .models import ActivityCategory, Severity


class Classification(NamedTuple):
    message: str
    category: ActivityCategory
    severity: Severity


def severity_for(status_code: int) -> Severity:
    if status_code >= 400:
        return Severity.ERROR
    if status_code >= 300:
        return Severity.WARNING
    return Severity.INFO


def _authentication(method: str, p: str, actor: str, status_code: int) -> Optional[str]:
    if method == "POST" and p == "/auth/login":
        if status_code >= 400:
            return "Failed sign-in attempt"
        return f"{actor} signed in"
    if method == "POST" and p == "/auth/logout":
        return f"{actor} signed out"
    if method == "GET" and p == "/auth/me":
        return f"{actor} checked their profile"
    return None


def _users(method: str, p: str, actor: str, status_code: int) -> Optional[str]:
    if not p.startswith("/users"):
        return None
    if "/roles" in p:
        if method == "POST":
            return f"{actor} assigned a role to a user"
        if method == "DELETE":
            return f"{actor} removed a role from a user"
    if method == "POST" and p == "/users":
        return f"{actor} created a new user account"
    if method == "GET" and p == "/users":
        return f"{actor} viewed the user list"
    if method == "GET":
        return f"{actor} looked up user details"
    if method == "PUT":
        return f"{actor} updated a user account"
    if method == "DELETE":
        return f"{actor} removed a user account"
    return None


def _roles(method: str, p: str, actor: str, status_code: int) -> Optional[str]:
    if not p.startswith("/roles"):
        return None
    if "/permissions" in p:
        if method == "POST":
            return f"{actor} assigned a permission to a role"
        if method == "DELETE":
            return f"{actor} removed a permission from a role"
    if method == "POST":
        return f"{actor} created a new role"
    if method == "GET" and p == "/roles":
        return f"{actor} viewed all roles"
    if method == "GET":
        return f"{actor} looked up a role"
    if method == "PUT":
        return f"{actor} updated a role"
    if method == "DELETE":
        return f"{actor} deleted a role"
    return None


def _permissions(method: str, p: str, actor: str, status_code: int) -> Optional[str]:
    if not p.startswith("/permissions"):
        return None
    if method == "POST":
        return f"{actor} created a new permission"
    if method == "GET" and p == "/permissions":
        return f"{actor} viewed all permissions"
    if method == "GET":
        return f"{actor} looked up a permission"
    if method == "PUT":
        return f"{actor} updated a permission"
    if method == "DELETE":
        return f"{actor} deleted a permission"
    return None


def _iot(method: str, p: str, actor: str, status_code: int) -> Optional[str]:
    if not p.startswith("/iot"):
        return None

    if "/sensors" in p:
        if "/permanent-token" in p and method == "POST":
            return f"{actor} generated a permanent sensor token"
        if "/reset-password" in p and method == "PATCH":
            return f"{actor} reset an IoT sensor password"
        if method == "POST":
            return f"{actor} provisioned a new IoT sensor account"
        if method == "GET" and re.search(r"/iot/sensors$", p):
            return f"{actor} viewed IoT sensors"
        if method == "GET":
            return f"{actor} looked up an IoT sensor"
        if method == "DELETE":
            return f"{actor} deleted an IoT sensor account"

    if "/service-groups" in p:
        if method == "POST":
            return f"{actor} created an IoT service group"
        if method == "GET":
            return f"{actor} viewed IoT service groups"
        if method == "PUT":
            return f"{actor} updated an IoT service group"
        if method == "DELETE":
            return f"{actor} removed an IoT service group"

    if "/devices" in p:
        if method == "POST":
            return f"{actor} registered a new IoT device"
        if method == "GET" and re.search(r"/iot/devices$", p):
            return f"{actor} viewed IoT devices"
        if method == "GET":
            return f"{actor} looked up an IoT device"
        if method == "PUT":
            return f"{actor} updated an IoT device"
        if method == "DELETE":
            return f"{actor} removed an IoT device"

    if p.startswith("/iot/data") and method == "POST":
        return f"{actor} sent IoT device measurements"
    return None


def _orion(method: str, p: str, actor: str, status_code: int) -> Optional[str]:
    if not p.startswith("/orion"):
        return None

    if "/subscriptions" in p:
        if method == "POST":
            return f"{actor} created an Orion subscription"
        if method == "GET" and p.endswith("subscriptions"):
            return f"{actor} viewed Orion subscriptions"
        if method == "GET":
            return f"{actor} looked up an Orion subscription"
        if method == "PATCH":
            return f"{actor} modified an Orion subscription"
        if method == "DELETE":
            return f"{actor} removed an Orion subscription"

    if "/entities" in p:
        if method == "POST" and p.endswith("entities"):
            return f"{actor} created a context entity"
        if method == "GET" and p.endswith("entities"):
            return f"{actor} queried context entities"
        if method == "GET":
            return f"{actor} looked up a context entity"
        if method == "PATCH":
            return f"{actor} updated context entity attributes"
        if method == "PUT":
            return f"{actor} replaced context entity attributes"
        if method == "DELETE":
            return f"{actor} removed a context entity"

    if "/op/update" in p:
        return f"{actor} performed a batch entity update"
    if "/types" in p:
        return f"{actor} viewed context entity types"
    return None


def _logs(method: str, p: str, actor: str, status_code: int) -> Optional[str]:
    if p.startswith("/logs"):
        return f"{actor} accessed the activity log"
    return None


_Rule = Callable[[str, str, str, int], Optional[str]]

_RULES: List[Tuple[_Rule, ActivityCategory]] = [
    (_authentication, ActivityCategory.AUTHENTICATION),
    (_users, ActivityCategory.USERS),
    (_roles, ActivityCategory.ROLES),
    (_permissions, ActivityCategory.PERMISSIONS),
    (_iot, ActivityCategory.IOT),
    (_orion, ActivityCategory.ORION),
    (_logs, ActivityCategory.SYSTEM),
]


def classify(method: str, path: str, status_code: int, actor: Optional[str] = None) -> Classification:
    """Describe a completed request for the activity log."""
    method = (method or "").upper()
    p = (path or "").lower()
    actor = actor or "Anonymous"
    severity = severity_for(status_code)

    for rule, category in _RULES:
        message = rule(method, p, actor, status_code)
        if message is not None:
            return Classification(message, category, severity)

    return Classification(f"{actor} performed an action on the system", ActivityCategory.SYSTEM, severity)
