"""
Unit tests for activity classification.
"""

import pytest

from service_gateway.app.activity import ActivityCategory, Severity, classify
from service_gateway.app.activity.classifier import severity_for


@pytest.mark.parametrize(
    "method, path, message, category",
    [
        ("POST", "/auth/login", "alice signed in", ActivityCategory.AUTHENTICATION),
        ("POST", "/auth/logout", "alice signed out", ActivityCategory.AUTHENTICATION),
        ("GET", "/auth/me", "alice checked their profile", ActivityCategory.AUTHENTICATION),
        ("GET", "/users", "alice viewed the user list", ActivityCategory.USERS),
        ("POST", "/users/u1/roles", "alice assigned a role to a user", ActivityCategory.USERS),
        ("DELETE", "/roles/r1/permissions/p1", "alice removed a permission from a role", ActivityCategory.ROLES),
        ("GET", "/permissions", "alice viewed all permissions", ActivityCategory.PERMISSIONS),
        ("POST", "/iot/sensors/s1/permanent-token", "alice generated a permanent sensor token", ActivityCategory.IOT),
        ("GET", "/iot/devices", "alice viewed IoT devices", ActivityCategory.IOT),
        ("GET", "/iot/devices/d1", "alice looked up an IoT device", ActivityCategory.IOT),
        ("POST", "/iot/data/json", "alice sent IoT device measurements", ActivityCategory.IOT),
        ("GET", "/orion/entities", "alice queried context entities", ActivityCategory.ORION),
        ("GET", "/orion/entities/Sensor1", "alice looked up a context entity", ActivityCategory.ORION),
        ("PATCH", "/orion/entities/Sensor1/attrs", "alice updated context entity attributes", ActivityCategory.ORION),
        ("POST", "/orion/op/update", "alice performed a batch entity update", ActivityCategory.ORION),
        ("GET", "/orion/types", "alice viewed context entity types", ActivityCategory.ORION),
        ("DELETE", "/orion/subscriptions/s1", "alice removed an Orion subscription", ActivityCategory.ORION),
        ("GET", "/logs", "alice accessed the activity log", ActivityCategory.SYSTEM),
    ],
)
def test_known_routes(method, path, message, category):
    result = classify(method, path, 200, "alice")
    assert result.message == message
    assert result.category is category


def test_failed_login_message():
    result = classify("POST", "/auth/login", 401)
    assert result.message == "Failed sign-in attempt"
    assert result.severity is Severity.ERROR


def test_anonymous_actor():
    assert classify("GET", "/orion/entities", 401).message == "Anonymous queried context entities"


def test_case_insensitive_paths_and_methods():
    assert classify("get", "/ORION/Entities", 200, "alice").category is ActivityCategory.ORION


@pytest.mark.parametrize(
    "method, path",
    [
        ("GET", "/"),
        ("OPTIONS", "/orion/entities"),
        ("HEAD", "/auth/login"),
        ("GET", ""),
        ("", ""),
        ("PUT", "/unknown/thing"),
    ],
)
def test_every_request_is_classified(method, path):
    result = classify(method, path, 200, "bob")
    assert result.message
    assert isinstance(result.category, ActivityCategory)
    assert isinstance(result.severity, Severity)


def test_fallback_message():
    result = classify("GET", "/", 200, "bob")
    assert result.message == "bob performed an action on the system"
    assert result.category is ActivityCategory.SYSTEM


@pytest.mark.parametrize(
    "status_code, severity",
    [(200, Severity.INFO), (204, Severity.INFO), (301, Severity.WARNING), (399, Severity.WARNING),
     (400, Severity.ERROR), (503, Severity.ERROR)],
)
def test_severity_from_status(status_code, severity):
    assert severity_for(status_code) is severity
