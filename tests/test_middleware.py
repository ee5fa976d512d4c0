"""Tests for request logging levels."""

import logging

import pytest

from watchtrack.core.middleware import RequestContextMiddleware


@pytest.fixture
def middleware():
    return RequestContextMiddleware(app=None)


@pytest.mark.parametrize(
    ("path", "status_code", "level"),
    [
        ("/v1/progress/heartbeat", 200, logging.DEBUG),
        ("/v1/progress/heartbeat", 400, logging.WARNING),
        ("/v1/progress/heartbeat", 503, logging.ERROR),
        ("/v1/admin/analytics", 200, logging.INFO),
        ("/v1/admin/analytics", 403, logging.WARNING),
    ],
)
def test_level_for(middleware, path, status_code, level):
    assert middleware._level_for(path, status_code) == level

