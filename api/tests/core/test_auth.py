"""Unit tests for core.auth module.

Tests request identity helpers:
- get_user_id reads request.state first, then the X-User-Id header
- is_bearer_request distinguishes mobile (bearer) from web callers
- verify_cron_secret guards scheduler endpoints
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi import HTTPException, Request

from core.auth import get_user_id, is_bearer_request, verify_cron_secret
from core.config import clear_settings_cache


def _make_request(headers: dict | None = None, user_id: str | None = None) -> Request:
    """Create a mock Request with headers and state."""
    request = MagicMock(spec=Request)
    request.headers = headers or {}
    request.state = SimpleNamespace()
    if user_id is not None:
        request.state.user_id = user_id
    return request


@pytest.mark.unit
class TestGetUserId:
    def test_reads_gateway_header(self):
        request = _make_request(headers={"X-User-Id": "user_abc"})
        assert get_user_id(request) == "user_abc"
        assert request.state.user_id == "user_abc"

    def test_state_wins_over_header(self):
        request = _make_request(headers={"X-User-Id": "other"}, user_id="user_abc")
        assert get_user_id(request) == "user_abc"

    def test_missing_identity_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            get_user_id(_make_request())
        assert exc_info.value.status_code == 401


@pytest.mark.unit
class TestIsBearerRequest:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc", True),
            ("bearer abc", True),
            ("Basic abc", False),
            (None, False),
        ],
        ids=["bearer", "lowercase", "basic", "missing"],
    )
    def test_detects_bearer(self, header, expected):
        headers = {"Authorization": header} if header else {}
        assert is_bearer_request(_make_request(headers=headers)) is expected


@pytest.mark.unit
class TestVerifyCronSecret:
    @pytest.fixture(autouse=True)
    def _secret(self, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "topsecret")
        clear_settings_cache()
        yield
        clear_settings_cache()

    def test_accepts_matching_secret(self):
        request = _make_request(headers={"Authorization": "Bearer topsecret"})
        assert verify_cron_secret(request) is None

    @pytest.mark.parametrize(
        "header",
        ["Bearer wrong", "topsecret", ""],
        ids=["wrong", "no-scheme", "empty"],
    )
    def test_rejects_bad_secret(self, header):
        request = _make_request(headers={"Authorization": header})
        with pytest.raises(HTTPException) as exc_info:
            verify_cron_secret(request)
        assert exc_info.value.status_code == 401

    def test_debug_without_secret_is_open(self, monkeypatch):
        monkeypatch.setenv("CRON_SECRET", "")
        monkeypatch.setenv("DEBUG", "true")
        clear_settings_cache()

        assert verify_cron_secret(_make_request()) is None
