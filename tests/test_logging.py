"""Tests for structured logging helpers."""

import structlog

from gateway.core.logging import add_service_context, bind_request_context, get_logger


class TestServiceContext:
    def test_adds_service_fields(self):
        event = add_service_context(None, "info", {"event": "hello"})
        assert event["service"] == "Conversation Gateway"
        assert event["version"] == "1.0.0"
        assert "env" in event


class TestRequestContext:
    def test_bind_replaces_previous_values(self):
        bind_request_context(user_id="u1", bot="MACF")
        bind_request_context(user_id="u2")

        context = structlog.contextvars.get_contextvars()

        assert context == {"user_id": "u2"}
        structlog.contextvars.clear_contextvars()

    def test_get_logger(self):
        assert get_logger(__name__) is not None
