"""Tests for logging setup and per-request context."""

import logging

import structlog

from notes_site.backend.logs import bind_request, clear_context, configure_logging, stamp_deployment


class TestStampDeployment:
    def test_adds_service_and_environment(self):
        event = stamp_deployment("notes-site", "testing")(None, "info", {"event": "item_written"})
        assert event == {"event": "item_written", "service": "notes-site", "environment": "testing"}

    def test_keeps_explicit_values(self):
        event = stamp_deployment("notes-site", "testing")(None, "info", {"event": "x", "environment": "production"})
        assert event["environment"] == "production"


class TestBindRequest:
    def test_binds_account_and_drops_missing_values(self):
        try:
            bind_request("a1", path="/notes", table=None)
            assert structlog.contextvars.get_contextvars() == {"account": "a1", "path": "/notes"}
        finally:
            clear_context()

    def test_each_request_starts_clean(self):
        try:
            bind_request("a1", path="/notes")
            bind_request(None, path="/health")
            assert structlog.contextvars.get_contextvars() == {"path": "/health"}
        finally:
            clear_context()


def test_configure_quiets_aws_libraries(test_settings):
    configure_logging(test_settings)
    assert logging.getLogger("botocore").getEffectiveLevel() >= logging.WARNING
