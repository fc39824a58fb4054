"""Unit tests for structured logging, correlation IDs and redaction filters."""

from __future__ import annotations

import asyncio
import logging

import pytest
from _pytest.logging import LogCaptureFixture

from push_dispatch.utils.logging import (
    CorrelationIDFilter,
    SecretRedactingFilter,
    configure_logging,
    get_correlation_id,
    log_with_context,
    reset_correlation_id,
    set_correlation_id,
)
from push_dispatch.utils.sanitization import REDACTED


def _record(msg: str, *args: object, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("test", logging.INFO, __file__, 1, msg, args or None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestCorrelationId:
    def test_filter_uses_placeholder_when_unset(self) -> None:
        record = _record("hello")

        assert CorrelationIDFilter().filter(record) is True
        assert record.correlation_id == "N/A"  # pyright: ignore[reportAttributeAccessIssue]

    def test_filter_copies_current_id(self) -> None:
        _ = set_correlation_id("batch-1")
        record = _record("hello")

        _ = CorrelationIDFilter().filter(record)

        assert record.correlation_id == "batch-1"  # pyright: ignore[reportAttributeAccessIssue]

    def test_reset_restores_previous_value(self) -> None:
        _ = set_correlation_id("outer")
        token = set_correlation_id("inner")

        reset_correlation_id(token)

        assert get_correlation_id() == "outer"

    @pytest.mark.asyncio
    async def test_tasks_inherit_correlation_id(self) -> None:
        _ = set_correlation_id("batch-2")

        async def read() -> str | None:
            return get_correlation_id()

        results = await asyncio.gather(*(asyncio.create_task(read()) for _ in range(3)))

        assert results == ["batch-2", "batch-2", "batch-2"]


@pytest.mark.unit
class TestSecretRedactingFilter:
    def test_redacts_endpoint_in_args(self) -> None:
        record = _record("Push to %s", "https://fcm.googleapis.com/fcm/send/tok")

        _ = SecretRedactingFilter().filter(record)

        assert record.getMessage() == f"Push to https://fcm.googleapis.com/fcm/send/{REDACTED}"

    def test_redacts_sensitive_extra_fields(self) -> None:
        record = _record("stored", keys={"p256dh": "BN", "auth": "x"}, device_id="d1")

        _ = SecretRedactingFilter().filter(record)

        assert record.keys == REDACTED  # pyright: ignore[reportAttributeAccessIssue]
        assert record.device_id == "d1"  # pyright: ignore[reportAttributeAccessIssue]


@pytest.mark.unit
def test_log_with_context_attaches_extra_and_correlation_id(caplog: LogCaptureFixture) -> None:
    logger = logging.getLogger("push_dispatch.tests")
    _ = set_correlation_id("batch-3")
    caplog.set_level(logging.INFO, logger="push_dispatch.tests")

    log_with_context(logger, logging.INFO, "Notification sent", extra={"device_id": "d1"})

    record = next(r for r in caplog.records if r.message == "Notification sent")
    assert record.device_id == "d1"  # pyright: ignore[reportAttributeAccessIssue]
    assert record.correlation_id == "batch-3"  # pyright: ignore[reportAttributeAccessIssue]


@pytest.mark.unit
def test_configure_logging_installs_filtered_console_handler() -> None:
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    try:
        configure_logging(log_level="DEBUG", enable_syslog=False, enable_console=True)

        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        filter_types = {type(f) for f in root.handlers[0].filters}
        assert filter_types == {CorrelationIDFilter, SecretRedactingFilter}
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

