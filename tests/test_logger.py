"""Tests for logging helpers."""

import pytest
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer
from structlog.testing import capture_logs

from transfer_recon import logger as logger_module
from transfer_recon.services.storage import PersistenceError


def test_select_renderer_uses_console_in_debug(monkeypatch) -> None:
    monkeypatch.setattr(logger_module.settings, "debug", True)
    assert isinstance(logger_module._select_renderer(), ConsoleRenderer)


def test_select_renderer_uses_json_in_production(monkeypatch) -> None:
    monkeypatch.setattr(logger_module.settings, "debug", False)
    assert isinstance(logger_module._select_renderer(), JSONRenderer)


def test_log_timing_includes_block_context() -> None:
    with capture_logs() as logs:
        log = logger_module.get_logger("timing-test")
        with logger_module.log_timing("auto_match_transfers", logger=log) as timing:
            timing["match_count"] = 3

    [entry] = logs
    assert entry["event"] == "auto_match_transfers completed"
    assert entry["match_count"] == 3
    assert entry["duration_ms"] >= 0


async def test_log_external_api_logs_failure_and_reraises() -> None:
    with capture_logs() as logs:
        log = logger_module.get_logger("api-test")

        @logger_module.log_external_api("exchange_rate_api", logger=log)
        async def fetch_rate() -> None:
            raise RuntimeError("down")

        with pytest.raises(RuntimeError):
            await fetch_rate()

    [entry] = logs
    assert entry["log_level"] == "warning"
    assert entry["success"] is False
    assert entry["error_type"] == "RuntimeError"
    assert entry["function"] == "fetch_rate"


def test_log_exception_records_error_type() -> None:
    with capture_logs() as logs:
        log = logger_module.get_logger("exception-test")
        logger_module.log_exception(log, PersistenceError("locked"), "Import rolled back", row_count=2)

    [entry] = logs
    assert entry["event"] == "Import rolled back"
    assert entry["log_level"] == "error"
    assert entry["error_type"] == "PersistenceError"
    assert entry["row_count"] == 2
