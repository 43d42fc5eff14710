"""Tests for the error reporter."""

import logging

import pytest
from prometheus_client import CollectorRegistry

from core.monitoring.error_reporter import ErrorLevel, ErrorReporter


def test_report_logs_counts_and_retains(caplog):
    registry = CollectorRegistry()
    reporter = ErrorReporter(max_reports=2, registry=registry)

    with caplog.at_level(logging.WARNING):
        reporter.report(ConnectionError("redis down"), source="persistence")
        reporter.report("retrying", source="persistence", level=ErrorLevel.WARNING)
        reporter.report(ValueError(), source="settings", context={"key": "settings"})

    assert "[persistence] redis down" in caplog.text
    assert [report.message for report in reporter.recent] == ["retrying", "ValueError"]
    assert reporter.recent[1].to_dict()["context"] == {"key": "settings"}
    assert registry.get_sample_value(
        "tickersqueak_errors_total", {"source": "persistence", "level": "error"}
    ) == pytest.approx(1.0)


def test_listeners_receive_reports_and_cannot_break_reporting():
    reporter = ErrorReporter()
    seen = []

    def broken(report):
        raise RuntimeError("listener bug")

    reporter.subscribe(broken)
    reporter.subscribe(seen.append)

    entry = reporter.report(OSError("disk full"), source="persistence")

    assert seen == [entry]
    assert entry.error_type == "OSError"
