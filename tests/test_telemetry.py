"""Telemetry client tests."""

from __future__ import annotations

import pytest

from castor.telemetry import MemoryReporter, Telemetry, TelemetryReporter

pytestmark = pytest.mark.unit


class _BrokenReporter:
    def record_event(self, event, **properties):
        raise RuntimeError("sink down")

    def record_timing(self, scope, duration, **metadata):
        raise RuntimeError("sink down")

    def flush(self):
        raise RuntimeError("sink down")


def test_disabled_client_records_nothing() -> None:
    reporter = MemoryReporter()
    telemetry = Telemetry(reporter, enabled=False)

    telemetry.capture("x")
    with telemetry.timed("scope"):
        pass
    telemetry.flush()

    assert list(reporter.events) == []
    assert reporter.timings == {}
    assert reporter.flushes == 0


def test_client_without_reporters_is_disabled() -> None:
    assert Telemetry().enabled is False
    assert Telemetry.disabled().enabled is False


def test_nested_scopes_produce_dotted_paths() -> None:
    reporter = MemoryReporter()
    telemetry = Telemetry(reporter)

    with telemetry.timed("turn"):
        with telemetry.timed("prepare"):
            telemetry.capture("inside")

    assert set(reporter.timings) == {"turn", "turn.prepare"}
    assert reporter.events[0] == ("inside", {"scope": "turn.prepare"})


def test_reporter_failures_are_contained(caplog: pytest.LogCaptureFixture) -> None:
    healthy = MemoryReporter()
    telemetry = Telemetry(_BrokenReporter(), healthy)

    telemetry.capture("event")
    with telemetry.timed("scope"):
        pass
    telemetry.flush()

    assert healthy.event_names() == ["event"]
    assert "scope" in healthy.timings
    assert "sink down" in caplog.text


@pytest.mark.asyncio
async def test_shutdown_flushes_and_disables() -> None:
    reporter = MemoryReporter()
    telemetry = Telemetry(reporter)
    telemetry.init()

    await telemetry.shutdown()
    telemetry.capture("late")

    assert reporter.flushes == 1
    assert reporter.event_names() == []


def test_memory_reporter_satisfies_protocol() -> None:
    assert isinstance(MemoryReporter(), TelemetryReporter)
