from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from aria_sessions.telemetry import TelemetryEvent, emit_event, register_listener


def test_listeners_receive_sanitized_payload(caplog) -> None:
    received: list[TelemetryEvent] = []
    register_listener(received.append)

    with caplog.at_level(logging.INFO, logger="aria.telemetry"):
        emit_event(
            "assessment_created",
            assessment_id="demo-1",
            at=datetime(2024, 5, 1, tzinfo=timezone.utc),
            steps={"goals", "clientInfo"},
        )

    assert received[0].name == "assessment_created"
    assert received[0].payload["at"] == "2024-05-01T00:00:00+00:00"
    assert received[0].payload["steps"] == ["clientInfo", "goals"]
    line = next(record.getMessage() for record in caplog.records if record.name == "aria.telemetry")
    assert json.loads(line.removeprefix("TELEMETRY "))["event"] == "assessment_created"


def test_failing_listener_does_not_break_emission() -> None:
    received: list[str] = []

    def broken(event: TelemetryEvent) -> None:
        raise RuntimeError("listener bug")

    register_listener(broken)
    register_listener(lambda event: received.append(event.name))

    emit_event("step_save_failed", assessment_id="a", step="goals")
    assert received == ["step_save_failed"]
