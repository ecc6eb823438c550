from __future__ import annotations

import json

from sellerboard.health import HealthMonitor, HealthState


def test_failure_streak_escalates_and_recovers(tmp_path) -> None:
    log_path = tmp_path / "logs" / "health.log"
    monitor = HealthMonitor(run_id="run-1", log_path=log_path, failure_threshold=(2, 3))

    monitor.record_failure(address="a", reason="boom", code="extraction_failed")
    assert monitor.state is HealthState.HEALTHY
    assert monitor.recommended_extra_delay() == 0.0

    monitor.record_failure(address="b", reason="gone", code="collector_unavailable")
    assert monitor.state is HealthState.SUSPECT
    assert monitor.recommended_extra_delay() == 5.0

    monitor.record_failure(address="c", reason="boom", code="extraction_failed")
    assert monitor.state is HealthState.BLOCKED
    assert monitor.recommended_extra_delay() == 15.0
    assert monitor.collector_missing == 1

    monitor.record_success(address="d")
    assert monitor.state is HealthState.HEALTHY
    assert monitor.failure_streak == 0

    events = [json.loads(line)["event"] for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert events.count("item_failed") == 3
    assert "recovered" in events
    assert events.count("state_change") == 3


def test_load_timeouts_are_counted_without_log_path() -> None:
    monitor = HealthMonitor(run_id="run-2")

    monitor.record_load_timeout(address="a", timeout_ms=15000)

    assert monitor.load_timeouts == 1
    assert monitor.state is HealthState.HEALTHY
