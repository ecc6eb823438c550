"""Health tracking for batch runs against rate-limited storefronts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
import time
from pathlib import Path
from typing import Any


class HealthState(str, Enum):
    """Overall collection health classification."""

    HEALTHY = "healthy"
    SUSPECT = "suspect"
    BLOCKED = "blocked"


@dataclass
class HealthMonitor:
    """Tracks consecutive failures and logs structured health events."""

    run_id: str
    log_path: Path | None = None
    failure_threshold: tuple[int, int] = (3, 6)
    state: HealthState = field(init=False, default=HealthState.HEALTHY)

    def __post_init__(self) -> None:
        self.failure_streak = 0
        self.collector_missing = 0
        self.load_timeouts = 0
        if self.log_path is not None:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def _log(self, event_type: str, message: str, **details: Any) -> None:
        if self.log_path is None:
            return
        entry = {
            "ts": time.time(),
            "run_id": self.run_id,
            "state": self.state.value,
            "event": event_type,
            "message": message,
            "details": details,
        }
        with self.log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, ensure_ascii=False) + "\n")

    def _evaluate_state(self) -> None:
        prev = self.state
        suspect_after, block_after = self.failure_threshold
        if self.failure_streak >= block_after:
            self.state = HealthState.BLOCKED
        elif self.failure_streak >= suspect_after:
            self.state = HealthState.SUSPECT
        else:
            self.state = HealthState.HEALTHY

        if self.state != prev:
            self._log(
                "state_change",
                f"{prev.value} -> {self.state.value}",
                failure_streak=self.failure_streak,
                collector_missing=self.collector_missing,
                load_timeouts=self.load_timeouts,
            )

    def record_success(self, *, address: str) -> None:
        if self.state != HealthState.HEALTHY:
            self._log("recovered", f"Recovered on {address}")
        self.failure_streak = 0
        self._evaluate_state()

    def record_failure(self, *, address: str, reason: str, code: str) -> None:
        self.failure_streak += 1
        if code == "collector_unavailable":
            self.collector_missing += 1
        self._log(
            "item_failed",
            reason,
            address=address,
            code=code,
            failure_streak=self.failure_streak,
        )
        self._evaluate_state()

    def record_load_timeout(self, *, address: str, timeout_ms: int) -> None:
        self.load_timeouts += 1
        self._log("load_timeout", f"Load wait exceeded for {address}", timeout_ms=timeout_ms)

    def recommended_extra_delay(self) -> float:
        if self.state == HealthState.SUSPECT:
            return 5.0
        if self.state == HealthState.BLOCKED:
            return 15.0
        return 0.0
