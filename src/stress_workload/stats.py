import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from stress_workload.models import Batch
import stress_workload.constants as C

log = logging.getLogger("stress_workload.stats")


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def _pct(value: float) -> str:
    return f"{value:.2f}%"


def _ts(dt: datetime) -> str:
    return dt.isoformat(sep=" ", timespec="seconds")


class SessionStats:
    """Cumulative counters plus the append-only history of sealed batches."""

    def __init__(self, started_at: datetime | None = None, *, recent: int = C.RECENT_BATCHES) -> None:
        self.started_at = started_at or datetime.now()
        self.recent = recent
        self.sent = 0
        self.success = 0
        self.failed = 0
        self.confirmed = 0
        self.batches: list[Batch] = []

    def record_batch(self, batch: Batch) -> None:
        if not batch.sealed:
            raise ValueError(f"batch {batch.number} is not sealed")
        if any(b.number == batch.number for b in self.batches):
            raise ValueError(f"batch {batch.number} already recorded")
        self.sent += batch.success + batch.failed
        self.success += batch.success
        self.failed += batch.failed
        self.confirmed += batch.confirmed
        self.batches.append(batch)

    def get_batch(self, number: int) -> Batch | None:
        return next((b for b in self.batches if b.number == number), None)

    @property
    def success_rate(self) -> float:
        return _rate(self.success, self.sent)

    @property
    def confirmation_rate(self) -> float:
        return _rate(self.confirmed, self.sent)

    def elapsed_hours(self, now: datetime | None = None) -> float:
        now = now or datetime.now()
        return round((now - self.started_at).total_seconds() / 3600, 2)

    def totals(self) -> dict[str, Any]:
        return {
            "total_transactions_sent": self.sent,
            "total_success": self.success,
            "total_failed": self.failed,
            "total_confirmed": self.confirmed,
            "success_rate": _pct(self.success_rate),
            "confirmation_rate": _pct(self.confirmation_rate),
            "batches_completed": len(self.batches),
        }

    def snapshot(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now()
        return {
            "test_start": _ts(self.started_at),
            "elapsed_hours": self.elapsed_hours(now),
            **self.totals(),
            "last_update": _ts(now),
            "recent_batches": [b.summary() for b in self.batches[-self.recent:]],
        }

    def summary_lines(self, state: C.SessionState | str, now: datetime | None = None) -> list[str]:
        """Human readable summary. Completed and interrupted sessions render the same fields."""
        return [
            "========================================",
            f"   Stress Test Summary ({state})",
            "========================================",
            f"  Duration: {self.elapsed_hours(now):.2f} hours",
            f"  Total batches: {len(self.batches)}",
            f"  Total transactions: {self.sent}",
            f"  Success: {self.success}",
            f"  Confirmed: {self.confirmed}",
            f"  Failed: {self.failed}",
            f"  Success rate: {_pct(self.success_rate)}",
            f"  Confirmation rate: {_pct(self.confirmation_rate)}",
        ]


class StatsReporter:
    """Writes the JSON snapshot and logs the final summary."""

    def __init__(self, stats: SessionStats, stats_file: Path, log_file: Path | None = None) -> None:
        self.stats = stats
        self.stats_file = Path(stats_file)
        self.log_file = log_file

    def write_snapshot(self, now: datetime | None = None) -> dict[str, Any]:
        data = self.stats.snapshot(now)
        self.stats_file.parent.mkdir(parents=True, exist_ok=True)
        # Readers never see a half written file
        tmp = self.stats_file.with_name(self.stats_file.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=2) + "\n")
        os.replace(tmp, self.stats_file)
        log.debug("Stats snapshot written to %s", self.stats_file)
        return data

    def emit_summary(self, state: C.SessionState | str, now: datetime | None = None) -> list[str]:
        lines = self.stats.summary_lines(state, now)
        lines.append("")
        if self.log_file is not None:
            lines.append(f"  Log file: {self.log_file}")
        lines.append(f"  Stats file: {self.stats_file}")
        lines.append("========================================")
        for line in lines:
            log.info(line)
        return lines
