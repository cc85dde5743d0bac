"""Append-only session history."""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from spotshell.constants import HISTORY_DISPLAY_LIMIT, SessionOutcome

logger = logging.getLogger(__name__)

_TEXT_FIELDS = (
    "timestamp",
    "session_id",
    "session_type",
    "outcome",
    "instance_type",
    "region",
)


@dataclass(frozen=True)
class HistoryRecord:
    """Immutable outcome of one session.

    Attributes
    ----------
    timestamp : str
        ISO-8601 UTC time the session ended
    session_id : str
        Session identifier
    session_type : str
        ``launch``, ``ssh-only``, ``dry-run`` or ``reconnect``
    outcome : str
        ``success``, ``failed`` or ``cancelled``
    duration_seconds : float
        Wall-clock duration of the session
    instance_type : str
        Requested instance class
    region : str
        Target region
    estimated_cost : float
        Spot price multiplied by the duration in hours
    resource_ids : dict[str, str]
        Per-session provider identifiers
    cause : str | None
        Failure category and message, if the session did not succeed
    log_file : str | None
        Path of the per-session log
    phase_seconds : dict[str, float]
        Duration of each provisioning phase, in completion order
    """

    timestamp: str
    session_id: str
    session_type: str
    outcome: str
    duration_seconds: float
    instance_type: str
    region: str
    estimated_cost: float = 0.0
    resource_ids: dict[str, str] = field(default_factory=dict)
    cause: str | None = None
    log_file: str | None = None
    phase_seconds: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> HistoryRecord:
        """Build a record from one decoded history line.

        Raises
        ------
        ValueError
            If ``data`` is not an object or a field has the wrong type
        TypeError
            If a required field is missing
        """
        if not isinstance(data, dict):
            raise ValueError(f"expected an object, got {type(data).__name__}")

        known = {name for name in cls.__dataclass_fields__}
        values = {key: value for key, value in data.items() if key in known}

        for name in _TEXT_FIELDS:
            if name in values and not isinstance(values[name], str):
                raise ValueError(f"{name} must be a string")
        for name in ("duration_seconds", "estimated_cost"):
            if name in values:
                values[name] = float(values[name])
        for name in ("resource_ids", "phase_seconds"):
            if not isinstance(values.get(name, {}), dict):
                raise ValueError(f"{name} must be an object")
        if "phase_seconds" in values:
            values["phase_seconds"] = {
                str(phase): float(seconds) for phase, seconds in values["phase_seconds"].items()
            }

        return cls(**values)

    @property
    def succeeded(self) -> bool:
        return self.outcome == SessionOutcome.SUCCESS.value


class HistoryRecorder:
    """Write-once JSON Lines log of session outcomes.

    Parameters
    ----------
    path : Path
        History file; parent directories are created on first write
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, entry: HistoryRecord) -> None:
        """Append one record.

        Raises
        ------
        OSError
            If the history file cannot be written
        """
        line = json.dumps(asdict(entry), sort_keys=True)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        logger.debug("Recorded %s outcome for %s", entry.outcome, entry.session_id)

    def recent(self, limit: int = HISTORY_DISPLAY_LIMIT) -> list[HistoryRecord]:
        """Return the newest ``limit`` records, oldest first.

        Malformed lines are skipped.
        """
        if limit <= 0 or not self.path.exists():
            return []

        records: deque[HistoryRecord] = deque(maxlen=limit)

        with self.path.open(encoding="utf-8") as handle:
            for number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(HistoryRecord.from_dict(json.loads(line)))
                except (ValueError, TypeError) as e:
                    logger.debug("Skipping malformed history line %d: %s", number, e)

        return list(records)


def format_history(records: list[HistoryRecord]) -> str:
    """Render history records as an aligned text table."""
    if not records:
        return "No sessions recorded yet."

    header = (
        f"{'TIMESTAMP':<26} {'SESSION':<22} {'TYPE':<10} {'OUTCOME':<10} "
        f"{'DURATION':>9} {'INSTANCE':<10} {'REGION':<14} {'COST':>8}"
    )
    lines = [header]

    for record in records:
        lines.append(
            f"{record.timestamp:<26} {record.session_id:<22} {record.session_type:<10} "
            f"{record.outcome:<10} {record.duration_seconds:>8.0f}s "
            f"{record.instance_type:<10} {record.region:<14} ${record.estimated_cost:>7.4f}"
        )
        if record.cause:
            lines.append(f"  cause: {record.cause}")

    return "\n".join(lines)


def format_phase_metrics(phase_seconds: dict[str, float]) -> str:
    """Render per-phase durations with each phase's share of the total."""
    if not phase_seconds:
        return "No phase timings recorded."

    total = sum(phase_seconds.values())
    width = max(len(name) for name in [*phase_seconds, "total"])
    lines = ["Phase timings:"]

    for name, seconds in phase_seconds.items():
        share = seconds / total * 100 if total else 0.0
        lines.append(f"  {name:<{width}} {seconds:>8.2f}s {share:>5.1f}%")
    lines.append(f"  {'total':<{width}} {total:>8.2f}s")

    return "\n".join(lines)


def format_cost_summary(
    spot_price: float | None, estimated_cost: float, max_cost: float
) -> str:
    """Render the spot price, the session's estimated cost and the ceiling.

    Parameters
    ----------
    spot_price : float | None
        Current spot price in USD per hour, if the region reported one
    estimated_cost : float
        Estimated cost of the session in USD
    max_cost : float
        Cost ceiling the session bid with, in USD per hour
    """
    price = f"${spot_price:.4f}/hour" if spot_price is not None else "unavailable"
    return "\n".join(
        [
            "Costs:",
            f"  spot price      {price}",
            f"  cost ceiling    ${max_cost:.4f}/hour",
            f"  session cost    ${estimated_cost:.4f} (estimated)",
        ]
    )
