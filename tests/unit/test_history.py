"""Tests for the session history log."""

import json
from dataclasses import asdict
from pathlib import Path

import pytest

from spotshell.core.history import (
    HistoryRecord,
    HistoryRecorder,
    format_cost_summary,
    format_history,
    format_phase_metrics,
)


def make_record(index: int, outcome: str = "success", cause: str | None = None) -> HistoryRecord:
    return HistoryRecord(
        timestamp=f"2026-01-01T00:00:{index:02d}+00:00",
        session_id=f"spotshell-{index}",
        session_type="launch",
        outcome=outcome,
        duration_seconds=120.0,
        instance_type="t3.small",
        region="us-east-1",
        estimated_cost=0.001,
        resource_ids={"instance_id": f"i-{index}"},
        cause=cause,
    )


def test_records_are_appended_as_json_lines(tmp_path: Path) -> None:
    """Test each record is one JSON object per line."""
    recorder = HistoryRecorder(tmp_path / "state" / "history.jsonl")

    recorder.record(make_record(1))
    recorder.record(make_record(2, outcome="failed", cause="timeout: ssh"))

    lines = recorder.path.read_text().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[1])["cause"] == "timeout: ssh"


def test_recent_returns_newest_in_order(tmp_path: Path) -> None:
    """Test recent keeps the last N records, oldest first."""
    recorder = HistoryRecorder(tmp_path / "history.jsonl")
    for index in range(8):
        recorder.record(make_record(index))

    records = recorder.recent(3)

    assert [r.session_id for r in records] == ["spotshell-5", "spotshell-6", "spotshell-7"]
    assert records[0].resource_ids == {"instance_id": "i-5"}


def test_recent_skips_malformed_lines(tmp_path: Path) -> None:
    """Test corrupt or foreign lines do not break the listing."""
    path = tmp_path / "history.jsonl"
    recorder = HistoryRecorder(path)
    recorder.record(make_record(1))
    with path.open("a") as handle:
        handle.write("{not json\n\n")
        handle.write(json.dumps({"unexpected": True}) + "\n")
    recorder.record(make_record(2))

    assert [r.session_id for r in recorder.recent(10)] == ["spotshell-1", "spotshell-2"]


@pytest.mark.parametrize(
    "line",
    [
        "[1, 2]",
        '"text"',
        "42",
        "null",
        json.dumps({**asdict(make_record(9)), "duration_seconds": "soon"}),
        json.dumps({**asdict(make_record(9)), "estimated_cost": None}),
        json.dumps({**asdict(make_record(9)), "session_id": ["spotshell-9"]}),
        json.dumps({**asdict(make_record(9)), "phase_seconds": {"keys": "slow"}}),
    ],
)
def test_lines_that_are_not_records_are_skipped(tmp_path: Path, line: str) -> None:
    """Test valid JSON of the wrong shape neither loads nor breaks the table."""
    path = tmp_path / "history.jsonl"
    recorder = HistoryRecorder(path)
    recorder.record(make_record(1))
    with path.open("a") as handle:
        handle.write(line + "\n")

    records = recorder.recent(10)

    assert [r.session_id for r in records] == ["spotshell-1"]
    assert "spotshell-1" in format_history(records)


def test_numeric_strings_are_coerced(tmp_path: Path) -> None:
    path = tmp_path / "history.jsonl"
    data = {**asdict(make_record(1)), "duration_seconds": "120", "phase_seconds": {"keys": 2}}
    path.write_text(json.dumps(data) + "\n")

    record = HistoryRecorder(path).recent(1)[0]

    assert record.duration_seconds == 120.0
    assert record.phase_seconds == {"keys": 2.0}


def test_unknown_fields_are_ignored(tmp_path: Path) -> None:
    """Test newer records with extra fields still load."""
    path = tmp_path / "history.jsonl"
    data = json.loads(json.dumps(make_record(1).__dict__))
    data["future_field"] = "x"
    path.write_text(json.dumps(data) + "\n")

    assert HistoryRecorder(path).recent(1)[0].session_id == "spotshell-1"


def test_missing_file_and_zero_limit(tmp_path: Path) -> None:
    """Test empty results for no file or a non-positive limit."""
    recorder = HistoryRecorder(tmp_path / "history.jsonl")
    assert recorder.recent() == []

    recorder.record(make_record(1))
    assert recorder.recent(0) == []


def test_succeeded_property() -> None:
    assert make_record(1).succeeded
    assert not make_record(1, outcome="cancelled").succeeded


def test_format_history_table() -> None:
    """Test the table lists sessions and their failure causes."""
    text = format_history([make_record(1), make_record(2, "failed", "cost-ceiling: too much")])

    lines = text.splitlines()
    assert lines[0].startswith("TIMESTAMP")
    assert "spotshell-1" in lines[1]
    assert "$ 0.0010" in lines[1]
    assert lines[-1] == "  cause: cost-ceiling: too much"


def test_format_empty_history() -> None:
    assert format_history([]) == "No sessions recorded yet."


def test_phase_timings_survive_a_round_trip(tmp_path: Path) -> None:
    """Test phase durations are written and read back in order."""
    recorder = HistoryRecorder(tmp_path / "history.jsonl")
    record = HistoryRecord(
        **{**asdict(make_record(1)), "phase_seconds": {"identity": 1.5, "spot launch": 40.0}}
    )

    recorder.record(record)

    assert recorder.recent()[0].phase_seconds == {"identity": 1.5, "spot launch": 40.0}


def test_format_phase_metrics() -> None:
    text = format_phase_metrics({"prerequisites": 1.0, "spot launch": 3.0})

    lines = text.splitlines()
    assert lines[0] == "Phase timings:"
    assert "prerequisites" in lines[1] and "1.00s" in lines[1] and "25.0%" in lines[1]
    assert "spot launch" in lines[2] and "75.0%" in lines[2]
    assert lines[-1].split() == ["total", "4.00s"]


def test_format_phase_metrics_without_timings() -> None:
    assert format_phase_metrics({}) == "No phase timings recorded."


def test_format_cost_summary() -> None:
    text = format_cost_summary(0.0312, 0.0021, 0.0468)

    assert "$0.0312/hour" in text
    assert "$0.0468/hour" in text
    assert "$0.0021 (estimated)" in text


def test_format_cost_summary_without_price() -> None:
    assert "unavailable" in format_cost_summary(None, 0.0, 0.08)
