from __future__ import annotations

import io
import json
from datetime import timedelta, timezone

from infra.runtime import StructuredLogger, SystemClock, UuidIdGenerator


def test_logger_emits_one_sorted_json_object_per_event() -> None:
    stream = io.StringIO()
    logger = StructuredLogger(stream=stream)

    logger.info("ladder_level_hit", level="STRUCTURAL", dom_version=3)
    logger.error("form_incomplete", unresolved=["salary"])

    lines = stream.getvalue().splitlines()
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["level"] == "info"
    assert first["message"] == "ladder_level_hit"
    assert first["fields"] == {"dom_version": 3, "level": "STRUCTURAL"}
    assert list(first) == sorted(first)
    assert json.loads(lines[1])["fields"]["unresolved"] == ["salary"]


def test_logger_drops_events_below_threshold() -> None:
    stream = io.StringIO()
    logger = StructuredLogger(stream=stream, min_level="warning")

    logger.info("dom_version_bumped")
    logger.warning("action_retry")

    assert [json.loads(line)["message"] for line in stream.getvalue().splitlines()] == ["action_retry"]


def test_ids_are_unique() -> None:
    ids = UuidIdGenerator()
    values = {ids.new_run_id() for _ in range(50)} | {ids.new_correlation_id() for _ in range(50)}
    assert len(values) == 100


def test_system_clock_is_timezone_aware() -> None:
    now = SystemClock().now()
    assert now.tzinfo is not None
    assert now.utcoffset() == timedelta(0)

    shifted = SystemClock(timezone(timedelta(hours=2))).now()
    assert shifted.utcoffset() == timedelta(hours=2)
