from __future__ import annotations

from datetime import datetime, timezone


class SystemClock:
    """Wall clock for form run timestamps, always timezone-aware UTC."""

    def __init__(self, tz: timezone = timezone.utc) -> None:
        self._tz = tz

    def now(self) -> datetime:
        return datetime.now(self._tz)
