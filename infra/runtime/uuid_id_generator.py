from __future__ import annotations

import uuid


class UuidIdGenerator:
    """Run ids name output folders; correlation ids name sessions and form runs."""

    def new_run_id(self) -> str:
        return f"run-{uuid.uuid4().hex[:12]}"

    def new_correlation_id(self) -> str:
        return uuid.uuid4().hex
