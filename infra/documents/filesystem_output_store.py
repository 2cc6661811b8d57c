from __future__ import annotations

import json
import re
from pathlib import Path

from domain.models import RunContext

from ._paths import resolve_inside


class FileSystemOutputStore:
    """Writes run artifacts under the output dir, and nowhere else."""

    def __init__(self, base_dir: str = "output") -> None:
        self._base_dir = Path(base_dir)
        self._step_counter: dict[str, int] = {}

    def write_text(self, relative_path: str, content: str) -> str:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        path = resolve_inside(relative_path, [self._base_dir])
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return str(path)

    def save_screenshot(
        self,
        run_context: RunContext,
        step_name: str,
        image_bytes: bytes,
    ) -> str:
        run_dir = self._run_dir(run_context)
        run_dir.mkdir(parents=True, exist_ok=True)
        count = self._step_counter.get(run_context.run_id, 0) + 1
        self._step_counter[run_context.run_id] = count
        path = run_dir / f"Screenshot_{count:03d}_{self._safe(step_name)}.png"
        path.write_bytes(image_bytes)
        return str(path)

    def save_run_metadata(
        self,
        run_context: RunContext,
        metadata: dict[str, object],
    ) -> str:
        run_dir = self._run_dir(run_context)
        run_dir.mkdir(parents=True, exist_ok=True)
        path = run_dir / "run_meta.json"
        path.write_text(json.dumps(metadata, indent=2, default=str))
        return str(path)

    def _run_dir(self, run_context: RunContext) -> Path:
        self._base_dir.mkdir(parents=True, exist_ok=True)
        relative = run_context.output_directory or f"run_{run_context.run_id}"
        return resolve_inside(relative, [self._base_dir])

    @staticmethod
    def _safe(step_name: str) -> str:
        cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", step_name).strip("_")
        return cleaned or "step"
