from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence

from domain.errors import PathNotAllowedError


def resolve_inside(path: str, roots: Sequence[Path], *, base: Path | None = None) -> Path:
    """
    Resolve ``path`` through symlinks and require it to sit under one of ``roots``.

    Relative paths are taken relative to ``base`` (or the first root).
    """
    if not roots:
        raise PathNotAllowedError("No directories are configured for this access.")
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = (base or roots[0]) / candidate
    real = Path(os.path.realpath(candidate))
    for root in roots:
        real_root = Path(os.path.realpath(root))
        if real == real_root or real_root in real.parents:
            return real
    raise PathNotAllowedError(f"Path outside allowed directories: {path}")
