from __future__ import annotations

from pathlib import Path
from typing import Sequence

from domain.errors import PathNotAllowedError

from ._paths import resolve_inside

_MAX_FILE_BYTES = 2 * 1024 * 1024
_BINARY_SNIFF_BYTES = 4096


class FileSystemDocumentStore:
    """
    Read-only access to reference documents under the configured input dirs.

    Plain text goes through ``read_text`` and PDFs through ``read_pdf_text``.
    Other binaries are rejected. Both readers share the confinement and the
    size limit.
    """

    def __init__(self, input_dirs: Sequence[str]) -> None:
        self._roots = [Path(d) for d in input_dirs]

    def read_text(self, path: str, max_chars: int = 20_000) -> str:
        data = self._read_bytes(path)
        if _is_pdf(path, data):
            raise ValueError(f"{path} is a PDF. Use read_pdf_text for it.")
        if b"\x00" in data[:_BINARY_SNIFF_BYTES]:
            raise ValueError(f"{path} looks like a binary file. Provide a text version instead.")

        text = data.decode("utf-8", errors="replace")
        return _truncate(text, max_chars)

    def read_pdf_text(self, path: str, max_chars: int = 20_000) -> str:
        """Extract the text layer of a PDF, page by page, joined with newlines."""
        from io import BytesIO

        from pypdf import PdfReader
        from pypdf.errors import PdfReadError

        data = self._read_bytes(path)
        if not _is_pdf(path, data):
            raise ValueError(f"{path} is not a PDF. Use read_text for it.")
        try:
            reader = PdfReader(BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as exc:
            raise ValueError(f"{path} could not be parsed as a PDF: {exc}") from exc

        text = "\n".join(p.strip() for p in pages if p.strip())
        return _truncate(text, max_chars)

    def list_dir(self, path: str) -> Sequence[str]:
        real = resolve_inside(path, self._roots)
        if not real.is_dir():
            raise PathNotAllowedError(f"Not a directory: {path}")
        return sorted(
            child.name + ("/" if child.is_dir() else "")
            for child in real.iterdir()
        )

    def _read_bytes(self, path: str) -> bytes:
        real = resolve_inside(path, self._roots)
        if not real.is_file():
            raise FileNotFoundError(f"Not a file: {path}")
        if real.stat().st_size > _MAX_FILE_BYTES:
            raise ValueError(f"{path} is larger than {_MAX_FILE_BYTES} bytes")
        return real.read_bytes()


def _is_pdf(path: str, data: bytes) -> bool:
    return data.startswith(b"%PDF-") or path.lower().endswith(".pdf")


def _truncate(text: str, max_chars: int) -> str:
    return text[:max_chars] if max_chars > 0 else text
