from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from domain.errors import PathNotAllowedError
from domain.models import RunContext
from infra.documents import FileSystemDocumentStore, FileSystemOutputStore


@pytest.fixture()
def input_dir(tmp_path: Path) -> Path:
    d = tmp_path / "input"
    d.mkdir()
    (d / "cv.md").write_text("# Ada Lovelace\nAnalyst", encoding="utf-8")
    (d / "letters").mkdir()
    return d


# -- document store ---------------------------------------------------------


def test_reads_text_inside_input_dir(input_dir: Path) -> None:
    store = FileSystemDocumentStore([str(input_dir)])
    assert store.read_text("cv.md") == "# Ada Lovelace\nAnalyst"
    assert store.read_text(str(input_dir / "cv.md"), max_chars=5) == "# Ada"


def test_lists_directory(input_dir: Path) -> None:
    store = FileSystemDocumentStore([str(input_dir)])
    assert store.list_dir(str(input_dir)) == ["cv.md", "letters/"]


def test_path_outside_input_dir_is_refused(input_dir: Path, tmp_path: Path) -> None:
    (tmp_path / "secret.txt").write_text("x", encoding="utf-8")
    store = FileSystemDocumentStore([str(input_dir)])

    with pytest.raises(PathNotAllowedError):
        store.read_text("../secret.txt")
    with pytest.raises(PermissionError):
        store.read_text(str(tmp_path / "secret.txt"))


def test_symlink_escape_is_refused(input_dir: Path, tmp_path: Path) -> None:
    (tmp_path / "secret.txt").write_text("x", encoding="utf-8")
    os.symlink(tmp_path / "secret.txt", input_dir / "link.txt")
    store = FileSystemDocumentStore([str(input_dir)])

    with pytest.raises(PathNotAllowedError):
        store.read_text("link.txt")


def _minimal_pdf(text: str) -> bytes:
    stream = f"BT /F1 12 Tf 20 100 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 300 144] /Contents 4 0 R"
        b" /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n%s\nendstream" % (len(stream), stream),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n%s\nendobj\n" % (number, body)
    xref = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref)
    return bytes(out)


def test_pdf_text_is_extracted(input_dir: Path) -> None:
    (input_dir / "cv.pdf").write_bytes(_minimal_pdf("Citizenship: Canadian"))
    store = FileSystemDocumentStore([str(input_dir)])

    assert "Citizenship: Canadian" in store.read_pdf_text("cv.pdf")
    assert store.read_pdf_text("cv.pdf", max_chars=11) == "Citizenship"


def test_pdf_goes_through_its_own_reader(input_dir: Path) -> None:
    (input_dir / "cv.pdf").write_bytes(_minimal_pdf("Canadian"))
    store = FileSystemDocumentStore([str(input_dir)])

    with pytest.raises(ValueError, match="read_pdf_text"):
        store.read_text("cv.pdf")
    with pytest.raises(ValueError, match="not a PDF"):
        store.read_pdf_text("cv.md")


def test_pdf_outside_input_dir_is_refused(input_dir: Path, tmp_path: Path) -> None:
    (tmp_path / "other.pdf").write_bytes(_minimal_pdf("Canadian"))
    store = FileSystemDocumentStore([str(input_dir)])

    with pytest.raises(PathNotAllowedError):
        store.read_pdf_text(str(tmp_path / "other.pdf"))


def test_binary_is_rejected(input_dir: Path) -> None:
    (input_dir / "photo.bin").write_bytes(b"\x00\x01\x02")
    store = FileSystemDocumentStore([str(input_dir)])

    with pytest.raises(ValueError, match="binary"):
        store.read_text("photo.bin")


def test_no_input_dirs_means_no_access(input_dir: Path) -> None:
    with pytest.raises(PathNotAllowedError):
        FileSystemDocumentStore([]).read_text(str(input_dir / "cv.md"))


# -- output store -----------------------------------------------------------


def test_writes_only_inside_output_dir(tmp_path: Path) -> None:
    store = FileSystemOutputStore(str(tmp_path / "out"))

    path = store.write_text("notes/summary.txt", "done")

    assert Path(path).read_text(encoding="utf-8") == "done"
    with pytest.raises(PathNotAllowedError):
        store.write_text("../escape.txt", "nope")
    assert not (tmp_path / "escape.txt").exists()


def test_screenshots_are_numbered_per_run(tmp_path: Path) -> None:
    store = FileSystemOutputStore(str(tmp_path / "out"))
    ctx = RunContext(run_id="r1", is_debug=True)

    first = store.save_screenshot(ctx, "page opened", b"png1")
    second = store.save_screenshot(ctx, "form/apply", b"png2")

    assert Path(first).name == "Screenshot_001_page_opened.png"
    assert Path(second).name == "Screenshot_002_form_apply.png"
    assert Path(first).parent == (tmp_path / "out" / "run_r1").resolve()


def test_run_metadata_is_json(tmp_path: Path) -> None:
    store = FileSystemOutputStore(str(tmp_path / "out"))

    path = store.save_run_metadata(RunContext(run_id="r2"), {"form_id": "apply", "submitted": False})

    assert json.loads(Path(path).read_text()) == {"form_id": "apply", "submitted": False}
