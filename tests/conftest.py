"""Shared pytest fixtures for the PrepPal test suite."""

from __future__ import annotations

import io
import sys
import zlib
from pathlib import Path

import pytest

# Ensure src/ is on the path so all service imports resolve.
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def make_pdf(page_texts: list[str]) -> bytes:
    """Build a valid PDF with one page per entry of *page_texts* (Helvetica text)."""
    n_pages = len(page_texts)
    font_num = 3
    page_nums = [4 + 2 * i for i in range(n_pages)]
    kids = " ".join(f"{n} 0 R" for n in page_nums)

    bodies: dict[int, bytes] = {
        1: b"<< /Type /Catalog /Pages 2 0 R >>",
        2: f"<< /Type /Pages /Kids [{kids}] /Count {n_pages} >>".encode(),
        font_num: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    }
    for page_num, text in zip(page_nums, page_texts):
        content_num = page_num + 1
        bodies[page_num] = (
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Contents {content_num} 0 R /Resources << /Font << /F1 {font_num} 0 R >> >> >>"
        ).encode()
        stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode() if text else b""
        compressed = zlib.compress(stream)
        bodies[content_num] = (
            f"<< /Filter /FlateDecode /Length {len(compressed)} >>\nstream\n".encode()
            + compressed
            + b"\nendstream"
        )

    header = b"%PDF-1.4\n"
    out = io.BytesIO()
    out.write(header)
    offsets: dict[int, int] = {}
    for num in sorted(bodies):
        offsets[num] = out.tell()
        out.write(f"{num} 0 obj\n".encode() + bodies[num] + b"\nendobj\n")

    size = max(bodies) + 1
    xref_offset = out.tell()
    out.write(f"xref\n0 {size}\n0000000000 65535 f \n".encode())
    for num in range(1, size):
        out.write(f"{offsets[num]:010d} 00000 n \n".encode())
    out.write(
        f"trailer\n<< /Size {size} /Root 1 0 R >>\nstartxref\n{xref_offset}\n%%EOF\n".encode()
    )
    return out.getvalue()


class FakeUpload(io.BytesIO):
    """File-like upload with a name, as handed over by the UI."""

    def __init__(self, data: bytes, name: str = "textbook.pdf") -> None:
        super().__init__(data)
        self.name = name


@pytest.fixture
def abc_pdf() -> bytes:
    return make_pdf(["A", "B", "C"])


@pytest.fixture
def metrics_reset():
    import utils.metrics as metrics_mod

    metrics_mod.clear_metrics()
    yield metrics_mod
    metrics_mod.clear_metrics()
