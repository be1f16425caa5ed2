"""
Pytest configuration.

Provides fixtures that build small PDFs, images and Word files on the fly with
PyMuPDF, Pillow and python-docx, so no binary fixtures are committed.
"""

import io

import pytest
from docx import Document
from openpyxl import Workbook
from PIL import Image

from factories import build_pdf


@pytest.fixture
def write_file(tmp_path):
    """Write bytes under tmp_path and return the path as str."""
    def _write(name, data):
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)
    return _write


@pytest.fixture
def report_pdf_bytes():
    """One page: a large heading, a two-line paragraph, then a paragraph after a gap."""
    return build_pdf([[
        ("Quarterly Report", 72, 100, 20),
        ("The first line of body text", 72, 140, 11),
        ("continues on the next line.", 72, 154, 11),
        ("A second paragraph after a gap.", 72, 200, 11),
    ]])


@pytest.fixture
def numbered_pdf_bytes():
    """Three pages whose only text is 'Page N'."""
    return build_pdf([[(f"Page {n}", 72, 72, 12)] for n in (1, 2, 3)])


@pytest.fixture
def png_bytes():
    im = Image.new("RGBA", (120, 80), (200, 30, 30, 128))
    out = io.BytesIO()
    im.save(out, format="PNG")
    return out.getvalue()


@pytest.fixture
def jpeg_bytes():
    im = Image.new("RGB", (300, 200), (30, 120, 200))
    out = io.BytesIO()
    im.save(out, format="JPEG", quality=95)
    return out.getvalue()


@pytest.fixture
def docx_bytes():
    document = Document()
    document.add_heading("Project Plan", level=1)
    document.add_paragraph("We will ship the first milestone in spring.")
    document.add_paragraph("")
    document.add_paragraph("Testing happens continuously.")
    out = io.BytesIO()
    document.save(out)
    return out.getvalue()


@pytest.fixture
def xlsx_bytes():
    """Two sheets: a small inventory table and an empty 'Notes' sheet."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Inventory"
    ws.append(["Item", "Qty", "Price"])
    ws.append(["Apple", 3, 1.5])
    ws.append([])
    ws.append(["Pear", 10.0, None])
    wb.create_sheet("Notes")
    out = io.BytesIO()
    wb.save(out)
    return out.getvalue()


@pytest.fixture
def table_pdf_bytes():
    """Three pages: a two-column table, a blank page, a one-line total."""
    return build_pdf([
        [("Item", 72, 100, 11), ("Qty", 300, 100, 11), ("Apple", 72, 120, 11), ("3", 300, 120, 11)],
        [],
        [("Total", 72, 100, 11)],
    ])


@pytest.fixture
def client(tmp_path, monkeypatch):
    import app as service

    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir()
    monkeypatch.setattr(service, "UPLOAD_DIR", str(upload_dir))
    service.app.config["TESTING"] = True
    with service.app.test_client() as c:
        c.upload_dir = upload_dir
        yield c
