"""
HTTP routes, exercised through the Flask test client.
"""

import io
import os
import zipfile

import fitz
import pytest
from docx import Document
from openpyxl import load_workbook

from factories import build_pdf

pytestmark = pytest.mark.integration

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def upload(data, name="input.pdf"):
    return (io.BytesIO(data), name)


def post(client, url, **fields):
    return client.post(url, data=fields, content_type="multipart/form-data")


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


class TestPdfToWord:

    def test_returns_docx_with_metadata_headers(self, client, report_pdf_bytes):
        resp = post(client, "/convert/pdf-to-word", file=upload(report_pdf_bytes, "report.pdf"),
                    conversionMode="formatted")

        assert resp.status_code == 200
        assert resp.mimetype == DOCX_MIME
        assert "report.docx" in resp.headers["Content-Disposition"]
        assert resp.headers["X-Original-Pages"] == "1"
        assert resp.headers["X-Text-Pages"] == "1"
        assert resp.headers["X-Extraction-Mode"] == "layout"
        assert resp.headers["X-Conversion-Mode"] == "formatted"

        document = Document(io.BytesIO(resp.data))
        assert "Quarterly Report" in [p.text for p in document.paragraphs if p.style.name == "Heading 2"]

    def test_text_mode_is_the_default(self, client, report_pdf_bytes):
        resp = post(client, "/convert/pdf-to-word", file0=upload(report_pdf_bytes))
        assert resp.status_code == 200
        assert resp.headers["X-Conversion-Mode"] == "text"
        document = Document(io.BytesIO(resp.data))
        assert not [p for p in document.paragraphs if p.style.name.startswith("Heading")]

    def test_unknown_mode_falls_back_to_text(self, client, report_pdf_bytes):
        resp = post(client, "/convert/pdf-to-word", file0=upload(report_pdf_bytes), conversionMode="fancy")
        assert resp.headers["X-Conversion-Mode"] == "text"

    def test_text_pages_counts_pages_with_text(self, client):
        data = build_pdf([[("Alpha", 72, 72, 12)], [], [("Gamma", 72, 72, 12)]])
        resp = post(client, "/convert/pdf-to-word", file0=upload(data))
        assert resp.headers["X-Original-Pages"] == "3"
        assert resp.headers["X-Text-Pages"] == "2"

        import app as service
        assert "X-Text-Pages" in service.EXPOSED_HEADERS

    def test_missing_file(self, client):
        resp = post(client, "/convert/pdf-to-word")
        assert resp.status_code == 400
        assert "error" in resp.get_json()

    def test_invalid_pdf(self, client):
        resp = post(client, "/convert/pdf-to-word", file=upload(b"garbage bytes"))
        assert resp.status_code == 400
        assert "Invalid PDF" in resp.get_json()["error"]

    def test_uploads_are_cleaned_up(self, client, report_pdf_bytes):
        post(client, "/convert/pdf-to-word", file=upload(report_pdf_bytes))
        assert os.listdir(client.upload_dir) == []


class TestPdfToText:

    def test_pages_and_units(self, client, report_pdf_bytes):
        resp = post(client, "/convert/pdf-to-text", file=upload(report_pdf_bytes), uploadId="abc",
                    conversionMode="formatted")
        body = resp.get_json()

        assert resp.status_code == 200
        assert body["uploadId"] == "abc"
        assert body["pageCount"] == 1
        assert body["textPageCount"] == 1
        assert body["extractionMode"] == "layout"
        units = body["pages"][0]["units"]
        assert units[0] == {"text": "Quarterly Report", "placeholder": False, "headingLevel": "HEADING_2"}
        assert "headingLevel" not in units[1]

    def test_detect_headings_flag_overrides_mode(self, client, report_pdf_bytes):
        resp = post(client, "/convert/pdf-to-text", file=upload(report_pdf_bytes),
                    conversionMode="formatted", detectHeadings="false")
        units = resp.get_json()["pages"][0]["units"]
        assert all("headingLevel" not in u for u in units)

        resp = post(client, "/convert/pdf-to-text", file=upload(report_pdf_bytes), detectHeadings="true")
        assert resp.get_json()["pages"][0]["units"][0]["headingLevel"] == "HEADING_2"


class TestPageRoutes:

    def test_merge(self, client, numbered_pdf_bytes, report_pdf_bytes):
        resp = post(client, "/merge-pdf", file0=upload(numbered_pdf_bytes, "a.pdf"),
                    file1=upload(report_pdf_bytes, "b.pdf"))
        assert resp.status_code == 200
        assert resp.headers["X-Total-Pages"] == "4"
        with fitz.open(stream=resp.data, filetype="pdf") as doc:
            assert doc.page_count == 4

    def test_merge_needs_two(self, client, numbered_pdf_bytes):
        resp = post(client, "/merge-pdf", file0=upload(numbered_pdf_bytes))
        assert resp.status_code == 400

    def test_split(self, client, numbered_pdf_bytes):
        resp = post(client, "/split-pdf", file0=upload(numbered_pdf_bytes, "book.pdf"),
                    splitType="custom", pageRanges="1,2-3")
        assert resp.status_code == 200
        assert resp.mimetype == "application/zip"
        assert resp.headers["X-Split-Count"] == "2"
        with zipfile.ZipFile(io.BytesIO(resp.data)) as zf:
            assert zf.namelist() == ["book_part_1.pdf", "book_part_2.pdf"]

    def test_rotate(self, client, numbered_pdf_bytes):
        resp = post(client, "/rotate-pdf", file0=upload(numbered_pdf_bytes), rotationAngle="180", pageRange="2")
        assert resp.status_code == 200
        assert resp.headers["X-Pages-Rotated"] == "1"
        with fitz.open(stream=resp.data, filetype="pdf") as doc:
            assert [p.rotation for p in doc] == [0, 180, 0]

    def test_rotate_bad_angle(self, client, numbered_pdf_bytes):
        resp = post(client, "/rotate-pdf", file0=upload(numbered_pdf_bytes), rotationAngle="30")
        assert resp.status_code == 400
        assert "90, 180, or 270" in resp.get_json()["error"]

    def test_reorder(self, client, numbered_pdf_bytes):
        resp = post(client, "/reorder-pdf", file0=upload(numbered_pdf_bytes), newOrder="2,3,1")
        assert resp.status_code == 200
        assert resp.headers["X-New-Order"] == "2,3,1"

    def test_compress(self, client, numbered_pdf_bytes):
        resp = post(client, "/compress-pdf", file0=upload(numbered_pdf_bytes), compressionLevel="high")
        assert resp.status_code == 200
        assert resp.headers["X-Compression-Ratio"].endswith("%")
        assert int(resp.headers["X-Compressed-Size"]) == len(resp.data)


class TestPasswordRoutes:

    def test_protect_and_unlock(self, client, numbered_pdf_bytes):
        resp = post(client, "/protect-pdf", file0=upload(numbered_pdf_bytes), userPassword="pw",
                    permissions="print,copy")
        assert resp.status_code == 200
        assert resp.headers["X-Owner-Password-Set"] == "false"
        assert resp.headers["X-Permissions"] == "print,copy"

        resp = post(client, "/unlock-pdf", file0=upload(resp.data), password="pw")
        assert resp.status_code == 200
        with fitz.open(stream=resp.data, filetype="pdf") as doc:
            assert not doc.needs_pass

    def test_protect_without_password(self, client, numbered_pdf_bytes):
        resp = post(client, "/protect-pdf", file0=upload(numbered_pdf_bytes))
        assert resp.status_code == 400

    def test_unlock_without_password(self, client, numbered_pdf_bytes):
        resp = post(client, "/unlock-pdf", file0=upload(numbered_pdf_bytes))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Please enter the PDF password."


class TestIntoPdfRoutes:

    def test_images(self, client, png_bytes, jpeg_bytes):
        resp = post(client, "/images-to-pdf", file0=upload(png_bytes, "a.png"), file1=upload(jpeg_bytes, "b.jpg"))
        assert resp.status_code == 200
        assert resp.headers["X-Total-Pages"] == "2"

    def test_word(self, client, docx_bytes):
        resp = post(client, "/word-to-pdf", file0=upload(docx_bytes, "plan.docx"))
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert "plan.pdf" in resp.headers["Content-Disposition"]
        assert resp.headers["X-Conversion-Type"] == "word-to-pdf"

    def test_word_rejects_pdf(self, client, numbered_pdf_bytes):
        resp = post(client, "/word-to-pdf", file0=upload(numbered_pdf_bytes, "x.docx"))
        assert resp.status_code == 400

    def test_excel(self, client, xlsx_bytes):
        resp = post(client, "/excel-to-pdf", file0=upload(xlsx_bytes, "stock.xlsx"))
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert "stock.pdf" in resp.headers["Content-Disposition"]
        assert resp.headers["X-Sheets-Count"] == "2"
        assert resp.headers["X-Conversion-Type"] == "excel-to-pdf"

    def test_excel_rejects_other_files(self, client):
        resp = post(client, "/excel-to-pdf", file0=upload(b"a,b", "data.csv"))
        assert resp.status_code == 400
        assert "valid Excel file" in resp.get_json()["error"]


class TestPdfToExcel:

    def test_tables_to_workbook(self, client, table_pdf_bytes):
        resp = post(client, "/pdf-to-excel", file=upload(table_pdf_bytes, "stock.pdf"))
        assert resp.status_code == 200
        assert "stock.xlsx" in resp.headers["Content-Disposition"]
        assert resp.headers["X-Tables-Found"] == "2"
        assert resp.headers["X-Rows-Extracted"] == "3"
        assert resp.headers["X-Pages-Processed"] == "3"
        assert float(resp.headers["X-Processing-Time"]) >= 0
        assert load_workbook(io.BytesIO(resp.data)).sheetnames == ["Table_1", "Table_2"]

    def test_pdf_without_text(self, client):
        resp = post(client, "/pdf-to-excel", file=upload(build_pdf([[]])))
        assert resp.status_code == 400
        assert "No tables found" in resp.get_json()["error"]


def test_oversized_upload(client, monkeypatch, report_pdf_bytes):
    import app as service
    monkeypatch.setitem(service.app.config, "MAX_CONTENT_LENGTH", 100)
    resp = post(client, "/convert/pdf-to-word", file=upload(report_pdf_bytes))
    assert resp.status_code == 413
