"""PDF -> .xlsx table export: one sheet per page, one row per text baseline."""

import io
import logging
from collections import defaultdict
from typing import List, Sequence

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from errors import PdfToolError
from pdf_ops import open_pdf
from text_extract import fragments_from_page
from text_layout import TextFragment

logger = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

MIN_COLUMN_CHARS = 12
MAX_COLUMN_CHARS = 50


def table_rows(fragments: Sequence[TextFragment]) -> List[List[str]]:
    """Group fragments by rounded baseline, top row first, cells left to right."""
    rows = defaultdict(list)
    for fr in fragments:
        if fr.text and fr.text.strip():
            rows[round(fr.y)].append(fr)
    return [[fr.text.strip() for fr in sorted(rows[y], key=lambda fr: fr.x)]
            for y in sorted(rows, reverse=True)]


def _fit_columns(ws, rows):
    ncols = max(len(r) for r in rows)
    for col in range(ncols):
        longest = max((len(r[col]) for r in rows if col < len(r)), default=0)
        width = min(max(MIN_COLUMN_CHARS, longest) + 2, MAX_COLUMN_CHARS)
        ws.column_dimensions[get_column_letter(col + 1)].width = width


def pdf_to_xlsx(path):
    """Returns (xlsx bytes, tables found, rows extracted, pages processed)."""
    with open_pdf(path) as doc:
        tables = [rows for rows in (table_rows(fragments_from_page(page)) for page in doc) if rows]
        pages = doc.page_count
    if not tables:
        raise PdfToolError("No tables found in PDF. Please try a different PDF with table data.")

    wb = Workbook()
    for index, rows in enumerate(tables, start=1):
        ws = wb.active if index == 1 else wb.create_sheet()
        ws.title = f"Table_{index}"
        for cells in rows:
            ws.append(cells)
        _fit_columns(ws, rows)

    out = io.BytesIO()
    wb.save(out)
    row_count = sum(len(rows) for rows in tables)
    logger.info("pdf-to-excel: %d tables, %d rows from %d pages", len(tables), row_count, pages)
    return out.getvalue(), len(tables), row_count, pages
