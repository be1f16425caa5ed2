"""PDF -> ordered text units per page, ready for a document emitter."""

import enum
import logging
from dataclasses import dataclass, field
from typing import List

from errors import ConversionCancelled
from pdf_ops import open_pdf
from text_extract import fragments_from_page, plain_paragraphs_from_page
from text_layout import DEFAULT_LAYOUT, LayoutConfig, TextUnit, placeholder_unit, reconstruct_page

logger = logging.getLogger(__name__)

class ExtractionMode(str, enum.Enum):
    LAYOUT = "layout"
    PLAIN = "plain"
    NONE = "none"


@dataclass
class PageResult:
    page_number: int
    units: List[TextUnit] = field(default_factory=list)

    @property
    def has_text(self) -> bool:
        return any(not u.placeholder for u in self.units)


@dataclass
class Conversion:
    pages: List[PageResult]
    mode: ExtractionMode
    page_count: int

    @property
    def text_page_count(self) -> int:
        return sum(1 for p in self.pages if p.has_text)


def _check_cancel(cancel_event, page_number):
    if cancel_event is not None and cancel_event.is_set():
        raise ConversionCancelled(f"conversion cancelled before page {page_number}")


def _layout_pages(doc, detect_headings, config, cancel_event):
    pages = []
    for page_number, page in enumerate(doc, start=1):
        _check_cancel(cancel_event, page_number)
        units = reconstruct_page(fragments_from_page(page), detect_headings, config)
        pages.append(PageResult(page_number, units))
    return pages


def _plain_pages(doc, cancel_event):
    pages = []
    for page_number, page in enumerate(doc, start=1):
        _check_cancel(cancel_event, page_number)
        units = [TextUnit(text=p) for p in plain_paragraphs_from_page(page)]
        pages.append(PageResult(page_number, units or [placeholder_unit()]))
    return pages


def convert_document(doc, detect_headings: bool = True, config: LayoutConfig = DEFAULT_LAYOUT,
                     cancel_event=None) -> Conversion:
    """
    Reconstruct every page of an open PyMuPDF document.

    Always returns one PageResult per page. If span extraction fails anywhere
    the whole document is redone with the plain-text paragraph split, and
    the mode reports which path produced the output.
    """
    try:
        pages = _layout_pages(doc, detect_headings, config, cancel_event)
        mode = ExtractionMode.LAYOUT
    except ConversionCancelled:
        raise
    except Exception as e:
        logger.warning("layout extraction failed, falling back to plain text: %s", e)
        pages = _plain_pages(doc, cancel_event)
        mode = ExtractionMode.PLAIN

    if not any(p.has_text for p in pages):
        mode = ExtractionMode.NONE
    return Conversion(pages=pages, mode=mode, page_count=doc.page_count)


def convert_pdf(pdf_path, detect_headings: bool = True, config: LayoutConfig = DEFAULT_LAYOUT,
                cancel_event=None) -> Conversion:
    doc = open_pdf(pdf_path)
    try:
        conversion = convert_document(doc, detect_headings, config, cancel_event)
    finally:
        doc.close()
    logger.info("converted %s: %d pages, mode=%s", pdf_path, conversion.page_count, conversion.mode.value)
    return conversion
