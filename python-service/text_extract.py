import re
import logging
from typing import List

from text_layout import TextFragment

logger = logging.getLogger(__name__)

_BLANK_LINE = re.compile(r"\n\s*\n")

# ============ Span extraction (layout path) ============
def _span_font_size(sp, default=0.0):
    try: size = float(sp.get("size", 0))
    except (TypeError, ValueError): return default
    return size if size > 0 else default

def fragments_from_page_dict(page_dict, page_height: float) -> List[TextFragment]:
    """Turn a PyMuPDF ``get_text("dict")`` payload into bottom-up TextFragments."""
    fragments = []
    for block in page_dict.get("blocks", []):
        if "lines" not in block: continue
        for line in block["lines"]:
            for sp in line.get("spans", []):
                t = sp.get("text", "") or ""
                if not t.strip(): continue
                bx = sp.get("bbox", [0, 0, 0, 0])
                origin = sp.get("origin") or (bx[0], bx[3])
                fragments.append(TextFragment(
                    text=t,
                    x=float(origin[0]),
                    y=float(page_height) - float(origin[1]),
                    width=max(0.0, float(bx[2]) - float(bx[0])),
                    height=max(0.0, float(bx[3]) - float(bx[1])),
                    font_size=_span_font_size(sp),
                ))
    return fragments

def fragments_from_page(page) -> List[TextFragment]:
    return fragments_from_page_dict(page.get_text("dict"), page.rect.height)

# ============ Plain text fallback ============
def split_plain_paragraphs(text: str) -> List[str]:
    paragraphs = []
    for chunk in _BLANK_LINE.split(text or ""):
        para = " ".join(chunk.split())
        if para: paragraphs.append(para)
    return paragraphs

def plain_paragraphs_from_page(page) -> List[str]:
    return split_plain_paragraphs(page.get_text("text"))
