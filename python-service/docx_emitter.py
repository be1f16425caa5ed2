import io
import re

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Pt, RGBColor

# python-docx refuses XML-incompatible control characters
_XML_UNSAFE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")

def _xml_safe(text: str) -> str:
    return _XML_UNSAFE.sub("", text or "")

def build_docx(title: str, conversion) -> bytes:
    doc = Document()

    heading = doc.add_heading(_xml_safe(title) or "Document", level=0)
    heading.alignment = WD_ALIGN_PARAGRAPH.CENTER

    meta = doc.add_paragraph()
    meta.alignment = WD_ALIGN_PARAGRAPH.CENTER
    run = meta.add_run(f"Converted from PDF • {conversion.page_count} pages")
    run.font.size = Pt(10)
    run.font.color.rgb = RGBColor(0x66, 0x66, 0x66)

    for idx, page in enumerate(conversion.pages):
        if idx > 0:
            doc.add_page_break()
        for unit in page.units:
            text = _xml_safe(unit.text)
            if unit.heading_level is not None:
                doc.add_heading(text, level=unit.heading_level.value)
            elif unit.placeholder:
                doc.add_paragraph().add_run(text).italic = True
            else:
                doc.add_paragraph(text)

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()
