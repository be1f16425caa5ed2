import io
import logging
import secrets
import zipfile
from collections import OrderedDict

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError
from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from errors import PdfToolError

logger = logging.getLogger(__name__)

# ============ Helpers ============

def _to_int(s):
    try: return int(str(s).strip())
    except (TypeError, ValueError): return None

def open_pdf(path, allow_encrypted=False):
    try:
        doc = fitz.open(path)
    except RuntimeError as e:  # fitz.FileDataError and friends
        raise PdfToolError(f"Invalid PDF file: {e}")
    if not doc.is_pdf or (not doc.needs_pass and doc.page_count < 1):
        doc.close()
        raise PdfToolError("Invalid PDF file. Please upload a valid PDF.")
    if not allow_encrypted and doc.needs_pass:
        doc.close()
        raise PdfToolError("This PDF is password-protected. Please unlock it first.")
    return doc

def _is_encrypted(doc) -> bool:
    return bool(doc.needs_pass or (doc.metadata or {}).get("encryption"))

def _pdf_bytes(doc, **save_opts):
    opts = dict(garbage=3, deflate=True)
    opts.update(save_opts)
    data = doc.tobytes(**opts)
    # make sure what we hand back opens again
    with fitz.open(stream=data, filetype="pdf") as check:
        if not check.needs_pass and check.page_count < 1:
            raise RuntimeError("Generated PDF has no pages")
    return data

# ============ Page ranges ============

def parse_page_ranges(range_str, total_pages):
    """'1-3,5,7-9' -> [[1, 2, 3], [5], [7, 8, 9]]; invalid or out-of-bounds parts are skipped."""
    ranges = []
    for part in (range_str or "").split(","):
        part = part.strip()
        if not part: continue
        if "-" in part:
            start_s, end_s = part.split("-", 1)
            start, end = _to_int(start_s), _to_int(end_s)
            if start is None or end is None or start < 1 or end > total_pages or start > end:
                continue
            ranges.append(list(range(start, end + 1)))
        else:
            page = _to_int(part)
            if page is not None and 1 <= page <= total_pages:
                ranges.append([page])
    return ranges

def parse_page_selection(range_str, total_pages):
    """'all' or a range string -> sorted unique 0-based page indices."""
    if (range_str or "all").strip().lower() == "all":
        return list(range(total_pages))
    return sorted({p - 1 for r in parse_page_ranges(range_str, total_pages) for p in r})

# ============ Merge / split / rotate / reorder ============

def merge_pdfs(paths):
    if len(paths) < 2:
        raise PdfToolError("Please upload at least 2 PDF files to merge")
    merged = fitz.open()
    try:
        for path in paths:
            with open_pdf(path) as src:
                merged.insert_pdf(src)
        return _pdf_bytes(merged), merged.page_count
    finally:
        merged.close()

def split_pdf(path, base_name, split_type="individual", page_ranges="", pages_per_split=10):
    with open_pdf(path) as src:
        total = src.page_count
        if split_type == "individual":
            ranges = [[p] for p in range(1, total + 1)]
        elif split_type == "range":
            step = _to_int(pages_per_split) or 10
            if step < 1:
                raise PdfToolError("pagesPerSplit must be a positive number")
            ranges = [list(range(i, min(i + step - 1, total) + 1)) for i in range(1, total + 1, step)]
        elif split_type == "custom":
            ranges = parse_page_ranges(page_ranges, total)
            if not ranges:
                raise PdfToolError("Invalid page ranges. Use format like '1-3,5,7-9'")
        else:
            raise PdfToolError("Invalid split type")

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED, compresslevel=6) as zf:
            for i, pages in enumerate(ranges, start=1):
                part = fitz.open()
                try:
                    part.insert_pdf(src, from_page=pages[0] - 1, to_page=pages[-1] - 1)
                    data = _pdf_bytes(part)
                finally:
                    part.close()
                if len(ranges) == 1:
                    label = str(pages[0]) if len(pages) == 1 else f"{pages[0]}-{pages[-1]}"
                    name = f"{base_name}_pages_{label}.pdf"
                else:
                    name = f"{base_name}_part_{i}.pdf"
                zf.writestr(name, data)
    logger.info("split %s into %d parts", base_name, len(ranges))
    return buffer.getvalue(), total, len(ranges)

def rotate_pdf(path, angle, page_range="all"):
    angle = _to_int(angle)
    if angle is None or abs(angle) not in (90, 180, 270):
        raise PdfToolError("Rotation angle must be 90, 180, or 270 degrees")
    with open_pdf(path) as doc:
        selected = parse_page_selection(page_range, doc.page_count)
        if not selected:
            raise PdfToolError("Invalid page range specified")
        for idx in selected:
            page = doc[idx]
            page.set_rotation((page.rotation + angle) % 360)
        return _pdf_bytes(doc), doc.page_count, len(selected)

def reorder_pdf(path, new_order):
    if not (new_order or "").strip():
        raise PdfToolError("Please specify the new page order")
    with open_pdf(path) as doc:
        total = doc.page_count
        tokens = [t.strip() for t in new_order.split(",")]
        if len(tokens) != total:
            raise PdfToolError(f"Order must contain exactly {total} page numbers")
        order, seen = [], set()
        for token in tokens:
            num = _to_int(token)
            if num is None or num < 1 or num > total:
                raise PdfToolError(f"Invalid page number: {token!r}")
            if num in seen:
                raise PdfToolError(f"Duplicate page number: {num}")
            seen.add(num)
            order.append(num)
        doc.select([n - 1 for n in order])
        return _pdf_bytes(doc), total

# ============ Compress ============

COMPRESSION_LEVELS = OrderedDict([
    ("low", dict(quality=90, max_size=2000, grayscale=False, strip_metadata=False)),
    ("medium", dict(quality=75, max_size=1500, grayscale=False, strip_metadata=True)),
    ("high", dict(quality=60, max_size=1200, grayscale=True, strip_metadata=True)),
    ("maximum", dict(quality=40, max_size=800, grayscale=True, strip_metadata=True)),
])

def _recompress_image(raw: bytes, opts) -> bytes:
    with Image.open(io.BytesIO(raw)) as im:
        im.load()
        if opts["grayscale"]:
            im = im.convert("L")
        elif im.mode not in ("RGB", "L"):
            im = im.convert("RGB")
        im.thumbnail((opts["max_size"], opts["max_size"]))
        out = io.BytesIO()
        im.save(out, format="JPEG", quality=opts["quality"], optimize=True)
        return out.getvalue()

def compress_pdf(path, level="medium"):
    opts = COMPRESSION_LEVELS.get((level or "medium").lower(), COMPRESSION_LEVELS["medium"])
    with open(path, "rb") as fh:
        original = fh.read()
    with open_pdf(path) as doc:
        done, replaced = set(), 0
        for page in doc:
            for img in page.get_images(full=True):
                xref, smask = img[0], img[1]
                if xref in done: continue
                done.add(xref)
                if smask:  # JPEG has no alpha channel
                    continue
                raw = (doc.extract_image(xref) or {}).get("image")
                if not raw: continue
                try:
                    smaller = _recompress_image(raw, opts)
                except (UnidentifiedImageError, OSError, ValueError) as e:
                    logger.debug("skipping image xref=%s: %s", xref, e)
                    continue
                if len(smaller) < len(raw):
                    page.replace_image(xref, stream=smaller)
                    replaced += 1
        if opts["strip_metadata"]:
            doc.set_metadata({})
            doc.del_xml_metadata()
        compressed = _pdf_bytes(doc, garbage=4, clean=True)
    logger.info("compressed pdf: %d images re-encoded, %d -> %d bytes", replaced, len(original), len(compressed))
    if len(compressed) >= len(original):
        compressed = original
    return compressed, len(original), len(compressed)

def compression_ratio(original_size, compressed_size):
    if not original_size: return "0.0%"
    return f"{(original_size - compressed_size) / original_size * 100:.1f}%"

# ============ Protect / unlock ============

def parse_permissions(raw):
    items = {p.strip().lower() for p in (raw or "").split(",") if p.strip()}
    return OrderedDict((k, k in items) for k in ("print", "copy", "modify", "annotate"))

def _permission_flags(perms):
    flags = fitz.PDF_PERM_ACCESSIBILITY
    if perms.get("print"): flags |= fitz.PDF_PERM_PRINT | fitz.PDF_PERM_PRINT_HQ
    if perms.get("copy"): flags |= fitz.PDF_PERM_COPY
    if perms.get("modify"): flags |= fitz.PDF_PERM_MODIFY | fitz.PDF_PERM_ASSEMBLE | fitz.PDF_PERM_FORM
    if perms.get("annotate"): flags |= fitz.PDF_PERM_ANNOTATE | fitz.PDF_PERM_FORM
    return flags

def protect_pdf(path, user_password, owner_password="", permissions=None):
    if not (user_password or "").strip():
        raise PdfToolError("User password is required to open the PDF.")
    perms = permissions if permissions is not None else parse_permissions("")
    with open_pdf(path, allow_encrypted=True) as doc:
        if _is_encrypted(doc):
            raise PdfToolError("This PDF is already password-protected. Please unlock it first and then apply new protection.")
        # permission flags only bind with a separate owner password
        owner = owner_password or secrets.token_urlsafe(24)
        return _pdf_bytes(doc, encryption=fitz.PDF_ENCRYPT_AES_256, user_pw=user_password,
                          owner_pw=owner, permissions=_permission_flags(perms))

def unlock_pdf(path, password):
    if not password:
        raise PdfToolError("Please enter the PDF password.")
    with open_pdf(path, allow_encrypted=True) as doc:
        if not _is_encrypted(doc):
            raise PdfToolError("This PDF is not password-protected.")
        if doc.needs_pass and not doc.authenticate(password):
            raise PdfToolError("Incorrect password. Please try again.")
        return _pdf_bytes(doc, encryption=fitz.PDF_ENCRYPT_NONE), doc.page_count

# ============ Images -> PDF ============

def _normalized_image_bytes(im):
    fmt = "JPEG" if im.format == "JPEG" else "PNG"
    if im.mode in ("RGBA", "LA", "P"):
        rgba = im.convert("RGBA")
        flat = Image.new("RGB", rgba.size, (255, 255, 255))
        flat.paste(rgba, mask=rgba.split()[-1])
        im = flat
    elif im.mode not in ("RGB", "L"):
        im = im.convert("RGB")
    out = io.BytesIO()
    im.save(out, format=fmt)
    return out.getvalue()

def images_to_pdf(paths):
    doc = fitz.open()
    try:
        for path in paths:
            try:
                with Image.open(path) as im:
                    if im.format not in ("JPEG", "PNG"):
                        logger.warning("skipping unsupported image format %s: %s", im.format, path)
                        continue
                    width, height = im.size
                    data = _normalized_image_bytes(im)
            except UnidentifiedImageError:
                logger.warning("skipping unreadable image: %s", path)
                continue
            page = doc.new_page(width=width, height=height)
            page.insert_image(page.rect, stream=data)
        if doc.page_count == 0:
            raise PdfToolError("Please upload at least one JPG or PNG image")
        return _pdf_bytes(doc), doc.page_count
    finally:
        doc.close()

# ============ Word (.docx) -> PDF ============

A4 = fitz.paper_rect("a4")
MARGIN = 50.0
BODY_FONT, BOLD_FONT = "helv", "hebo"

def docx_paragraphs(path):
    try:
        document = Document(path)
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise PdfToolError(f"Please upload a valid Word document (.docx): {e}")
    paragraphs = []
    for p in document.paragraphs:
        text = " ".join((p.text or "").split())
        if not text: continue
        style = (p.style.name if p.style is not None else "") or ""
        paragraphs.append((text, style.startswith("Heading") or style == "Title"))
    return paragraphs

def _fit_text(text, font, size, width):
    if fitz.get_text_length(text, fontname=font, fontsize=size) <= width:
        return text
    while text and fitz.get_text_length(text + "...", fontname=font, fontsize=size) > width:
        text = text[:-1]
    return text + "..." if text else ""

def _number_pages(doc):
    total = doc.page_count
    for i, page in enumerate(doc, start=1):
        footer = f"Page {i} of {total}"
        x = (A4.width - fitz.get_text_length(footer, fontname=BODY_FONT, fontsize=8)) / 2
        page.insert_text((x, A4.height - MARGIN / 2), footer, fontname=BODY_FONT, fontsize=8)
    return total

class _TextFlow:
    """Greedy word-wrapped text writer that adds A4 pages as needed."""

    def __init__(self, doc):
        self.doc = doc
        self.width = A4.width - 2 * MARGIN
        self.page = None
        self.y = None
        self.new_page()

    def new_page(self):
        self.page = self.doc.new_page(width=A4.width, height=A4.height)
        self.y = MARGIN

    def _wrap(self, text, font, size):
        lines, cur = [], ""
        for word in text.split():
            trial = f"{cur} {word}" if cur else word
            if cur and fitz.get_text_length(trial, fontname=font, fontsize=size) > self.width:
                lines.append(cur)
                cur = word
            else:
                cur = trial
        if cur: lines.append(cur)
        return lines

    def ensure_space(self, height):
        """Start a new page unless 'height' more points fit; True when a page was added."""
        if self.y + height > A4.height - MARGIN:
            self.new_page()
            return True
        return False

    def write_cells(self, cells, col_width, font=BODY_FONT, size=8, leading=16):
        self.y += leading
        for i, text in enumerate(cells):
            fitted = _fit_text(text, font, size, col_width - 2)
            if fitted:
                self.page.insert_text((MARGIN + i * col_width, self.y), fitted, fontname=font, fontsize=size)

    def rule(self, space_after=5):
        self.y += 4
        self.page.draw_line((MARGIN, self.y), (A4.width - MARGIN, self.y), color=(0.8, 0.8, 0.8), width=1)
        self.y += space_after

    def write(self, text, font=BODY_FONT, size=12, center=False, space_after=6):
        leading = size * 1.4
        for line in self._wrap(text, font, size):
            if self.y + leading > A4.height - MARGIN:
                self.new_page()
            x = MARGIN
            if center:
                x = (A4.width - fitz.get_text_length(line, fontname=font, fontsize=size)) / 2
            self.y += leading
            self.page.insert_text((x, self.y), line, fontname=font, fontsize=size)
        self.y += space_after

def docx_to_pdf(path, title):
    paragraphs = docx_paragraphs(path)
    if not paragraphs:
        raise PdfToolError("No text content found in the Word document")
    doc = fitz.open()
    try:
        flow = _TextFlow(doc)
        flow.write(title, font=BOLD_FONT, size=24, center=True, space_after=10)
        flow.write("Converted from Word document", size=12, center=True, space_after=24)
        for text, is_heading in paragraphs:
            if is_heading:
                flow.write(text, font=BOLD_FONT, size=16, space_after=8)
            else:
                flow.write(text, size=12, space_after=8)
        total = _number_pages(doc)
        return _pdf_bytes(doc), total, sum(len(t) for t, _ in paragraphs)
    finally:
        doc.close()

# ============ Excel (.xlsx) -> PDF ============

MAX_COL_WIDTH = 80.0

def _cell_text(value):
    if value is None: return ""
    if isinstance(value, float) and value.is_integer(): return str(int(value))
    return " ".join(str(value).split())

def excel_sheets(path):
    """[(sheet_name, rows)] with blank rows dropped and trailing empty cells trimmed."""
    try:
        wb = load_workbook(path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as e:
        raise PdfToolError(f"Please upload a valid Excel file (.xlsx): {e}")
    try:
        sheets = []
        for ws in wb.worksheets:
            rows = []
            for values in ws.iter_rows(values_only=True):
                cells = [_cell_text(v) for v in values]
                while cells and not cells[-1]: cells.pop()
                if cells: rows.append(cells)
            sheets.append((ws.title, rows))
    finally:
        wb.close()
    if not sheets:
        raise PdfToolError("No worksheets found in the Excel file")
    return sheets

def excel_to_pdf(path):
    sheets = excel_sheets(path)
    doc = fitz.open()
    try:
        flow = _TextFlow(doc)
        for index, (name, rows) in enumerate(sheets):
            if index > 0:
                flow.new_page()
            flow.write(name, font=BOLD_FONT, size=16, space_after=12)
            if not rows:
                flow.write("(Empty sheet)", size=12, space_after=24)
                continue
            col_width = min(MAX_COL_WIDTH, flow.width / max(len(r) for r in rows))
            for i, cells in enumerate(rows):
                if flow.ensure_space(16 + 50):
                    flow.write(f"{name} (continued)", font=BOLD_FONT, size=14, space_after=10)
                flow.write_cells(cells, col_width, font=BOLD_FONT if i == 0 else BODY_FONT)
                if i == 0:
                    flow.rule()
            flow.y += 30
        total = _number_pages(doc)
        logger.info("excel-to-pdf: %d sheets -> %d pages", len(sheets), total)
        return _pdf_bytes(doc), total, len(sheets)
    finally:
        doc.close()
