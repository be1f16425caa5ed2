from flask import Flask, request, jsonify, send_file
from werkzeug.exceptions import RequestEntityTooLarge
from werkzeug.utils import secure_filename
from flask_cors import CORS
from collections import OrderedDict
import io, os, re, time, uuid, logging

import settings
import pdf_ops
import pdf_excel
from docx_emitter import build_docx
from errors import PdfToolError
from pdf_word import convert_pdf

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

EXPOSED_HEADERS = [
    "Content-Type", "Content-Disposition",
    "X-Original-Pages", "X-Text-Pages", "X-Extraction-Mode", "X-Conversion-Mode",
    "X-Total-Pages", "X-Split-Count", "X-Pages-Rotated", "X-Rotation-Angle", "X-New-Order",
    "X-Original-Size", "X-Compressed-Size", "X-Compression-Ratio",
    "X-Protection-Type", "X-User-Password-Set", "X-Owner-Password-Set", "X-Permissions",
    "X-Unlock-Type", "X-Text-Length", "X-Conversion-Type", "X-Sheets-Count",
    "X-Tables-Found", "X-Rows-Extracted", "X-Pages-Processed", "X-Processing-Time",
]

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = settings.MAX_UPLOAD_MB * 1024 * 1024
CORS(app, resources={r"/*": {"origins": settings.CORS_ORIGINS}}, methods=["GET", "POST", "OPTIONS"],
     allow_headers=["Content-Type", "ngrok-skip-browser-warning"], expose_headers=EXPOSED_HEADERS)

UPLOAD_DIR = settings.UPLOAD_DIR
os.makedirs(UPLOAD_DIR, exist_ok=True)

PDF_MIME = "application/pdf"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# ============ Helpers ============

def _error(message, status=400):
    return jsonify({"error": message}), status

def _field_order(key):
    m = re.search(r"(\d+)$", key)
    return (int(m.group(1)) if m else -1, key)

def _upload_field(names=("file", "file0")):
    for name in names:
        f = request.files.get(name)
        if f and f.filename: return f
    return None

def _all_uploads(prefix="file"):
    keys = sorted((k for k in request.files.keys() if k.startswith(prefix)), key=_field_order)
    return [f for k in keys for f in request.files.getlist(k) if f and f.filename]

def _save_upload(f, default_name="upload.pdf"):
    filename = secure_filename(f.filename or default_name) or default_name
    path = os.path.join(UPLOAD_DIR, f"{uuid.uuid4().hex}_{filename}")
    f.save(path)
    return path, filename

def _cleanup(paths):
    for p in paths:
        try: os.unlink(p)
        except FileNotFoundError: pass
        except OSError as e: logger.warning("could not remove upload %s: %s", p, e)

def _base_name(filename, default="document"):
    return os.path.splitext(filename)[0] or default

def _file_response(data, mimetype, download_name, headers=None):
    resp = send_file(io.BytesIO(data), mimetype=mimetype, as_attachment=True, download_name=download_name)
    for k, v in (headers or {}).items():
        resp.headers[k] = str(v)
    resp.headers["Cache-Control"] = "no-store, max-age=0"
    return resp

def _flag(raw):
    return str(raw).strip().lower() in ("1", "true", "yes", "on")

def _conversion_mode():
    mode = (request.form.get("conversionMode") or "text").strip().lower()
    if mode not in ("formatted", "text"): mode = "text"
    detect = mode == "formatted"
    raw = request.form.get("detectHeadings")
    if raw is not None: detect = _flag(raw)
    return mode, detect

def _unit_json(unit):
    out = OrderedDict([("text", unit.text), ("placeholder", unit.placeholder)])
    if unit.heading_level is not None:
        out["headingLevel"] = unit.heading_level.name
    return out

@app.errorhandler(RequestEntityTooLarge)
def _too_large(_e):
    return _error(f"File too large. Max allowed is {settings.MAX_UPLOAD_MB}MB.", 413)

# ============ PDF -> Word ============

@app.post('/convert/pdf-to-word')
def convert_pdf_to_word():
    f = _upload_field()
    if f is None:
        return _error("Please upload a PDF file")
    mode, detect = _conversion_mode()
    path, filename = _save_upload(f)
    try:
        conversion = convert_pdf(path, detect_headings=detect, config=settings.LAYOUT)
        title = _base_name(filename)
        data = build_docx(title, conversion)
        return _file_response(data, DOCX_MIME, f"{title}.docx", OrderedDict([
            ("X-Original-Pages", conversion.page_count),
            ("X-Text-Pages", conversion.text_page_count),
            ("X-Extraction-Mode", conversion.mode.value),
            ("X-Conversion-Mode", mode),
        ]))
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("pdf-to-word failed for %s", filename)
        return _error(f"Failed to convert PDF to Word: {e}", 500)
    finally:
        _cleanup([path])

@app.post('/convert/pdf-to-text')
def convert_pdf_to_text():
    f = _upload_field()
    if f is None:
        return _error("missing file field 'file'")
    upload_id = request.form.get('uploadId') or 'unknown'
    _, detect = _conversion_mode()
    path, filename = _save_upload(f)
    try:
        conversion = convert_pdf(path, detect_headings=detect, config=settings.LAYOUT)
        return jsonify(OrderedDict([
            ("filename", filename),
            ("uploadId", upload_id),
            ("pageCount", conversion.page_count),
            ("textPageCount", conversion.text_page_count),
            ("extractionMode", conversion.mode.value),
            ("pages", [OrderedDict([("page", p.page_number), ("units", [_unit_json(u) for u in p.units])])
                       for p in conversion.pages]),
        ]))
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("pdf-to-text failed for %s", filename)
        return _error(f"{e}", 500)
    finally:
        _cleanup([path])

# ============ Page operations ============

@app.post('/merge-pdf')
def merge_pdf():
    uploads = _all_uploads()
    if len(uploads) < 2:
        return _error("Please upload at least 2 PDF files to merge")
    paths = []
    try:
        for f in uploads:
            paths.append(_save_upload(f)[0])
        data, total = pdf_ops.merge_pdfs(paths)
        return _file_response(data, PDF_MIME, "merged.pdf", {"X-Total-Pages": total})
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("merge failed")
        return _error(f"Failed to merge PDF files: {e}", 500)
    finally:
        _cleanup(paths)

@app.post('/split-pdf')
def split_pdf():
    f = _upload_field()
    if f is None:
        return _error("Please upload a PDF file")
    path, filename = _save_upload(f)
    try:
        base = _base_name(filename)
        data, total, count = pdf_ops.split_pdf(
            path, base,
            split_type=request.form.get('splitType') or 'individual',
            page_ranges=request.form.get('pageRanges') or '',
            pages_per_split=request.form.get('pagesPerSplit') or 10,
        )
        return _file_response(data, "application/zip", f"{base}_split.zip",
                              {"X-Total-Pages": total, "X-Split-Count": count})
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("split failed for %s", filename)
        return _error(f"Failed to split PDF: {e}", 500)
    finally:
        _cleanup([path])

@app.post('/rotate-pdf')
def rotate_pdf():
    f = _upload_field()
    if f is None:
        return _error("Please upload a PDF file")
    angle = request.form.get('rotationAngle') or '90'
    path, filename = _save_upload(f)
    try:
        data, total, rotated = pdf_ops.rotate_pdf(path, angle, request.form.get('pageRange') or 'all')
        return _file_response(data, PDF_MIME, f"{_base_name(filename)}_rotated.pdf", OrderedDict([
            ("X-Total-Pages", total), ("X-Pages-Rotated", rotated), ("X-Rotation-Angle", angle),
        ]))
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("rotate failed for %s", filename)
        return _error(f"Failed to rotate PDF: {e}", 500)
    finally:
        _cleanup([path])

@app.post('/reorder-pdf')
def reorder_pdf():
    f = _upload_field()
    if f is None:
        return _error("Please upload a PDF file")
    new_order = request.form.get('newOrder') or ''
    path, filename = _save_upload(f)
    try:
        data, total = pdf_ops.reorder_pdf(path, new_order)
        return _file_response(data, PDF_MIME, f"{_base_name(filename)}_reordered.pdf",
                              {"X-Total-Pages": total, "X-New-Order": new_order})
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("reorder failed for %s", filename)
        return _error(f"Failed to reorder PDF: {e}", 500)
    finally:
        _cleanup([path])

@app.post('/compress-pdf')
def compress_pdf():
    f = _upload_field()
    if f is None:
        return _error("Please upload a PDF file")
    path, filename = _save_upload(f)
    try:
        data, original_size, compressed_size = pdf_ops.compress_pdf(path, request.form.get('compressionLevel') or 'medium')
        return _file_response(data, PDF_MIME, f"{_base_name(filename)}_compressed.pdf", OrderedDict([
            ("X-Original-Size", original_size),
            ("X-Compressed-Size", compressed_size),
            ("X-Compression-Ratio", pdf_ops.compression_ratio(original_size, compressed_size)),
        ]))
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("compress failed for %s", filename)
        return _error(f"Failed to compress PDF: {e}", 500)
    finally:
        _cleanup([path])

# ============ Passwords ============

@app.post('/protect-pdf')
def protect_pdf():
    f = _upload_field()
    if f is None:
        return _error("Please upload a PDF file.")
    user_password = request.form.get('userPassword') or ''
    owner_password = request.form.get('ownerPassword') or ''
    permissions_raw = request.form.get('permissions') or ''
    if not user_password.strip():
        return _error("User password is required to open the PDF.")
    path, filename = _save_upload(f)
    try:
        data = pdf_ops.protect_pdf(path, user_password, owner_password, pdf_ops.parse_permissions(permissions_raw))
        return _file_response(data, PDF_MIME, f"{_base_name(filename)}_protected.pdf", OrderedDict([
            ("X-Protection-Type", "aes-256"),
            ("X-User-Password-Set", "true"),
            ("X-Owner-Password-Set", "true" if owner_password else "false"),
            ("X-Permissions", permissions_raw),
        ]))
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("protect failed for %s", filename)
        return _error(f"Failed to protect PDF: {e}", 500)
    finally:
        _cleanup([path])

@app.post('/unlock-pdf')
def unlock_pdf():
    f = _upload_field()
    if f is None:
        return _error("Please upload a PDF file.")
    password = request.form.get('password') or ''
    if not password:
        return _error("Please enter the PDF password.")
    path, filename = _save_upload(f)
    try:
        data, total = pdf_ops.unlock_pdf(path, password)
        return _file_response(data, PDF_MIME, f"{_base_name(filename)}_unlocked.pdf",
                              {"X-Unlock-Type": "decrypt", "X-Total-Pages": total})
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("unlock failed for %s", filename)
        return _error(f"Failed to unlock PDF: {e}", 500)
    finally:
        _cleanup([path])

# ============ Conversions into PDF ============

@app.post('/images-to-pdf')
def images_to_pdf():
    uploads = _all_uploads()
    if not uploads:
        return _error("Please upload at least one image")
    paths = []
    try:
        for f in uploads:
            paths.append(_save_upload(f, default_name="image")[0])
        data, total = pdf_ops.images_to_pdf(paths)
        return _file_response(data, PDF_MIME, "converted.pdf", {"X-Total-Pages": total})
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("images-to-pdf failed")
        return _error(f"Failed to convert images to PDF: {e}", 500)
    finally:
        _cleanup(paths)

@app.post('/word-to-pdf')
def word_to_pdf():
    f = _upload_field()
    if f is None:
        return _error("Please upload a Word document")
    path, filename = _save_upload(f, default_name="document.docx")
    try:
        title = _base_name(filename)
        data, total, text_length = pdf_ops.docx_to_pdf(path, title)
        return _file_response(data, PDF_MIME, f"{title}.pdf", OrderedDict([
            ("X-Total-Pages", total), ("X-Text-Length", text_length), ("X-Conversion-Type", "word-to-pdf"),
        ]))
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("word-to-pdf failed for %s", filename)
        return _error(f"Failed to convert Word to PDF: {e}", 500)
    finally:
        _cleanup([path])

@app.post('/excel-to-pdf')
def excel_to_pdf():
    f = _upload_field()
    if f is None:
        return _error("Please upload an Excel file")
    path, filename = _save_upload(f, default_name="workbook.xlsx")
    try:
        title = _base_name(filename)
        data, total, sheets = pdf_ops.excel_to_pdf(path)
        return _file_response(data, PDF_MIME, f"{title}.pdf", OrderedDict([
            ("X-Total-Pages", total), ("X-Sheets-Count", sheets), ("X-Conversion-Type", "excel-to-pdf"),
        ]))
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("excel-to-pdf failed for %s", filename)
        return _error(f"Failed to convert Excel to PDF: {e}", 500)
    finally:
        _cleanup([path])

# ============ PDF -> Excel ============

@app.post('/pdf-to-excel')
def pdf_to_excel():
    f = _upload_field()
    if f is None:
        return _error("Please upload a PDF file")
    started = time.monotonic()
    path, filename = _save_upload(f)
    try:
        data, tables, rows, pages = pdf_excel.pdf_to_xlsx(path)
        return _file_response(data, pdf_excel.XLSX_MIME, f"{_base_name(filename)}.xlsx", OrderedDict([
            ("X-Tables-Found", tables),
            ("X-Rows-Extracted", rows),
            ("X-Pages-Processed", pages),
            ("X-Processing-Time", f"{time.monotonic() - started:.3f}"),
        ]))
    except PdfToolError as e:
        return _error(str(e), e.status)
    except Exception as e:
        logger.exception("pdf-to-excel failed for %s", filename)
        return _error(f"Failed to convert PDF to Excel: {e}", 500)
    finally:
        _cleanup([path])

@app.get('/health')
def health():
    return jsonify({"status": "ok"})

if __name__ == '__main__':
    app.run(host='0.0.0.0', port=settings.PORT)
