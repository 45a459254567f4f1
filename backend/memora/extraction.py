"""
Text extraction for uploaded study documents.

PDFs go through a fallback chain: PyPDF2 first (fast, works for most
digitally produced files), pdfplumber second (copes with odd layouts and
fonts PyPDF2 trips on), and OCR last for scanned or image-only documents.
Each strategy either returns non-empty text or raises ``ExtractionError``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Callable, List, Tuple

import PyPDF2
import pdfplumber
from docx import Document
from PyPDF2.errors import FileNotDecryptedError, PdfReadError

from .errors import ExtractionError
from .settings import settings

try:
	import fitz  # type: ignore  # PyMuPDF
	import pytesseract  # type: ignore
	from PIL import Image  # type: ignore
except Exception:
	# Defer import errors until OCR is actually needed
	fitz = None  # type: ignore
	pytesseract = None  # type: ignore
	Image = None  # type: ignore

logger = logging.getLogger(__name__)

MIME_TXT = "text/plain"
MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
IMAGE_MIME_TYPES = ("image/png", "image/jpeg")

ALLOWED_MIME_TYPES = (MIME_PDF, MIME_DOCX, MIME_PPTX, MIME_TXT) + IMAGE_MIME_TYPES

OCR_MISSING = (
	"OCR dependencies not installed. Install system package 'tesseract-ocr' "
	"and Python packages 'pytesseract', 'PyMuPDF' and 'Pillow'"
)


@dataclass
class ExtractionResult:
	text: str
	method: str


def _require_text(text: str | None, message: str) -> str:
	if not text or not text.strip():
		raise ExtractionError(message)
	return text


def extract_pdf_pypdf(path: Path) -> str:
	try:
		reader = PyPDF2.PdfReader(str(path))
		if reader.is_encrypted:
			raise ExtractionError("PDF is password-protected and cannot be read")
		pages = [page.extract_text() or "" for page in reader.pages]
	except FileNotDecryptedError as e:
		raise ExtractionError("PDF is password-protected and cannot be read") from e
	except PdfReadError as e:
		raise ExtractionError("Invalid or corrupted PDF file") from e
	except ExtractionError:
		raise
	except Exception as e:
		raise ExtractionError(f"Failed to extract text from PDF: {e}") from e
	logger.info("PyPDF2 read %d page(s) from %s", len(pages), path.name)
	return _require_text(
		"\n".join(pages),
		"PDF contains no extractable text. This might be a scanned document or image-based PDF.",
	)


def extract_pdf_plumber(path: Path) -> str:
	try:
		with pdfplumber.open(str(path)) as pdf:
			pages = [page.extract_text() or "" for page in pdf.pages]
	except Exception as e:
		raise ExtractionError(f"Failed to parse PDF: {e}") from e
	return _require_text("\n\n".join(pages), "PDF contains no extractable text")


def _ocr_image(image) -> str:
	return pytesseract.image_to_string(image)


def extract_pdf_ocr(path: Path) -> str:
	if fitz is None or pytesseract is None or Image is None:
		raise ExtractionError(OCR_MISSING)
	zoom = settings.ocr_render_zoom
	chunks: List[str] = []
	try:
		with fitz.open(str(path)) as doc:
			logger.info("OCR over %d page(s) of %s", doc.page_count, path.name)
			for page in doc:
				pix = page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
				img = Image.open(BytesIO(pix.tobytes("png")))
				chunks.append(_ocr_image(img))
	except Exception as e:
		raise ExtractionError(f"OCR extraction failed: {e}") from e
	text = "\n\n".join(chunks)
	if len(text.strip()) < settings.ocr_min_chars:
		raise ExtractionError("OCR extracted very little text - PDF might be blank or unreadable")
	return text


PDF_STRATEGIES: List[Tuple[str, Callable[[Path], str]]] = [
	("pypdf", extract_pdf_pypdf),
	("pdfplumber", extract_pdf_plumber),
	("ocr", extract_pdf_ocr),
]


def extract_pdf(path: Path) -> ExtractionResult:
	first_error: ExtractionError | None = None
	for method, strategy in PDF_STRATEGIES:
		try:
			text = strategy(path)
		except ExtractionError as e:
			logger.warning("PDF extraction via %s failed for %s: %s", method, path.name, e)
			if first_error is None:
				first_error = e
			continue
		logger.info("PDF extraction via %s succeeded for %s (%d chars)", method, path.name, len(text))
		return ExtractionResult(text=text, method=method)
	raise ExtractionError(f"All PDF extraction methods failed. Original error: {first_error}")


def extract_docx(path: Path) -> str:
	try:
		doc = Document(str(path))
	except Exception as e:
		raise ExtractionError(f"Failed to read DOCX file: {e}") from e
	lines = [p.text for p in doc.paragraphs if p.text.strip()]
	for table in doc.tables:
		for row in table.rows:
			cells = [c.text.strip() for c in row.cells if c.text.strip()]
			if cells:
				lines.append(" | ".join(cells))
	return _require_text("\n".join(lines), "DOCX file contains no text")


def extract_image(path: Path) -> str:
	if pytesseract is None or Image is None:
		raise ExtractionError(OCR_MISSING)
	try:
		with Image.open(str(path)) as img:
			text = _ocr_image(img)
	except Exception as e:
		raise ExtractionError(f"Failed to OCR image: {e}") from e
	return _require_text(text, "No text recognised in image")


def extract_text(path: Path, mime_type: str | None) -> ExtractionResult:
	path = Path(path)
	if mime_type == MIME_TXT:
		return ExtractionResult(
			text=_require_text(path.read_text(encoding="utf-8", errors="replace"), "Text file is empty"),
			method="text",
		)
	if mime_type == MIME_PDF:
		return extract_pdf(path)
	if mime_type == MIME_DOCX:
		return ExtractionResult(text=extract_docx(path), method="docx")
	if mime_type in IMAGE_MIME_TYPES:
		return ExtractionResult(text=extract_image(path), method="image_ocr")
	if mime_type == MIME_PPTX:
		raise ExtractionError("PPTX file type not yet supported")
	raise ExtractionError("Unsupported file type")
