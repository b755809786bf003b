"""
Turns an uploaded invoice into something a chat model can read.

Images are inlined as base64 data URIs. PDFs with a usable text layer are
sent as text (cheaper and more accurate than vision); scanned PDFs have
their first page rasterised and are sent as an image.
"""

import asyncio
import base64
from pathlib import Path

import fitz
from loguru import logger

from ..core.config import settings
from ..core.errors import UnsupportedFormat
from .invoice_types import ImageDocument, PreparedDocument, TextDocument

IMAGE_TYPES = ["image/jpeg", "image/png", "image/webp", "image/gif", "image/tiff"]
PDF_TYPES = ["application/pdf"]
EXCEL_TYPES = ["application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"]
LEGACY_EXCEL_TYPES = ["application/vnd.ms-excel"]

SUPPORTED_TYPES = IMAGE_TYPES + PDF_TYPES


def is_supported(mime_type: str | None) -> bool:
    return mime_type in SUPPORTED_TYPES


def is_image(mime_type: str | None) -> bool:
    return mime_type in IMAGE_TYPES


def is_pdf(mime_type: str | None) -> bool:
    return mime_type in PDF_TYPES


def is_excel(mime_type: str | None) -> bool:
    return mime_type in EXCEL_TYPES


def get_supported_formats() -> dict:
    return {
        "images": [".jpg", ".jpeg", ".png", ".webp", ".gif", ".tiff"],
        "documents": [".pdf"],
        "templates": [".jpg", ".jpeg", ".png", ".webp", ".pdf", ".xlsx"],
        "maxSizeMB": settings.max_file_size_mb,
    }


def file_to_data_uri(file_path: str | Path, mime_type: str) -> str:
    encoded = base64.b64encode(Path(file_path).read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def _open_pdf(file_path: str | Path) -> fitz.Document:
    try:
        return fitz.open(str(file_path))
    except RuntimeError as e:
        raise UnsupportedFormat(f"Not a readable PDF: {Path(file_path).name}") from e


def extract_pdf_text(file_path: str | Path) -> str:
    """Text layer of every page, joined in page order"""
    with _open_pdf(file_path) as doc:
        return "\n".join(page.get_text("text") or "" for page in doc)


def pdf_first_page_data_uri(file_path: str | Path, dpi: int | None = None) -> str:
    dpi = dpi or settings.pdf_render_dpi
    with _open_pdf(file_path) as doc:
        if doc.page_count == 0:
            raise UnsupportedFormat(f"PDF has no pages: {Path(file_path).name}")
        matrix = fitz.Matrix(dpi / 72.0, dpi / 72.0)
        pix = doc[0].get_pixmap(matrix=matrix, alpha=False)
        png = pix.tobytes("png")
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


async def image_data_uri(file_path: str | Path, mime_type: str) -> tuple[str, str]:
    """Data URI for a vision model: images as-is, PDFs rasterised (first page)"""
    if is_image(mime_type):
        return await asyncio.to_thread(file_to_data_uri, file_path, mime_type), mime_type
    if is_pdf(mime_type):
        logger.info("Rasterising first PDF page for vision input", file=Path(file_path).name)
        return await asyncio.to_thread(pdf_first_page_data_uri, file_path), "image/png"
    raise UnsupportedFormat(f"Unsupported file type: {mime_type}")


async def prepare(file_path: str | Path, mime_type: str) -> PreparedDocument:
    """
    Prepare a file for LLM processing.

    Returns:
        TextDocument for text-based PDFs, ImageDocument for images and scanned PDFs

    Raises:
        UnsupportedFormat: MIME type is neither an accepted image nor a PDF
    """
    if is_image(mime_type):
        data_uri = await asyncio.to_thread(file_to_data_uri, file_path, mime_type)
        return ImageDocument(data_uri=data_uri, mime_type=mime_type)

    if is_pdf(mime_type):
        text = await asyncio.to_thread(extract_pdf_text, file_path)
        if text and len(text.strip()) > settings.pdf_text_min_chars:
            logger.debug("Using PDF text layer", chars=len(text.strip()))
            return TextDocument(content=text, mime_type=mime_type)

        logger.info(
            "PDF has no usable text layer, rendering first page as image",
            file=Path(file_path).name,
            text_chars=len(text.strip()) if text else 0,
        )
        data_uri = await asyncio.to_thread(pdf_first_page_data_uri, file_path)
        return ImageDocument(data_uri=data_uri, mime_type="image/png")

    raise UnsupportedFormat(f"Unsupported file type: {mime_type}")


def cleanup_file(file_path: str | Path | None) -> None:
    """Delete an uploaded file; failures are logged, never raised"""
    if not file_path:
        return
    try:
        Path(file_path).unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Failed to clean up upload", path=str(file_path), error=str(e))
