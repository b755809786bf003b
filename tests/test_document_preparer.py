import asyncio

import pytest

from invoice_agent.core.errors import UnsupportedFormat
from invoice_agent.services.document_preparer import (
    cleanup_file,
    get_supported_formats,
    image_data_uri,
    is_excel,
    is_supported,
    prepare,
)
from invoice_agent.services.invoice_types import ImageDocument, TextDocument


def test_type_predicates():
    assert is_supported("application/pdf")
    assert is_supported("image/webp")
    assert not is_supported("text/plain")
    assert is_excel("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")
    assert not is_excel("application/vnd.ms-excel")


def test_supported_formats_lists_xlsx_templates():
    formats = get_supported_formats()
    assert ".pdf" in formats["documents"]
    assert ".xlsx" in formats["templates"]
    assert formats["maxSizeMB"] > 0


def test_text_pdf_becomes_text(text_pdf):
    document = asyncio.run(prepare(text_pdf, "application/pdf"))
    assert isinstance(document, TextDocument)
    assert "INV-2024-001" in document.content


def test_scanned_pdf_becomes_png(scanned_pdf):
    document = asyncio.run(prepare(scanned_pdf, "application/pdf"))
    assert isinstance(document, ImageDocument)
    assert document.mime_type == "image/png"
    assert document.data_uri.startswith("data:image/png;base64,")


def test_image_is_inlined(png_file):
    document = asyncio.run(prepare(png_file, "image/png"))
    assert document.kind == "image"
    assert document.data_uri.startswith("data:image/png;base64,")


def test_unsupported_type_raises(tmp_path):
    path = tmp_path / "a.txt"
    path.write_text("x")
    with pytest.raises(UnsupportedFormat):
        asyncio.run(prepare(path, "text/plain"))


def test_corrupt_pdf_raises_unsupported(tmp_path):
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"this is not a pdf at all")
    with pytest.raises(UnsupportedFormat):
        asyncio.run(prepare(path, "application/pdf"))


def test_image_data_uri_rasterises_pdf(text_pdf):
    uri, mime = asyncio.run(image_data_uri(text_pdf, "application/pdf"))
    assert mime == "image/png"
    assert uri.startswith("data:image/png;base64,")


def test_cleanup_file(tmp_path):
    path = tmp_path / "upload.pdf"
    path.write_bytes(b"%PDF")
    cleanup_file(path)
    assert not path.exists()
    # already gone / nothing to do
    cleanup_file(path)
    cleanup_file(None)
