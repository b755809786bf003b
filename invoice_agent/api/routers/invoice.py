from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse, JSONResponse
from loguru import logger

from ...core.config import settings
from ...core.errors import UnsupportedFormat
from ...services.document_preparer import (
    LEGACY_EXCEL_TYPES,
    cleanup_file,
    get_supported_formats,
    is_excel,
    is_supported,
)
from ...services.invoice_processor import process_invoice
from ...services.pdf_renderer import PdfRenderer
from ...services.storage.invoice_store import invoice_store
from ..deps import (
    InvoiceDataResponse,
    ProcessFailureResponse,
    ProcessResponse,
    get_pdf_renderer,
    save_upload,
)

router = APIRouter(prefix="/api/invoice", tags=["invoice"])

MEDIA_TYPES = {
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".pdf": "application/pdf",
}


def _check_raw_type(upload: UploadFile) -> str:
    mime = upload.content_type or ""
    if not is_supported(mime):
        raise UnsupportedFormat(f"Unsupported file type: {mime}. Supported: PDF, JPG, PNG, WebP, GIF, TIFF")
    return mime


def _check_form_type(upload: UploadFile) -> str:
    mime = upload.content_type or ""
    if mime in LEGACY_EXCEL_TYPES:
        raise UnsupportedFormat("Legacy .xls templates are not supported. Save the workbook as .xlsx and upload it again.")
    if not (is_supported(mime) or is_excel(mime)):
        raise UnsupportedFormat(f"Unsupported file type: {mime}. Supported: PDF, JPG, PNG, WebP, GIF, TIFF, XLSX")
    return mime


@router.post("/process", response_model=ProcessResponse, responses={422: {"model": ProcessFailureResponse}})
async def process(
    raw_invoice: UploadFile | None = File(None),
    form_image: UploadFile | None = File(None),
    template_name: str | None = Form(None),
    renderer: PdfRenderer = Depends(get_pdf_renderer),
):
    """
    Extract an invoice and fill the selected output.

    - raw_invoice: the invoice (image or PDF), required
    - form_image: optional layout to fill (image/PDF read by the model, or an .xlsx workbook)
    - template_name: optional saved HTML template; produces a PDF instead of a workbook
    """
    if raw_invoice is None:
        raise HTTPException(status_code=400, detail="No invoice file uploaded. Field name must be 'raw_invoice'.")

    raw_mime = _check_raw_type(raw_invoice)
    form_mime = _check_form_type(form_image) if form_image is not None else None

    saved: list[Path] = []
    try:
        raw_path = await save_upload(raw_invoice)
        saved.append(raw_path)
        form_path = None
        if form_image is not None:
            form_path = await save_upload(form_image, prefix="FORM-")
            saved.append(form_path)

        outcome = await process_invoice(
            raw_path,
            raw_mime,
            form_path=form_path,
            form_mime=form_mime,
            template_name=template_name or None,
            renderer=renderer,
        )
    finally:
        for path in saved:
            cleanup_file(path)

    if outcome.extraction_failure is not None:
        failure = outcome.extraction_failure
        body = ProcessFailureResponse(
            error=failure.error,
            kind=failure.error_kind.value,
            parse_error=failure.parse_error,
            raw_response_snippet=failure.raw_response[: settings.raw_snippet_max_chars],
            provider=outcome.provider,
            model=outcome.model,
        )
        return JSONResponse(status_code=422, content=body.model_dump(by_alias=True))

    if not outcome.success:
        body = ProcessFailureResponse(
            error=outcome.error or "Template processing failed",
            raw_response_snippet=outcome.raw_response[: settings.raw_snippet_max_chars],
            provider=outcome.provider,
            model=outcome.model,
        )
        return JSONResponse(status_code=422, content=body.model_dump(by_alias=True))

    return ProcessResponse(
        invoice_id=outcome.invoice_id,
        data=outcome.data,
        download=f"/api/invoice/{outcome.invoice_id}/download",
        json_link=f"/api/invoice/{outcome.invoice_id}",
    )


@router.get("/formats/supported")
def supported_formats():
    return {"success": True, "formats": get_supported_formats()}


@router.get("/{invoice_id}", response_model=InvoiceDataResponse)
def get_invoice(invoice_id: str):
    """Extracted JSON of a processed invoice (404 when unknown)"""
    return InvoiceDataResponse(invoice_id=invoice_id, data=invoice_store.load_json(invoice_id))


@router.get("/{invoice_id}/download")
def download_invoice(invoice_id: str):
    """Filled workbook or PDF of a processed invoice"""
    path = invoice_store.find_artifact(invoice_id)
    logger.debug("Serving invoice artifact", invoice_id=invoice_id, file=path.name)
    return FileResponse(path, media_type=MEDIA_TYPES.get(path.suffix), filename=path.name)
