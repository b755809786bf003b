"""
End-to-end invoice processing: extract, enrich, fill, persist.

One call handles one upload under a fresh invoice id. The provider selection
is snapshotted once at entry so every model call of the request (extraction,
template read) goes to the same provider even if the default changes meanwhile.
"""

import asyncio
import time
import uuid
from enum import Enum
from pathlib import Path

from loguru import logger
from pydantic import BaseModel

from ..core.errors import TemplateNotFound, UnsupportedFormat
from . import llm
from .document_preparer import is_excel, is_image, is_pdf
from .enricher import enrich_invoice_data
from .extractor import extract
from .filler import fill_default_template, fill_dynamic_template, fill_excel_template
from .invoice_types import ExtractionFailure
from .pdf_renderer import PdfRenderer
from .pdf_templater import generate_invoice_pdf, sanitize_template_name
from .storage.invoice_store import InvoiceStore, invoice_store
from .template_reader import read_template_image


class FillStrategy(str, Enum):
    PDF_TEMPLATE = "pdf_template"
    EXCEL_LABELS = "excel_labels"
    DYNAMIC = "dynamic"
    DEFAULT = "default"


class ProcessOutcome(BaseModel):
    invoice_id: str
    success: bool
    provider: str
    model: str
    strategy: FillStrategy | None = None
    data: dict | None = None
    output_path: Path | None = None
    extraction_failure: ExtractionFailure | None = None
    # template-read failure
    error: str | None = None
    raw_response: str = ""


def select_strategy(template_name: str | None, form_mime: str | None) -> FillStrategy:
    """Template name beats form upload; an Excel form is label-matched, an image/PDF form is read by the model"""
    if template_name:
        return FillStrategy.PDF_TEMPLATE
    if not form_mime:
        return FillStrategy.DEFAULT
    if is_excel(form_mime):
        return FillStrategy.EXCEL_LABELS
    if is_image(form_mime) or is_pdf(form_mime):
        return FillStrategy.DYNAMIC
    raise UnsupportedFormat(f"Unsupported template type: {form_mime}. Use an image, a PDF or an .xlsx workbook.")


async def process_invoice(
    raw_path: str | Path,
    raw_mime: str,
    form_path: str | Path | None = None,
    form_mime: str | None = None,
    template_name: str | None = None,
    selection: llm.ProviderSelection | None = None,
    renderer: PdfRenderer | None = None,
    store: InvoiceStore | None = None,
) -> ProcessOutcome:
    """
    Process one invoice upload.

    Uploaded files are left in place; deleting them is the caller's job.

    Raises:
        UnsupportedFormat: form type cannot drive any fill strategy
        TemplateNotFound: selected workbook or HTML template is missing
        EmptyWorkbook: uploaded workbook has no worksheets
    """
    selection = llm.current_selection(selection)
    store = store or invoice_store
    invoice_id = str(uuid.uuid4())
    started = time.monotonic()

    with logger.contextualize(invoice_id=invoice_id):
        strategy = select_strategy(template_name, form_mime if form_path else None)
        safe_name = None
        if strategy is FillStrategy.PDF_TEMPLATE:
            safe_name = sanitize_template_name(template_name)
            if not safe_name:
                raise TemplateNotFound(f'No template named "{template_name}"')
        logger.info(
            "Processing invoice",
            provider=selection.provider,
            model=selection.model,
            raw_type=raw_mime,
            form_type=form_mime,
            strategy=strategy.value,
        )

        outcome = ProcessOutcome(
            invoice_id=invoice_id,
            success=False,
            provider=selection.provider,
            model=selection.model,
            strategy=strategy,
        )

        extraction = await extract(raw_path, raw_mime, selection)
        logger.info("Extraction finished", success=extraction.success, elapsed_ms=int((time.monotonic() - started) * 1000))
        if not extraction.success:
            outcome.extraction_failure = extraction
            return outcome

        record = enrich_invoice_data(extraction.data)

        if strategy is FillStrategy.PDF_TEMPLATE:
            output_path = store.artifact_path(invoice_id, ".pdf")
            await generate_invoice_pdf(record, safe_name, output_path, renderer=renderer)
        elif strategy is FillStrategy.EXCEL_LABELS:
            output_path = store.artifact_path(invoice_id, ".xlsx")
            await asyncio.to_thread(fill_excel_template, record, form_path, output_path)
        elif strategy is FillStrategy.DYNAMIC:
            template = await read_template_image(form_path, form_mime, selection)
            if not template.success:
                logger.warning("Template read failed", error=template.error)
                outcome.error = template.error
                outcome.raw_response = template.raw_response
                return outcome
            output_path = store.artifact_path(invoice_id, ".xlsx")
            await asyncio.to_thread(fill_dynamic_template, record, template.structure, output_path)
        else:
            output_path = store.artifact_path(invoice_id, ".xlsx")
            await asyncio.to_thread(fill_default_template, record, output_path)

        data = record.to_json_dict()
        store.save_json(invoice_id, data)
        logger.info(
            "Invoice processed",
            output=output_path.name,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )

        outcome.success = True
        outcome.data = data
        outcome.output_path = output_path
        return outcome
