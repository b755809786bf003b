"""
Template structure reader: form image -> TemplateStructure via a vision model.

There is deliberately no repair ladder here. A structure that does not parse
on the first attempt is reported as a failure, since it would drive cell
writes at positions nobody can vouch for.
"""

from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from ..core.errors import InvoiceAgentError, ModelCannotSeeImages
from ..models.template import TemplateStructure
from . import llm
from .document_preparer import image_data_uri
from .invoice_types import TemplateReadResult
from .json_repair import parse_direct, strip_code_fences

TEMPLATE_READ_PROMPT = """You are an expert at analyzing invoice/form templates.

Look at this form/invoice template image and identify:
1. All field labels and their positions (which row/column they appear in)
2. The overall layout structure (header, body/line items, footer)
3. Any formatting rules visible (date formats, number formats)

Return ONLY valid JSON in this exact format (no markdown, no explanation):
{
  "title": "Name of the form if visible",
  "header_fields": [
    {"label": "Field Label", "key": "snake_case_key", "row": 1, "col": "B", "type": "string|number|date"}
  ],
  "line_items_start_row": 10,
  "line_item_columns": [
    {"label": "Column Header", "key": "snake_case_key", "col": "A", "type": "string|number"}
  ],
  "footer_fields": [
    {"label": "Field Label", "key": "snake_case_key", "row": 25, "col": "D", "type": "number"}
  ]
}

Rules:
- Use Excel-style column references (A, B, C, etc.)
- Use approximate row numbers
- key should be a snake_case version of the label
- Only include fields you can actually see in the template"""


async def read_template_image(
    file_path: str | Path,
    mime_type: str,
    selection: llm.ProviderSelection | None = None,
) -> TemplateReadResult:
    """
    Ask the model where the fields of a form image live.

    PDF forms are rasterised (first page) before the call. Entries with an
    invalid row/column are dropped by TemplateStructure validation.
    """
    selection = llm.current_selection(selection)

    try:
        if not llm.is_vision_capable(selection.model):
            raise ModelCannotSeeImages(
                f'Model "{selection.model}" cannot read images. Reading a form layout needs a '
                "vision-capable model; switch models in Settings."
            )
        data_uri, _ = await image_data_uri(file_path, mime_type)
        logger.info("Reading template structure", provider=selection.provider, model=selection.model)
        raw_reply = await llm.invoke(selection, llm.user_message(TEMPLATE_READ_PROMPT, image_data_uri=data_uri))
    except InvoiceAgentError as e:
        logger.warning("Template read aborted", kind=e.kind.value, error=e.message)
        return TemplateReadResult(success=False, error=e.message)

    parsed = parse_direct(strip_code_fences(raw_reply))
    if parsed is None:
        logger.warning("Template structure reply was not JSON", raw_chars=len(raw_reply))
        return TemplateReadResult(
            success=False,
            error="Failed to parse template structure from AI response",
            raw_response=raw_reply,
        )

    try:
        structure = TemplateStructure.model_validate(parsed)
    except ValidationError as e:
        logger.warning("Template structure did not validate", errors=e.error_count())
        return TemplateReadResult(success=False, error=f"Invalid template structure: {e}", raw_response=raw_reply)

    logger.info(
        "Template structure read",
        header_fields=len(structure.header_fields),
        line_item_columns=len(structure.line_item_columns),
        footer_fields=len(structure.footer_fields),
    )
    return TemplateReadResult(success=True, structure=structure, raw_response=raw_reply)
