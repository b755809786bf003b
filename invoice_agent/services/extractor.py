"""
Extraction engine: prepared document -> validated InvoiceRecord.

Models often wrap JSON in prose or markdown despite instructions, so the
reply goes through the bounded repair ladder in json_repair: two cheap local
passes, then one rescue round-trip, then two more local passes on the rescue
reply. Provider failures are classified and returned immediately; they never
enter the ladder.
"""

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from ..core.config import settings
from ..core.errors import ErrorKind, InvoiceAgentError, ModelCannotSeeImages
from ..models.invoice import INVOICE_SCHEMA, InvoiceRecord
from . import llm
from .document_preparer import prepare
from .invoice_types import ExtractionFailure, ExtractionResult, ExtractionSuccess, ImageDocument
from .json_repair import RepairState, TERMINAL_STATES, advance, needs_rescue_reply

EXTRACTION_PROMPT = f"""You are an expert invoice data extraction AI.
Analyze the provided invoice and extract ALL available information.

Return ONLY valid JSON matching this exact schema (no markdown, no explanation):

{json.dumps(INVOICE_SCHEMA, indent=2)}

Rules:
- Extract every field you can find in the invoice
- Use null for fields not present in the invoice
- Dates must be in YYYY-MM-DD format
- Numbers must be actual numbers, not strings
- Currency should be a 3-letter code (INR, USD, EUR, etc.)
- Line items must be an array even if there's only one item
- Do NOT invent or hallucinate data - only extract what is visible
- Return ONLY the JSON object, nothing else. Your reply must start with {{ and end with }}"""

RESCUE_PROMPT = f"""Your previous answer was not valid JSON. Convert it into a single JSON object
matching this schema. Use null for anything that is missing.

{json.dumps(INVOICE_SCHEMA, indent=2)}

Reply with the JSON object only: no markdown fences, no commentary.

--- PREVIOUS ANSWER ---
"""


def build_extraction_messages(document) -> list[llm.Message]:
    if isinstance(document, ImageDocument):
        return llm.user_message(EXTRACTION_PROMPT, image_data_uri=document.data_uri)
    return llm.user_message(f"{EXTRACTION_PROMPT}\n\n--- INVOICE TEXT ---\n{document.content}")


def build_rescue_messages(raw_reply: str) -> list[llm.Message]:
    return llm.user_message(RESCUE_PROMPT + raw_reply[: settings.rescue_prompt_max_chars])


def _failure(kind: ErrorKind, error: str, raw: str = "", parse_error: str | None = None) -> ExtractionFailure:
    return ExtractionFailure(
        error_kind=kind,
        error=error,
        parse_error=parse_error,
        raw_response=raw[: settings.raw_snippet_max_chars],
    )


async def run_repair_ladder(raw_reply: str, selection: llm.ProviderSelection) -> tuple[dict | None, str | None]:
    """
    Drive the repair state machine over a reply.

    Returns:
        (parsed object or None, rescue reply text if a rescue call was made)

    Raises:
        ProviderError: the rescue call itself failed
    """
    state = RepairState.DIRECT_PARSE
    rescue_reply: str | None = None
    parsed = None

    while state not in TERMINAL_STATES:
        if needs_rescue_reply(state) and rescue_reply is None:
            logger.info("Reply was not parseable JSON, issuing rescue call", raw_chars=len(raw_reply))
            rescue_reply = await llm.invoke(selection, build_rescue_messages(raw_reply))

        text = rescue_reply if needs_rescue_reply(state) else raw_reply
        previous = state
        state, parsed = advance(state, text or "")
        logger.debug("Repair pass finished", pass_name=previous.value, next_state=state.value)

    return parsed, rescue_reply


async def extract(
    file_path: str | Path,
    mime_type: str,
    selection: llm.ProviderSelection | None = None,
) -> ExtractionResult:
    """
    Extract invoice data from a file using the selected model.

    Args:
        file_path: path to the uploaded invoice file
        mime_type: MIME type of the file
        selection: provider/model snapshot; defaults to the process-wide selection

    Returns:
        ExtractionSuccess with the validated record, or ExtractionFailure
    """
    selection = llm.current_selection(selection)

    try:
        document = await prepare(file_path, mime_type)
        if isinstance(document, ImageDocument) and not llm.is_vision_capable(selection.model):
            raise ModelCannotSeeImages(
                f'Model "{selection.model}" cannot read images. This invoice needs a vision-capable model '
                "(e.g. gpt-4o, claude-3-5-sonnet, gemini-1.5-flash); switch models in Settings."
            )

        logger.info("Requesting extraction", provider=selection.provider, model=selection.model, input=document.kind)
        raw_reply = await llm.invoke(selection, build_extraction_messages(document))
        parsed, rescue_reply = await run_repair_ladder(raw_reply, selection)
    except InvoiceAgentError as e:
        logger.warning("Extraction aborted", kind=e.kind.value, error=e.message)
        return _failure(e.kind, e.message)

    if parsed is None:
        logger.warning("All repair passes failed", raw_chars=len(raw_reply), rescued=rescue_reply is not None)
        return _failure(
            ErrorKind.UNPARSEABLE_RESPONSE,
            "Failed to parse AI response as JSON",
            raw=raw_reply,
            parse_error="No JSON object found in the reply or in the rescue reply",
        )

    try:
        record = InvoiceRecord.model_validate(parsed)
    except ValidationError as e:
        logger.warning("Parsed JSON does not match the invoice schema", errors=e.error_count())
        return _failure(
            ErrorKind.UNPARSEABLE_RESPONSE,
            "AI response did not match the invoice schema",
            raw=raw_reply,
            parse_error=str(e),
        )

    return ExtractionSuccess(data=record, raw_response=raw_reply)
