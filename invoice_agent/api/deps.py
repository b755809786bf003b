import time
import uuid
from pathlib import Path

from fastapi import HTTPException, UploadFile
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.config import settings
from ..services.document_preparer import cleanup_file
from ..services.pdf_renderer import PdfRenderer, pdf_renderer

UPLOAD_CHUNK_BYTES = 1024 * 1024


class ApiModel(BaseModel):
    """Snake_case in Python, camelCase on the wire"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(ApiModel):
    success: bool = False
    error: str
    kind: str | None = None


class ProcessResponse(ApiModel):
    success: bool = True
    invoice_id: str
    data: dict
    download: str
    json_link: str = Field(alias="json")


class ProcessFailureResponse(ApiModel):
    success: bool = False
    error: str
    kind: str | None = None
    parse_error: str | None = None
    raw_response_snippet: str | None = None
    provider: str
    model: str


class InvoiceDataResponse(ApiModel):
    success: bool = True
    invoice_id: str
    data: dict


class ProvidersResponse(ApiModel):
    success: bool = True
    active_provider: str
    active_model: str
    available_providers: list[str]


class ProviderSelectionRequest(ApiModel):
    provider: str | None = None
    model: str | None = None


class ConnectionTestResponse(ApiModel):
    success: bool
    status: str  # connected | no_response | error
    provider: str
    model: str
    api_key: str
    reply: str | None = None
    error: str | None = None


class TemplateListResponse(ApiModel):
    success: bool = True
    templates: list[str]


class TemplateHtmlRequest(ApiModel):
    name: str | None = None
    html: str | None = None


class TemplateSaveResponse(ApiModel):
    success: bool = True
    name: str
    path: str


class GeneratedTemplateResponse(ApiModel):
    success: bool = True
    html: str


def get_pdf_renderer() -> PdfRenderer:
    """Shared renderer; tests swap it through app.dependency_overrides"""
    return pdf_renderer


async def save_upload(upload: UploadFile, prefix: str = "") -> Path:
    """
    Stream an upload into UPLOAD_DIR under a unique name.

    Raises:
        HTTPException(413): the file exceeds MAX_FILE_SIZE_MB
    """
    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename or "").suffix.lower()
    path = upload_dir / f"{prefix}{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{suffix}"

    limit = settings.max_file_size_mb * 1024 * 1024
    size = 0
    too_large = False
    with path.open("wb") as out:
        while chunk := await upload.read(UPLOAD_CHUNK_BYTES):
            size += len(chunk)
            if size > limit:
                too_large = True
                break
            out.write(chunk)

    if too_large:
        cleanup_file(path)
        raise HTTPException(status_code=413, detail=f"File too large. Max size: {settings.max_file_size_mb}MB")
    return path
