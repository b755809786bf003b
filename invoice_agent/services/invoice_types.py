from typing import Literal

from pydantic import BaseModel

from ..core.errors import ErrorKind
from ..models.invoice import InvoiceRecord
from ..models.template import TemplateStructure


class TextDocument(BaseModel):
    kind: Literal["text"] = "text"
    content: str
    mime_type: str


class ImageDocument(BaseModel):
    kind: Literal["image"] = "image"
    data_uri: str
    mime_type: str


PreparedDocument = TextDocument | ImageDocument


class ExtractionSuccess(BaseModel):
    success: Literal[True] = True
    data: InvoiceRecord
    raw_response: str  # kept for operator diagnostics only


class ExtractionFailure(BaseModel):
    success: Literal[False] = False
    error_kind: ErrorKind
    error: str
    parse_error: str | None = None
    raw_response: str = ""


ExtractionResult = ExtractionSuccess | ExtractionFailure


class TemplateReadResult(BaseModel):
    success: bool
    structure: TemplateStructure | None = None
    error: str | None = None
    raw_response: str = ""
