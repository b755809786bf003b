from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..core.config import settings
from ..core.errors import TRANSPORT_KINDS, ErrorKind, InvoiceAgentError
from ..core.logging import setup_logging
from ..scripts.generate_template import ensure_default_template
from ..services.pdf_renderer import pdf_renderer
from .deps import ErrorResponse
from .routers import config, health, invoice, templates

logger = setup_logging()

ERROR_STATUS = {
    ErrorKind.UNSUPPORTED_FORMAT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNKNOWN_PROVIDER: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MODEL_CANNOT_SEE_IMAGES: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.UNPARSEABLE_RESPONSE: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.EMPTY_WORKBOOK: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.TEMPLATE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVOICE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def status_for(kind: ErrorKind) -> int:
    if kind in TRANSPORT_KINDS:
        return status.HTTP_502_BAD_GATEWAY
    return ERROR_STATUS.get(kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_default_template()
    logger.info("Invoice agent started", app=settings.app_name, env=settings.app_env)
    yield
    await pdf_renderer.shutdown()


app = FastAPI(title="Invoice Agent", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error("Validation error", errors=str(exc.errors()), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"success": False, "error": "Invalid request", "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(InvoiceAgentError)
async def invoice_agent_error_handler(request: Request, exc: InvoiceAgentError):
    code = status_for(exc.kind)
    logger.warning("Request failed", path=request.url.path, kind=exc.kind.value, status=code, error=exc.message)
    return JSONResponse(status_code=code, content=ErrorResponse(error=exc.message, kind=exc.kind.value).model_dump())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error("Unhandled error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": str(exc) or "Internal server error"},
    )


# CORS_ORIGINS can be set in .env as comma-separated list
allowed_origins = [origin.strip() for origin in settings.cors_origins.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(invoice.router)
app.include_router(config.router)
app.include_router(templates.router)
