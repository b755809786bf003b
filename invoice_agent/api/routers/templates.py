from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.responses import Response

from ...core.errors import UnsupportedFormat
from ...services.document_preparer import cleanup_file, is_image, is_pdf
from ...services.pdf_renderer import PdfRenderer
from ...services.pdf_templater import list_templates, save_template
from ...services.template_generator import generate_html_template
from ..deps import (
    GeneratedTemplateResponse,
    TemplateHtmlRequest,
    TemplateListResponse,
    TemplateSaveResponse,
    get_pdf_renderer,
    save_upload,
)

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("", response_model=TemplateListResponse)
def get_templates():
    return TemplateListResponse(templates=list_templates())


@router.post("/generate", response_model=GeneratedTemplateResponse)
async def generate(reference_image: UploadFile | None = File(None)):
    """Build an HTML template from a reference invoice image or PDF"""
    if reference_image is None:
        raise HTTPException(status_code=400, detail="No reference image provided")
    mime = reference_image.content_type or ""
    if not (is_image(mime) or is_pdf(mime)):
        raise UnsupportedFormat(f"Unsupported file type: {mime}. Upload an image or a PDF.")

    path = await save_upload(reference_image, prefix="TEMPLATE-")
    try:
        html = await generate_html_template(path, mime)
    finally:
        cleanup_file(path)
    return GeneratedTemplateResponse(html=html)


@router.post("/preview")
async def preview(req: TemplateHtmlRequest, renderer: PdfRenderer = Depends(get_pdf_renderer)):
    """Render raw HTML to a PDF for live preview"""
    if not req.html:
        raise HTTPException(status_code=400, detail="No HTML provided")
    pdf_bytes = await renderer.render_html(req.html)
    return Response(content=pdf_bytes, media_type="application/pdf")


@router.post("/save", response_model=TemplateSaveResponse)
def save(req: TemplateHtmlRequest):
    if not req.name or not req.html:
        raise HTTPException(status_code=400, detail="Name and HTML are required")
    try:
        name, path = save_template(req.name, req.html)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return TemplateSaveResponse(name=name, path=str(path))
