"""
HTML/PDF output: invoice record -> Jinja2 HTML template -> PDF bytes.

Templates use human-facing variable names (client_name, rate, gst_rate ...)
rather than schema names. normalize_for_template() defines that namespace;
the template generator prompt lists exactly the same names.
"""

import asyncio
import re
from datetime import date
from pathlib import Path

from jinja2 import FileSystemLoader, select_autoescape
from jinja2.sandbox import SandboxedEnvironment
from loguru import logger

from ..core.config import settings
from ..core.errors import TemplateNotFound
from ..models.invoice import InvoiceRecord
from .pdf_renderer import PdfRenderer, pdf_renderer

TEMPLATE_SUFFIX = ".html"
DEFAULT_TEMPLATE_NAME = "default"

_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def fmt_amount(value) -> str:
    return f"{float(value):.2f}" if value is not None else ""


def format_date(value) -> str:
    if not value:
        return ""
    try:
        return date.fromisoformat(str(value)[:10]).strftime("%d/%m/%Y")
    except ValueError:
        return str(value)


def format_currency(amount, symbol: str = "") -> str:
    if amount is None or amount == "":
        return ""
    try:
        return f"{symbol}{float(amount):,.2f}"
    except (TypeError, ValueError):
        return str(amount)


def _percent(value) -> str:
    if value is None:
        return ""
    return f"{value:g}%" if isinstance(value, (int, float)) else str(value)


def normalize_for_template(record: InvoiceRecord) -> dict:
    """Flatten the record into the template variable namespace"""
    d = record.model_dump()
    vendor = d.get("vendor") or {}
    bill_to = d.get("bill_to") or {}

    line_items = []
    for i, item in enumerate(d.get("line_items") or []):
        line_items.append({
            **item,
            "sl_no": item.get("sl_no") if item.get("sl_no") is not None else i + 1,
            "description": item.get("description") or "",
            "hsn_sac": item.get("hsn_sac") or "",
            "gst_rate": _percent(item.get("tax_rate")),
            "quantity": item.get("quantity") if item.get("quantity") is not None else "",
            "rate": fmt_amount(item.get("unit_price")),
            "per": item.get("unit") or "pcs",
            "disc_percent": item.get("discount") if item.get("discount") is not None else "",
            "amount": fmt_amount(item.get("amount")),
        })

    hsn_summary = []
    for row in d.get("hsn_summary") or []:
        if not isinstance(row, dict):
            continue
        hsn_summary.append({
            **row,
            "hsn_sac": row.get("hsn_sac") or "",
            "taxable_value": fmt_amount(row.get("taxable_value")),
            "cgst_rate": _percent(row.get("cgst_rate")),
            "cgst_amount": fmt_amount(row.get("cgst_amount")),
            "sgst_rate": _percent(row.get("sgst_rate")),
            "sgst_amount": fmt_amount(row.get("sgst_amount")),
            "total_tax": fmt_amount(row.get("total_tax")),
        })

    half_tax = d["tax_amount"] / 2 if d.get("tax_amount") else None

    return {
        # raw passthrough so templates can reach any extracted field
        **d,
        "vendor_name": vendor.get("name") or "",
        "vendor_address": vendor.get("address") or "",
        "vendor_gstin": vendor.get("gstin") or "",
        "vendor_phone": vendor.get("phone") or "",
        "vendor_email": vendor.get("email") or "",
        "client_name": bill_to.get("name") or "",
        "client_address": bill_to.get("address") or "",
        "client_gstin": bill_to.get("gstin") or "",
        "client_state": bill_to.get("state") or d.get("bill_to_state") or "",
        "client_pan": bill_to.get("pan") or d.get("buyer_pan") or "",
        "invoice_number": d.get("invoice_number") or "",
        "invoice_date": d.get("invoice_date") or "",
        "due_date": d.get("due_date") or "",
        "delivery_note": d.get("delivery_note") or "",
        "supplier_ref": d.get("supplier_ref") or "",
        "buyer_order_no": d.get("purchase_order") or d.get("buyer_order_no") or "",
        "despatch_doc_no": d.get("despatch_doc_no") or "",
        "despatch_through": d.get("despatch_through") or "",
        "destination": d.get("destination") or "",
        "terms_of_delivery": d.get("terms_of_delivery") or "",
        "payment_terms": d.get("payment_terms") or "",
        "subtotal": fmt_amount(d.get("subtotal")),
        "discount_total": fmt_amount(d.get("discount_total")),
        "sgst_amount": fmt_amount(d.get("sgst_amount") or half_tax),
        "cgst_amount": fmt_amount(d.get("cgst_amount") or half_tax),
        "igst_amount": fmt_amount(d.get("igst_amount")),
        "tax_amount": fmt_amount(d.get("tax_amount")),
        "round_off": fmt_amount(d.get("round_off") or 0),
        "total_amount": fmt_amount(d.get("total_amount")),
        "amount_in_words": d.get("amount_in_words") or d.get("total_in_words") or "",
        "tax_amount_in_words": d.get("tax_amount_in_words") or "",
        "line_items": line_items,
        "hsn_summary": hsn_summary,
        "format_date": format_date,
        "format_currency": format_currency,
    }


def resolve_template_path(name_or_path: str | None) -> Path:
    """Template name ("standard_gst") under TEMPLATES_DIR, or an explicit path"""
    if not name_or_path:
        return settings.templates_dir / f"{DEFAULT_TEMPLATE_NAME}{TEMPLATE_SUFFIX}"
    looks_like_path = "/" in name_or_path or "\\" in name_or_path or name_or_path.endswith(TEMPLATE_SUFFIX)
    if looks_like_path:
        path = Path(name_or_path)
        return path if path.suffix == TEMPLATE_SUFFIX else path.with_suffix(TEMPLATE_SUFFIX)
    return settings.templates_dir / f"{sanitize_template_name(name_or_path)}{TEMPLATE_SUFFIX}"


def render_template_html(template_path: Path, context: dict) -> str:
    """
    Render a template file with the normalized context.

    User-saved and generated templates run sandboxed; unsafe attribute access
    raises jinja2 SecurityError.
    """
    env = SandboxedEnvironment(
        loader=FileSystemLoader(str(template_path.parent)),
        autoescape=select_autoescape(["html", "htm"]),
    )
    return env.get_template(template_path.name).render(**context)


async def generate_invoice_pdf(
    record: InvoiceRecord,
    name_or_path: str | None = DEFAULT_TEMPLATE_NAME,
    output_path: str | Path | None = None,
    renderer: PdfRenderer | None = None,
) -> bytes | Path:
    """
    Render the record through an HTML template into a PDF.

    Returns:
        output_path when one is given, otherwise the PDF bytes

    Raises:
        TemplateNotFound: no template file for name_or_path
    """
    template_path = resolve_template_path(name_or_path)
    if not template_path.exists():
        raise TemplateNotFound(f"Template not found at {template_path}")

    html = render_template_html(template_path, normalize_for_template(record))
    pdf_bytes = await (renderer or pdf_renderer).render_html(html)

    if output_path is None:
        return pdf_bytes

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(output_path.write_bytes, pdf_bytes)
    logger.info("Rendered PDF invoice", template=template_path.stem, output=output_path.name, size=len(pdf_bytes))
    return output_path


def list_templates() -> list[str]:
    templates_dir = settings.templates_dir
    if not templates_dir.exists():
        templates_dir.mkdir(parents=True, exist_ok=True)
        return []
    return sorted(p.stem for p in templates_dir.glob(f"*{TEMPLATE_SUFFIX}"))


def sanitize_template_name(name: str) -> str:
    """Keep only letters, digits, dash and underscore: "Acme Co." -> "AcmeCo" """
    return _UNSAFE_NAME_CHARS.sub("", name or "")


def save_template(name: str, html: str) -> tuple[str, Path]:
    """
    Persist an HTML template under a sanitized name.

    Raises:
        ValueError: the name has no safe characters left
    """
    safe_name = sanitize_template_name(name)
    if not safe_name:
        raise ValueError("Template name must contain letters, digits, '-' or '_'")
    settings.templates_dir.mkdir(parents=True, exist_ok=True)
    path = settings.templates_dir / f"{safe_name}{TEMPLATE_SUFFIX}"
    path.write_text(html, encoding="utf-8")
    logger.info("Saved HTML template", name=safe_name)
    return safe_name, path
