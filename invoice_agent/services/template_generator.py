"""
AI template builder: reference invoice image -> Jinja2 HTML template.

The placeholder vocabulary in the prompt is the namespace produced by
pdf_templater.normalize_for_template(); both must change together or
generated templates render empty.
"""

from pathlib import Path

from loguru import logger

from ..core.config import settings
from ..core.errors import ModelCannotSeeImages
from . import llm
from .document_preparer import image_data_uri
from .json_repair import strip_code_fences

MIME_BY_SUFFIX = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
}

# (placeholder, meaning) pairs rendered into the prompt
HEADER_PLACEHOLDERS = [
    ("vendor_name", "seller/company name"),
    ("vendor_address", "seller address"),
    ("vendor_gstin", "seller GSTIN"),
    ("vendor_phone", "seller phone"),
    ("client_name", "buyer/customer name"),
    ("client_address", "buyer address"),
    ("client_gstin", "buyer GSTIN/UIN"),
    ("client_state", "buyer state name & code"),
    ("client_pan", "buyer PAN"),
    ("invoice_number", "invoice / MR number"),
    ("format_date(invoice_date)", "invoice date"),
    ("format_date(due_date)", "due date"),
    ("delivery_note", "delivery note value"),
    ("supplier_ref", "supplier reference"),
    ("buyer_order_no", "buyer order number"),
    ("despatch_doc_no", "despatch document number"),
    ("despatch_through", "despatch through / carrier"),
    ("destination", "destination"),
    ("terms_of_delivery", "terms of delivery"),
    ("payment_terms", "mode/terms of payment"),
    ("subtotal", "taxable subtotal"),
    ("sgst_amount", "SGST amount"),
    ("cgst_amount", "CGST amount"),
    ("igst_amount", "IGST amount"),
    ("round_off", "round off amount"),
    ("total_amount", "grand total amount"),
    ("amount_in_words", "amount chargeable in words"),
    ("tax_amount_in_words", "tax amount in words"),
]
LINE_ITEM_PLACEHOLDERS = ["sl_no", "description", "hsn_sac", "gst_rate", "quantity", "rate", "per", "disc_percent", "amount"]
HSN_SUMMARY_PLACEHOLDERS = ["hsn_sac", "taxable_value", "cgst_rate", "cgst_amount", "sgst_rate", "sgst_amount", "total_tax"]


def _placeholder_block() -> str:
    lines = [f"  * {{{{ {name} }}}} - {meaning}" for name, meaning in HEADER_PLACEHOLDERS]
    lines.append("  - Line items loop (reproduce ALL columns from the table):")
    lines.append("    {% for item in line_items %}")
    lines.append("    " + ", ".join(f"{{{{ item.{name} }}}}" for name in LINE_ITEM_PLACEHOLDERS))
    lines.append("    {% endfor %}")
    lines.append("  - HSN tax summary loop:")
    lines.append("    {% for row in hsn_summary %}")
    lines.append("    " + ", ".join(f"{{{{ row.{name} }}}}" for name in HSN_SUMMARY_PLACEHOLDERS))
    lines.append("    {% endfor %}")
    return "\n".join(lines)


GENERATION_PROMPT = """You are an elite Frontend Developer performing pixel-perfect invoice replication.

STEP 1 - ANALYZE the image section by section (do this mentally before writing code):
  A. Top area: company name, address, phone, GSTIN, any labels like "Original for Recipient"
  B. Title bar: e.g. "TAX INVOICE", centered, bordered, bold
  C. Two-column header block: Left = Customer/Bill-To details (name, address, PAN, GSTIN, state). Right = Invoice meta (Invoice No, Date, Delivery Note, Supplier Ref, Buyer Order No, Despatch Doc No, Despatch Through, Terms of Delivery, Mode of Payment, Destination)
  D. Line items table: list ALL column headers exactly as shown
  E. Sub-total rows inside or below the table: SGST, CGST, Round Off, Total row
  F. "Amount Chargeable (in words)" row
  G. GST / HSN tax summary table with its totals row
  H. "Tax Amount (in words)" row
  I. Bottom two-column section: Left = Company Bank Details. Right = "For [Company Name]" and "Authorised Signatory"
  J. Footer: any numbered terms and conditions text

STEP 2 - WRITE the HTML/CSS template following these STRICT RULES:

LAYOUT RULES:
- Use a single outer wrapper div with max-width ~750px, border: 1px solid #000, font-family: Arial/sans-serif, font-size: 11px
- The two-column invoice header uses a CSS table or flex row, each column separated by a vertical border
- All tables use border-collapse: collapse, with 1px solid #000 borders on all cells
- Column widths in the line items table must approximately match the original proportions
- Sub-total rows (SGST, CGST, Round Off) appear as right-aligned rows inside the line items table
- The GST breakdown table at the bottom is a separate full-width table
- Footer terms use small font, numbered list style

JINJA2 TEMPLATING RULES:
- STATIC TEXT that is always the same (company name, address, column headers, terms) stays hardcoded
- DYNAMIC DATA that changes per invoice is replaced with Jinja2 expressions using these exact names:
{placeholders}
- Wrap optional sections in {{% if name %}} ... {{% endif %}}

OUTPUT RULES:
- Output ONLY the raw HTML. No markdown fences, no explanation, no comments outside the HTML.
- Start with exactly: <!DOCTYPE html>
- Include ALL sections found in the image
- Aim for the output to look indistinguishable from the original when printed
""".format(placeholders=_placeholder_block())


def guess_mime_type(path: str | Path) -> str:
    return MIME_BY_SUFFIX.get(Path(path).suffix.lower(), "image/jpeg")


async def generate_html_template(
    image_path: str | Path,
    mime_type: str | None = None,
    selection: llm.ProviderSelection | None = None,
) -> str:
    """
    Build an HTML template from a reference invoice.

    Raises:
        ModelCannotSeeImages: the selected model is not vision-capable
        ProviderError: the provider call failed
    """
    selection = llm.current_selection(selection)
    if not llm.is_vision_capable(selection.model):
        raise ModelCannotSeeImages(
            f'Current model "{selection.model}" does not support vision. Please switch to a vision model '
            "(e.g., gpt-4o, claude-3-5-sonnet) to generate templates."
        )

    data_uri, _ = await image_data_uri(image_path, mime_type or guess_mime_type(image_path))

    logger.info("Generating HTML template", provider=selection.provider, model=selection.model)
    # Image first: vision models attend to it better
    reply = await llm.invoke(
        selection,
        llm.user_message(GENERATION_PROMPT, image_data_uri=data_uri, image_first=True),
        max_tokens=settings.template_generation_max_tokens,
    )
    html = strip_code_fences(reply).strip()
    logger.info("HTML template generated", chars=len(html))
    return html
