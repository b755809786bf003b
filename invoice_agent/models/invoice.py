"""
Canonical invoice record produced by extraction.

Every field is optional: models return partial data, and the fillers skip
whatever is missing. Validators are lenient on purpose so that a model
answering "1,234.50" or a bare vendor string still yields a usable record.
"""

import math
import re
from typing import Any, Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, field_validator

_CURRENCY_NOISE = re.compile(r"[₹$€£,\s]|\b(?:INR|USD|EUR|GBP|AUD|CAD|JPY|CNY)\b|\bRS\b\.?", re.IGNORECASE)


def _to_number(value: Any) -> float | int | None:
    """Coerce model output such as "₹1,234.50" or "18%" into a number, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    text = _CURRENCY_NOISE.sub("", str(value)).rstrip("%").strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() and "." not in text else number


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


Amount = Annotated[float | int | None, BeforeValidator(_to_number)]
Text = Annotated[str | None, BeforeValidator(_to_text)]


class _Record(BaseModel):
    model_config = ConfigDict(extra="allow")


class Party(_Record):
    name: Text = None
    address: Text = None
    gstin: Text = None  # tax id (GSTIN / VAT / EIN)


class Vendor(Party):
    phone: Text = None
    email: Text = None


class LineItem(_Record):
    sl_no: Amount = None
    description: Text = None
    hsn_sac: Text = None
    quantity: Amount = None
    unit: Text = None
    unit_price: Amount = None
    discount: Amount = None
    tax_rate: Amount = None
    amount: Amount = None


class TaxBreakdownEntry(_Record):
    tax_type: Text = None
    rate: Amount = None
    amount: Amount = None


class BankDetails(_Record):
    bank_name: Text = None
    account_number: Text = None
    ifsc: Text = None
    branch: Text = None


class InvoiceRecord(_Record):
    invoice_number: Text = None
    invoice_date: Text = None
    due_date: Text = None
    purchase_order: Text = None
    currency: Text = None

    vendor: Vendor | None = None
    bill_to: Party | None = None

    line_items: list[LineItem] = []

    subtotal: Amount = None
    discount_total: Amount = None
    tax_amount: Amount = None
    round_off: Amount = None
    total_amount: Amount = None
    amount_in_words: Text = None
    tax_amount_in_words: Text = None
    tax_breakdown: list[TaxBreakdownEntry] = []
    sgst_amount: Amount = None
    cgst_amount: Amount = None
    igst_amount: Amount = None

    bank_details: BankDetails | None = None
    payment_terms: Text = None
    notes: Text = None

    @field_validator("vendor", "bill_to", "bank_details", mode="before")
    @classmethod
    def _wrap_bare_names(cls, value, info):
        if isinstance(value, str):
            return {"bank_name" if info.field_name == "bank_details" else "name": value}
        if value is not None and not isinstance(value, dict) and not isinstance(value, BaseModel):
            return None
        return value

    @field_validator("line_items", "tax_breakdown", mode="before")
    @classmethod
    def _always_a_sequence(cls, value):
        if value is None:
            return []
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            return []
        return [entry for entry in value if isinstance(entry, (dict, BaseModel))]

    @field_validator("currency", mode="after")
    @classmethod
    def _upper_currency(cls, value):
        return value.upper() if value else value

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json")


# Annotated example of the record, embedded verbatim in the extraction prompt.
INVOICE_SCHEMA: dict[str, Any] = {
    "invoice_number": "string",
    "invoice_date": "YYYY-MM-DD",
    "due_date": "YYYY-MM-DD",
    "purchase_order": "string",
    "currency": "3-letter code, e.g. INR",
    "vendor": {
        "name": "string",
        "address": "string",
        "gstin": "tax id (GSTIN/VAT/EIN)",
        "phone": "string",
        "email": "string",
    },
    "bill_to": {
        "name": "string",
        "address": "string",
        "gstin": "tax id (GSTIN/VAT/EIN)",
    },
    "line_items": [
        {
            "sl_no": "number",
            "description": "string",
            "hsn_sac": "string",
            "quantity": "number",
            "unit": "string",
            "unit_price": "number",
            "discount": "number (percent)",
            "tax_rate": "number (percent)",
            "amount": "number",
        }
    ],
    "subtotal": "number",
    "discount_total": "number",
    "tax_amount": "number",
    "round_off": "number",
    "total_amount": "number",
    "amount_in_words": "string",
    "tax_breakdown": [
        {"tax_type": "SGST|CGST|IGST|VAT|...", "rate": "number (percent)", "amount": "number"}
    ],
    "sgst_amount": "number",
    "cgst_amount": "number",
    "igst_amount": "number",
    "bank_details": {
        "bank_name": "string",
        "account_number": "string",
        "ifsc": "string",
        "branch": "string",
    },
    "payment_terms": "string",
    "notes": "string",
}
