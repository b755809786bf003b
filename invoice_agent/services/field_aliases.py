"""
Resolve keys invented by the template reader ("inv_no", "grand_total") to
paths in the invoice record ("invoice_number", "total_amount").

The table is schema-driven: every InvoiceRecord field, every nested path
("vendor.name") and its flattened form ("vendor_name") resolves to itself.
Explicit aliases are consulted only when the key is not a schema path, so
an exact schema key always wins.
"""

import re
from typing import get_origin

from loguru import logger
from pydantic import BaseModel

from ..models.invoice import InvoiceRecord, LineItem

HEADER_ALIASES: dict[str, str] = {
    "invoice_no": "invoice_number",
    "inv_no": "invoice_number",
    "invoice_num": "invoice_number",
    "invoice_id": "invoice_number",
    "bill_no": "invoice_number",
    "number": "invoice_number",
    "date": "invoice_date",
    "inv_date": "invoice_date",
    "bill_date": "invoice_date",
    "payment_due": "due_date",
    "po_number": "purchase_order",
    "po_no": "purchase_order",
    "po": "purchase_order",
    "buyer_order_no": "purchase_order",
    "order_number": "purchase_order",
    "vendor": "vendor.name",
    "supplier": "vendor.name",
    "supplier_name": "vendor.name",
    "seller_name": "vendor.name",
    "company_name": "vendor.name",
    "supplier_address": "vendor.address",
    "seller_address": "vendor.address",
    "gstin": "vendor.gstin",
    "tax_id": "vendor.gstin",
    "vat_number": "vendor.gstin",
    "vendor_tax_id": "vendor.gstin",
    "phone": "vendor.phone",
    "email": "vendor.email",
    "customer_name": "bill_to.name",
    "client_name": "bill_to.name",
    "buyer_name": "bill_to.name",
    "bill_to": "bill_to.name",
    "customer_address": "bill_to.address",
    "client_address": "bill_to.address",
    "buyer_address": "bill_to.address",
    "customer_gstin": "bill_to.gstin",
    "client_gstin": "bill_to.gstin",
    "total": "total_amount",
    "grand_total": "total_amount",
    "invoice_total": "total_amount",
    "amount_due": "total_amount",
    "total_due": "total_amount",
    "net_payable": "total_amount",
    "tax": "tax_amount",
    "gst": "tax_amount",
    "vat": "tax_amount",
    "total_tax": "tax_amount",
    "sub_total": "subtotal",
    "net_amount": "subtotal",
    "taxable_value": "subtotal",
    "discount": "discount_total",
    "sgst": "sgst_amount",
    "cgst": "cgst_amount",
    "igst": "igst_amount",
    "amount_words": "amount_in_words",
    "total_in_words": "amount_in_words",
    "terms": "payment_terms",
    "remarks": "notes",
    "bank": "bank_details.bank_name",
    "bank_name": "bank_details.bank_name",
    "account_no": "bank_details.account_number",
    "account_number": "bank_details.account_number",
    "ac_no": "bank_details.account_number",
    "ifsc": "bank_details.ifsc",
    "ifsc_code": "bank_details.ifsc",
    "branch": "bank_details.branch",
}

LINE_ITEM_ALIASES: dict[str, str] = {
    "sl": "sl_no",
    "s_no": "sl_no",
    "sr_no": "sl_no",
    "serial_no": "sl_no",
    "no": "sl_no",
    "item": "description",
    "item_description": "description",
    "particulars": "description",
    "product": "description",
    "description_of_goods": "description",
    "hsn": "hsn_sac",
    "sac": "hsn_sac",
    "hsn_code": "hsn_sac",
    "qty": "quantity",
    "rate": "unit_price",
    "price": "unit_price",
    "unit_rate": "unit_price",
    "gst_rate": "tax_rate",
    "tax": "tax_rate",
    "tax_percent": "tax_rate",
    "per": "unit",
    "uom": "unit",
    "disc": "discount",
    "disc_percent": "discount",
    "total": "amount",
    "line_total": "amount",
    "value": "amount",
}


def _schema_paths(model: type[BaseModel], prefix: str = "") -> dict[str, str]:
    paths: dict[str, str] = {}
    for name, field in model.model_fields.items():
        path = f"{prefix}{name}"
        annotation = field.annotation
        nested = None
        if get_origin(annotation) is not list:
            nested = next(
                (a for a in getattr(annotation, "__args__", (annotation,))
                 if isinstance(a, type) and issubclass(a, BaseModel)),
                None,
            )
        if nested is not None:
            for child_key, child_path in _schema_paths(nested, f"{path}.").items():
                paths[child_key] = child_path
                paths[child_key.replace(".", "_")] = child_path
        else:
            paths[path] = path
    return paths


HEADER_PATHS = _schema_paths(InvoiceRecord)
LINE_ITEM_PATHS = _schema_paths(LineItem)


def normalize_key(key: str) -> str:
    """'Invoice No.' -> 'invoice_no'"""
    return re.sub(r"[^a-z0-9.]+", "_", str(key).strip().lower()).strip("_.")


def resolve_alias(key: str, scope: str = "header") -> str | None:
    """
    Canonical record path for a template key, or None when nothing matches.

    Precedence: exact schema path, then explicit alias.
    """
    if not key:
        return None
    paths, aliases = (LINE_ITEM_PATHS, LINE_ITEM_ALIASES) if scope == "line_item" else (HEADER_PATHS, HEADER_ALIASES)
    normalized = normalize_key(key)
    if normalized in paths:
        return paths[normalized]
    if normalized in aliases:
        return aliases[normalized]
    logger.info("Template key has no matching invoice field", key=key, scope=scope)
    return None


def get_path(data: dict | None, path: str):
    """Dotted lookup into plain dicts, None when any segment is missing"""
    current = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
        if current is None:
            return None
    return current


def find_value(data: dict | None, key: str, scope: str = "header"):
    """Value for a template key: the raw key first (extra fields), then its canonical path"""
    if not data or not key:
        return None
    direct = get_path(data, key)
    if direct is not None and not isinstance(direct, (dict, list)):
        return direct
    canonical = resolve_alias(key, scope)
    value = get_path(data, canonical) if canonical else None
    return None if isinstance(value, (dict, list)) else value
