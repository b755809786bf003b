"""
Excel filling strategies.

All three share one rule: missing data is never an error. A field that is
absent from the record, or a cell that cannot be written (merged ranges,
illegal characters), is skipped and the rest of the workbook is still filled.
Only a missing template file or a workbook without worksheets is fatal.
"""

import zipfile
from pathlib import Path

import openpyxl
from loguru import logger
from openpyxl.styles import Font
from openpyxl.utils import column_index_from_string, get_column_letter
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException
from openpyxl.worksheet.worksheet import Worksheet

from ..core.config import settings
from ..core.errors import EmptyWorkbook, TemplateNotFound, UnsupportedFormat
from ..models.invoice import InvoiceRecord
from ..models.template import TemplateStructure, is_valid_column, is_valid_row
from .field_aliases import find_value

# Fixed template layout (see scripts/generate_template.py)
HEADER_CELLS = {
    "invoice_number": "C3",
    "invoice_date": "C4",
    "due_date": "C5",
    "purchase_order": "C6",
    "currency": "E3",
}
VENDOR_CELLS = {
    "name": "B9",
    "address": "B10",
    "gstin": "B11",
    "phone": "B12",
    "email": "B13",
}
BILL_TO_CELLS = {
    "name": "E9",
    "address": "E10",
    "gstin": "E11",
}
LINE_ITEMS_START_ROW = 16
LINE_ITEM_COLUMNS = {
    "sl_no": "A",
    "description": "B",
    "hsn_sac": "C",
    "quantity": "D",
    "unit_price": "E",
    "tax_rate": "F",
    "amount": "G",
}
TOTALS = [
    ("subtotal", "Subtotal"),
    ("discount_total", "Discount"),
    ("tax_amount", "Tax"),
    ("total_amount", "TOTAL"),
]
BANK_ROWS = [
    ("bank_name", "Bank:"),
    ("account_number", "A/C No:"),
    ("ifsc", "IFSC:"),
    ("branch", "Branch:"),
]

LINE_ITEM_HEADER_KEYWORDS = ["description", "item", "particulars", "qty", "quantity"]

BOLD = Font(bold=True)


def totals_start_row(line_item_count: int, start_row: int = LINE_ITEMS_START_ROW) -> int:
    """Totals never overlap line items, even when there are none"""
    return start_row + max(line_item_count, 1) + 1


def _write(ws: Worksheet, row: int, col: int, value, font: Font | None = None) -> bool:
    """Best-effort cell write; returns False when the cell was skipped"""
    if value is None:
        return False
    try:
        cell = ws.cell(row=row, column=col)
        cell.value = value
        if font is not None:
            cell.font = font
    except (AttributeError, IllegalCharacterError, ValueError, TypeError) as e:
        logger.debug("Skipping cell write", cell=f"{get_column_letter(col)}{row}", error=str(e))
        return False
    return True


def _write_ref(ws: Worksheet, ref: str, value, font: Font | None = None) -> bool:
    col_letters = "".join(ch for ch in ref if ch.isalpha())
    row = int("".join(ch for ch in ref if ch.isdigit()))
    return _write(ws, row, column_index_from_string(col_letters), value, font)


def _load_workbook(path: Path):
    if not path.exists():
        raise TemplateNotFound(f"Template not found at {path}")
    try:
        workbook = openpyxl.load_workbook(path)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
        raise UnsupportedFormat(f"Template is not a readable .xlsx workbook: {e}") from e
    if not workbook.worksheets:
        raise EmptyWorkbook("Uploaded Excel template has no worksheets")
    return workbook


def fill_default_template(record: InvoiceRecord, output_path: str | Path, template_path: str | Path | None = None) -> Path:
    """
    Fill the pre-built workbook using its fixed cell map.

    Args:
        record: extracted (and enriched) invoice
        output_path: where to save the filled workbook
        template_path: workbook to fill; defaults to the configured default template

    Returns:
        output_path
    """
    template_path = Path(template_path) if template_path else settings.resolved_default_template_path()
    workbook = _load_workbook(template_path)
    ws = workbook.worksheets[0]

    for field, ref in HEADER_CELLS.items():
        _write_ref(ws, ref, getattr(record, field))

    if record.vendor:
        for field, ref in VENDOR_CELLS.items():
            _write_ref(ws, ref, getattr(record.vendor, field))
    if record.bill_to:
        for field, ref in BILL_TO_CELLS.items():
            _write_ref(ws, ref, getattr(record.bill_to, field))

    for index, item in enumerate(record.line_items):
        row = LINE_ITEMS_START_ROW + index
        for field, col in LINE_ITEM_COLUMNS.items():
            value = getattr(item, field)
            if field == "sl_no" and value is None:
                value = index + 1
            _write_ref(ws, f"{col}{row}", value)

    totals_row = totals_start_row(len(record.line_items))
    for offset, (field, label) in enumerate(TOTALS):
        _write_ref(ws, f"F{totals_row + offset}", label, BOLD)
        _write_ref(ws, f"G{totals_row + offset}", getattr(record, field))

    words_row = totals_row + 5
    if record.amount_in_words:
        _write_ref(ws, f"A{words_row}", "Amount in Words:", BOLD)
        _write_ref(ws, f"B{words_row}", record.amount_in_words)

    bank = record.bank_details
    if bank:
        bank_row = words_row + 2
        _write_ref(ws, f"A{bank_row}", "Bank Details:", BOLD)
        for offset, (field, label) in enumerate(BANK_ROWS, start=1):
            value = getattr(bank, field)
            if value:
                _write_ref(ws, f"A{bank_row + offset}", label)
                _write_ref(ws, f"B{bank_row + offset}", value)

    if record.payment_terms:
        _write_ref(ws, f"A{words_row + 8}", "Payment Terms:", BOLD)
        _write_ref(ws, f"B{words_row + 8}", record.payment_terms)

    if record.notes:
        _write_ref(ws, f"A{words_row + 10}", "Notes:", BOLD)
        _write_ref(ws, f"B{words_row + 10}", record.notes)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(output_path)
    logger.info("Filled default template", output=output_path.name, line_items=len(record.line_items))
    return output_path


def _write_labelled(ws: Worksheet, field, data: dict) -> None:
    col = column_index_from_string(field.col)
    if col > 1 and field.label:
        _write(ws, field.row, col - 1, f"{field.label}:", BOLD)
    value = find_value(data, field.key) if field.key else None
    if value is None and field.label:
        value = find_value(data, field.label)
    _write(ws, field.row, col, value)


def fill_dynamic_template(record: InvoiceRecord, structure: TemplateStructure, output_path: str | Path) -> Path:
    """Build a fresh workbook laid out from an AI-discovered template structure"""
    data = record.model_dump()
    workbook = openpyxl.Workbook()
    ws = workbook.active
    ws.title = "Invoice"

    if structure.title:
        _write(ws, 1, 1, structure.title, Font(bold=True, size=16))

    for field in structure.header_fields:
        _write_labelled(ws, field, data)

    start_row = structure.line_items_start_row
    if start_row and structure.line_item_columns:
        for column in structure.line_item_columns:
            if is_valid_row(start_row - 1):
                _write(ws, start_row - 1, column_index_from_string(column.col), column.label, BOLD)
        for index, item in enumerate(data.get("line_items") or []):
            for column in structure.line_item_columns:
                if not is_valid_column(column.col):
                    continue
                value = find_value(item, column.key, scope="line_item")
                if value is None and column.label:
                    value = find_value(item, column.label, scope="line_item")
                _write(ws, start_row + index, column_index_from_string(column.col), value)

    for field in structure.footer_fields:
        _write_labelled(ws, field, data)

    for col in range(1, ws.max_column + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(output_path)
    logger.info(
        "Filled dynamic template",
        output=output_path.name,
        header_fields=len(structure.header_fields),
        footer_fields=len(structure.footer_fields),
    )
    return output_path


def _label_value_pairs(record: InvoiceRecord) -> list[tuple[str, object]]:
    vendor = record.vendor
    bill_to = record.bill_to
    bank = record.bank_details
    return [
        ("invoice number", record.invoice_number),
        ("invoice no", record.invoice_number),
        ("invoice #", record.invoice_number),
        ("invoice date", record.invoice_date),
        ("date", record.invoice_date),
        ("due date", record.due_date),
        ("po number", record.purchase_order),
        ("purchase order", record.purchase_order),
        ("currency", record.currency),
        ("vendor", vendor.name if vendor else None),
        ("vendor name", vendor.name if vendor else None),
        ("vendor address", vendor.address if vendor else None),
        ("gstin", vendor.gstin if vendor else None),
        ("phone", vendor.phone if vendor else None),
        ("email", vendor.email if vendor else None),
        ("bill to", bill_to.name if bill_to else None),
        ("customer name", bill_to.name if bill_to else None),
        ("bill to address", bill_to.address if bill_to else None),
        ("subtotal", record.subtotal),
        ("discount", record.discount_total),
        ("tax", record.tax_amount),
        ("total", record.total_amount),
        ("amount in words", record.amount_in_words),
        ("payment terms", record.payment_terms),
        ("notes", record.notes),
        ("bank name", bank.bank_name if bank else None),
        ("account number", bank.account_number if bank else None),
        ("ifsc", bank.ifsc if bank else None),
        ("branch", bank.branch if bank else None),
    ]


def normalize_label(value) -> str:
    """'Invoice Number:' -> 'invoice number'"""
    return str(value).strip().rstrip(":").strip().lower()


def build_label_index(ws: Worksheet) -> dict[str, tuple[int, int]]:
    """Lowercase label -> (row, col) of its first occurrence"""
    index: dict[str, tuple[int, int]] = {}
    for row in ws.iter_rows():
        for cell in row:
            if cell.value is None:
                continue
            label = normalize_label(cell.value)
            if label:
                index.setdefault(label, (cell.row, cell.column))
    return index


def find_line_item_header_row(ws: Worksheet) -> int | None:
    """First row with at least two cells mentioning a line-item keyword"""
    for row in ws.iter_rows():
        matches = 0
        for cell in row:
            if cell.value is None:
                continue
            text = str(cell.value).lower()
            if any(keyword in text for keyword in LINE_ITEM_HEADER_KEYWORDS):
                matches += 1
        if matches >= 2:
            return row[0].row
    return None


def classify_line_item_header(header: str) -> str | None:
    h = header.strip().lower()
    if not h:
        return None
    if h == "#" or h.startswith(("sl", "s.no", "sr", "no.")):
        return "sl_no"
    if "hsn" in h or "sac" in h:
        return "hsn_sac"
    if "amount" in h or "total" in h:
        return "amount"
    if "tax" in h or "gst" in h or "vat" in h:
        return "tax_rate"
    if "desc" in h or "item" in h or "particular" in h:
        return "description"
    if "qty" in h or "quantity" in h:
        return "quantity"
    if "rate" in h or "price" in h:
        return "unit_price"
    return None


def fill_excel_template(record: InvoiceRecord, template_path: str | Path, output_path: str | Path) -> Path:
    """
    Fill a user-uploaded .xlsx by matching label cells.

    Values go in the cell right of each recognised label, or two cells right
    when that neighbour already holds template text.
    """
    workbook = _load_workbook(Path(template_path))
    ws = workbook.worksheets[0]

    labels = build_label_index(ws)
    filled = 0
    for label, value in _label_value_pairs(record):
        position = labels.get(label)
        if position is None or value is None:
            continue
        row, col = position
        neighbour = ws.cell(row=row, column=col + 1).value
        target_col = col + 1 if neighbour is None or str(neighbour).strip() == "" else col + 2
        filled += _write(ws, row, target_col, value)

    header_row = find_line_item_header_row(ws)
    if header_row and record.line_items:
        columns: dict[str, int] = {}
        for cell in ws[header_row]:
            if cell.value is None:
                continue
            field = classify_line_item_header(str(cell.value))
            # leftmost column claiming a field keeps it
            if field and field not in columns:
                columns[field] = cell.column
        for index, item in enumerate(record.line_items):
            row = header_row + 1 + index
            for field, col in columns.items():
                value = getattr(item, field)
                if field == "sl_no":
                    value = index + 1 if value is None else value
                _write(ws, row, col, value)

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(output_path)
    logger.info(
        "Filled uploaded Excel template",
        output=output_path.name,
        labels_filled=filled,
        line_item_header_row=header_row,
    )
    return output_path
