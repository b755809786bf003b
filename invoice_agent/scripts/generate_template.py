#!/usr/bin/env python3
"""
Generate the default invoice workbook used by the fixed-template filler.

Usage:
    python -m invoice_agent.scripts.generate_template
    python -m invoice_agent.scripts.generate_template --output ./templates/default_template.xlsx
"""

import argparse
from pathlib import Path

import openpyxl
from loguru import logger
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from ..core.config import settings
from ..services.filler import LINE_ITEMS_START_ROW

THIN = Side(style="thin")
BOX = Border(top=THIN, bottom=THIN, left=THIN, right=THIN)
BOLD = Font(bold=True)

COLUMN_WIDTHS = {"A": 8, "B": 30, "C": 18, "D": 12, "E": 16, "F": 12, "G": 16}
LINE_ITEM_HEADERS = ["#", "Description", "HSN/SAC", "Qty", "Unit Price", "Tax %", "Amount"]
EMPTY_LINE_ROWS = 10

# label cell -> label text; the value goes in the mapped cell of services/filler.py
LABELS = {
    "A3": "Invoice Number:",
    "A4": "Invoice Date:",
    "A5": "Due Date:",
    "A6": "PO Number:",
    "D3": "Currency:",
    "A9": "Name:",
    "A10": "Address:",
    "A11": "GSTIN:",
    "A12": "Phone:",
    "A13": "Email:",
    "D9": "Name:",
    "D10": "Address:",
    "D11": "GSTIN:",
}


def build_default_template(output_path: str | Path) -> Path:
    """Write the default workbook to output_path and return it"""
    workbook = openpyxl.Workbook()
    ws = workbook.active
    ws.title = "Invoice"

    for col, width in COLUMN_WIDTHS.items():
        ws.column_dimensions[col].width = width

    ws.merge_cells("A1:G1")
    ws["A1"] = "INVOICE"
    ws["A1"].font = Font(bold=True, size=20)
    ws["A1"].alignment = Alignment(horizontal="center")
    for col in COLUMN_WIDTHS:
        ws[f"{col}2"].border = Border(bottom=Side(style="thick"))

    for ref, text in LABELS.items():
        ws[ref] = text
        ws[ref].font = BOLD

    for ref, text in (("A8", "VENDOR / FROM"), ("D8", "BILL TO")):
        ws[ref] = text
        ws[ref].font = Font(bold=True, size=12)
        ws[ref].border = Border(bottom=THIN)

    header_row = LINE_ITEMS_START_ROW - 1
    for index, text in enumerate(LINE_ITEM_HEADERS, start=1):
        cell = ws.cell(row=header_row, column=index, value=text)
        cell.font = Font(bold=True, color="FFFFFFFF")
        cell.fill = PatternFill(fill_type="solid", fgColor="FF333333")
        cell.alignment = Alignment(horizontal="center")
        cell.border = BOX

    for row in range(LINE_ITEMS_START_ROW, LINE_ITEMS_START_ROW + EMPTY_LINE_ROWS):
        for col in range(1, len(LINE_ITEM_HEADERS) + 1):
            ws.cell(row=row, column=col).border = BOX

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(output_path)
    return output_path


def ensure_default_template(path: str | Path | None = None) -> Path:
    """Build the default workbook only when it does not exist yet"""
    path = Path(path) if path else settings.resolved_default_template_path()
    if not path.exists():
        logger.info("Default Excel template missing, generating it", path=str(path))
        build_default_template(path)
    return path


def main():
    parser = argparse.ArgumentParser(description="Generate the default invoice Excel template")
    parser.add_argument(
        "--output",
        default=None,
        help="Where to write the workbook (default: DEFAULT_TEMPLATE_PATH or <TEMPLATES_DIR>/default_template.xlsx)",
    )
    args = parser.parse_args()

    path = build_default_template(args.output or settings.resolved_default_template_path())
    print(f"Default template created at: {path}")


if __name__ == "__main__":
    main()
