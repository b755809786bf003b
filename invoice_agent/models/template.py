"""
Layout discovered by the template reader from a form image.

Cell references come from a model and cannot be trusted: any field whose
column is not a spreadsheet column token or whose row is not a positive
integer is dropped here, before it can drive a cell write.
"""

import re
from typing import Any

from loguru import logger
from pydantic import BaseModel, field_validator

COLUMN_TOKEN = re.compile(r"^[A-Za-z]{1,3}$")


def is_valid_column(col: Any) -> bool:
    return isinstance(col, str) and bool(COLUMN_TOKEN.match(col.strip()))


def is_valid_row(row: Any) -> bool:
    return isinstance(row, int) and not isinstance(row, bool) and row > 0


class TemplateField(BaseModel):
    label: str = ""
    key: str = ""
    row: int
    col: str
    type: str = "string"


class LineItemColumn(BaseModel):
    label: str = ""
    key: str = ""
    col: str
    type: str = "string"


def _keep_valid(entries: Any, needs_row: bool, section: str) -> list[dict]:
    if not isinstance(entries, list):
        return []
    kept = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if not is_valid_column(entry.get("col")) or (needs_row and not is_valid_row(entry.get("row"))):
            logger.debug("Dropping template field with invalid cell reference", section=section, field=entry)
            continue
        kept.append({
            **entry,
            "col": entry["col"].strip().upper(),
            "label": str(entry.get("label") or ""),
            "key": str(entry.get("key") or ""),
            "type": str(entry.get("type") or "string"),
        })
    return kept


class TemplateStructure(BaseModel):
    title: str | None = None
    header_fields: list[TemplateField] = []
    line_items_start_row: int | None = None
    line_item_columns: list[LineItemColumn] = []
    footer_fields: list[TemplateField] = []

    @field_validator("header_fields", mode="before")
    @classmethod
    def _header(cls, value):
        return _keep_valid(value, needs_row=True, section="header_fields")

    @field_validator("footer_fields", mode="before")
    @classmethod
    def _footer(cls, value):
        return _keep_valid(value, needs_row=True, section="footer_fields")

    @field_validator("line_item_columns", mode="before")
    @classmethod
    def _columns(cls, value):
        return _keep_valid(value, needs_row=False, section="line_item_columns")

    @field_validator("line_items_start_row", mode="before")
    @classmethod
    def _start_row(cls, value):
        return value if is_valid_row(value) else None

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value):
        return str(value) if value is not None else None
