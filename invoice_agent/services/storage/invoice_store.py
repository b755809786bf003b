"""
File-backed store for processed invoices.

Each invoice leaves two files under OUTPUT_DIR, both named by its id:
invoice_<id>.json (the enriched record) and invoice_<id>.xlsx or .pdf (the
filled document). There is no database.
"""
import json
import re
from pathlib import Path

from ...core.config import settings
from ...core.errors import InvoiceNotFound

ARTIFACT_SUFFIXES = (".xlsx", ".pdf")
_SAFE_ID = re.compile(r"^[A-Za-z0-9-]+$")


class InvoiceStore:
    def __init__(self, output_dir: str | Path | None = None):
        self._output_dir = Path(output_dir) if output_dir else None

    @property
    def output_dir(self) -> Path:
        """Explicit directory, else OUTPUT_DIR read at call time"""
        path = self._output_dir or Path(settings.output_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _check_id(self, invoice_id: str) -> str:
        if not invoice_id or not _SAFE_ID.match(invoice_id):
            raise InvoiceNotFound(f"Invoice {invoice_id} not found")
        return invoice_id

    def json_path(self, invoice_id: str) -> Path:
        return self.output_dir / f"invoice_{self._check_id(invoice_id)}.json"

    def artifact_path(self, invoice_id: str, suffix: str) -> Path:
        """Where the filled document for invoice_id should be written"""
        return self.output_dir / f"invoice_{self._check_id(invoice_id)}{suffix}"

    def save_json(self, invoice_id: str, data: dict) -> Path:
        path = self.json_path(invoice_id)
        path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        return path

    def load_json(self, invoice_id: str) -> dict:
        path = self.json_path(invoice_id)
        if not path.exists():
            raise InvoiceNotFound(f"Invoice {invoice_id} not found")
        return json.loads(path.read_text(encoding="utf-8"))

    def find_artifact(self, invoice_id: str) -> Path:
        """Existing filled document for invoice_id, spreadsheet first"""
        for suffix in ARTIFACT_SUFFIXES:
            path = self.artifact_path(invoice_id, suffix)
            if path.exists():
                return path
        raise InvoiceNotFound(f"No output file found for invoice {invoice_id}")


# Global instance (tests point OUTPUT_DIR at tmp_path)
invoice_store = InvoiceStore()
