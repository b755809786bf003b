from .invoice_store import InvoiceStore, invoice_store

__all__ = ["InvoiceStore", "invoice_store"]
