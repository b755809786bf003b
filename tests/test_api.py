import io
import json

import openpyxl
import pytest
from fastapi.testclient import TestClient

from invoice_agent.api.deps import get_pdf_renderer
from invoice_agent.api.main import app
from invoice_agent.core.config import settings
from invoice_agent.core.errors import ErrorKind, ProviderError
from invoice_agent.services.storage.invoice_store import invoice_store

INVOICE_JSON = json.dumps({
    "invoice_number": "INV-2024-001",
    "invoice_date": "2024-03-15",
    "currency": "INR",
    "vendor": {"name": "Acme Traders Pvt Ltd"},
    "line_items": [{"description": "Steel bolts M8", "hsn_sac": "7318", "quantity": 10, "unit_price": 100, "amount": 1000}],
    "subtotal": 1000,
    "tax_amount": 180,
    "total_amount": 1234.50,
})

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class FakeRenderer:
    def __init__(self):
        self.rendered = []

    async def render_html(self, html, pdf_options=None):
        self.rendered.append(html)
        return b"%PDF-1.7 fake"


@pytest.fixture
def client():
    # lifespan generates the default workbook inside the per-test storage dir
    with TestClient(app) as c:
        yield c


@pytest.fixture
def fake_renderer():
    renderer = FakeRenderer()
    app.dependency_overrides[get_pdf_renderer] = lambda: renderer
    try:
        yield renderer
    finally:
        app.dependency_overrides.pop(get_pdf_renderer, None)


def _upload(path, name=None, mime="application/pdf"):
    return (name or path.name, io.BytesIO(path.read_bytes()), mime)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "app": settings.app_name}


def test_lifespan_creates_default_workbook(client):
    assert settings.resolved_default_template_path().exists()


class TestProcess:

    def test_default_workbook_flow(self, client, fake_llm, text_pdf):
        fake_llm(INVOICE_JSON)
        r = client.post("/api/invoice/process", files={"raw_invoice": _upload(text_pdf)})
        assert r.status_code == 200, r.text

        body = r.json()
        invoice_id = body["invoiceId"]
        assert body["success"] is True
        assert body["download"] == f"/api/invoice/{invoice_id}/download"
        assert body["json"] == f"/api/invoice/{invoice_id}"
        assert body["data"]["amount_in_words"] == "One thousand two hundred and thirty-four only (₹1234.50)"

        r = client.get(body["json"])
        assert r.status_code == 200
        assert r.json()["data"]["invoice_number"] == "INV-2024-001"

        r = client.get(body["download"])
        assert r.status_code == 200
        assert r.headers["content-type"] == XLSX
        ws = openpyxl.load_workbook(io.BytesIO(r.content)).worksheets[0]
        assert ws["C3"].value == "INV-2024-001"
        assert ws["G21"].value == 1234.5

    def test_uploads_are_removed(self, client, fake_llm, text_pdf):
        fake_llm(INVOICE_JSON)
        client.post("/api/invoice/process", files={"raw_invoice": _upload(text_pdf)})
        assert list(settings.upload_dir.iterdir()) == []

    def test_html_template_produces_pdf(self, client, fake_llm, fake_renderer, text_pdf):
        fake_llm(INVOICE_JSON)
        r = client.post(
            "/api/invoice/process",
            files={"raw_invoice": _upload(text_pdf)},
            data={"template_name": "default"},
        )
        assert r.status_code == 200, r.text
        assert "INV-2024-001" in fake_renderer.rendered[0]

        r = client.get(r.json()["download"])
        assert r.headers["content-type"] == "application/pdf"
        assert r.content == b"%PDF-1.7 fake"

    def test_unknown_html_template(self, client, fake_llm, fake_renderer, text_pdf):
        fake_llm(INVOICE_JSON)
        r = client.post(
            "/api/invoice/process",
            files={"raw_invoice": _upload(text_pdf)},
            data={"template_name": "nope"},
        )
        assert r.status_code == 404
        assert r.json()["kind"] == ErrorKind.TEMPLATE_NOT_FOUND.value

    def test_template_name_that_sanitizes_to_nothing(self, client, fake_llm, fake_renderer, text_pdf):
        model = fake_llm()
        r = client.post(
            "/api/invoice/process",
            files={"raw_invoice": _upload(text_pdf)},
            data={"template_name": "..."},
        )
        assert r.status_code == 404
        assert fake_renderer.rendered == []
        assert model.calls == []

    def test_excel_form(self, client, fake_llm, text_pdf, tmp_path):
        form = tmp_path / "form.xlsx"
        workbook = openpyxl.Workbook()
        workbook.active["A2"] = "Invoice No"
        workbook.save(form)

        fake_llm(INVOICE_JSON)
        r = client.post(
            "/api/invoice/process",
            files={"raw_invoice": _upload(text_pdf), "form_image": _upload(form, mime=XLSX)},
        )
        assert r.status_code == 200, r.text
        ws = openpyxl.load_workbook(io.BytesIO(client.get(r.json()["download"]).content)).worksheets[0]
        assert ws["B2"].value == "INV-2024-001"

    def test_missing_raw_invoice(self, client):
        r = client.post("/api/invoice/process", data={"template_name": "default"})
        assert r.status_code == 400
        assert r.json() == {"success": False, "error": "No invoice file uploaded. Field name must be 'raw_invoice'."}

    def test_unsupported_raw_type(self, client, fake_llm):
        model = fake_llm()
        r = client.post("/api/invoice/process", files={"raw_invoice": ("notes.txt", io.BytesIO(b"hello"), "text/plain")})
        assert r.status_code == 400
        assert r.json()["kind"] == ErrorKind.UNSUPPORTED_FORMAT.value
        assert model.calls == []

    def test_legacy_excel_form(self, client, fake_llm, text_pdf):
        model = fake_llm()
        r = client.post(
            "/api/invoice/process",
            files={
                "raw_invoice": _upload(text_pdf),
                "form_image": ("old.xls", io.BytesIO(b"\xd0\xcf\x11\xe0"), "application/vnd.ms-excel"),
            },
        )
        assert r.status_code == 400
        assert "Legacy .xls" in r.json()["error"]
        assert model.calls == []

    def test_extraction_failure_envelope(self, client, fake_llm, text_pdf, active_selection):
        active_selection.set("openai", "gpt-4o")
        fake_llm("Sorry, I cannot help with that.", "Still nothing useful.")
        r = client.post("/api/invoice/process", files={"raw_invoice": _upload(text_pdf)})
        assert r.status_code == 422

        body = r.json()
        assert body["success"] is False
        assert body["kind"] == ErrorKind.UNPARSEABLE_RESPONSE.value
        assert body["rawResponseSnippet"].startswith("Sorry")
        assert body["parseError"]
        assert body["provider"] == "openai"
        assert body["model"] == "gpt-4o"
        assert list(invoice_store.output_dir.iterdir()) == []

    def test_provider_failure_envelope(self, client, fake_llm, text_pdf):
        fake_llm(ProviderError("Rate limit or quota exceeded", ErrorKind.RATE_LIMITED))
        r = client.post("/api/invoice/process", files={"raw_invoice": _upload(text_pdf)})
        assert r.status_code == 422
        assert r.json()["kind"] == ErrorKind.RATE_LIMITED.value
        assert r.json()["error"] == "Rate limit or quota exceeded"

    def test_file_too_large(self, client, fake_llm, text_pdf):
        model = fake_llm()
        original = settings.max_file_size_mb
        settings.max_file_size_mb = 0
        try:
            r = client.post("/api/invoice/process", files={"raw_invoice": _upload(text_pdf)})
            assert r.status_code == 413
            assert r.json()["error"] == "File too large. Max size: 0MB"
            assert model.calls == []
            assert list(settings.upload_dir.iterdir()) == []
        finally:
            settings.max_file_size_mb = original


class TestInvoiceLookup:

    def test_unknown_invoice(self, client):
        r = client.get("/api/invoice/00000000-0000-0000-0000-000000000000")
        assert r.status_code == 404
        assert r.json()["kind"] == ErrorKind.INVOICE_NOT_FOUND.value

    def test_unknown_download(self, client):
        r = client.get("/api/invoice/does-not-exist/download")
        assert r.status_code == 404

    def test_malformed_id_is_rejected(self, client):
        r = client.get("/api/invoice/not.an.id")
        assert r.status_code == 404

    def test_supported_formats(self, client):
        r = client.get("/api/invoice/formats/supported")
        assert r.status_code == 200
        assert ".pdf" in r.json()["formats"]["documents"]


class TestProviderConfig:

    def test_list_providers(self, client, active_selection):
        active_selection.set("openai", "gpt-4o")
        body = client.get("/api/config/providers").json()
        assert body["activeProvider"] == "openai"
        assert "anthropic" in body["availableProviders"]
        assert "ollama" in body["availableProviders"]

    def test_set_provider(self, client, active_selection):
        r = client.post("/api/config/set", json={"provider": "Anthropic", "model": "claude-3-5-sonnet-20241022"})
        assert r.status_code == 200
        assert r.json()["activeProvider"] == "anthropic"
        assert active_selection.get().model == "claude-3-5-sonnet-20241022"

    def test_set_keeps_model_when_omitted(self, client, active_selection):
        before = active_selection.get().model
        client.post("/api/config/set", json={"provider": "groq"})
        assert active_selection.get().provider == "groq"
        assert active_selection.get().model == before

    def test_set_requires_provider(self, client, active_selection):
        r = client.post("/api/config/set", json={"model": "gpt-4o"})
        assert r.status_code == 400
        assert r.json()["error"] == "Provider is required"

    def test_set_unknown_provider_leaves_selection(self, client, active_selection):
        before = active_selection.get()
        r = client.post("/api/config/set", json={"provider": "skynet"})
        assert r.status_code == 400
        assert r.json()["kind"] == ErrorKind.UNKNOWN_PROVIDER.value
        assert active_selection.get() == before

    def test_connection_test_does_not_change_default(self, client, fake_llm, active_selection):
        before = active_selection.get()
        model = fake_llm(" OK\n")
        original_key = settings.mistral_api_key
        settings.mistral_api_key = "sk-test-1234567890abcd"
        try:
            r = client.post("/api/config/test", json={"provider": "mistral", "model": "mistral-small-latest"})
        finally:
            settings.mistral_api_key = original_key

        body = r.json()
        assert r.status_code == 200
        assert body["status"] == "connected"
        assert body["reply"] == "OK"
        assert body["provider"] == "mistral"
        assert body["apiKey"] == "sk-tes...abcd"
        assert model.calls[0]["max_tokens"] == 16
        assert active_selection.get() == before

    def test_connection_test_reports_provider_error(self, client, fake_llm):
        fake_llm(ProviderError("Authentication failed for openai.", ErrorKind.UNAUTHORIZED))
        body = client.post("/api/config/test").json()
        assert body["success"] is False
        assert body["status"] == "error"
        assert body["error"] == "Authentication failed for openai."

    def test_connection_test_empty_reply(self, client, fake_llm):
        fake_llm("   ")
        body = client.post("/api/config/test", json={}).json()
        assert body["status"] == "no_response"

    def test_connection_test_unknown_provider(self, client, fake_llm):
        fake_llm()
        r = client.post("/api/config/test", json={"provider": "skynet"})
        assert r.status_code == 400


class TestTemplates:

    def test_save_and_list(self, client):
        r = client.post("/api/templates/save", json={"name": "Acme Co.", "html": "<p>{{ client_name }}</p>"})
        assert r.status_code == 200
        assert r.json()["name"] == "AcmeCo"
        assert client.get("/api/templates").json()["templates"] == ["AcmeCo", "default"]

    def test_save_requires_name_and_html(self, client):
        r = client.post("/api/templates/save", json={"name": "x"})
        assert r.status_code == 400
        assert r.json()["error"] == "Name and HTML are required"

    def test_save_rejects_name_without_safe_characters(self, client):
        r = client.post("/api/templates/save", json={"name": "../..", "html": "<p></p>"})
        assert r.status_code == 400

    def test_preview(self, client, fake_renderer):
        r = client.post("/api/templates/preview", json={"html": "<h1>Hi</h1>"})
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/pdf"
        assert fake_renderer.rendered == ["<h1>Hi</h1>"]

    def test_preview_requires_html(self, client, fake_renderer):
        r = client.post("/api/templates/preview", json={})
        assert r.status_code == 400
        assert fake_renderer.rendered == []

    def test_generate(self, client, fake_llm, png_file):
        fake_llm("```html\n<!DOCTYPE html><html>{{ invoice_number }}</html>\n```")
        r = client.post("/api/templates/generate", files={"reference_image": _upload(png_file, mime="image/png")})
        assert r.status_code == 200, r.text
        assert r.json()["html"] == "<!DOCTYPE html><html>{{ invoice_number }}</html>"
        assert list(settings.upload_dir.iterdir()) == []

    def test_generate_requires_image(self, client):
        r = client.post("/api/templates/generate")
        assert r.status_code == 400
        assert r.json()["error"] == "No reference image provided"

    def test_generate_with_text_only_model(self, client, fake_llm, png_file, active_selection):
        active_selection.set("deepseek", "deepseek-chat")
        model = fake_llm()
        r = client.post("/api/templates/generate", files={"reference_image": _upload(png_file, mime="image/png")})
        assert r.status_code == 422
        assert r.json()["kind"] == ErrorKind.MODEL_CANNOT_SEE_IMAGES.value
        assert model.calls == []
