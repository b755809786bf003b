"""
Pytest configuration and shared fixtures.

Registers the integration marker/option, points every storage path at a
temporary directory, and offers fake chat models so no test reaches a real
provider unless --run-integration is given.
"""

import fitz
import pytest

from invoice_agent.core.config import settings
from invoice_agent.scripts.generate_template import build_default_template
from invoice_agent.services import llm


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against the configured real LLM provider"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring a real provider API key"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeChatModel:
    """Returns queued replies in order; queued exceptions are raised instead"""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []
        self.closed = 0

    async def aclose(self):
        self.closed += 1

    async def invoke(self, messages, max_tokens=None):
        self.calls.append({"messages": messages, "max_tokens": max_tokens})
        if not self.replies:
            raise AssertionError("Unexpected provider call")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def fake_llm(monkeypatch):
    """install(*replies) swaps every provider behind the gateway for one FakeChatModel"""
    def install(*replies):
        model = FakeChatModel(replies)
        monkeypatch.setattr(llm, "get_chat_model", lambda selection: model)
        return model
    return install


@pytest.fixture(autouse=True)
def isolated_storage(tmp_path):
    """Uploads, outputs and templates live under tmp_path for every test"""
    original = {
        "upload_dir": settings.upload_dir,
        "output_dir": settings.output_dir,
        "templates_dir": settings.templates_dir,
        "default_template_path": settings.default_template_path,
    }
    bundled_default_html = settings.templates_dir / "default.html"

    templates_dir = tmp_path / "templates"
    templates_dir.mkdir()
    (templates_dir / "default.html").write_text(bundled_default_html.read_text(encoding="utf-8"), encoding="utf-8")

    settings.upload_dir = tmp_path / "uploads"
    settings.output_dir = tmp_path / "outputs"
    settings.templates_dir = templates_dir
    settings.default_template_path = templates_dir / "default_template.xlsx"
    try:
        yield tmp_path
    finally:
        for name, value in original.items():
            setattr(settings, name, value)


@pytest.fixture
def default_workbook():
    return build_default_template(settings.resolved_default_template_path())


@pytest.fixture
def active_selection():
    """Restores the process-wide provider selection after the test"""
    original = llm.provider_config.get()
    try:
        yield llm.provider_config
    finally:
        llm.provider_config.set(original.provider, original.model)


def make_text_pdf(path, lines):
    doc = fitz.open()
    page = doc.new_page()
    page.insert_text((72, 72), "\n".join(lines), fontsize=11)
    doc.save(str(path))
    doc.close()
    return path


def make_blank_pdf(path):
    doc = fitz.open()
    doc.new_page()
    doc.save(str(path))
    doc.close()
    return path


SAMPLE_INVOICE_LINES = [
    "TAX INVOICE",
    "Invoice No: INV-2024-001    Date: 2024-03-15",
    "Seller: Acme Traders Pvt Ltd, 12 MG Road, Bengaluru",
    "Buyer: Globex Retail LLP, 4 Park Street, Kolkata",
    "1. Steel bolts M8   HSN 7318   10 pcs @ 100.00   1000.00",
    "SGST 9%: 90.00   CGST 9%: 90.00",
    "Total: INR 1234.50",
]


@pytest.fixture
def text_pdf(tmp_path):
    return make_text_pdf(tmp_path / "invoice.pdf", SAMPLE_INVOICE_LINES)


@pytest.fixture
def scanned_pdf(tmp_path):
    return make_blank_pdf(tmp_path / "scan.pdf")


@pytest.fixture
def png_file(tmp_path):
    path = tmp_path / "invoice.png"
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 8, 8), False)
    pix.clear_with(255)
    path.write_bytes(pix.tobytes("png"))
    return path
