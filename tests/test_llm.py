"""
Unit tests for the provider gateway: registry, selection store, vision
detection, error classification and the SDK adapters (HTTP mocked with respx).
"""

import asyncio

import httpx
import pytest
import respx

from invoice_agent.core.config import settings
from invoice_agent.core.errors import ErrorKind, ProviderError, UnknownProvider
from invoice_agent.services import llm

GOOGLE_CHAT_URL = "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions"


def _completion(content):
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 0,
        "model": "gemini-1.5-flash",
        "choices": [
            {"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}
        ],
    }


class TestVisionCapable:

    @pytest.mark.parametrize(
        "model",
        ["gpt-4o", "gpt-4o-mini", "claude-3-5-sonnet-20241022", "gemini-1.5-flash", "llava:13b",
         "meta-llama/llama-3.2-11b-vision-instruct", "pixtral-12b", "qwen2.5-vl-72b"],
    )
    def test_vision_models(self, model):
        assert llm.is_vision_capable(model)

    @pytest.mark.parametrize("model", ["gpt-3.5-turbo", "llama3-70b-8192", "deepseek-chat", "", None])
    def test_text_only_models(self, model):
        assert not llm.is_vision_capable(model)


class TestProviderRegistry:

    def test_every_provider_is_registered(self):
        assert set(llm.PROVIDERS) == set(llm.ProviderName)
        assert llm.available_providers()[0] == "openai"

    def test_resolve_is_case_insensitive(self):
        assert llm.resolve_provider(" Anthropic ") is llm.ProviderName.ANTHROPIC

    def test_unknown_provider_fails_fast(self):
        with pytest.raises(UnknownProvider) as exc:
            llm.resolve_provider("skynet")
        assert "skynet" in exc.value.message
        assert exc.value.kind is ErrorKind.UNKNOWN_PROVIDER

    def test_missing_key_is_unauthorized(self):
        original = settings.groq_api_key
        settings.groq_api_key = None
        try:
            with pytest.raises(ProviderError) as exc:
                llm.get_chat_model(llm.ProviderSelection("groq", "llama3-70b-8192"))
            assert exc.value.kind is ErrorKind.UNAUTHORIZED
            assert "GROQ_API_KEY" in exc.value.message
        finally:
            settings.groq_api_key = original

    def test_ollama_needs_no_key(self):
        model = llm.get_chat_model(llm.ProviderSelection("ollama", "llava"))
        assert isinstance(model, llm.OpenAICompatibleChatModel)
        assert str(model.client.base_url).startswith(settings.ollama_base_url.rstrip("/") + "/v1")

    def test_anthropic_uses_its_own_sdk(self):
        original = settings.anthropic_api_key
        settings.anthropic_api_key = "sk-ant-test-0123456789"
        try:
            model = llm.get_chat_model(llm.ProviderSelection("anthropic", "claude-3-5-sonnet-20241022"))
            assert isinstance(model, llm.AnthropicChatModel)
        finally:
            settings.anthropic_api_key = original


class TestProviderConfigStore:

    def test_set_swaps_snapshot(self):
        store = llm.ProviderConfigStore("openai", "gpt-4o")
        before = store.get()
        after = store.set("anthropic", "claude-3-5-sonnet-20241022")
        assert before == llm.ProviderSelection("openai", "gpt-4o")
        assert after == store.get() == llm.ProviderSelection("anthropic", "claude-3-5-sonnet-20241022")

    def test_set_without_model_keeps_model(self):
        store = llm.ProviderConfigStore("openai", "gpt-4o")
        assert store.set("OPENROUTER").model == "gpt-4o"

    def test_invalid_set_leaves_selection_unchanged(self):
        store = llm.ProviderConfigStore("openai", "gpt-4o")
        with pytest.raises(UnknownProvider):
            store.set("nope", "x")
        assert store.get() == llm.ProviderSelection("openai", "gpt-4o")

    def test_describe(self):
        described = llm.ProviderConfigStore("groq", "llama3-70b-8192").describe()
        assert described["activeProvider"] == "groq"
        assert described["activeModel"] == "llama3-70b-8192"
        assert "ollama" in described["availableProviders"]


class TestClassifyProviderError:
    selection = llm.ProviderSelection("google", "gemini-1.5-flash")

    def test_timeout(self):
        error = llm.classify_provider_error(asyncio.TimeoutError(), self.selection)
        assert error.kind is ErrorKind.TIMEOUT

    def test_quota_message(self):
        error = llm.classify_provider_error(Exception("RESOURCE_EXHAUSTED: quota exceeded"), self.selection)
        assert error.kind is ErrorKind.RATE_LIMITED

    def test_auth_message_names_env_var(self):
        error = llm.classify_provider_error(Exception("Invalid API key provided"), self.selection)
        assert error.kind is ErrorKind.UNAUTHORIZED
        assert "GOOGLE_API_KEY" in error.message

    def test_image_rejection_suggests_vision_model(self):
        exc = Exception("400 Bad Request: this model does not support image input")
        error = llm.classify_provider_error(exc, self.selection)
        assert error.kind is ErrorKind.BAD_REQUEST
        assert "vision-capable" in error.message

    def test_unknown(self):
        error = llm.classify_provider_error(RuntimeError("socket closed"), self.selection)
        assert error.kind is ErrorKind.UNKNOWN
        assert error.provider == "google"

    def test_provider_error_passes_through(self):
        original = ProviderError("x", ErrorKind.TIMEOUT)
        assert llm.classify_provider_error(original, self.selection) is original


class TestInvokeOverHttp:
    selection = llm.ProviderSelection("google", "gemini-1.5-flash")

    def setup_method(self):
        self._original_key = settings.google_api_key
        settings.google_api_key = "test-google-key-0123456789"

    def teardown_method(self):
        settings.google_api_key = self._original_key

    @respx.mock
    def test_successful_reply(self):
        route = respx.post(GOOGLE_CHAT_URL).mock(return_value=httpx.Response(200, json=_completion("OK")))
        reply = asyncio.run(llm.invoke(self.selection, llm.user_message("Reply with only the word: OK")))
        assert reply == "OK"
        assert route.call_count == 1

    @respx.mock
    def test_rate_limit_is_classified_without_retry(self):
        route = respx.post(GOOGLE_CHAT_URL).mock(
            return_value=httpx.Response(429, json={"error": {"message": "Resource has been exhausted", "code": 429}})
        )
        with pytest.raises(ProviderError) as exc:
            asyncio.run(llm.invoke(self.selection, llm.user_message("hi")))
        assert exc.value.kind is ErrorKind.RATE_LIMITED
        assert route.call_count == 1

    @respx.mock
    def test_unauthorized(self):
        respx.post(GOOGLE_CHAT_URL).mock(
            return_value=httpx.Response(401, json={"error": {"message": "API key not valid"}})
        )
        with pytest.raises(ProviderError) as exc:
            asyncio.run(llm.invoke(self.selection, llm.user_message("hi")))
        assert exc.value.kind is ErrorKind.UNAUTHORIZED

    @respx.mock
    def test_sdk_client_is_closed_after_call(self, monkeypatch):
        respx.post(GOOGLE_CHAT_URL).mock(return_value=httpx.Response(200, json=_completion("OK")))
        model = llm.get_chat_model(self.selection)
        monkeypatch.setattr(llm, "get_chat_model", lambda selection: model)
        asyncio.run(llm.invoke(self.selection, llm.user_message("hi")))
        assert model.client.is_closed()


def test_model_is_closed_when_call_fails(fake_llm):
    model = fake_llm(TimeoutError())
    with pytest.raises(ProviderError):
        asyncio.run(llm.invoke(llm.ProviderSelection("openai", "gpt-4o"), llm.user_message("hi")))
    assert model.closed == 1


def test_anthropic_adapter_converts_images_and_system():
    model = llm.AnthropicChatModel("claude-3-5-sonnet-20241022", "sk-ant-test-0123456789")
    messages = [
        {"role": "system", "content": "be terse"},
        *llm.user_message("read this", image_data_uri="data:image/png;base64,AAAA"),
    ]
    system, converted = model._convert(messages)
    assert system == "be terse"
    parts = converted[0]["content"]
    assert parts[0] == {"type": "text", "text": "read this"}
    assert parts[1] == {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AAAA"}}


def test_user_message_image_first():
    message = llm.user_message("prompt", image_data_uri="data:image/png;base64,AAAA", image_first=True)[0]
    assert [part["type"] for part in message["content"]] == ["image_url", "text"]


def test_mask_api_key():
    original = settings.openai_api_key
    try:
        settings.openai_api_key = "sk-proj-abcdefghijklmnop1234"
        assert llm.mask_api_key("openai") == "sk-pro...1234"
        settings.openai_api_key = None
        assert llm.mask_api_key("openai") == "(not set)"
        settings.openai_api_key = "short"
        assert llm.mask_api_key("openai") == "(too short)"
        assert llm.mask_api_key("ollama") == "(no key needed)"
    finally:
        settings.openai_api_key = original
