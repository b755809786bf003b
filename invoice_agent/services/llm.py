"""
Provider gateway: the only seam through which the pipeline reaches an LLM.

Providers are a closed registry. OpenAI-compatible backends share the openai
SDK with a per-provider base URL; Anthropic goes through its own SDK. Callers
take a ProviderSelection snapshot once per request and pass it down, so a
concurrent "set provider" never changes the model mid-request.
"""

import asyncio
import re
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import anthropic
import httpx
import openai
from loguru import logger

from ..core.config import settings
from ..core.errors import ErrorKind, ProviderError, UnknownProvider

Message = dict[str, Any]


class ProviderName(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    MISTRAL = "mistral"
    GROQ = "groq"
    DEEPSEEK = "deepseek"
    TOGETHER = "together"
    OPENROUTER = "openrouter"
    NVIDIA = "nvidia"
    OLLAMA = "ollama"


@dataclass(frozen=True)
class ProviderSpec:
    kind: str  # "openai" (OpenAI-compatible) or "anthropic"
    api_key_env: str | None
    base_url: str | None = None
    max_retries: int = 1


PROVIDERS: dict[ProviderName, ProviderSpec] = {
    ProviderName.OPENAI: ProviderSpec("openai", "OPENAI_API_KEY"),
    ProviderName.ANTHROPIC: ProviderSpec("anthropic", "ANTHROPIC_API_KEY"),
    # Quota-exhausted 429s from Google hang for minutes when retried
    ProviderName.GOOGLE: ProviderSpec(
        "openai", "GOOGLE_API_KEY", "https://generativelanguage.googleapis.com/v1beta/openai/", max_retries=0
    ),
    ProviderName.MISTRAL: ProviderSpec("openai", "MISTRAL_API_KEY", "https://api.mistral.ai/v1"),
    ProviderName.GROQ: ProviderSpec("openai", "GROQ_API_KEY", "https://api.groq.com/openai/v1"),
    ProviderName.DEEPSEEK: ProviderSpec("openai", "DEEPSEEK_API_KEY", "https://api.deepseek.com/v1"),
    ProviderName.TOGETHER: ProviderSpec("openai", "TOGETHER_API_KEY", "https://api.together.xyz/v1"),
    ProviderName.OPENROUTER: ProviderSpec("openai", "OPENROUTER_API_KEY", "https://openrouter.ai/api/v1"),
    ProviderName.NVIDIA: ProviderSpec("openai", "NVIDIA_API_KEY", "https://integrate.api.nvidia.com/v1"),
    ProviderName.OLLAMA: ProviderSpec("openai", None),
}

VISION_MODEL_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"vision",
        r"llava",
        r"bakllava",
        r"llama-3\.2",
        r"llama-4",
        r"gemini",
        r"gpt-4o",
        r"gpt-4-turbo",
        r"gpt-4\.1",
        r"claude-3",
        r"claude-(sonnet|opus|haiku)-4",
        r"pixtral",
        r"qwen.*vl",
        r"-vl-",
        r"mistral-large",
        r"mistral-small",
        r"gemma3",
    )
]


def is_vision_capable(model: str | None) -> bool:
    """True when the model family accepts image input alongside text"""
    if not model:
        return False
    return any(p.search(model) for p in VISION_MODEL_PATTERNS)


def available_providers() -> list[str]:
    return [p.value for p in ProviderName]


def resolve_provider(provider: str) -> ProviderName:
    try:
        return ProviderName(str(provider).strip().lower())
    except ValueError:
        raise UnknownProvider(
            f'Unknown provider: "{provider}". Available: {", ".join(available_providers())}'
        ) from None


@dataclass(frozen=True)
class ProviderSelection:
    provider: str
    model: str


class ProviderConfigStore:
    """
    Process-wide default selection.

    Reads return an immutable snapshot; writes validate first and then swap
    the snapshot under a lock, so readers never observe a half-applied change.
    """

    def __init__(self, provider: str, model: str):
        self._lock = threading.Lock()
        self._selection = ProviderSelection(resolve_provider(provider).value, model)

    def get(self) -> ProviderSelection:
        return self._selection

    def set(self, provider: str, model: str | None = None) -> ProviderSelection:
        name = resolve_provider(provider)
        with self._lock:
            self._selection = ProviderSelection(name.value, model or self._selection.model)
            selection = self._selection
        logger.info("Active provider changed", provider=selection.provider, model=selection.model)
        return selection

    def describe(self) -> dict:
        selection = self._selection
        return {
            "activeProvider": selection.provider,
            "activeModel": selection.model,
            "availableProviders": available_providers(),
        }


provider_config = ProviderConfigStore(settings.active_provider, settings.active_model)


def current_selection(selection: ProviderSelection | None = None) -> ProviderSelection:
    return selection or provider_config.get()


class ChatModel(Protocol):
    async def invoke(self, messages: list[Message], max_tokens: int | None = None) -> str: ...

    async def aclose(self) -> None: ...


class OpenAICompatibleChatModel:
    def __init__(self, model: str, api_key: str, base_url: str | None = None, max_retries: int = 1):
        self.model = model
        self.client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=settings.llm_timeout_seconds,
            max_retries=max_retries,
        )

    async def invoke(self, messages: list[Message], max_tokens: int | None = None) -> str:
        kwargs = {"max_tokens": max_tokens} if max_tokens else {}
        response = await self.client.chat.completions.create(model=self.model, messages=messages, **kwargs)
        return response.choices[0].message.content or ""

    async def aclose(self) -> None:
        await self.client.close()


class AnthropicChatModel:
    def __init__(self, model: str, api_key: str, max_retries: int = 1):
        self.model = model
        self.client = anthropic.AsyncAnthropic(
            api_key=api_key,
            timeout=settings.llm_timeout_seconds,
            max_retries=max_retries,
        )

    @staticmethod
    def _convert_part(part: dict) -> dict:
        if part.get("type") != "image_url":
            return part
        url = part["image_url"]["url"]
        header, _, data = url.partition(",")
        media_type = header.removeprefix("data:").split(";")[0] or "image/png"
        return {"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}}

    def _convert(self, messages: list[Message]) -> tuple[str | None, list[dict]]:
        system = None
        converted = []
        for message in messages:
            if message["role"] == "system":
                system = message["content"]
                continue
            content = message["content"]
            if isinstance(content, list):
                content = [self._convert_part(part) for part in content]
            converted.append({"role": message["role"], "content": content})
        return system, converted

    async def invoke(self, messages: list[Message], max_tokens: int | None = None) -> str:
        system, converted = self._convert(messages)
        kwargs = {"system": system} if system else {}
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens or settings.llm_max_tokens,
            messages=converted,
            **kwargs,
        )
        return "".join(block.text for block in response.content if getattr(block, "type", None) == "text")

    async def aclose(self) -> None:
        await self.client.close()


def _api_key(spec: ProviderSpec) -> str | None:
    if spec.api_key_env is None:
        return "ollama"
    return getattr(settings, spec.api_key_env.lower(), None)


def get_chat_model(selection: ProviderSelection) -> ChatModel:
    """Build a chat model for the selection (raises UnknownProvider, ProviderError)"""
    name = resolve_provider(selection.provider)
    spec = PROVIDERS[name]
    api_key = _api_key(spec)
    if not api_key:
        raise ProviderError(
            f"No API key configured for {name.value}. Set the {spec.api_key_env} environment variable.",
            ErrorKind.UNAUTHORIZED,
            provider=name.value,
            model=selection.model,
        )

    if spec.kind == "anthropic":
        return AnthropicChatModel(selection.model, api_key, max_retries=spec.max_retries)

    base_url = spec.base_url
    if name is ProviderName.OLLAMA:
        base_url = settings.ollama_base_url.rstrip("/") + "/v1"
    return OpenAICompatibleChatModel(selection.model, api_key, base_url=base_url, max_retries=spec.max_retries)


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    return status if isinstance(status, int) else None


def classify_provider_error(exc: BaseException, selection: ProviderSelection) -> ProviderError:
    """Map any SDK/transport failure onto the transport taxonomy with an actionable message"""
    if isinstance(exc, ProviderError):
        return exc

    provider, model = selection.provider, selection.model
    status = _status_code(exc)
    detail = str(exc) or exc.__class__.__name__
    lowered = detail.lower()

    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException,
                        openai.APITimeoutError, anthropic.APITimeoutError)):
        kind = ErrorKind.TIMEOUT
        message = (
            f"{provider} did not respond within {settings.llm_timeout_seconds:.0f} seconds. "
            "Try again, or switch to a faster model."
        )
    elif status == 429 or any(s in lowered for s in ("rate limit", "rate_limit", "quota", "resource_exhausted", "429")):
        kind = ErrorKind.RATE_LIMITED
        message = (
            f"Rate limit or quota exceeded for {provider} ({model}). "
            "Wait a minute and try again, or switch to another provider in Settings."
        )
    elif status in (401, 403) or any(s in lowered for s in ("api key", "api_key", "unauthorized", "authentication", "permission denied")):
        kind = ErrorKind.UNAUTHORIZED
        env = PROVIDERS[resolve_provider(provider)].api_key_env if provider in available_providers() else None
        message = f"Authentication failed for {provider}. Check that {env or 'the provider API key'} is set to a valid key."
    elif "timed out" in lowered or "timeout" in lowered:
        kind = ErrorKind.TIMEOUT
        message = (
            f"{provider} did not respond within {settings.llm_timeout_seconds:.0f} seconds. "
            "Try again, or switch to a faster model."
        )
    elif status in (400, 404, 413, 422) or "bad request" in lowered:
        kind = ErrorKind.BAD_REQUEST
        if any(s in lowered for s in ("multimodal", "image", "vision")):
            message = (
                f"Model '{model}' rejected the image input. Switch to a vision-capable model "
                "(e.g. gpt-4o, claude-3-5-sonnet, gemini-1.5-flash)."
            )
        else:
            message = f"{provider} rejected the request: {detail}"
    else:
        kind = ErrorKind.UNKNOWN
        message = f"{provider} call failed: {detail}"

    return ProviderError(message, kind, provider=provider, model=model)


async def invoke(
    selection: ProviderSelection,
    messages: list[Message],
    max_tokens: int | None = None,
) -> str:
    """
    Send a message list to the selected model and return its text reply.

    Raises:
        UnknownProvider: selection names a provider outside the registry
        ProviderError: any transport/provider failure, already classified
    """
    model = get_chat_model(selection)
    try:
        return await asyncio.wait_for(
            model.invoke(messages, max_tokens=max_tokens),
            timeout=settings.llm_timeout_seconds,
        )
    except Exception as exc:
        error = classify_provider_error(exc, selection)
        logger.warning(
            "Provider call failed",
            provider=selection.provider,
            model=selection.model,
            kind=error.kind.value,
            detail=str(exc)[:300],
        )
        raise error from exc
    finally:
        # each call owns its SDK client and connection pool
        await model.aclose()


def user_message(text: str, image_data_uri: str | None = None, image_first: bool = False) -> list[Message]:
    """Single user turn with optional inline image"""
    parts: list[dict] = [{"type": "text", "text": text}]
    if image_data_uri:
        image = {"type": "image_url", "image_url": {"url": image_data_uri, "detail": "high"}}
        parts = [image] + parts if image_first else parts + [image]
    return [{"role": "user", "content": parts}]


def mask_api_key(provider: str) -> str:
    """Masked credential for diagnostics, never the key itself"""
    spec = PROVIDERS.get(resolve_provider(provider))
    if spec.api_key_env is None:
        return "(no key needed)"
    key = _api_key(spec)
    if not key:
        return "(not set)"
    if len(key) > 10:
        return key[:6] + "..." + key[-4:]
    return "(too short)"
