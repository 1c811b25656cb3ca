"""
providers.py - One generate() interface over Claude, OpenAI and Gemini

Which backend an analyzer talks to is decided once, when the provider is
built, so every call made through it is counted against the same quota.
"""

import base64
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict

import anthropic
import httpx
import openai
from anthropic import Anthropic
from openai import OpenAI
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

import config
from utils_logging import log_event, log_token_usage


class ProviderError(RuntimeError):
    """Network, auth or backend failure while calling a provider."""


class ProviderUnsupported(ProviderError):
    """The provider cannot handle this kind of input (e.g. PDF vision)."""


class ProviderConfigError(ValueError):
    """Unknown provider name or missing credentials."""


@dataclass(frozen=True)
class MediaPart:
    mime_type: str
    data: bytes

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == "application/pdf"

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class LLMProvider(ABC):
    """Base class for LLM backends. Subclasses only shape requests and read responses."""

    name = "base"
    supports_pdf_vision = False
    api_errors: tuple = ()

    def __init__(self, model: str, max_tokens: int = config.LLM_MAX_TOKENS):
        self.model = model
        self.max_tokens = max_tokens
        self.last_usage: Optional[Dict[str, int]] = None

    def generate(self, prompt: str, media: Optional[MediaPart] = None, task: str = "extraction") -> str:
        """
        Send a prompt (plus optional image/PDF bytes) and return the raw response text.

        `task` names the operation in the token/cost ledger (image, pdf_text, ...).

        Raises:
            ProviderUnsupported: PDF media on a backend without PDF vision
            ProviderError: the backend call failed
        """
        if media is not None and media.is_pdf and not self.supports_pdf_vision:
            raise ProviderUnsupported(f"{self.name} does not support PDF vision input")

        self.last_usage = None
        try:
            text = self._call(prompt, media)
        except self.api_errors as e:
            log_event(f"❌ {self.name} request failed: {e}", "error")
            raise ProviderError(f"{self.name} request failed: {e}") from e

        if self.last_usage:
            log_token_usage(task, self.model, self.last_usage["input_tokens"], self.last_usage["output_tokens"])

        return text or ""

    @abstractmethod
    def _call(self, prompt: str, media: Optional[MediaPart]) -> str:
        ...

    def _record_usage(self, in_tok: int, out_tok: int):
        self.last_usage = {"input_tokens": in_tok, "output_tokens": out_tok}

    def __repr__(self):
        return f"{type(self).__name__}(model={self.model!r})"


class ClaudeProvider(LLMProvider):
    """Anthropic Claude. Images go in as base64 content blocks ahead of the text."""

    name = "claude"
    api_errors = (anthropic.AnthropicError,)

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 max_tokens: int = config.LLM_MAX_TOKENS,
                 timeout: float = config.LLM_TIMEOUT_SECONDS, client=None):
        super().__init__(model or config.DEFAULT_MODELS["claude"], max_tokens)
        if client is None:
            api_key = api_key or config.ANTHROPIC_API_KEY
            if not api_key:
                raise ProviderConfigError(
                    "ANTHROPIC_API_KEY not found. Please set it in your environment or .env file.\n"
                    "Get your API key from: https://console.anthropic.com/settings/keys"
                )
            client = Anthropic(api_key=api_key, timeout=timeout)
        self.client = client

    def _call(self, prompt, media):
        content = []
        if media is not None:
            content.append({
                "type": "image",
                "source": {"type": "base64", "media_type": media.mime_type, "data": media.b64()}
            })
        content.append({"type": "text", "text": prompt})

        response = self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            messages=[{"role": "user", "content": content}]
        )

        if getattr(response, "usage", None):
            self._record_usage(response.usage.input_tokens, response.usage.output_tokens)

        for block in response.content:
            if getattr(block, "type", None) == "text":
                return block.text
        return ""


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions. Images are inlined as data URLs in the user message."""

    name = "openai"
    api_errors = (openai.OpenAIError,)

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 max_tokens: int = config.LLM_MAX_TOKENS,
                 timeout: float = config.LLM_TIMEOUT_SECONDS, client=None):
        super().__init__(model or config.DEFAULT_MODELS["openai"], max_tokens)
        if client is None:
            api_key = api_key or config.OPENAI_API_KEY
            if not api_key:
                raise ProviderConfigError(
                    "OPENAI_API_KEY not found. Please set it in your environment or .env file.\n"
                    "Get your API key from: https://platform.openai.com/api-keys"
                )
            client = OpenAI(api_key=api_key, timeout=timeout)
        self.client = client

    def _call(self, prompt, media):
        if media is not None:
            content = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": f"data:{media.mime_type};base64,{media.b64()}"}}
            ]
        else:
            content = prompt

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": content}],
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"}
        )

        usage = getattr(response, "usage", None)
        if usage:
            self._record_usage(usage.prompt_tokens, usage.completion_tokens)

        return response.choices[0].message.content


class GeminiProvider(LLMProvider):
    """Google Gemini. The only backend here that reads PDFs directly."""

    name = "gemini"
    supports_pdf_vision = True
    # google-genai re-raises transport failures (timeouts, dropped connections) unwrapped
    api_errors = (genai_errors.APIError, httpx.HTTPError)

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 max_tokens: int = config.LLM_MAX_TOKENS,
                 timeout: float = config.LLM_TIMEOUT_SECONDS, client=None):
        super().__init__(model or config.DEFAULT_MODELS["gemini"], max_tokens)
        if client is None:
            api_key = api_key or config.GEMINI_API_KEY
            if not api_key:
                raise ProviderConfigError(
                    "GEMINI_API_KEY not found. Please set it in your environment or .env file.\n"
                    "Get your API key from: https://aistudio.google.com/app/apikey"
                )
            client = genai.Client(api_key=api_key, http_options={"timeout": int(timeout * 1000)})
        self.client = client

    def _call(self, prompt, media):
        contents = [prompt]
        if media is not None:
            contents.append(genai_types.Part.from_bytes(data=media.data, mime_type=media.mime_type))

        response = self.client.models.generate_content(
            model=self.model,
            contents=contents,
            config={
                "temperature": 0.1,
                "max_output_tokens": self.max_tokens,
                "response_mime_type": "application/json"
            }
        )

        content = response.text

        usage = getattr(response, "usage_metadata", None)
        if usage is not None and usage.prompt_token_count is not None:
            self._record_usage(usage.prompt_token_count, usage.candidates_token_count or 0)
        else:
            # Fallback estimation
            self._record_usage(len(prompt) // 4, len(content or "") // 4)

        return content


PROVIDERS = {
    "claude": ClaudeProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def resolve_provider_name(provider: Optional[str] = None,
                          anthropic_api_key: Optional[str] = None,
                          openai_api_key: Optional[str] = None,
                          gemini_api_key: Optional[str] = None) -> str:
    """
    Pick the backend: an explicit name wins, otherwise whichever key is set.
    With several keys present Claude is preferred, then OpenAI, then Gemini.
    """
    if provider:
        name = provider.strip().lower()
        if name not in PROVIDERS:
            raise ProviderConfigError(f"Unknown LLM provider '{provider}'. Choose one of: {', '.join(PROVIDERS)}")
        return name

    available = [
        name for name, key in (
            ("claude", anthropic_api_key),
            ("openai", openai_api_key),
            ("gemini", gemini_api_key),
        ) if key
    ]
    if not available:
        raise ProviderConfigError(
            "No LLM API key found. Set ANTHROPIC_API_KEY, OPENAI_API_KEY or GEMINI_API_KEY."
        )
    return available[0]


def create_provider(provider: Optional[str] = None, model: Optional[str] = None,
                    anthropic_api_key: Optional[str] = None,
                    openai_api_key: Optional[str] = None,
                    gemini_api_key: Optional[str] = None,
                    max_tokens: int = config.LLM_MAX_TOKENS,
                    timeout: float = config.LLM_TIMEOUT_SECONDS) -> LLMProvider:
    """Build the configured provider once; explicit arguments override config/.env values."""
    keys = {
        "claude": anthropic_api_key or config.ANTHROPIC_API_KEY,
        "openai": openai_api_key or config.OPENAI_API_KEY,
        "gemini": gemini_api_key or config.GEMINI_API_KEY,
    }
    name = resolve_provider_name(
        provider or config.LLM_PROVIDER,
        anthropic_api_key=keys["claude"],
        openai_api_key=keys["openai"],
        gemini_api_key=keys["gemini"],
    )

    instance = PROVIDERS[name](api_key=keys[name], model=model, max_tokens=max_tokens, timeout=timeout)
    log_event(f"🔧 LLM provider: {name} ({instance.model})")
    return instance
