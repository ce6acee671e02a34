"""
AI Provider Implementations

Concrete implementations for each supported AI provider, registered in a
lookup table so the metadata generator can resolve them by name.
"""

from typing import Dict, Optional, Type

import aiohttp
import openai
import anthropic
from openai import AsyncOpenAI
from anthropic import AsyncAnthropic

from dualcast.core.config import settings
from dualcast.services.ai.base import (
    BaseAIService,
    AIProvider,
    AIResponse,
    AIUsageMetrics,
    AIServiceError,
    ConfigurationError,
    RateLimitError,
    ProviderError,
)

import logging

logger = logging.getLogger(__name__)


class OpenAIService(BaseAIService):
    """OpenAI chat completions"""

    provider = AIProvider.OPENAI
    default_model = settings.OPENAI_DEFAULT_MODEL
    base_url: Optional[str] = None

    def __init__(self, model: str = None, api_key: str = None, timeout: float = None):
        super().__init__(model, api_key, timeout)
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=0,
            default_headers=self._default_headers(),
        )

    def _default_headers(self) -> Optional[Dict[str, str]]:
        return None

    async def _make_request(self, prompt: str, **kwargs) -> AIResponse:
        """Make request to an OpenAI-compatible chat completions API"""
        name = self.provider.value
        try:
            messages = []
            system_prompt = kwargs.get("system_prompt")
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=kwargs.get("max_tokens", settings.MAX_TOKENS_PER_REQUEST),
                temperature=kwargs.get("temperature", settings.AI_TEMPERATURE),
            )

            if not response.choices:
                raise ProviderError(f"{name} returned no choices", name, self.model)

            usage = response.usage
            return AIResponse(
                content=response.choices[0].message.content or "",
                usage=AIUsageMetrics(
                    provider=name,
                    model=self.model,
                    tokens_input=usage.prompt_tokens if usage else 0,
                    tokens_output=usage.completion_tokens if usage else 0,
                ),
                metadata={
                    "finish_reason": response.choices[0].finish_reason,
                    "model": response.model,
                },
            )

        except openai.AuthenticationError as e:
            raise ConfigurationError(f"{name} rejected the API key: {e}", name, self.model, e)
        except openai.RateLimitError as e:
            raise RateLimitError(f"{name} rate limit exceeded: {e}", name, self.model, e)
        except openai.APIError as e:
            raise ProviderError(f"{name} API error: {e}", name, self.model, e)


class OpenRouterService(OpenAIService):
    """OpenRouter through its OpenAI-compatible endpoint"""

    provider = AIProvider.OPENROUTER
    default_model = settings.OPENROUTER_DEFAULT_MODEL
    base_url = settings.OPENROUTER_BASE_URL

    def _default_headers(self) -> Optional[Dict[str, str]]:
        return {
            "HTTP-Referer": settings.OPENROUTER_SITE_URL,
            "X-Title": settings.PROJECT_NAME,
        }


class LlamaService(OpenRouterService):
    """Meta LLaMA models served through OpenRouter"""

    provider = AIProvider.LLAMA
    default_model = settings.LLAMA_DEFAULT_MODEL


class AnthropicService(BaseAIService):
    """Anthropic Claude messages API"""

    provider = AIProvider.ANTHROPIC
    default_model = settings.ANTHROPIC_DEFAULT_MODEL

    def __init__(self, model: str = None, api_key: str = None, timeout: float = None):
        super().__init__(model, api_key, timeout)
        self.client = AsyncAnthropic(
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
        )

    async def _make_request(self, prompt: str, **kwargs) -> AIResponse:
        """Make request to Anthropic API"""
        try:
            request = {
                "model": self.model,
                "max_tokens": kwargs.get("max_tokens", settings.MAX_TOKENS_PER_REQUEST),
                "temperature": kwargs.get("temperature", settings.AI_TEMPERATURE),
                "messages": [{"role": "user", "content": prompt}],
            }
            if kwargs.get("system_prompt"):
                request["system"] = kwargs["system_prompt"]

            response = await self.client.messages.create(**request)

            text = "".join(
                block.text for block in response.content if getattr(block, "type", "text") == "text"
            )
            return AIResponse(
                content=text,
                usage=AIUsageMetrics(
                    provider=self.provider.value,
                    model=self.model,
                    tokens_input=response.usage.input_tokens,
                    tokens_output=response.usage.output_tokens,
                ),
                metadata={
                    "stop_reason": response.stop_reason,
                    "model": response.model,
                },
            )

        except anthropic.AuthenticationError as e:
            raise ConfigurationError(f"Anthropic rejected the API key: {e}", "anthropic", self.model, e)
        except anthropic.RateLimitError as e:
            raise RateLimitError(f"Anthropic rate limit exceeded: {e}", "anthropic", self.model, e)
        except anthropic.APIError as e:
            raise ProviderError(f"Anthropic API error: {e}", "anthropic", self.model, e)


class GeminiService(BaseAIService):
    """Google Gemini generateContent REST API"""

    provider = AIProvider.GEMINI
    default_model = settings.GEMINI_DEFAULT_MODEL

    async def _make_request(self, prompt: str, **kwargs) -> AIResponse:
        url = f"{settings.GEMINI_API_URL}/models/{self.model}:generateContent"
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": kwargs.get("temperature", settings.AI_TEMPERATURE),
                "maxOutputTokens": kwargs.get("max_tokens", settings.MAX_TOKENS_PER_REQUEST),
            },
        }
        if kwargs.get("system_prompt"):
            payload["systemInstruction"] = {"parts": [{"text": kwargs["system_prompt"]}]}

        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    url,
                    json=payload,
                    headers={"x-goog-api-key": self.api_key},
                ) as response:
                    data = await response.json(content_type=None)
                    status = response.status
        except aiohttp.ClientError as e:
            raise ProviderError(f"Gemini network error: {e}", "gemini", self.model, e)

        if status == 429:
            raise RateLimitError("Gemini rate limit exceeded", "gemini", self.model)
        if status in (401, 403):
            raise ConfigurationError(
                f"Gemini rejected the API key: {self._error_message(data)}", "gemini", self.model
            )
        if status >= 400:
            raise ProviderError(
                f"Gemini API error ({status}): {self._error_message(data)}", "gemini", self.model
            )

        candidates = (data or {}).get("candidates") or []
        parts = candidates[0].get("content", {}).get("parts", []) if candidates else []
        usage = (data or {}).get("usageMetadata", {})
        return AIResponse(
            content="".join(part.get("text", "") for part in parts),
            usage=AIUsageMetrics(
                provider="gemini",
                model=self.model,
                tokens_input=usage.get("promptTokenCount", 0),
                tokens_output=usage.get("candidatesTokenCount", 0),
            ),
            metadata={"finish_reason": candidates[0].get("finishReason") if candidates else None},
        )

    @staticmethod
    def _error_message(data) -> str:
        if isinstance(data, dict):
            return data.get("error", {}).get("message", "unknown error")
        return "unknown error"


PROVIDER_REGISTRY: Dict[str, Type[BaseAIService]] = {}

DEFAULT_API_KEYS = {
    AIProvider.OPENAI: lambda: settings.OPENAI_API_KEY,
    AIProvider.ANTHROPIC: lambda: settings.ANTHROPIC_API_KEY,
    AIProvider.GEMINI: lambda: settings.GEMINI_API_KEY,
    AIProvider.OPENROUTER: lambda: settings.OPENROUTER_API_KEY,
    AIProvider.LLAMA: lambda: settings.OPENROUTER_API_KEY,
}


def register_provider(name: str, service_class: Type[BaseAIService]) -> None:
    PROVIDER_REGISTRY[name.lower()] = service_class


def get_provider_class(name: str) -> Type[BaseAIService]:
    service_class = PROVIDER_REGISTRY.get((name or "").lower())
    if service_class is None:
        raise ConfigurationError(f"Unsupported provider: {name}", provider=name or "")
    return service_class


def default_api_key(name: str) -> str:
    service_class = get_provider_class(name)
    getter = DEFAULT_API_KEYS.get(service_class.provider)
    return getter() if getter else ""


register_provider("openai", OpenAIService)
register_provider("anthropic", AnthropicService)
register_provider("claude", AnthropicService)
register_provider("gemini", GeminiService)
register_provider("openrouter", OpenRouterService)
register_provider("llama", LlamaService)


class AIServiceFactory:
    """Factory for creating AI service instances"""

    @staticmethod
    def create_text_service(
        provider: str = None,
        model: str = None,
        api_key: str = None,
        timeout: float = None,
    ) -> BaseAIService:
        """Create a text generation service, falling back to the project key"""
        provider = provider or settings.DEFAULT_MODEL_PROVIDER
        service_class = get_provider_class(provider)
        return service_class(
            model=model,
            api_key=api_key or default_api_key(provider),
            timeout=timeout,
        )

    @staticmethod
    def is_supported(provider: str) -> bool:
        return (provider or "").lower() in PROVIDER_REGISTRY

    @staticmethod
    def has_credentials(provider: str, api_key: Optional[str] = None) -> bool:
        if api_key and api_key.strip():
            return True
        try:
            return bool(default_api_key(provider).strip())
        except AIServiceError:
            return False
