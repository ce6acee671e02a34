"""
Base AI Service Classes

Provides the provider abstraction used by the metadata generator: every
provider implements a single prompt-completion request and shares error
classification, response cleanup and usage tracking.
"""

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import logging

from dualcast.core.config import settings

logger = logging.getLogger(__name__)


class AIProvider(str, Enum):
    """Supported AI providers"""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    OPENROUTER = "openrouter"
    LLAMA = "llama"


@dataclass
class AIUsageMetrics:
    """Tracks AI service usage per request"""
    provider: str
    model: str
    tokens_input: int = 0
    tokens_output: int = 0
    latency_ms: int = 0
    timestamp: float = 0.0

    def __post_init__(self):
        if self.timestamp == 0.0:
            self.timestamp = time.time()


@dataclass
class AIResponse:
    """Standardized AI response format"""
    content: str
    usage: AIUsageMetrics
    metadata: Dict[str, Any] = field(default_factory=dict)


class AIServiceError(Exception):
    """Base exception for AI service errors"""
    def __init__(self, message: str, provider: str = "", model: str = "", original_error: Exception = None):
        self.message = message
        self.provider = provider
        self.model = model
        self.original_error = original_error
        super().__init__(self.message)


class ConfigurationError(AIServiceError):
    """Unknown provider, missing credential or rejected credential; never retried"""
    pass


class RateLimitError(AIServiceError):
    """Rate limit exceeded error"""
    pass


class ProviderError(AIServiceError):
    """Provider-specific error"""
    pass


class AITimeoutError(ProviderError):
    """Provider did not answer within the caller's deadline"""
    pass


class EmptyResponseError(ProviderError):
    """Provider answered without usable text"""
    pass


RETRYABLE_ERRORS = (RateLimitError, ProviderError)

_CODE_FENCE = re.compile(r"```[a-zA-Z]*\s*")
_WRAPPING_QUOTES = re.compile(r"^[\"']|[\"']$")


def clean_response(text: Optional[str]) -> str:
    """Strip markdown code fences and wrapping quotes from model output"""
    if not text:
        return ""
    cleaned = _CODE_FENCE.sub("", str(text).strip())
    cleaned = _WRAPPING_QUOTES.sub("", cleaned.strip())
    return cleaned.strip()


class BaseAIService(ABC):
    """Abstract base class for all AI services"""

    provider: AIProvider
    default_model: str = ""

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None, timeout: Optional[float] = None):
        self.model = model or self.default_model
        self.api_key = (api_key or "").strip()
        self.timeout = timeout or settings.AI_REQUEST_TIMEOUT
        self.usage_metrics: List[AIUsageMetrics] = []
        if not self.api_key:
            raise ConfigurationError(
                f"No API key configured for {self.provider.value}",
                provider=self.provider.value,
                model=self.model,
            )

    @abstractmethod
    async def _make_request(self, prompt: str, **kwargs) -> AIResponse:
        """Make the actual API request to the AI provider"""
        pass

    async def complete(self, prompt: str, **kwargs) -> str:
        """Complete text from a prompt; one provider round trip, no retries"""
        if not prompt or not prompt.strip():
            raise AIServiceError("Input text cannot be empty", self.provider.value, self.model)

        start_time = time.time()
        response = await self._make_request(prompt=prompt, **kwargs)
        response.usage.latency_ms = int((time.time() - start_time) * 1000)
        self.usage_metrics.append(response.usage)

        content = clean_response(response.content)
        if not content:
            raise EmptyResponseError(
                f"{self.provider.value} returned an empty response",
                self.provider.value,
                self.model,
            )
        return content

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get usage statistics for monitoring"""
        if not self.usage_metrics:
            return {}

        total_requests = len(self.usage_metrics)
        return {
            "provider": self.provider.value,
            "model": self.model,
            "total_tokens_input": sum(m.tokens_input for m in self.usage_metrics),
            "total_tokens_output": sum(m.tokens_output for m in self.usage_metrics),
            "total_requests": total_requests,
            "average_latency_ms": sum(m.latency_ms for m in self.usage_metrics) / total_requests,
        }
