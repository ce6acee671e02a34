"""
AI metadata generation for publish jobs

Generates the title, description, keywords and hashtags of a job, each with
the provider the caller chose for that field. Every field gets a bounded
number of attempts with exponential backoff, and every attempt a deadline.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field as dataclass_field
from typing import Callable, Dict, List, Optional, Union

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from dualcast.core.config import settings
from dualcast.schemas.publish_job import ContentField, FieldProviderConfig, GeneratedContent, ProviderConfig
from dualcast.services.ai.base import (
    AIServiceError,
    AITimeoutError,
    BaseAIService,
    EmptyResponseError,
    RETRYABLE_ERRORS,
)
from dualcast.services.ai.prompts import get_field_prompt, render_field_prompt
from dualcast.services.ai.providers import AIServiceFactory

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000
MAX_KEYWORDS = 20
MAX_HASHTAGS = 15
MAX_HASHTAG_LENGTH = 30

# Fields the job can publish without when partial metadata is allowed
OPTIONAL_FIELDS = (ContentField.KEYWORDS, ContentField.HASHTAGS)

_LIST_PREFIX = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
_LABEL_PREFIX = re.compile(r"^(title|description)\s*:\s*", re.IGNORECASE)
_HASHTAG_BODY = re.compile(r"[^\w]", re.UNICODE)

FieldValue = Union[str, List[str]]
ServiceFactory = Callable[..., BaseAIService]


class MetadataGenerationError(AIServiceError):
    """A field could not be generated after all attempts"""
    def __init__(self, message: str, field: ContentField, original_error: Exception = None):
        provider = getattr(original_error, "provider", "")
        model = getattr(original_error, "model", "")
        super().__init__(message, provider, model, original_error)
        self.field = field


@dataclass
class GenerationResult:
    content: GeneratedContent
    fallback_fields: List[ContentField] = dataclass_field(default_factory=list)


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    unique = []
    for item in items:
        key = item.lower()
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique


def _truncate_words(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    cut = text[:limit].rsplit(" ", 1)[0].rstrip(" ,.;:-")
    return cut or text[:limit]


def parse_title(raw: str) -> str:
    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    title = _LABEL_PREFIX.sub("", lines[0]) if lines else ""
    title = title.strip().strip("\"'").strip()
    return _truncate_words(title, MAX_TITLE_LENGTH)


def parse_description(raw: str) -> str:
    description = _LABEL_PREFIX.sub("", raw.strip())
    return description[:MAX_DESCRIPTION_LENGTH].strip()


def parse_keywords(raw: str) -> List[str]:
    items: List[str] = []
    text = raw.strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
            if isinstance(parsed, list):
                items = [str(item) for item in parsed]
        except ValueError:
            items = []
    if not items:
        items = re.split(r"[,\n]", text)

    keywords = []
    for item in items:
        keyword = _LIST_PREFIX.sub("", item).strip().strip("\"'").lstrip("#").strip()
        if keyword:
            keywords.append(keyword)
    return _dedupe(keywords)[:MAX_KEYWORDS]


def normalize_hashtag(token: str) -> Optional[str]:
    body = _HASHTAG_BODY.sub("", token.lstrip("#"))
    if not body:
        return None
    tag = f"#{body}"
    return tag if len(tag) <= MAX_HASHTAG_LENGTH else None


def parse_hashtags(raw: str) -> List[str]:
    tokens = [t for t in re.split(r"[\s,]+", raw.strip()) if t.startswith("#")]
    hashtags = [tag for tag in (normalize_hashtag(t) for t in tokens) if tag]
    return _dedupe(hashtags)[:MAX_HASHTAGS]


FIELD_PARSERS: Dict[ContentField, Callable[[str], FieldValue]] = {
    ContentField.TITLE: parse_title,
    ContentField.DESCRIPTION: parse_description,
    ContentField.KEYWORDS: parse_keywords,
    ContentField.HASHTAGS: parse_hashtags,
}


class MetadataGenerator:
    """Composes field prompts around the provider chosen for each field"""

    def __init__(
        self,
        service_factory: ServiceFactory = None,
        max_attempts: int = None,
        min_wait: float = None,
        max_wait: float = None,
        allow_partial: bool = None,
    ):
        self.service_factory = service_factory or AIServiceFactory.create_text_service
        self.max_attempts = max_attempts or settings.AI_MAX_RETRIES
        self.min_wait = settings.AI_RETRY_MIN_WAIT if min_wait is None else min_wait
        self.max_wait = settings.AI_RETRY_MAX_WAIT if max_wait is None else max_wait
        self.allow_partial = settings.AI_ALLOW_PARTIAL_METADATA if allow_partial is None else allow_partial

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.min_wait, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.INFO),
            reraise=True,
        )

    async def generate(
        self,
        field: ContentField,
        config: FieldProviderConfig,
        brief: str,
        timeout: float = None,
    ) -> FieldValue:
        """Generate one field; raises AIServiceError once attempts are exhausted"""
        field = ContentField(field)
        timeout = timeout or settings.AI_REQUEST_TIMEOUT
        service = self.service_factory(
            provider=config.provider,
            model=config.model,
            api_key=config.apiKey,
            timeout=timeout,
        )
        template = get_field_prompt(field)
        prompt = render_field_prompt(field, brief)
        parser = FIELD_PARSERS[field]

        value: FieldValue = ""
        async for attempt in self._retrying():
            with attempt:
                try:
                    raw = await asyncio.wait_for(
                        service.complete(
                            prompt,
                            max_tokens=template.max_tokens,
                            temperature=template.temperature,
                            system_prompt=template.system_prompt,
                        ),
                        timeout,
                    )
                except asyncio.TimeoutError as e:
                    raise AITimeoutError(
                        f"{service.provider.value} did not respond within {timeout:g}s",
                        service.provider.value,
                        service.model,
                        e,
                    )
                value = parser(raw)
                if not value:
                    raise EmptyResponseError(
                        f"{service.provider.value} returned no usable {field.value}",
                        service.provider.value,
                        service.model,
                    )

        logger.info(f"Generated {field.value} with {service.provider.value}/{service.model}")
        return value

    async def generate_all(
        self,
        provider_config: ProviderConfig,
        brief: str,
        timeout: float = None,
    ) -> GenerationResult:
        """Generate every field concurrently"""
        fields = list(ContentField)
        results = await asyncio.gather(
            *(self.generate(f, provider_config.for_field(f), brief, timeout) for f in fields),
            return_exceptions=True,
        )

        values: Dict[str, FieldValue] = {}
        fallbacks: List[ContentField] = []
        for field, result in zip(fields, results):
            if not isinstance(result, BaseException):
                values[field.value] = result
                continue
            if not isinstance(result, Exception):
                raise result
            if self.allow_partial and field in OPTIONAL_FIELDS:
                logger.warning(f"Continuing without {field.value}: {result}")
                values[field.value] = []
                fallbacks.append(field)
                continue
            message = getattr(result, "message", None) or str(result)
            raise MetadataGenerationError(
                f"Failed to generate {field.value}: {message}", field, result
            )

        return GenerationResult(content=GeneratedContent(**values), fallback_fields=fallbacks)


_metadata_generator: Optional[MetadataGenerator] = None


def get_metadata_generator() -> MetadataGenerator:
    """Get global metadata generator instance"""
    global _metadata_generator
    if _metadata_generator is None:
        _metadata_generator = MetadataGenerator()
    return _metadata_generator
