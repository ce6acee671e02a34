"""
Tests for per-field metadata generation.
"""

import pytest

from dualcast.schemas.publish_job import ContentField, ProviderConfig
from dualcast.services.ai.base import (
    AITimeoutError, ConfigurationError, EmptyResponseError, ProviderError, RateLimitError,
)
from dualcast.services.ai.metadata_generator import (
    MAX_HASHTAG_LENGTH, MAX_HASHTAGS, MAX_KEYWORDS, MAX_TITLE_LENGTH,
    MetadataGenerationError, MetadataGenerator,
    normalize_hashtag, parse_description, parse_hashtags, parse_keywords, parse_title,
)
from tests.fakes import RecordingServiceFactory, ScriptedAIService


def make_generator(service=None, **kwargs):
    factory = RecordingServiceFactory(service)
    kwargs.setdefault("max_attempts", 3)
    generator = MetadataGenerator(service_factory=factory, min_wait=0, max_wait=0, **kwargs)
    return generator, factory


class TestParsers:
    """Model output is normalised into platform-ready values."""

    @pytest.mark.unit
    def test_parse_title_strips_label_and_quotes(self):
        assert parse_title('Title: "Meet the Aurora X"\nAlternative: something else') == "Meet the Aurora X"

    @pytest.mark.unit
    def test_parse_title_truncates_on_word_boundary(self):
        title = parse_title("word " * 40)

        assert len(title) <= MAX_TITLE_LENGTH
        assert not title.endswith(" ")
        assert title.split(" ")[-1] == "word"

    @pytest.mark.unit
    def test_parse_description(self):
        assert parse_description("Description: Line one.\n\nLine two.") == "Line one.\n\nLine two."

    @pytest.mark.unit
    def test_parse_keywords_from_comma_list(self):
        assert parse_keywords("aurora x, Launch, launch, #gadget,  ") == ["aurora x", "Launch", "gadget"]

    @pytest.mark.unit
    def test_parse_keywords_from_json_and_numbered_lines(self):
        assert parse_keywords('["one", "two"]') == ["one", "two"]
        assert parse_keywords("1. one\n2) two\n- three") == ["one", "two", "three"]

    @pytest.mark.unit
    def test_parse_keywords_caps_count(self):
        raw = ", ".join(f"keyword {i}" for i in range(30))
        assert len(parse_keywords(raw)) == MAX_KEYWORDS

    @pytest.mark.unit
    @pytest.mark.parametrize("token,expected", [
        ("#Launch", "#Launch"),
        ("#new-product!", "#newproduct"),
        ("#", None),
        ("#" + "a" * 29, "#" + "a" * 29),
        ("#" + "a" * 30, None),
    ])
    def test_normalize_hashtag(self, token, expected):
        assert normalize_hashtag(token) == expected

    @pytest.mark.unit
    def test_parse_hashtags_limits(self):
        raw = " ".join(f"#tag{i}" for i in range(25)) + " #Tag0 plainword #" + "x" * 40
        hashtags = parse_hashtags(raw)

        assert len(hashtags) == MAX_HASHTAGS
        assert len({tag.lower() for tag in hashtags}) == len(hashtags)
        assert all(tag.startswith("#") and len(tag) <= MAX_HASHTAG_LENGTH for tag in hashtags)
        assert "plainword" not in hashtags


class TestMetadataGenerator:
    """Test field generation, retries and deadlines."""

    @pytest.mark.unit
    async def test_generate_uses_field_config(self, provider_config):
        generator, factory = make_generator()

        title = await generator.generate(ContentField.TITLE, provider_config.title, "Aurora X launch")

        assert title == "Meet the Aurora X: our boldest launch yet"
        assert factory.requests[0]["provider"] == "openai"
        assert factory.requests[0]["model"] == "gpt-4o-mini"
        assert factory.requests[0]["api_key"] == "sk-test"

    @pytest.mark.unit
    async def test_retries_transient_errors(self, provider_config):
        service = ScriptedAIService(replies={
            ContentField.TITLE: [ProviderError("502", "openai"), RateLimitError("slow down", "openai"), "Third time"],
        })
        generator, _ = make_generator(service)

        assert await generator.generate(ContentField.TITLE, provider_config.title, "brief") == "Third time"
        assert service.calls.count(ContentField.TITLE) == 3

    @pytest.mark.unit
    async def test_gives_up_after_max_attempts(self, provider_config):
        service = ScriptedAIService(replies={ContentField.TITLE: ProviderError("502", "openai")})
        generator, _ = make_generator(service, max_attempts=2)

        with pytest.raises(ProviderError):
            await generator.generate(ContentField.TITLE, provider_config.title, "brief")
        assert service.calls.count(ContentField.TITLE) == 2

    @pytest.mark.unit
    async def test_configuration_errors_are_not_retried(self, provider_config):
        service = ScriptedAIService(replies={ContentField.TITLE: ConfigurationError("bad key", "openai")})
        generator, _ = make_generator(service)

        with pytest.raises(ConfigurationError):
            await generator.generate(ContentField.TITLE, provider_config.title, "brief")
        assert service.calls.count(ContentField.TITLE) == 1

    @pytest.mark.unit
    async def test_attempt_deadline(self, provider_config):
        service = ScriptedAIService(delay=1)
        generator, _ = make_generator(service, max_attempts=2)

        with pytest.raises(AITimeoutError, match="did not respond"):
            await generator.generate(ContentField.TITLE, provider_config.title, "brief", timeout=0.01)
        assert len(service.calls) == 2

    @pytest.mark.unit
    async def test_unusable_output_is_retried(self, provider_config):
        service = ScriptedAIService(replies={ContentField.HASHTAGS: ["no tags here", "#Launch #Reels"]})
        generator, _ = make_generator(service)

        hashtags = await generator.generate(ContentField.HASHTAGS, provider_config.hashtags, "brief")

        assert hashtags == ["#Launch", "#Reels"]

    @pytest.mark.unit
    async def test_unusable_output_exhausts_attempts(self, provider_config):
        service = ScriptedAIService(replies={ContentField.HASHTAGS: "no tags here"})
        generator, _ = make_generator(service)

        with pytest.raises(EmptyResponseError):
            await generator.generate(ContentField.HASHTAGS, provider_config.hashtags, "brief")

    @pytest.mark.unit
    async def test_generate_all(self, provider_payload):
        provider_payload["hashtags"] = {"provider": "anthropic", "model": "claude-3-5-haiku-latest", "apiKey": "ak"}
        generator, factory = make_generator()

        result = await generator.generate_all(ProviderConfig(**provider_payload), "Aurora X launch")

        content = result.content
        assert result.fallback_fields == []
        assert content.title and content.description
        assert content.keywords == ["aurora x", "product launch", "new gadget", "tech review"]
        assert len(content.hashtags) == MAX_HASHTAGS
        assert "#ThisHashtagIsFarTooLongForAnyPlatform" not in content.hashtags
        assert {request["provider"] for request in factory.requests} == {"openai", "anthropic"}

    @pytest.mark.unit
    async def test_generate_all_fails_on_any_field(self, provider_config):
        service = ScriptedAIService(replies={ContentField.DESCRIPTION: ProviderError("down", "openai")})
        generator, _ = make_generator(service, max_attempts=1)

        with pytest.raises(MetadataGenerationError) as exc_info:
            await generator.generate_all(provider_config, "brief")

        assert exc_info.value.field == ContentField.DESCRIPTION
        assert "description" in exc_info.value.message

    @pytest.mark.unit
    async def test_partial_mode_falls_back_for_optional_fields(self, provider_config):
        service = ScriptedAIService(replies={ContentField.HASHTAGS: ProviderError("down", "openai")})
        generator, _ = make_generator(service, max_attempts=1, allow_partial=True)

        result = await generator.generate_all(provider_config, "brief")

        assert result.content.hashtags == []
        assert result.fallback_fields == [ContentField.HASHTAGS]

    @pytest.mark.unit
    async def test_partial_mode_still_requires_title(self, provider_config):
        service = ScriptedAIService(replies={ContentField.TITLE: ProviderError("down", "openai")})
        generator, _ = make_generator(service, max_attempts=1, allow_partial=True)

        with pytest.raises(MetadataGenerationError):
            await generator.generate_all(provider_config, "brief")
