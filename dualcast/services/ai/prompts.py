"""
Metadata prompt templates

One template per generated field. Templates are formatted with the user's
brief and sent to whichever provider the caller picked for that field.
"""

from dataclasses import dataclass
from typing import Dict, List

from dualcast.core.config import settings
from dualcast.schemas.publish_job import ContentField

SYSTEM_PROMPT = (
    "You write metadata for short vertical videos published as Instagram Reels "
    "and YouTube Shorts. Answer with the requested content only."
)


@dataclass
class PromptTemplate:
    """Prompt template for a single metadata field"""
    name: str
    template: str
    variables: List[str]
    max_tokens: int = settings.MAX_TOKENS_PER_REQUEST
    temperature: float = settings.AI_TEMPERATURE
    system_prompt: str = SYSTEM_PROMPT

    def format(self, **kwargs) -> str:
        """Format template with provided variables"""
        try:
            return self.template.format(**kwargs)
        except KeyError as e:
            raise ValueError(f"Missing required variable: {e}")


FIELD_PROMPTS: Dict[ContentField, PromptTemplate] = {
    ContentField.TITLE: PromptTemplate(
        name="title",
        template="""Based on this content context, write a catchy, SEO-friendly title for a short vertical video.

Context: {brief}

Requirements:
- Attention-grabbing and clickable
- Include relevant keywords
- Maximum 100 characters
- No hashtags

Return ONLY the title, nothing else.""",
        variables=["brief"],
        max_tokens=128,
    ),
    ContentField.DESCRIPTION: PromptTemplate(
        name="description",
        template="""Write an SEO-optimized description for a short vertical video.

Context: {brief}

Requirements:
- Engaging and informative
- Include relevant keywords naturally
- 2-3 short paragraphs
- End with a call to action
- No hashtags

Return ONLY the description, nothing else.""",
        variables=["brief"],
    ),
    ContentField.KEYWORDS: PromptTemplate(
        name="keywords",
        template="""Generate 10-20 search keywords for a short vertical video.

Context: {brief}

Requirements:
- Mix of broad and specific keywords
- Letters, numbers and spaces only
- Each keyword at most 30 characters

Return ONLY a comma-separated list of keywords, nothing else.""",
        variables=["brief"],
        max_tokens=256,
    ),
    ContentField.HASHTAGS: PromptTemplate(
        name="hashtags",
        template="""Generate 15-20 relevant hashtags for a short vertical video.

Context: {brief}

Requirements:
- Mix of popular and niche hashtags
- Relevant to the content
- Each hashtag at most 30 characters including the #

Return ONLY hashtags separated by spaces (e.g. #hashtag1 #hashtag2), nothing else.""",
        variables=["brief"],
        max_tokens=256,
    ),
}


def get_field_prompt(field: ContentField) -> PromptTemplate:
    return FIELD_PROMPTS[ContentField(field)]


def render_field_prompt(field: ContentField, brief: str) -> str:
    return get_field_prompt(field).format(brief=brief.strip())
