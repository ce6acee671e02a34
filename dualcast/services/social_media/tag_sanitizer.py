"""
YouTube tag sanitizer

YouTube rejects a whole upload when any tag is malformed, so tags are cleaned
before they reach the API: letters, digits, spaces and hyphens only, at most
30 characters each, case-insensitive duplicates removed, at most 15 tags and
500 characters in total.
"""

import logging
import re
from typing import Any, Iterable, List

logger = logging.getLogger(__name__)

MAX_TAG_LENGTH = 30
MAX_TAG_COUNT = 15
MAX_TOTAL_TAG_LENGTH = 500

_DISALLOWED_CHARS = re.compile(r"[^A-Za-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_VALID_TAG = re.compile(r"^[A-Za-z0-9 -]+$")


def _clean_tag(tag: Any) -> str:
    text = tag if isinstance(tag, str) else str(tag or "")
    text = _DISALLOWED_CHARS.sub("", text.strip())
    return _WHITESPACE.sub(" ", text).strip()


def sanitize_youtube_tags(tags: Iterable[Any]) -> List[str]:
    """Return a YouTube-compliant tag list; invalid tags are dropped, never rejected wholesale."""
    if tags is None or isinstance(tags, (str, bytes)):
        logger.warning("Tag sanitizer expected a list of tags")
        return []

    raw = list(tags)
    sanitized: List[str] = []
    seen = set()
    total_length = 0

    for tag in raw:
        cleaned = _clean_tag(tag)
        if not cleaned or not cleaned.replace("-", "").strip():
            continue
        if len(cleaned) > MAX_TAG_LENGTH:
            logger.debug(f"Dropping tag over {MAX_TAG_LENGTH} chars: {cleaned!r}")
            continue
        key = cleaned.lower()
        if key in seen:
            continue
        # Separator comma counts toward YouTube's total length limit
        added_length = len(cleaned) + (1 if sanitized else 0)
        if total_length + added_length > MAX_TOTAL_TAG_LENGTH:
            break
        seen.add(key)
        sanitized.append(cleaned)
        total_length += added_length
        if len(sanitized) == MAX_TAG_COUNT:
            break

    removed = len(raw) - len(sanitized)
    if removed > 0:
        logger.info(f"Tag sanitizer kept {len(sanitized)} of {len(raw)} tags")
    return sanitized


def is_valid_youtube_tag(tag: Any) -> bool:
    if not isinstance(tag, str):
        return False
    if not tag or len(tag) > MAX_TAG_LENGTH:
        return False
    return bool(_VALID_TAG.match(tag))


def total_tag_length(tags: Iterable[str]) -> int:
    """Length YouTube counts against its 500 character limit"""
    if tags is None:
        return 0
    return len(",".join(tags))
