"""
Cleanup and validation of raw LLM output.

Structured content (storybook pages, meme options) fails closed with
MalformedContentError. Summary cleanup is cosmetic and never fails.
"""

import re
import json
import logging
from typing import Any, List

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from .errors import EmptyResponseError, MalformedContentError
from .prompts import ContentType
from .schemas import MemeOption, StorybookPage

logger = logging.getLogger(__name__)

# ```json { ... } ``` or ``` [ ... ] ```
FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*(\{[\s\S]*\}|\[[\s\S]*\])\s*```", re.IGNORECASE)

# Meta-commentary the model sometimes wraps around a summary, removed in order
SUMMARY_META_PATTERNS = [
    re.compile(r"Generated Text Summary.*\n?", re.IGNORECASE),
    re.compile(r"Okay, I'm ready\..*\n?", re.IGNORECASE),
    re.compile(r"\d+\. \*\*.*\*\*.*\n?"),
    re.compile(r"Once you provide this, I will deliver.*\n?", re.IGNORECASE),
]

SARCASM_PREFERENCE = ("high", "medium")

_pages_adapter = TypeAdapter(List[StorybookPage])
_options_adapter = TypeAdapter(List[MemeOption])


def extract_json(raw_text: str) -> Any:
    """Parse JSON out of an LLM response, unwrapping a markdown code fence if present.

    Args:
        raw_text: Text returned by the provider

    Returns:
        The parsed JSON value

    Raises:
        MalformedContentError: if no valid JSON can be parsed
    """
    if raw_text is None:
        raise MalformedContentError("response is empty", "")

    cleaned = raw_text.strip()
    match = FENCED_JSON_PATTERN.search(cleaned)
    if match:
        cleaned = match.group(1)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedContentError(str(e), raw_text) from e


def _unwrap_list(parsed: Any, key: str, raw_text: str) -> list:
    items = parsed if isinstance(parsed, list) else (parsed.get(key) if isinstance(parsed, dict) else None)
    if not isinstance(items, list):
        raise MalformedContentError(f"Invalid structure - missing {key} array", raw_text)
    if not items:
        raise MalformedContentError(f"Invalid structure - {key} array is empty", raw_text)
    return items


def _reason(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}"


def parse_storybook(raw_text: str) -> List[StorybookPage]:
    """Validate storybook output and return its pages.

    Accepts a bare array or an object with a `pages` key. Page ids are kept
    when present and unique, otherwise pages are numbered by position.
    """
    items = _unwrap_list(extract_json(raw_text), "pages", raw_text)
    try:
        pages = _pages_adapter.validate_python(items)
    except PydanticValidationError as e:
        raise MalformedContentError(f"Invalid page - {_reason(e)}", raw_text) from e

    ids = [page.id for page in pages]
    if None in ids or len(set(ids)) != len(ids):
        logger.info("Storybook page ids missing or duplicated, renumbering")
        pages = [page.model_copy(update={"id": i}) for i, page in enumerate(pages, start=1)]
    return pages


def parse_meme_options(raw_text: str) -> List[MemeOption]:
    """Validate meme caption options (bare array or object with `options`)."""
    items = _unwrap_list(extract_json(raw_text), "options", raw_text)
    try:
        return _options_adapter.validate_python(items)
    except PydanticValidationError as e:
        raise MalformedContentError(f"Invalid option - {_reason(e)}", raw_text) from e


def select_meme_caption(options: List[MemeOption]) -> str:
    """Pick the most sarcastic caption: high, else medium, else the first."""
    if not options:
        raise MalformedContentError("Invalid structure - options array is empty")
    for level in SARCASM_PREFERENCE:
        for option in options:
            if option.sarcasm_level.strip().lower() == level:
                return option.text
    return options[0].text


def clean_summary(text: str) -> str:
    """Strip known meta-commentary from a generated summary."""
    cleaned = text or ""
    for pattern in SUMMARY_META_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    return cleaned.strip()


def validate_content(content_type, raw_text: str) -> str:
    """Server-side gate between the provider and the client.

    Returns the trimmed summary text, or the normalized JSON text for
    structured content types.
    """
    content_type = ContentType(content_type)

    if content_type is ContentType.SUMMARY:
        text = (raw_text or "").strip()
        if not text:
            raise EmptyResponseError()
        return text

    if content_type is ContentType.STORYBOOK:
        pages = parse_storybook(raw_text)
        payload = {"pages": [p.model_dump(mode="json", by_alias=True) for p in pages]}
    else:
        options = parse_meme_options(raw_text)
        payload = {"options": [o.model_dump(mode="json") for o in options]}
    return json.dumps(payload)
