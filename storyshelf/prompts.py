"""
Prompt construction for summary, storybook and meme generation.
"""

from enum import Enum
from typing import NamedTuple


class ContentType(str, Enum):
    SUMMARY = "summary"
    STORYBOOK = "storybook"
    MEME_TEXT = "meme-text"


class PromptPair(NamedTuple):
    system_prompt: str
    user_prompt: str

    def combined(self) -> str:
        return f"{self.system_prompt}\n\n{self.user_prompt}"


SUMMARY_SYSTEM = (
    "You are an expert researcher. Your task is to provide a concise, single-paragraph summary "
    "of a topic based on a specified source and for a specific audience."
)

STORYBOOK_SYSTEM = (
    "You are a creative educational content creator. Create engaging, age-appropriate storybook "
    "pages that explain concepts in a narrative format. IMPORTANT: Respond with ONLY valid JSON, "
    "no additional text or formatting."
)

MEME_SYSTEM = (
    "You are a witty meme writer who explains ideas through sarcasm. IMPORTANT: Respond with "
    "ONLY valid JSON, no additional text or formatting."
)

STORYBOOK_SKELETON = (
    '{"pages": [{"id": 1, "title": "Page Title", "content": "Page content", '
    '"imageDescription": "Description for image generation"}]}'
)

MEME_SKELETON = (
    '{"options": [{"text": "Caption", "sarcasm_level": "low"}, '
    '{"text": "Caption", "sarcasm_level": "medium"}, '
    '{"text": "Caption", "sarcasm_level": "high"}]}'
)

MEME_OPTION_COUNT = 5

SHORT_TOKEN_BUDGET = 2048
LONG_TOKEN_BUDGET = 8192


def build_prompt(
    content_type,
    topic: str,
    proficiency: str,
    source: str,
    page_count: int = 5,
) -> PromptPair:
    """Build the system and user prompts for a generation request.

    Args:
        content_type: ContentType or its string value
        topic: Subject chosen by the user
        proficiency: Audience level (Beginner, Intermediate, Expert)
        source: Source type the content should read as if drawn from
        page_count: Number of storybook pages (storybook only)

    Returns:
        PromptPair with system and user prompts
    """
    content_type = ContentType(content_type)

    if content_type is ContentType.SUMMARY:
        user = (
            f'Identify the core concepts about "{topic}". Generate a text summary explaining these '
            f"concepts and theories for a {proficiency} level audience, assuming the information "
            f"comes from {source}. Answer in a single paragraph."
        )
        return PromptPair(SUMMARY_SYSTEM, user)

    if content_type is ContentType.STORYBOOK:
        user = (
            f'Create a storybook about "{topic}" for a {proficiency} level audience, drawing on '
            f"{source}. Generate exactly {page_count} pages, each with a title, content "
            f"(2-3 sentences), and a brief image description. Return ONLY valid JSON with this "
            f"structure and no additional text: {STORYBOOK_SKELETON}"
        )
        return PromptPair(STORYBOOK_SYSTEM, user)

    user = (
        f'Write {MEME_OPTION_COUNT} short meme captions about "{topic}" that a {proficiency} level '
        f"audience reading {source} would find funny. Tag each caption with a sarcasm_level of "
        f'"low", "medium" or "high". Return ONLY valid JSON with this structure and no additional '
        f"text: {MEME_SKELETON}"
    )
    return PromptPair(MEME_SYSTEM, user)


def max_output_tokens(content_type, page_count: int = 5) -> int:
    """Token budget sized to the expected output so long storybooks are not truncated."""
    if ContentType(content_type) is ContentType.STORYBOOK and page_count > 10:
        return LONG_TOKEN_BUDGET
    return SHORT_TOKEN_BUDGET


def enhance_image_prompt(prompt: str) -> str:
    """Wrap a page description in the storybook illustration style."""
    return (
        "Generate an image: Create a high-quality, vibrant, storybook-style illustration for "
        f"adults or researchers. {prompt}. The image should be colorful, engaging, and suitable "
        "for educational content. Style: digital art, clean lines, bright colors."
    )


def meme_image_prompt(topic: str) -> str:
    return (
        f'A high-quality, funny, and visually appealing meme image representing the concept of "{topic}". '
        "Style: modern, shareable, clear, and impactful. IMPORTANT: Do not include any text, words, "
        "or letters in the image itself."
    )
