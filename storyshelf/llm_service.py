"""
LLM Service for Storyshelf - Async OpenRouter client for text and image generation.
"""

import uuid
import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from .config import IMAGE_MODEL, OPENROUTER_BASE_URL, REQUEST_TIMEOUT_SECONDS, TEXT_MODEL
from .errors import ConfigurationError, EmptyResponseError, GenerationTimeoutError, UpstreamError
from .prompts import PromptPair

logger = logging.getLogger(__name__)

PLACEHOLDER_SIZE = "400/300"
FAILED_IMAGE_URL = "https://placehold.co/600x400/FF0000/FFFFFF?text=Image+Failed"


def get_client(api_key: str, timeout: float = REQUEST_TIMEOUT_SECONDS) -> AsyncOpenAI:
    """Create an async OpenAI client configured for OpenRouter.

    Args:
        api_key: OpenRouter API key
        timeout: Seconds before an outbound call is abandoned

    Returns:
        AsyncOpenAI client instance
    """
    return AsyncOpenAI(
        base_url=OPENROUTER_BASE_URL,
        api_key=api_key,
        timeout=timeout,
        max_retries=0,
    )


def placeholder_for(prompt: str) -> str:
    """Placeholder image that is stable for the same prompt text."""
    seed = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]
    return f"https://picsum.photos/seed/{seed}/{PLACEHOLDER_SIZE}"


def random_placeholder() -> str:
    return f"https://picsum.photos/{PLACEHOLDER_SIZE}?random={uuid.uuid4().hex[:12]}"


def is_failure_placeholder(image_url: Optional[str]) -> bool:
    return bool(image_url) and "placehold.co" in image_url


@dataclass
class ImageResult:
    image_url: str
    note: str
    source: str  # "provider", "described" or "fallback"
    description: Optional[str] = None


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _extract_image_url(message: Any) -> Optional[str]:
    """Find the first inline image in a chat completion message."""
    for image in _field(message, "images") or []:
        url = _field(_field(image, "image_url"), "url")
        if url:
            return url
    return None


class GenerationGateway:
    """Single point of contact with the LLM provider."""

    def __init__(
        self,
        api_key: str,
        text_model: str = TEXT_MODEL,
        image_model: str = IMAGE_MODEL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key
        self.text_model = text_model
        self.image_model = image_model
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    def _get_client(self) -> AsyncOpenAI:
        if not self.configured:
            logger.error("OPENROUTER_API_KEY is not configured in environment variables")
            raise ConfigurationError()
        if self._client is None:
            self._client = get_client(self.api_key, self.timeout)
        return self._client

    async def generate_text(self, prompt: PromptPair, max_output_tokens: int = 2048) -> str:
        """Make an async completion request and return the raw text.

        Raises:
            ConfigurationError: no API credential
            UpstreamError: provider returned a non-success status or was unreachable
            GenerationTimeoutError: provider did not answer within the timeout
            EmptyResponseError: provider answered without content
        """
        client = self._get_client()
        messages = [
            {"role": "system", "content": prompt.system_prompt},
            {"role": "user", "content": prompt.user_prompt},
        ]

        try:
            response = await client.chat.completions.create(
                model=self.text_model,
                messages=messages,
                max_tokens=max_output_tokens,
                temperature=0.7,
                top_p=0.95,
            )
        except openai.APITimeoutError as e:
            logger.error(f"Text generation timed out after {self.timeout}s")
            raise GenerationTimeoutError() from e
        except openai.APIStatusError as e:
            logger.error(f"Provider error {e.status_code}: {e.body}")
            raise UpstreamError(e.status_code, str(e.body)) from e
        except openai.APIConnectionError as e:
            logger.error(f"Provider unreachable: {e}")
            raise UpstreamError(502, str(e)) from e

        content = None
        if response.choices:
            content = response.choices[0].message.content
        if not content or not content.strip():
            logger.error(f"No content generated: {response}")
            raise EmptyResponseError()
        return content

    async def generate_image(self, prompt: str) -> ImageResult:
        """Generate an illustration, degrading to a placeholder instead of failing.

        Only ConfigurationError propagates.
        """
        client = self._get_client()

        try:
            response = await client.chat.completions.create(
                model=self.image_model,
                messages=[{"role": "user", "content": prompt}],
                extra_body={"modalities": ["image", "text"]},
            )
        except Exception as e:
            logger.warning(f"Image generation error, using random placeholder: {e}")
            return ImageResult(
                image_url=random_placeholder(),
                note="Using placeholder due to generation error",
                source="fallback",
            )

        message = response.choices[0].message if response.choices else None
        image_url = _extract_image_url(message) if message is not None else None
        if image_url:
            return ImageResult(image_url=image_url, note="Generated with AI", source="provider")

        description = (_field(message, "content") or "").strip() or None
        logger.info("Provider returned no image data, using prompt-seeded placeholder")
        return ImageResult(
            image_url=placeholder_for(prompt),
            note="Enhanced placeholder with AI-generated description",
            source="described",
            description=description,
        )
