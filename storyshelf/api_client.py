"""
Async client for the Storyshelf API, used by the orchestrator and the UI.
"""

import logging
from typing import List, Optional

import httpx

from .config import REQUEST_TIMEOUT_SECONDS, STORYSHELF_API_URL
from .errors import ApiError, GenerationTimeoutError, ImageGenerationError, RateLimitedError
from .rate_limiter import seconds_until
from .schemas import EnrichmentSnippet, ExportBundle, PaperSummary, StoryOptions

logger = logging.getLogger(__name__)


class StoryshelfApi:
    """Thin wrapper over the HTTP endpoints with one timeout for every call."""

    def __init__(self, base_url: str = STORYSHELF_API_URL, timeout: float = REQUEST_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.timeout = timeout
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def _post(self, path: str, body: dict) -> dict:
        try:
            response = await self._client.post(path, json=body)
        except httpx.TimeoutException as e:
            logger.warning(f"{path} timed out after {self.timeout}s")
            raise GenerationTimeoutError() from e
        except httpx.HTTPError as e:
            raise ApiError(503, f"Could not reach the server: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 429:
            reset_at = int(data.get("resetTime") or response.headers.get("X-RateLimit-Reset") or 0)
            limit = int(response.headers.get("X-RateLimit-Limit") or 0)
            error = RateLimitedError(reset_at, limit, seconds_until(reset_at))
            if data.get("message"):
                error.message = data["message"]
            raise error
        if response.is_error:
            raise ApiError(response.status_code, data.get("error") or f"Request failed ({response.status_code})",
                           data.get("details"))
        return data

    async def generate_content(self, topic: str, proficiency: str, source: str, content_type: str,
                               page_count: Optional[int] = None) -> str:
        body = {"topic": topic, "proficiency": proficiency, "source": source, "type": content_type}
        if page_count is not None:
            body["pageCount"] = page_count
        data = await self._post("/api/generate-content", body)
        if not data.get("success") or not data.get("content"):
            raise ApiError(500, "Invalid response from API")
        return data["content"]

    async def generate_image(self, prompt: str, page_id=None) -> str:
        data = await self._post("/api/generate-image", {"prompt": prompt, "pageId": page_id})
        if not data.get("success") or not data.get("imageUrl"):
            raise ImageGenerationError("Invalid response from image API")
        return data["imageUrl"]

    async def enrich(self, summary: str, doi: Optional[str] = None, url: Optional[str] = None,
                     max_snippets: int = 6) -> List[EnrichmentSnippet]:
        data = await self._post("/api/enrich", {"summary": summary, "doi": doi, "url": url,
                                                "maxSnippets": max_snippets})
        return [EnrichmentSnippet.model_validate(s) for s in data.get("snippets", [])]

    async def generate_story(self, story_type: str, paper: PaperSummary, snippets: List[EnrichmentSnippet],
                             options: Optional[StoryOptions] = None) -> dict:
        data = await self._post("/api/generate", {
            "storyType": story_type,
            "paper": paper.to_json_dict(),
            "snippets": [s.to_json_dict() for s in snippets],
            "options": options.to_json_dict() if options else None,
        })
        return data["story"]

    async def export(self, story: dict, formats: List[str]) -> ExportBundle:
        data = await self._post("/api/export", {"story": story, "formats": formats})
        return ExportBundle.model_validate(data)
