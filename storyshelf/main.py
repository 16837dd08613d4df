"""
Storyshelf - FastAPI Backend
Routes for rate-limited text and image generation and the paper story flow.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .config import (
    IMAGE_RATE_LIMIT,
    LOG_LEVEL,
    MAX_PAGE_COUNT,
    MEME_PRESET,
    MIN_PAGE_COUNT,
    OPENROUTER_API_KEY,
    PROFICIENCY_LEVELS,
    RATE_LIMIT_MAX_KEYS,
    RATE_LIMIT_WINDOW_SECONDS,
    SCROLL_DIRECTIONS,
    SOURCE_TYPES,
    STEPS,
    TEXT_LENGTH_PRESETS,
    TEXT_RATE_LIMIT,
)
from .errors import ConfigurationError, RateLimitedError, StoryshelfError, ValidationError
from .llm_service import GenerationGateway
from .prompts import ContentType, build_prompt, enhance_image_prompt, max_output_tokens
from .rate_limiter import InMemoryRateLimiter, RateLimiter, client_identifier, seconds_until
from .sanitizer import validate_content
from .schemas import (
    EnrichRequest,
    ExportRequest,
    GenerateContentRequest,
    GenerateImageRequest,
    GenerateStoryRequest,
    GenerationRequest,
)
from . import paper_service
from . import s3_service

logger = logging.getLogger(__name__)


def _enforce_rate_limit(limiter: RateLimiter, request: Request, noun: str):
    """Count this request against the caller's budget and return the decision."""
    decision = limiter.check(client_identifier(request.headers))
    if not decision.allowed:
        wait = seconds_until(decision.reset_at, limiter.now_ms())
        logger.info(f"Rate limit exceeded for {noun}, retry in {wait}s")
        raise RateLimitedError(decision.reset_at, decision.limit, wait, noun)
    return decision


def _require_credential(gateway: GenerationGateway):
    if not gateway.configured:
        logger.error("OPENROUTER_API_KEY is not configured in environment variables")
        raise ConfigurationError()


def _to_generation_request(req: GenerateContentRequest) -> GenerationRequest:
    missing = [name for name in ("topic", "proficiency", "source") if not (getattr(req, name) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)} required", missing)

    try:
        content_type = ContentType(req.type)
    except ValueError:
        raise ValidationError(
            'Invalid content type. Must be "summary", "storybook" or "meme-text"', ["type"]
        ) from None

    if not MIN_PAGE_COUNT <= req.page_count <= MAX_PAGE_COUNT:
        raise ValidationError(f"pageCount must be between {MIN_PAGE_COUNT} and {MAX_PAGE_COUNT}", ["pageCount"])
    if req.proficiency not in PROFICIENCY_LEVELS:
        raise ValidationError(f"Invalid proficiency: {req.proficiency}", ["proficiency"])
    if req.source not in SOURCE_TYPES:
        raise ValidationError(f"Invalid source: {req.source}", ["source"])

    return GenerationRequest(
        topic=req.topic.strip(),
        proficiency_level=req.proficiency,
        source_type=req.source,
        content_type=content_type,
        page_count=req.page_count,
    )


def create_app(
    gateway: Optional[GenerationGateway] = None,
    text_limiter: Optional[RateLimiter] = None,
    image_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Build the API with injectable provider gateway and rate limiters."""
    logging.basicConfig(level=LOG_LEVEL)

    app = FastAPI(title="Storyshelf")
    app.state.gateway = gateway or GenerationGateway(OPENROUTER_API_KEY)
    app.state.text_limiter = text_limiter or InMemoryRateLimiter(
        TEXT_RATE_LIMIT, RATE_LIMIT_WINDOW_SECONDS, max_keys=RATE_LIMIT_MAX_KEYS
    )
    app.state.image_limiter = image_limiter or InMemoryRateLimiter(
        IMAGE_RATE_LIMIT, RATE_LIMIT_WINDOW_SECONDS, max_keys=RATE_LIMIT_MAX_KEYS
    )

    # ─── Error handlers ───

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError):
        limiter = app.state.image_limiter if request.url.path.endswith("generate-image") else app.state.text_limiter
        return JSONResponse(
            exc.to_payload(),
            status_code=exc.status_code,
            headers={
                "X-RateLimit-Limit": str(exc.limit or limiter.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": str(exc.reset_at),
            },
        )

    @app.exception_handler(StoryshelfError)
    async def storyshelf_error_handler(request: Request, exc: StoryshelfError):
        if exc.status_code >= 500:
            logger.error(f"{request.url.path} failed: {exc.message}")
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()]
        return JSONResponse({"error": f"Invalid request fields: {', '.join(fields)}"}, status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"API route error on {request.url.path}")
        return JSONResponse({"error": "Internal server error"}, status_code=500)

    # ─── Config ───

    @app.get("/api/config")
    async def get_config():
        """Return form options for the frontend."""
        return {
            "proficiencyLevels": PROFICIENCY_LEVELS,
            "sources": SOURCE_TYPES,
            "textLengths": TEXT_LENGTH_PRESETS,
            "memePreset": MEME_PRESET,
            "scrollDirections": SCROLL_DIRECTIONS,
            "steps": STEPS,
            "hasApiKey": app.state.gateway.configured,
        }

    # ─── Generation ───

    @app.post("/api/generate-content")
    async def generate_content(req: GenerateContentRequest, request: Request):
        """Generate a summary, storybook pages or meme captions."""
        decision = _enforce_rate_limit(app.state.text_limiter, request, "requests")
        gateway = app.state.gateway
        _require_credential(gateway)
        gen = _to_generation_request(req)

        prompt = build_prompt(gen.content_type, gen.topic, gen.proficiency_level.value,
                              gen.source_type.value, gen.page_count)
        raw = await gateway.generate_text(prompt, max_output_tokens(gen.content_type, gen.page_count))
        content = validate_content(gen.content_type, raw)

        payload = {
            "success": True,
            "content": content,
            "type": gen.content_type.value,
            "remainingRequests": decision.remaining,
            "resetTime": decision.reset_at,
        }
        s3_service.record_generation(gen.content_type.value, gen.to_json_dict(), payload)
        return JSONResponse(payload, headers=decision.headers())

    @app.post("/api/generate-image")
    async def generate_image(req: GenerateImageRequest, request: Request):
        """Generate one illustration. Past the gates this always answers 200."""
        decision = _enforce_rate_limit(app.state.image_limiter, request, "image requests")
        gateway = app.state.gateway
        _require_credential(gateway)
        if not (req.prompt or "").strip():
            raise ValidationError("Missing required field: prompt", ["prompt"])

        result = await gateway.generate_image(enhance_image_prompt(req.prompt.strip()))

        payload = {
            "success": True,
            "imageUrl": result.image_url,
            "pageId": req.page_id,
            "remainingRequests": decision.remaining,
            "resetTime": decision.reset_at,
            "note": result.note,
        }
        if result.description:
            payload["description"] = result.description
        s3_service.record_generation("image", req.to_json_dict(), payload)
        return JSONResponse(payload, headers=decision.headers())

    # ─── Paper story flow ───

    @app.post("/api/enrich")
    async def enrich(req: EnrichRequest):
        snippets = paper_service.enrich(req.summary, req.doi, req.url, req.max_snippets)
        return {"snippets": [s.to_json_dict() for s in snippets]}

    @app.post("/api/generate")
    async def generate_story(req: GenerateStoryRequest):
        story = paper_service.generate_story(req.story_type, req.paper, req.snippets, req.options)
        return {"story": story.to_json_dict()}

    @app.post("/api/export")
    async def export_story(req: ExportRequest):
        bundle = paper_service.export_story(req.story, req.formats)
        return bundle.to_json_dict()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8000)
