"""
Error types for Storyshelf.

Every error carries the HTTP status it maps to and the message that is safe to
show a client. Server-side detail (provider bodies, missing variable names)
stays on the exception for logging and never reaches the response body.
"""

from typing import Optional


class StoryshelfError(Exception):
    """Base class for all generation pipeline errors."""

    status_code = 500
    public_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message

    def to_payload(self) -> dict:
        return {"error": self.public_message}


class ValidationError(StoryshelfError):
    """Missing or invalid request fields."""

    status_code = 400

    def __init__(self, message: str, fields=None):
        super().__init__(message)
        self.fields = list(fields or [])

    def to_payload(self) -> dict:
        return {"error": self.message}


class RateLimitedError(StoryshelfError):
    """Client exceeded its request budget for the current window."""

    status_code = 429
    public_message = "Rate limit exceeded"

    def __init__(self, reset_at: int, limit: int = 0, retry_after: int = 0, noun: str = "requests"):
        self.reset_at = reset_at
        self.limit = limit
        self.retry_after = retry_after
        super().__init__(f"Too many {noun}. Try again in {retry_after} seconds.")

    def to_payload(self) -> dict:
        return {
            "error": self.public_message,
            "message": self.message,
            "resetTime": self.reset_at,
        }


class ConfigurationError(StoryshelfError):
    """Server is missing configuration. Fatal and never retried."""

    public_message = "Server configuration error"


class UpstreamError(StoryshelfError):
    """LLM provider responded with a non-success status."""

    public_message = "Failed to generate content"

    def __init__(self, status_code: int, body: str = "", message: Optional[str] = None):
        super().__init__(message or f"Provider returned status {status_code}")
        self.upstream_status = status_code
        self.body = body

    def to_payload(self) -> dict:
        return {"error": self.public_message, "details": self.upstream_status}


class GenerationTimeoutError(UpstreamError):
    """Outbound call exceeded the request timeout."""

    public_message = "Request timed out. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(504, message=message or self.public_message)

    def to_payload(self) -> dict:
        return {"error": self.public_message}


class EmptyResponseError(StoryshelfError):
    """Provider succeeded but returned no usable payload."""

    public_message = "No content was generated"


class MalformedContentError(StoryshelfError):
    """Provider output failed JSON parsing or shape validation."""

    public_message = "Generated content is not valid JSON"

    def __init__(self, reason: str, raw_text: str = ""):
        super().__init__(f"{self.public_message}: {reason}")
        self.reason = reason
        self.raw_text = raw_text

    def to_payload(self) -> dict:
        return {"error": self.public_message, "details": self.reason}


class ImageGenerationError(StoryshelfError):
    """Image generation failed. Always resolved to a placeholder, never surfaced."""

    public_message = "Failed to generate image"


class ApiError(StoryshelfError):
    """Error response received by the API client."""

    def __init__(self, status_code: int, message: str, details=None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details
