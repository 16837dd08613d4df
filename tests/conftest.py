import re
import json
import asyncio

import httpx
import pytest

from storyshelf.errors import ApiError
from storyshelf.llm_service import GenerationGateway
from storyshelf.main import create_app
from storyshelf.rate_limiter import InMemoryRateLimiter

FAKE_IMAGE_URL = "data:image/png;base64,iVBORw0KGgo="


class FakeMessage:
    def __init__(self, content=None, images=None):
        self.content = content
        self.images = images


class FakeChoice:
    def __init__(self, message):
        self.message = message


class FakeCompletion:
    def __init__(self, message):
        self.choices = [FakeChoice(message)] if message is not None else []


class FakeCompletions:
    """Stands in for AsyncOpenAI.chat.completions.

    `responder(kwargs)` returns a FakeMessage, None (no choices) or an
    exception to raise.
    """

    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self.responder(kwargs)
        if isinstance(result, Exception):
            raise result
        return FakeCompletion(result)


class FakeChat:
    def __init__(self, responder):
        self.completions = FakeCompletions(responder)


class FakeAsyncOpenAI:
    def __init__(self, responder):
        self.chat = FakeChat(responder)

    @property
    def calls(self):
        return self.chat.completions.calls


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def storybook_json(count, fenced=False):
    pages = [
        {"id": i, "title": f"Page {i}", "content": f"Content {i}.", "imageDescription": f"Scene {i}"}
        for i in range(1, count + 1)
    ]
    text = json.dumps({"pages": pages})
    return f"```json\n{text}\n```" if fenced else text


MEME_JSON = json.dumps({"options": [
    {"text": "Mild joke", "sarcasm_level": "low"},
    {"text": "Oh sure, qubits are totally simple", "sarcasm_level": "high"},
]})


class FakeApi:
    """Records calls and answers from a per-content-type script.

    Image requests hold until `image_gate` (a threading.Event) is set, when one
    is given.
    """

    def __init__(self, content=None, failing_pages=(), image_gate=None):
        self.content = {
            "summary": "Generated Text Summary\nQubits hold superpositions.",
            "storybook": storybook_json(5, fenced=True),
            "meme-text": MEME_JSON,
            **(content or {}),
        }
        self.failing_pages = set(failing_pages)
        self.image_gate = image_gate
        self.content_calls = []
        self.image_calls = []

    async def generate_content(self, topic, proficiency, source, content_type, page_count=None):
        self.content_calls.append((topic, proficiency, source, content_type, page_count))
        result = self.content[content_type]
        if isinstance(result, Exception):
            raise result
        return result

    async def generate_image(self, prompt, page_id=None):
        self.image_calls.append((prompt, page_id))
        await asyncio.sleep(0)
        while self.image_gate is not None and not self.image_gate.is_set():
            await asyncio.sleep(0.01)
        if page_id in self.failing_pages:
            raise ApiError(500, "Failed to generate image")
        return f"https://img.test/{page_id}.png"


def scripted_provider(kwargs):
    """Answers every request type the way a well-behaved provider would."""
    if "extra_body" in kwargs:
        return FakeMessage(images=[{"type": "image_url", "image_url": {"url": FAKE_IMAGE_URL}}])
    user = kwargs["messages"][-1]["content"]
    match = re.search(r"exactly (\d+) pages", user)
    if match:
        return FakeMessage(content=storybook_json(int(match.group(1)), fenced=True))
    if "meme captions" in user:
        return FakeMessage(content=MEME_JSON)
    return FakeMessage(content="Generated Text Summary\nQuantum computers use qubits.")


@pytest.fixture
def fake_openai():
    return FakeAsyncOpenAI(scripted_provider)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api_app(fake_openai):
    return create_app(
        gateway=GenerationGateway("test-key", client=fake_openai),
        text_limiter=InMemoryRateLimiter(10, 60),
        image_limiter=InMemoryRateLimiter(35, 60),
    )


@pytest.fixture
def asgi_transport(api_app):
    return httpx.ASGITransport(app=api_app)
