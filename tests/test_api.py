import json

import pytest
from fastapi.testclient import TestClient

from conftest import FAKE_IMAGE_URL, FakeAsyncOpenAI, FakeClock, FakeMessage, scripted_provider

from storyshelf.llm_service import GenerationGateway
from storyshelf.main import create_app
from storyshelf.rate_limiter import InMemoryRateLimiter

SUMMARY_BODY = {"topic": "Quantum Computing", "proficiency": "Beginner", "source": "Academic Papers",
                "type": "summary"}


def make_client(responder=scripted_provider, api_key="test-key", text_limit=10, image_limit=35, clock=None):
    clock = clock or FakeClock()
    fake = FakeAsyncOpenAI(responder)
    gateway = GenerationGateway(api_key, client=fake if api_key else None)
    app = create_app(
        gateway=gateway,
        text_limiter=InMemoryRateLimiter(text_limit, 60, clock=clock),
        image_limiter=InMemoryRateLimiter(image_limit, 60, clock=clock),
    )
    return TestClient(app, raise_server_exceptions=False), fake


def test_config_lists_form_options():
    client, _ = make_client()
    data = client.get("/api/config").json()

    assert data["proficiencyLevels"] == ["Beginner", "Intermediate", "Expert"]
    assert data["textLengths"]["Meme"] is None
    assert data["textLengths"]["Medium (11 pages)"] == 11
    assert data["hasApiKey"] is True


def test_summary_success_carries_rate_limit_headers():
    client, fake = make_client()
    response = client.post("/api/generate-content", json=SUMMARY_BODY)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["type"] == "summary"
    assert data["content"].endswith("Quantum computers use qubits.")
    assert data["remainingRequests"] == 9
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert response.headers["X-RateLimit-Reset"] == str(data["resetTime"])
    assert fake.calls[0]["max_tokens"] == 2048


def test_storybook_content_is_normalized_json():
    client, fake = make_client()
    response = client.post("/api/generate-content", json={**SUMMARY_BODY, "type": "storybook", "pageCount": 11})

    assert response.status_code == 200
    pages = json.loads(response.json()["content"])["pages"]
    assert [p["id"] for p in pages] == list(range(1, 12))
    assert fake.calls[0]["max_tokens"] == 8192


@pytest.mark.parametrize("body, message", [
    ({"proficiency": "Beginner", "source": "Academic Papers"}, "Missing required fields: topic required"),
    ({**SUMMARY_BODY, "type": "poem"}, 'Invalid content type. Must be "summary", "storybook" or "meme-text"'),
    ({**SUMMARY_BODY, "pageCount": 31}, "pageCount must be between 1 and 30"),
    ({**SUMMARY_BODY, "proficiency": "Wizard"}, "Invalid proficiency: Wizard"),
])
def test_invalid_requests_are_400(body, message):
    client, fake = make_client()
    response = client.post("/api/generate-content", json=body)

    assert response.status_code == 400
    assert response.json() == {"error": message}
    assert fake.calls == []


def test_wrongly_typed_body_is_400():
    client, _ = make_client()
    response = client.post("/api/generate-content", json={**SUMMARY_BODY, "pageCount": "many"})
    assert response.status_code == 400
    assert "pageCount" in response.json()["error"]


def test_text_rate_limit_returns_429_with_headers():
    clock = FakeClock()
    client, fake = make_client(text_limit=2, clock=clock)
    headers = {"X-Forwarded-For": "203.0.113.7"}

    assert client.post("/api/generate-content", json=SUMMARY_BODY, headers=headers).status_code == 200
    assert client.post("/api/generate-content", json=SUMMARY_BODY, headers=headers).status_code == 200
    clock.advance(15)
    response = client.post("/api/generate-content", json=SUMMARY_BODY, headers=headers)

    assert response.status_code == 429
    assert response.json() == {
        "error": "Rate limit exceeded",
        "message": "Too many requests. Try again in 45 seconds.",
        "resetTime": 1_060_000,
    }
    assert response.headers["X-RateLimit-Limit"] == "2"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert response.headers["X-RateLimit-Reset"] == "1060000"
    assert len(fake.calls) == 2

    other = client.post("/api/generate-content", json=SUMMARY_BODY, headers={"X-Forwarded-For": "198.51.100.1"})
    assert other.status_code == 200


def test_image_rate_limit_is_separate():
    client, _ = make_client(text_limit=1, image_limit=1)

    assert client.post("/api/generate-content", json=SUMMARY_BODY).status_code == 200
    assert client.post("/api/generate-image", json={"prompt": "a cat", "pageId": 1}).status_code == 200
    response = client.post("/api/generate-image", json={"prompt": "a cat", "pageId": 2})
    assert response.status_code == 429
    assert response.json()["message"].startswith("Too many image requests.")


def test_missing_credential_does_not_leak_variable_name():
    client, _ = make_client(api_key="")
    for path, body in (("/api/generate-content", SUMMARY_BODY), ("/api/generate-image", {"prompt": "a cat"})):
        response = client.post(path, json=body)
        assert response.status_code == 500
        assert response.json() == {"error": "Server configuration error"}
        assert "OPENROUTER" not in response.text


def test_malformed_storybook_is_500_with_reason():
    client, _ = make_client(lambda kwargs: FakeMessage(content="Once upon a time..."))
    response = client.post("/api/generate-content", json={**SUMMARY_BODY, "type": "storybook"})

    assert response.status_code == 500
    assert response.json()["error"] == "Generated content is not valid JSON"
    assert "details" in response.json()


def test_empty_summary_is_500():
    client, _ = make_client(lambda kwargs: FakeMessage(content=""))
    response = client.post("/api/generate-content", json=SUMMARY_BODY)
    assert response.status_code == 500
    assert response.json() == {"error": "No content was generated"}


def test_unexpected_errors_are_generic_500():
    def explode(kwargs):
        raise KeyError("secret internals")

    client, _ = make_client(explode)
    response = client.post("/api/generate-content", json=SUMMARY_BODY)
    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_generate_image_success_echoes_page_id():
    client, fake = make_client()
    response = client.post("/api/generate-image", json={"prompt": "A robot reading", "pageId": 3})

    assert response.status_code == 200
    data = response.json()
    assert data["imageUrl"] == FAKE_IMAGE_URL
    assert data["pageId"] == 3
    assert data["note"] == "Generated with AI"
    assert "A robot reading" in fake.calls[0]["messages"][0]["content"]


def test_generate_image_degrades_instead_of_failing():
    def explode(kwargs):
        raise RuntimeError("provider down")

    client, _ = make_client(explode)
    response = client.post("/api/generate-image", json={"prompt": "a cat", "pageId": "meme"})

    assert response.status_code == 200
    assert response.json()["imageUrl"].startswith("https://picsum.photos/")
    assert response.json()["pageId"] == "meme"


def test_generate_image_requires_prompt():
    client, _ = make_client()
    response = client.post("/api/generate-image", json={"prompt": "  "})
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required field: prompt"}
