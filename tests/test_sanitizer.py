import json

import pytest

from conftest import MEME_JSON, storybook_json

from storyshelf.errors import EmptyResponseError, MalformedContentError
from storyshelf.sanitizer import (
    clean_summary,
    extract_json,
    parse_meme_options,
    parse_storybook,
    select_meme_caption,
    validate_content,
)
from storyshelf.schemas import MemeOption


def test_fence_is_transparent():
    assert extract_json(storybook_json(3, fenced=True)) == extract_json(storybook_json(3))


def test_fence_without_language_tag():
    assert extract_json('Here you go:\n```\n[{"a": 1}]\n```') == [{"a": 1}]


def test_malformed_json_keeps_raw_text():
    with pytest.raises(MalformedContentError) as excinfo:
        extract_json("Sure! Here is your story: {pages: oops")
    assert excinfo.value.raw_text == "Sure! Here is your story: {pages: oops"
    assert excinfo.value.to_payload()["error"] == "Generated content is not valid JSON"


def test_parse_storybook_accepts_bare_array():
    pages = parse_storybook(json.dumps([{"id": 1, "title": "A", "content": "B"}]))
    assert pages[0].title == "A"
    assert pages[0].image_description is None


@pytest.mark.parametrize("raw", [
    json.dumps({"pages": []}),
    json.dumps({"chapters": [{"title": "A", "content": "B"}]}),
    json.dumps({"pages": [{"id": 1, "content": "no title"}]}),
    json.dumps("just a string"),
])
def test_parse_storybook_rejects_bad_shapes(raw):
    with pytest.raises(MalformedContentError):
        parse_storybook(raw)


def test_parse_storybook_renumbers_missing_or_duplicate_ids():
    raw = json.dumps({"pages": [
        {"id": 7, "title": "A", "content": "a"},
        {"id": 7, "title": "B", "content": "b"},
        {"title": "C", "content": "c"},
    ]})
    assert [p.id for p in parse_storybook(raw)] == [1, 2, 3]


def test_parse_storybook_keeps_unique_ids():
    raw = json.dumps({"pages": [{"id": 4, "title": "A", "content": "a"}, {"id": 9, "title": "B", "content": "b"}]})
    assert [p.id for p in parse_storybook(raw)] == [4, 9]


def test_select_meme_caption_prefers_most_sarcastic():
    assert select_meme_caption(parse_meme_options(MEME_JSON)) == "Oh sure, qubits are totally simple"
    assert select_meme_caption([
        MemeOption(text="first", sarcasm_level="low"),
        MemeOption(text="medium one", sarcasm_level="Medium"),
    ]) == "medium one"
    assert select_meme_caption([MemeOption(text="only", sarcasm_level="none")]) == "only"


def test_select_meme_caption_needs_options():
    with pytest.raises(MalformedContentError):
        select_meme_caption([])


def test_clean_summary_strips_meta_commentary():
    raw = (
        "Generated Text Summary for you\n"
        "Okay, I'm ready. Let's go.\n"
        "Qubits can be in superposition.\n"
        "Once you provide this, I will deliver more."
    )
    assert clean_summary(raw) == "Qubits can be in superposition."


def test_validate_content_summary_is_trimmed_and_never_empty():
    assert validate_content("summary", "  Text.  \n") == "Text."
    with pytest.raises(EmptyResponseError):
        validate_content("summary", "   ")


def test_validate_content_normalizes_structured_output():
    storybook = json.loads(validate_content("storybook", storybook_json(2, fenced=True)))
    assert storybook["pages"][1] == {"id": 2, "title": "Page 2", "content": "Content 2.", "imageDescription": "Scene 2"}

    meme = json.loads(validate_content("meme-text", MEME_JSON))
    assert meme["options"][0] == {"text": "Mild joke", "sarcasm_level": "low"}
