import json

import pytest

from conftest import run
from videogen.pipeline import scriptwriter
from videogen.pipeline.errors import UpstreamFormatError, ValidationError
from videogen.pipeline.models import MalformedScenes, ParsedScenes, ScriptMode

FOUR_SCENES = {
    "scenes": [
        {"content": "Hook the viewer.", "imagePrompt": "Neon sign at night"},
        {"content": "Explain the problem.", "imagePrompt": "Tangled cables on a desk"},
        {"content": "Show the fix.", "imagePrompt": "Clean desk with one laptop"},
        {"content": "Call to action.", "imagePrompt": "Smiling person waving"},
    ]
}


def _fake_text(monkeypatch, *replies):
    """Queue canned Gemini replies; record the prompts that were sent."""
    sent = []
    queue = list(replies)

    async def fake_generate_text(prompt, temperature=0.7):
        sent.append(prompt)
        return queue.pop(0)

    monkeypatch.setattr(scriptwriter, "generate_text", fake_generate_text)
    return sent


class TestSceneParsing:
    def test_json_surrounded_by_prose(self):
        raw = "Sure! Here is your script:\n```json\n" + json.dumps(FOUR_SCENES) + "\n```\nEnjoy."

        parsed = scriptwriter.parse_scene_response(raw)

        assert isinstance(parsed, ParsedScenes)
        assert [s.content for s in parsed.scenes] == [s["content"] for s in FOUR_SCENES["scenes"]]
        assert parsed.scenes[0].image_prompt == "Neon sign at night"

    def test_no_json_block(self):
        parsed = scriptwriter.parse_scene_response("I could not think of anything, sorry.")

        assert isinstance(parsed, MalformedScenes)
        assert parsed.raw == "I could not think of anything, sorry."

    def test_braces_inside_strings_do_not_end_the_object(self):
        data = {"scenes": [{"content": "Use {curly} braces }", "imagePrompt": "A brace { sculpture"}]}

        parsed = scriptwriter.parse_scene_response("prefix " + json.dumps(data))

        assert isinstance(parsed, ParsedScenes)
        assert parsed.scenes[0].content == "Use {curly} braces }"

    def test_skips_a_leading_block_that_is_not_json(self):
        raw = "Template: {scene text here} then " + json.dumps(FOUR_SCENES)

        parsed = scriptwriter.parse_scene_response(raw)

        assert isinstance(parsed, ParsedScenes)
        assert len(parsed.scenes) == 4

    def test_stray_opening_brace_before_the_json(self):
        raw = "Use a { to open blocks.\n" + json.dumps(FOUR_SCENES)

        parsed = scriptwriter.parse_scene_response(raw)

        assert isinstance(parsed, ParsedScenes)
        assert len(parsed.scenes) == 4

    @pytest.mark.parametrize("data", [
        {"scenes": []},
        {"title": "no scenes key"},
        {"scenes": [{"content": "text only"}]},
        {"scenes": ["not an object"]},
    ])
    def test_structurally_invalid(self, data):
        assert isinstance(scriptwriter.parse_scene_response(json.dumps(data)), MalformedScenes)


class TestKeywords:
    def test_split_and_clean(self):
        raw = "coffee beans, - pour over\n* \"latte art\",, steam "

        assert scriptwriter.split_keywords(raw) == ["coffee beans", "pour over", "latte art", "steam"]

    def test_empty(self):
        assert scriptwriter.split_keywords("  \n ") == []


class TestGenerateScript:
    def test_scene_mode_joins_contents(self, monkeypatch):
        _fake_text(monkeypatch, "Here you go: " + json.dumps(FOUR_SCENES))

        result = run(scriptwriter.generate_script("desk setups"))

        assert len(result.scenes) == 4
        assert result.text == "\n\n".join(s["content"] for s in FOUR_SCENES["scenes"])
        assert result.keywords is None

    def test_unparseable_reply(self, monkeypatch):
        _fake_text(monkeypatch, "Once upon a time there was no JSON.")

        with pytest.raises(UpstreamFormatError) as exc_info:
            run(scriptwriter.generate_script("desk setups"))
        assert exc_info.value.status_code == 502
        assert "no JSON" in exc_info.value.raw

    def test_flat_mode(self, monkeypatch):
        sent = _fake_text(monkeypatch, "  I love a clean desk.  ")

        result = run(scriptwriter.generate_script("desk setups", ScriptMode.FLAT))

        assert result.text == "I love a clean desk."
        assert result.scenes is None
        assert "desk setups" in sent[0]

    def test_empty_reply(self, monkeypatch):
        _fake_text(monkeypatch, "   ")

        with pytest.raises(UpstreamFormatError, match="empty content"):
            run(scriptwriter.generate_script("desk setups", ScriptMode.FLAT))

    def test_keywords_are_a_second_pass(self, monkeypatch):
        sent = _fake_text(monkeypatch, json.dumps(FOUR_SCENES), "neon, cables, laptop")

        result = run(scriptwriter.generate_script("desk setups", with_keywords=True))

        assert result.keywords == ["neon", "cables", "laptop"]
        assert len(sent) == 2
        assert "Hook the viewer." in sent[1]

    @pytest.mark.parametrize("topic", ["", "   ", None, 42])
    def test_invalid_topic_never_calls_the_model(self, monkeypatch, topic):
        sent = _fake_text(monkeypatch)

        with pytest.raises(ValidationError, match="Valid prompt is required"):
            run(scriptwriter.generate_script(topic))
        assert sent == []
