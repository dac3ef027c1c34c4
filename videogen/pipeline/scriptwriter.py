"""
Script Stage — Gemini 2.0 Flash via REST.

Turns a topic into narration text. Two modes:
  - flat:   one block of first-person narration
  - scenes: 4–6 scenes, each with spoken content + an image-generation prompt

Gemini is asked for JSON but nothing guarantees it, so scene mode hunts for
the first balanced {...} object in the reply and validates it before use.
"""

import os
import json
import logging
from typing import Optional

import httpx

from .errors import UpstreamError, UpstreamFormatError, ValidationError
from .models import (
    MalformedScenes,
    ParsedScenes,
    Scene,
    SceneParseResult,
    ScriptMode,
    ScriptResult,
)

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_TEXT_MODEL = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.0-flash")
API_BASE = "https://generativelanguage.googleapis.com/v1beta"


SCENE_SCRIPT_PROMPT = """Create a short, engaging video script about "{topic}" divided into 4-6 distinct scenes.

For each scene, provide:
1. Content: A short paragraph of spoken text in first-person perspective, conversational yet professional tone. The complete script should be 30-60 seconds when spoken.
2. Image Prompt: A detailed image generation prompt that would create a beautiful, relevant visual to accompany this scene.

Format your response as valid JSON with this structure:
{{
  "scenes": [
    {{
      "content": "The spoken text for scene 1",
      "imagePrompt": "Detailed image generation prompt for scene 1"
    }},
    {{
      "content": "The spoken text for scene 2",
      "imagePrompt": "Detailed image generation prompt for scene 2"
    }}
  ]
}}

Make sure each image prompt is specific, detailed and would generate a high-quality, professional image directly with an AI model.
Keep the entire script cohesive, with a clear beginning, middle, and end.
"""

FLAT_SCRIPT_PROMPT = """Write a short, engaging video script about "{topic}".

Rules:
- First-person perspective, conversational yet professional tone
- 30-60 seconds when spoken aloud
- Plain spoken text only: no headings, no stage directions, no markdown
"""

KEYWORD_PROMPT = """Read this video narration and list 5-8 short visual keywords that would make good B-roll footage for it.

Respond with ONLY a comma-separated list, no numbering, no explanation.

Narration:
{narration}
"""


# ── Generative-text capability ───────────────────────────────────────────────

async def generate_text(prompt: str, temperature: float = 0.7) -> str:
    """Call Gemini generateContent and return the concatenated text parts."""
    if not GEMINI_API_KEY:
        raise UpstreamError("GEMINI_API_KEY not set", vendor="gemini")

    body = {
        "contents": [{"parts": [{"text": prompt}]}],
        "generationConfig": {"temperature": temperature},
    }

    try:
        async with httpx.AsyncClient(timeout=60) as client:
            response = await client.post(
                f"{API_BASE}/models/{GEMINI_TEXT_MODEL}:generateContent",
                params={"key": GEMINI_API_KEY},
                json=body,
            )
            response.raise_for_status()
            result = response.json()
    except httpx.HTTPStatusError as e:
        raise UpstreamError(
            f"Gemini API error {e.response.status_code}: {e.response.text[:300]}",
            vendor="gemini",
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamError(f"Gemini request failed: {e}", vendor="gemini") from e

    candidates = result.get("candidates", [])
    if not candidates:
        raise UpstreamFormatError("Gemini returned no candidates", raw=json.dumps(result))

    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(part.get("text", "") for part in parts)


# ── Scene JSON parsing ───────────────────────────────────────────────────────

def _balanced_objects(text: str):
    """Yield every balanced {...} substring, scanning left to right."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = None
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end is None:
            # Unclosed brace in prose; a later one may still open a real object
            start = text.find("{", start + 1)
            continue
        yield text[start:end + 1]
        start = text.find("{", end + 1)


def find_json_object(text: str) -> Optional[dict]:
    """Return the first balanced {...} block in `text` that parses as a JSON object."""
    for candidate in _balanced_objects(text or ""):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None


def parse_scene_response(raw: str) -> SceneParseResult:
    data = find_json_object(raw)
    if data is None:
        return MalformedScenes(raw=raw or "", reason="Could not extract JSON from response")

    items = data.get("scenes")
    if not isinstance(items, list) or not items:
        return MalformedScenes(raw=raw, reason="Invalid response format: missing scenes array")

    scenes: list[Scene] = []
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            return MalformedScenes(raw=raw, reason=f"Scene {i} is not an object")
        content = item.get("content")
        image_prompt = item.get("imagePrompt")
        if not isinstance(content, str) or not content.strip():
            return MalformedScenes(raw=raw, reason=f"Scene {i} has no content")
        if not isinstance(image_prompt, str) or not image_prompt.strip():
            return MalformedScenes(raw=raw, reason=f"Scene {i} has no imagePrompt")
        scenes.append(Scene(content=content.strip(), image_prompt=image_prompt.strip()))

    return ParsedScenes(scenes=scenes)


def split_keywords(raw: str) -> list[str]:
    """Comma-separated list → trimmed keywords, empties and bullets dropped."""
    keywords = []
    for piece in (raw or "").replace("\n", ",").split(","):
        keyword = piece.strip(" \t-*•\"'`")
        if keyword:
            keywords.append(keyword)
    return keywords


# ═════════════════════════════════════════════════════════════════════════════
# Stage entry points
# ═════════════════════════════════════════════════════════════════════════════

async def extract_keywords(narration: str) -> list[str]:
    """Second generation pass: visual keywords for B-roll. An empty list is fine."""
    raw = await generate_text(KEYWORD_PROMPT.format(narration=narration), temperature=0.3)
    keywords = split_keywords(raw)
    logger.info(f"[script] Extracted {len(keywords)} keywords")
    return keywords


async def generate_script(
    topic,
    mode: ScriptMode = ScriptMode.SCENES,
    with_keywords: bool = False,
) -> ScriptResult:
    """
    POST /script

    Returns the narration text, the ordered scenes (scene mode) and,
    optionally, a keyword list for B-roll.
    """
    if not isinstance(topic, str) or not topic.strip():
        raise ValidationError("Valid prompt is required")
    topic = topic.strip()

    if mode == ScriptMode.FLAT:
        logger.info(f"[script] Generating flat narration for '{topic}'")
        text = (await generate_text(FLAT_SCRIPT_PROMPT.format(topic=topic))).strip()
        if not text:
            raise UpstreamFormatError("AI generated empty content", raw=text)
        result = ScriptResult(text=text)
    else:
        logger.info(f"[script] Generating scene script for '{topic}'")
        raw = await generate_text(SCENE_SCRIPT_PROMPT.format(topic=topic))
        if not raw.strip():
            raise UpstreamFormatError("AI generated empty content", raw=raw)

        parsed = parse_scene_response(raw)
        if isinstance(parsed, MalformedScenes):
            logger.error(f"[script] Failed to parse Gemini response: {parsed.reason}\nRaw: {parsed.raw[:500]}")
            raise UpstreamFormatError(f"Failed to parse AI response: {parsed.reason}", raw=parsed.raw)

        text = "\n\n".join(scene.content for scene in parsed.scenes)
        logger.info(f"[script] Generated {len(parsed.scenes)} scenes")
        result = ScriptResult(text=text, scenes=parsed.scenes)

    if with_keywords:
        result.keywords = await extract_keywords(result.text)

    return result
