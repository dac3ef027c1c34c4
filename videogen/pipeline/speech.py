"""
Asset Stage A — ElevenLabs text-to-speech in the user's cloned voice.

  - synthesize_speech:  voice a project's script, keep the word timeline
  - synthesize_text:    voice arbitrary text (no project)
  - register_voice:     clone a voice from a local sample, store its id on the profile

Vendor failures become UpstreamError with the ElevenLabs message. No retries.
"""

import os
import base64
import logging
from pathlib import Path
from uuid import uuid4

import httpx

from . import profiles
from . import project_service
from . import storage
from .errors import NotFoundError, UpstreamError, UpstreamFormatError, ValidationError
from .models import CallerContext, WordTiming
from .timing import words_from_alignment

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_API_BASE = "https://api.elevenlabs.io/v1"
TTS_MODEL_ID = "eleven_multilingual_v2"
OUTPUT_FORMAT = "mp3_44100_128"

# Voice samples are only read from under this directory
VOICE_SAMPLE_DIR = Path(os.getenv("VOICE_SAMPLE_DIR", "uploads/voice-samples")).resolve()

SUPPORTED_SAMPLE_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".m4a": "audio/mp4",
}


def _headers() -> dict:
    if not ELEVENLABS_API_KEY:
        raise UpstreamError("ELEVENLABS_API_KEY not set", vendor="elevenlabs")
    return {"xi-api-key": ELEVENLABS_API_KEY}


def _vendor_error(e: httpx.HTTPError) -> UpstreamError:
    if isinstance(e, httpx.HTTPStatusError):
        return UpstreamError(
            f"ElevenLabs error {e.response.status_code}: {e.response.text[:300]}",
            vendor="elevenlabs",
        )
    return UpstreamError(f"ElevenLabs request failed: {e}", vendor="elevenlabs")


async def convert_with_timestamps(voice_id: str, text: str) -> tuple[bytes, list[WordTiming], float]:
    """
    Returns (mp3 bytes, word timeline, duration in seconds).
    """
    try:
        async with httpx.AsyncClient(timeout=180) as client:
            response = await client.post(
                f"{ELEVENLABS_API_BASE}/text-to-speech/{voice_id}/with-timestamps",
                headers=_headers(),
                params={"output_format": OUTPUT_FORMAT},
                json={"text": text, "model_id": TTS_MODEL_ID},
            )
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPError as e:
        raise _vendor_error(e) from e

    audio_b64 = data.get("audio_base64")
    if not audio_b64:
        raise UpstreamFormatError("ElevenLabs returned no audio", raw=str(data)[:500])

    alignment = data.get("alignment") or {}
    words = words_from_alignment(
        alignment.get("characters", []),
        alignment.get("character_start_times_seconds", []),
        alignment.get("character_end_times_seconds", []),
    )
    ends = alignment.get("character_end_times_seconds") or [0.0]
    return base64.b64decode(audio_b64), words, float(ends[-1])


# ═════════════════════════════════════════════════════════════════════════════
# Stage entry points
# ═════════════════════════════════════════════════════════════════════════════

async def synthesize_speech(caller: CallerContext, project_id: str) -> str:
    """
    Voice the project's full script and persist audio URL + transcript.
    Project status is left alone.
    """
    row = await project_service.load_owned_row(caller, project_id)
    voice_id = await profiles.require_voice_id(caller)

    script = (row.get("script") or "").strip()
    if not script:
        raise ValidationError("Project has no script to synthesize")

    logger.info(f"[speech] Synthesizing {len(script)} chars for project {project_id} (voice={voice_id})")
    try:
        audio, words, duration = await convert_with_timestamps(voice_id, script)
    except UpstreamError as e:
        logger.error(f"[speech] project={project_id} vendor={e.vendor}: {e.message}")
        raise

    path = storage.project_artifact_path(caller.user_id, project_id, f"speech_{uuid4().hex[:8]}.mp3")
    audio_url = await storage.upload_artifact(path, audio, "audio/mpeg")

    await project_service.update_project(caller, project_id, {
        "audio_url": audio_url,
        "transcript": words,
        "audio_duration": duration,
    })
    logger.info(f"[speech] Project {project_id}: {len(words)} words, {duration:.1f}s → {audio_url}")
    return audio_url


async def synthesize_text(caller: CallerContext, text: str) -> str:
    """POST /audio/speech with free text: voice it and return the hosted URL."""
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Text is required")
    voice_id = await profiles.require_voice_id(caller)

    audio, _, _ = await convert_with_timestamps(voice_id, text.strip())
    path = storage.user_artifact_path(caller.user_id, f"speech/{uuid4()}.mp3")
    return await storage.upload_artifact(path, audio, "audio/mpeg")


async def register_voice(caller: CallerContext, sample_ref: str) -> str:
    """
    Clone a voice from a sample file under VOICE_SAMPLE_DIR and store the
    voice id on the profile. `sample_ref` is resolved against that directory;
    anything that resolves outside it is rejected.
    """
    if not isinstance(sample_ref, str) or not sample_ref.strip():
        raise ValidationError("Valid audio file path is required")

    sample = (VOICE_SAMPLE_DIR / sample_ref.strip()).resolve()
    mime = SUPPORTED_SAMPLE_TYPES.get(sample.suffix.lower())
    if mime is None:
        raise ValidationError("Unsupported audio format")
    if not sample.is_relative_to(VOICE_SAMPLE_DIR):
        raise ValidationError("Audio file must be inside the voice sample directory")
    if not sample.is_file():
        raise NotFoundError("Audio file not found")

    try:
        async with httpx.AsyncClient(timeout=120) as client:
            with sample.open("rb") as fh:
                response = await client.post(
                    f"{ELEVENLABS_API_BASE}/voices/add",
                    headers=_headers(),
                    data={"name": caller.user_id},
                    files=[("files", (sample.name, fh.read(), mime))],
                )
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPError as e:
        raise _vendor_error(e) from e

    voice_id = data.get("voice_id")
    if not voice_id:
        raise UpstreamFormatError("ElevenLabs returned no voice_id", raw=str(data))

    await profiles.set_voice_id(caller, voice_id)
    return voice_id
