"""
Composition Stage.

  lipsync      talking-head video + synthesized audio → fal.ai sync-lipsync → output_url
  slideshow    generated images (+ timed scenes, + audio) → moviepy → slideshow_url
  splitscreen  person video inset over B-roll / slideshow → moviepy → merged_video_url
  merge        same renderer as splitscreen (merged portrait)

Each kind only ever writes its own field, so re-running one never touches
its siblings. Only lipsync drives the project status (PROCESSING → COMPLETED / FAILED).
"""

import asyncio
import logging
from typing import Optional
from uuid import uuid4

from . import compositor
from . import fal
from . import profiles
from . import project_service
from . import storage
from .errors import PipelineError, PreconditionError, UpstreamError, UpstreamFormatError
from .models import (
    CallerContext,
    CompositionKind,
    ProjectResponse,
    ProjectStatus,
    RESOURCE_FIELDS,
    ResourceType,
    Scene,
    SplitScreenOptions,
    WordTiming,
)
from .timing import align_scenes, even_durations, scene_durations

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

LIPSYNC_ENDPOINT = "fal-ai/sync-lipsync"
LIPSYNC_MODEL = "lipsync-1.9.0-beta"


async def lipsync(video_url: str, audio_url: str) -> str:
    """Call fal.ai sync-lipsync and return the hosted result video URL."""
    result = await fal.run(LIPSYNC_ENDPOINT, {
        "video_url": video_url,
        "audio_url": audio_url,
        "model": LIPSYNC_MODEL,
        "sync_mode": "cut_off",
    })
    video = result.get("video")
    url = video.get("url") if isinstance(video, dict) else None
    if not url:
        raise UpstreamFormatError("No video URL in lip-sync response", raw=str(result))
    return url


def _render_to_bytes(render, *args) -> bytes:
    """Blocking: render, read the file back, delete it."""
    output_path = render(*args)
    try:
        with open(output_path, "rb") as f:
            return f.read()
    finally:
        storage.remove_files([output_path])


async def _render_and_upload(caller, project_id, filename, render, *args) -> str:
    """Run a blocking compositor function off the event loop, upload the result."""
    try:
        data = await asyncio.to_thread(_render_to_bytes, render, *args)
    except PipelineError:
        raise
    except Exception as e:
        logger.error(f"[compose] Compositor failed for project {project_id}: {e}", exc_info=True)
        raise UpstreamError(f"Compositor failed: {e}", vendor="compositor") from e

    path = storage.project_artifact_path(caller.user_id, project_id, filename)
    return await storage.upload_artifact(path, data, "video/mp4")


# ═════════════════════════════════════════════════════════════════════════════
# Kinds
# ═════════════════════════════════════════════════════════════════════════════

async def _compose_lipsync(caller: CallerContext, row: dict) -> str:
    project_id = row["id"]
    audio_url = row.get("audio_url")
    if not audio_url:
        raise PreconditionError("No synthesized audio for this project")
    video_url = await profiles.require_video_url(caller)

    await project_service.update_project(caller, project_id, {"status": ProjectStatus.PROCESSING})
    try:
        output_url = await lipsync(video_url, audio_url)
    except PipelineError as e:
        logger.error(f"[compose] lipsync failed for project {project_id}: {e.message}")
        await project_service.update_project(caller, project_id, {"status": ProjectStatus.FAILED})
        raise
    except Exception as e:
        logger.error(f"[compose] lipsync crashed for project {project_id}: {e}", exc_info=True)
        await project_service.update_project(caller, project_id, {"status": ProjectStatus.FAILED})
        raise UpstreamError(f"Lip-sync failed: {e}", vendor="fal") from e

    await project_service.update_project(caller, project_id, {
        "output_url": output_url,
        "status": ProjectStatus.COMPLETED,
    })
    return output_url


def _slideshow_timing(row: dict, image_count: int) -> tuple[list[float], Optional[list]]:
    """
    Per-image durations. With scenes + transcript, images follow the narration
    scene by scene; otherwise the audio (or a fixed default) is split evenly.
    """
    scenes = [Scene(**s) for s in (row.get("scenes") or [])]
    words = [WordTiming(**w) for w in (row.get("transcript") or [])]
    duration = row.get("audio_duration")

    if scenes and words and len(scenes) == image_count:
        timed = align_scenes(scenes, words, duration)
        return scene_durations(timed), timed
    return even_durations(image_count, duration), None


async def _compose_slideshow(caller: CallerContext, row: dict) -> str:
    project_id = row["id"]
    images = row.get("generated_images") or []
    if not images:
        raise PreconditionError("No generated images for this project")

    durations, timed = _slideshow_timing(row, len(images))

    local_files: list[str] = []
    try:
        for url in images:
            local_files.append(await asyncio.to_thread(storage.download_to_tempfile, url, ".png"))
        audio_path = None
        if row.get("audio_url"):
            audio_path = await asyncio.to_thread(storage.download_to_tempfile, row["audio_url"], ".mp3")
            local_files.append(audio_path)

        slideshow_url = await _render_and_upload(
            caller, project_id, f"slideshow_{uuid4().hex[:8]}.mp4",
            compositor.render_slideshow, local_files[:len(images)], durations, audio_path,
        )
    finally:
        storage.remove_files(local_files)

    patch = {"slideshow_url": slideshow_url}
    if timed is not None:
        patch["timed_scenes"] = timed
    if not row.get("broll_video_url"):
        patch["broll_video_url"] = slideshow_url
    await project_service.update_project(caller, project_id, patch)
    return slideshow_url


async def _compose_split_screen(
    caller: CallerContext,
    row: dict,
    options: SplitScreenOptions,
) -> str:
    project_id = row["id"]
    person_url = row.get("output_url")
    background_url = row.get("broll_video_url") or row.get("slideshow_url")
    if not person_url or not background_url:
        raise PreconditionError("Both a person video and a B-roll video are required")

    local_files: list[str] = []
    try:
        person_path = await asyncio.to_thread(storage.download_to_tempfile, person_url, ".mp4")
        local_files.append(person_path)
        background_path = await asyncio.to_thread(storage.download_to_tempfile, background_url, ".mp4")
        local_files.append(background_path)

        merged_url = await _render_and_upload(
            caller, project_id, f"merged_{uuid4().hex[:8]}.mp4",
            compositor.render_split_screen,
            person_path, background_path, options.person_size, options.person_position,
        )
    finally:
        storage.remove_files(local_files)

    await project_service.update_project(caller, project_id, {"merged_video_url": merged_url})
    return merged_url


# ═════════════════════════════════════════════════════════════════════════════
# Stage entry points
# ═════════════════════════════════════════════════════════════════════════════

async def compose_video(
    caller: CallerContext,
    project_id: str,
    kind: CompositionKind,
    options: Optional[SplitScreenOptions] = None,
) -> str:
    """POST /video/compose — produce (or overwrite) one output kind."""
    kind = CompositionKind(kind)
    row = await project_service.load_owned_row(caller, project_id)
    logger.info(f"[compose] {kind.value} requested for project {project_id}")

    if kind == CompositionKind.LIPSYNC:
        url = await _compose_lipsync(caller, row)
    elif kind == CompositionKind.SLIDESHOW:
        url = await _compose_slideshow(caller, row)
    else:
        url = await _compose_split_screen(caller, row, options or SplitScreenOptions())

    logger.info(f"[compose] {kind.value} ready for project {project_id}: {url}")
    return url


async def delete_resource(
    caller: CallerContext,
    project_id: str,
    resource_type: ResourceType,
) -> ProjectResponse:
    """
    Clear exactly one derived field. Videos built from it are not invalidated
    and keep pointing at the old asset until regenerated.
    """
    field = RESOURCE_FIELDS[ResourceType(resource_type)]
    value = [] if field == "broll_images" else None
    logger.info(f"[compose] Clearing {field} on project {project_id}")
    return await project_service.update_project(caller, project_id, {field: value})
