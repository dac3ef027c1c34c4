"""
FastAPI routes for the video generation pipeline.

Script / Assets:
  POST /script                 — Generate narration (+ scenes, + keywords)
  POST /audio/speech           — Voice free text or a project's script
  POST /audio/voice-train      — Clone the caller's voice from a sample
  POST /images/generate        — Fan-out image generation for a project
  POST /images/broll           — Keyword B-roll stills for a project

Video:
  POST /video/compose          — Compose one output kind
  POST /video/generate         — Full chain: speech → lip-sync

Project:
  POST   /project                  — Create project (DRAFT)
  GET    /project                  — List caller's projects
  GET    /project/{id}             — Get project
  GET    /project/{id}/action      — Current orchestrator action state
  POST   /project/{id}/reset       — Back to DRAFT
  DELETE /project/{id}             — Delete project
  DELETE /project/{id}/resource    — Clear one derived asset

Every route needs a session; errors are rendered by the handlers in main.py.
"""

import logging

from fastapi import APIRouter, Depends

from ..auth_middleware import get_caller
from . import composition
from . import images
from . import project_service
from . import speech
from .errors import ValidationError
from .models import (
    ActionStatus,
    CallerContext,
    ComposeRequest,
    ComposeResponse,
    DeleteResourceRequest,
    ImageBatchResult,
    OkResponse,
    ProjectCreateRequest,
    ProjectEnvelope,
    ProjectIdRequest,
    ProjectListResponse,
    ScriptRequest,
    ScriptResult,
    SpeechRequest,
    SpeechResponse,
    VoiceTrainRequest,
    VoiceTrainResponse,
)
from .orchestrator import VideoGenerationService

logger = logging.getLogger(__name__)

# Singleton service instance
_service = VideoGenerationService()


# ═════════════════════════════════════════════════════════════════════════════
# Script Router
# ═════════════════════════════════════════════════════════════════════════════

script_router = APIRouter(prefix="/script", tags=["script"])


@script_router.post("", response_model=ScriptResult, response_model_exclude_none=True)
async def generate_script(
    request: ScriptRequest,
    caller: CallerContext = Depends(get_caller),
):
    return await _service.generate_script_action(
        caller, request.prompt, request.mode, request.keywords,
    )


# ═════════════════════════════════════════════════════════════════════════════
# Audio Router
# ═════════════════════════════════════════════════════════════════════════════

audio_router = APIRouter(prefix="/audio", tags=["audio"])


@audio_router.post("/speech", response_model=SpeechResponse)
async def synthesize(
    request: SpeechRequest,
    caller: CallerContext = Depends(get_caller),
):
    """Voice a project's script when projectId is given, else the free text."""
    if request.project_id:
        audio_url = await speech.synthesize_speech(caller, request.project_id)
    elif request.text is not None:
        audio_url = await speech.synthesize_text(caller, request.text)
    else:
        raise ValidationError("Text is required")
    return SpeechResponse(audio_url=audio_url)


@audio_router.post("/voice-train", response_model=VoiceTrainResponse)
async def train_voice(
    request: VoiceTrainRequest,
    caller: CallerContext = Depends(get_caller),
):
    voice_id = await speech.register_voice(caller, request.sample_audio_ref)
    return VoiceTrainResponse(voice_id=voice_id)


# ═════════════════════════════════════════════════════════════════════════════
# Images Router
# ═════════════════════════════════════════════════════════════════════════════

images_router = APIRouter(prefix="/images", tags=["images"])


@images_router.post("/generate", response_model=ImageBatchResult)
async def generate_images(
    request: ProjectIdRequest,
    caller: CallerContext = Depends(get_caller),
):
    return await images.generate_images(caller, request.project_id)


@images_router.post("/broll", response_model=ImageBatchResult)
async def generate_broll(
    request: ProjectIdRequest,
    caller: CallerContext = Depends(get_caller),
):
    return await images.generate_broll_images(caller, request.project_id)


# ═════════════════════════════════════════════════════════════════════════════
# Video Router
# ═════════════════════════════════════════════════════════════════════════════

video_router = APIRouter(prefix="/video", tags=["video"])


@video_router.post("/compose", response_model=ComposeResponse)
async def compose(
    request: ComposeRequest,
    caller: CallerContext = Depends(get_caller),
):
    output_url = await composition.compose_video(
        caller, request.project_id, request.kind, request.options,
    )
    return ComposeResponse(output_url=output_url)


@video_router.post("/generate", response_model=ProjectEnvelope)
async def generate_full_video(
    request: ProjectIdRequest,
    caller: CallerContext = Depends(get_caller),
):
    """Speech → lip-sync in one call; stops before lip-sync if speech fails."""
    project = await _service.generate_full_video(caller, request.project_id)
    return ProjectEnvelope(project=project)


# ═════════════════════════════════════════════════════════════════════════════
# Project Router
# ═════════════════════════════════════════════════════════════════════════════

project_router = APIRouter(prefix="/project", tags=["project"])


@project_router.post("", response_model=ProjectEnvelope)
async def create_project(
    request: ProjectCreateRequest,
    caller: CallerContext = Depends(get_caller),
):
    project = await project_service.create_project(
        caller,
        title=request.title,
        script=request.script,
        scenes=request.scenes,
        keywords=request.keywords,
    )
    return ProjectEnvelope(project=project)


@project_router.get("", response_model=ProjectListResponse)
async def list_projects(caller: CallerContext = Depends(get_caller)):
    """List all projects for the caller, newest first."""
    return ProjectListResponse(projects=await project_service.list_user_projects(caller))


@project_router.get("/{project_id}", response_model=ProjectEnvelope)
async def get_project(project_id: str, caller: CallerContext = Depends(get_caller)):
    return ProjectEnvelope(project=await project_service.get_project(caller, project_id))


@project_router.get("/{project_id}/action", response_model=ActionStatus)
async def get_action(project_id: str, caller: CallerContext = Depends(get_caller)):
    await project_service.load_owned_row(caller, project_id)
    return _service.get_action_state(project_id)


@project_router.post("/{project_id}/reset", response_model=ProjectEnvelope)
async def reset_project(project_id: str, caller: CallerContext = Depends(get_caller)):
    return ProjectEnvelope(project=await project_service.reset_project(caller, project_id))


@project_router.delete("/{project_id}", response_model=OkResponse)
async def delete_project(project_id: str, caller: CallerContext = Depends(get_caller)):
    await project_service.delete_project(caller, project_id)
    _service.forget(project_id)
    return OkResponse()


@project_router.delete("/{project_id}/resource", response_model=OkResponse)
async def delete_resource(
    project_id: str,
    request: DeleteResourceRequest,
    caller: CallerContext = Depends(get_caller),
):
    await composition.delete_resource(caller, project_id, request.resource_type)
    return OkResponse()
