"""
VideoGenerationService — client-visible driver for multi-step actions.

Chains the stages per user action and tracks a coarse action state per key
(project id, or user id for script generation):

  idle → generating-script → idle
  idle → synthesizing-audio → composing-video → idle | failed
  idle → generating-images → composing-video → idle | failed

Chains are strictly sequential and fail fast: if a step fails or produces
nothing usable, later steps are never called. After each step the project
is re-read from the store so callers see fresh status and URLs.
"""

import os
import logging
from typing import Optional

from . import composition
from . import images
from . import project_service
from . import scriptwriter
from . import speech
from .errors import PipelineError, UpstreamError
from .models import (
    ActionState,
    ActionStatus,
    CallerContext,
    CompositionKind,
    ProjectResponse,
    ScriptMode,
    ScriptResult,
    SplitScreenOptions,
)

logger = logging.getLogger(__name__)

# Least recently updated keys are evicted past this many entries
MAX_TRACKED_ACTIONS = int(os.getenv("MAX_TRACKED_ACTIONS", "1000"))


class VideoGenerationService:
    """
    Usage:
        service = VideoGenerationService()

        script = await service.generate_script_action(caller, "coffee brewing")
        project = await service.generate_full_video(caller, project_id)
    """

    def __init__(self):
        self._actions: dict[str, ActionStatus] = {}

    def get_action_state(self, key: str) -> ActionStatus:
        """Current action state for a project (or user); idle if never seen."""
        return self._actions.get(key, ActionStatus(key=key))

    def _set_state(
        self,
        key: str,
        state: ActionState,
        step: str = "",
        error: Optional[str] = None,
        project: Optional[ProjectResponse] = None,
    ):
        previous = self._actions.pop(key, None)
        if project is None and previous is not None:
            project = previous.project
        self._actions[key] = ActionStatus(
            key=key,
            state=state,
            current_step=step,
            error=error,
            project=project,
        )
        while len(self._actions) > MAX_TRACKED_ACTIONS:
            self._actions.pop(next(iter(self._actions)))
        logger.info(f"[{key}] {state.value} {step}".rstrip())

    def forget(self, key: str) -> None:
        """Drop the tracked state for a key (e.g. after its project is deleted)."""
        self._actions.pop(key, None)

    async def _refresh(self, caller: CallerContext, project_id: str, state: ActionState, step: str):
        project = await project_service.get_project(caller, project_id)
        self._set_state(project_id, state, step, project=project)
        return project

    # ── Script ───────────────────────────────────────────────────────────

    async def generate_script_action(
        self,
        caller: CallerContext,
        topic: str,
        mode: ScriptMode = ScriptMode.SCENES,
        with_keywords: bool = False,
    ) -> ScriptResult:
        key = f"user:{caller.user_id}"
        self._set_state(key, ActionState.GENERATING_SCRIPT, "Writing script...")
        try:
            result = await scriptwriter.generate_script(topic, mode, with_keywords)
        except PipelineError as e:
            self._set_state(key, ActionState.IDLE, error=e.message)
            raise
        self._set_state(key, ActionState.IDLE)
        return result

    # ── Speech → Lip-sync ────────────────────────────────────────────────

    async def generate_full_video(self, caller: CallerContext, project_id: str) -> ProjectResponse:
        """
        Synthesize speech, then compose the lip-synced video from that audio.
        No usable audio → stop before composition, project status untouched.
        """
        try:
            self._set_state(project_id, ActionState.SYNTHESIZING_AUDIO, "Generating audio from script...")
            audio_url = await speech.synthesize_speech(caller, project_id)
            if not audio_url or not isinstance(audio_url, str):
                raise UpstreamError(
                    "Failed to generate audio - cannot proceed with video creation",
                    vendor="elevenlabs",
                )
            await self._refresh(
                caller, project_id, ActionState.COMPOSING_VIDEO,
                "Audio generated successfully! Now creating lip-synced video...",
            )

            await composition.compose_video(caller, project_id, CompositionKind.LIPSYNC)
        except PipelineError as e:
            logger.error(f"[{project_id}] Full video chain failed: {e.message}")
            self._set_state(project_id, ActionState.FAILED, error=e.message)
            raise

        return await self._refresh(caller, project_id, ActionState.IDLE, "")

    # ── Images → Composition ─────────────────────────────────────────────

    async def generate_images_and_compose(
        self,
        caller: CallerContext,
        project_id: str,
        kind: CompositionKind = CompositionKind.SLIDESHOW,
        options: Optional[SplitScreenOptions] = None,
    ) -> ProjectResponse:
        try:
            self._set_state(project_id, ActionState.GENERATING_IMAGES, "Generating images...")
            batch = await images.generate_images(caller, project_id)
            await self._refresh(
                caller, project_id, ActionState.COMPOSING_VIDEO,
                f"Generated {batch.image_count} images, composing {CompositionKind(kind).value}...",
            )

            await composition.compose_video(caller, project_id, kind, options)
        except PipelineError as e:
            logger.error(f"[{project_id}] Image chain failed: {e.message}")
            self._set_state(project_id, ActionState.FAILED, error=e.message)
            raise

        return await self._refresh(caller, project_id, ActionState.IDLE, "")
