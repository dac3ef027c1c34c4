"""
Video Generation Pipeline

  Script       — Gemini narration, optional scene breakdown + B-roll keywords
  Assets       — ElevenLabs speech with word timings, fal.ai image fan-out
  Composition  — fal.ai lip-sync, moviepy slideshow / split-screen / merge
  Projects     — Owned project rows with partial updates and a status lifecycle

HTTP routers live in `pipeline.routes` and are mounted by `videogen.main`.
"""

from .orchestrator import VideoGenerationService
from .models import CompositionKind, ProjectStatus

__all__ = [
    "VideoGenerationService",
    "CompositionKind",
    "ProjectStatus",
]
