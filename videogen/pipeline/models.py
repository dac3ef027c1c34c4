"""
Pydantic models and enums for the video generation pipeline.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Project Status ───────────────────────────────────────────────────────────

class ProjectStatus(str, Enum):
    DRAFT = "DRAFT"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Going back to DRAFT is only possible through the explicit reset action.
ALLOWED_TRANSITIONS: dict[ProjectStatus, set[ProjectStatus]] = {
    ProjectStatus.DRAFT: {
        ProjectStatus.DRAFT,
        ProjectStatus.PROCESSING,
        ProjectStatus.COMPLETED,
        ProjectStatus.FAILED,
    },
    ProjectStatus.PROCESSING: {
        ProjectStatus.PROCESSING,
        ProjectStatus.COMPLETED,
        ProjectStatus.FAILED,
    },
    ProjectStatus.COMPLETED: {
        ProjectStatus.PROCESSING,
        ProjectStatus.COMPLETED,
        ProjectStatus.FAILED,
    },
    ProjectStatus.FAILED: {
        ProjectStatus.PROCESSING,
        ProjectStatus.COMPLETED,
        ProjectStatus.FAILED,
    },
}


def can_transition(current: ProjectStatus, target: ProjectStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


# ── Composition / Resources ──────────────────────────────────────────────────

class CompositionKind(str, Enum):
    LIPSYNC = "lipsync"
    SLIDESHOW = "slideshow"
    SPLITSCREEN = "splitscreen"
    MERGE = "merge"


class ResourceType(str, Enum):
    BROLL_IMAGES = "brollImages"
    BROLL_VIDEO = "brollVideo"
    MERGED_VIDEO = "mergedVideo"


# resourceType → projects column; list columns are cleared to [], the rest to NULL
RESOURCE_FIELDS: dict[ResourceType, str] = {
    ResourceType.BROLL_IMAGES: "broll_images",
    ResourceType.BROLL_VIDEO: "broll_video_url",
    ResourceType.MERGED_VIDEO: "merged_video_url",
}


class PersonPosition(str, Enum):
    BOTTOM = "bottom"
    BOTTOM_LEFT = "bottom_left"
    BOTTOM_RIGHT = "bottom_right"


class SplitScreenOptions(CamelModel):
    person_size: float = Field(0.4, gt=0, le=1)
    person_position: PersonPosition = PersonPosition.BOTTOM


# ── Script ───────────────────────────────────────────────────────────────────

class ScriptMode(str, Enum):
    FLAT = "flat"
    SCENES = "scenes"


class Scene(CamelModel):
    content: str
    image_prompt: str


class ScriptResult(CamelModel):
    text: str
    scenes: Optional[list[Scene]] = None
    keywords: Optional[list[str]] = None


@dataclass(frozen=True)
class ParsedScenes:
    scenes: list[Scene]


@dataclass(frozen=True)
class MalformedScenes:
    raw: str
    reason: str


SceneParseResult = Union[ParsedScenes, MalformedScenes]


# ── Timing ───────────────────────────────────────────────────────────────────

class WordTiming(BaseModel):
    word: str
    start: float
    end: float


class TimedScene(CamelModel):
    index: int
    content: str
    image_prompt: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)


# ── Fan-out Results ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GenerationOutcome:
    prompt: str
    url: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.url is not None


class ImageBatchResult(CamelModel):
    image_urls: list[str]
    image_count: int


# ── Identity ─────────────────────────────────────────────────────────────────

class CallerContext(BaseModel):
    """Request-scoped identity threaded into every stage call."""

    model_config = ConfigDict(frozen=True)

    user_id: str


class UserProfile(BaseModel):
    id: str
    voice_id: Optional[str] = None
    video_url: Optional[str] = None


# ── Project State ────────────────────────────────────────────────────────────

class ProjectResponse(CamelModel):
    id: str
    user_id: str
    title: str
    script: str
    scenes: Optional[list[Scene]] = None
    image_prompts: list[str] = Field(default_factory=list)
    keywords: Optional[list[str]] = None
    audio_url: Optional[str] = None
    generated_images: list[str] = Field(default_factory=list)
    broll_images: list[str] = Field(default_factory=list)
    broll_video_url: Optional[str] = None
    output_url: Optional[str] = None
    slideshow_url: Optional[str] = None
    merged_video_url: Optional[str] = None
    transcript: Optional[list[WordTiming]] = None
    timed_scenes: Optional[list[TimedScene]] = None
    audio_duration: Optional[float] = None
    status: ProjectStatus = ProjectStatus.DRAFT
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ActionState(str, Enum):
    IDLE = "idle"
    GENERATING_SCRIPT = "generating-script"
    SYNTHESIZING_AUDIO = "synthesizing-audio"
    GENERATING_IMAGES = "generating-images"
    COMPOSING_VIDEO = "composing-video"
    FAILED = "failed"


class ActionStatus(CamelModel):
    key: str
    state: ActionState = ActionState.IDLE
    current_step: str = ""
    error: Optional[str] = None
    project: Optional[ProjectResponse] = None


# ── API Request Models ───────────────────────────────────────────────────────

class ScriptRequest(CamelModel):
    prompt: str
    mode: ScriptMode = ScriptMode.SCENES
    keywords: bool = False


class SpeechRequest(CamelModel):
    """Either free text, or a project whose script should be voiced."""

    text: Optional[str] = None
    project_id: Optional[str] = None


class SpeechResponse(CamelModel):
    audio_url: str


class VoiceTrainRequest(CamelModel):
    sample_audio_ref: str


class VoiceTrainResponse(CamelModel):
    voice_id: str


class ProjectIdRequest(CamelModel):
    project_id: str


class ComposeRequest(CamelModel):
    project_id: str
    kind: CompositionKind
    options: Optional[SplitScreenOptions] = None


class ComposeResponse(CamelModel):
    output_url: str


class ProjectCreateRequest(CamelModel):
    title: str
    script: str
    scenes: list[Scene] = Field(default_factory=list)
    keywords: Optional[list[str]] = None


class ProjectEnvelope(CamelModel):
    project: ProjectResponse


class ProjectListResponse(CamelModel):
    projects: list[ProjectResponse]


class DeleteResourceRequest(CamelModel):
    resource_type: ResourceType


class OkResponse(BaseModel):
    ok: bool = True
