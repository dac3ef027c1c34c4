"""
Project State Store.

The persisted `projects` row is the hub every stage reads from and writes to:
  - Create (DRAFT, scenes → image prompts)
  - Get / List (ownership-checked)
  - Update (partial, per-field merge, status transitions validated)
  - Reset (the only way back to DRAFT)
  - Delete (row only; hosted asset files are not cleaned up)

Writes never replace the whole row. Only the keys in the patch are sent to
Postgres, so two stages writing different fields of the same project do not
clobber each other. Two writers racing on the SAME field is still last-writer-wins.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from .db import get_service_client
from .errors import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from .models import (
    CallerContext,
    ProjectResponse,
    ProjectStatus,
    Scene,
    can_transition,
)

logger = logging.getLogger(__name__)

PROJECTS_TABLE = "projects"

# Fields a stage may write. Title, script, scenes, image prompts and keywords
# are user-authored and read-only after creation.
MUTABLE_FIELDS = {
    "audio_url",
    "generated_images",
    "broll_images",
    "broll_video_url",
    "output_url",
    "slideshow_url",
    "merged_video_url",
    "transcript",
    "timed_scenes",
    "audio_duration",
    "status",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _project_to_response(row: dict) -> ProjectResponse:
    """Convert a Supabase row dict to a ProjectResponse."""
    return ProjectResponse(
        id=str(row["id"]),
        user_id=row["user_id"],
        title=row["title"],
        script=row["script"],
        scenes=row.get("scenes"),
        image_prompts=row.get("image_prompts") or [],
        keywords=row.get("keywords"),
        audio_url=row.get("audio_url"),
        generated_images=row.get("generated_images") or [],
        broll_images=row.get("broll_images") or [],
        broll_video_url=row.get("broll_video_url"),
        output_url=row.get("output_url"),
        slideshow_url=row.get("slideshow_url"),
        merged_video_url=row.get("merged_video_url"),
        transcript=row.get("transcript"),
        timed_scenes=row.get("timed_scenes"),
        audio_duration=row.get("audio_duration"),
        status=row.get("status", ProjectStatus.DRAFT.value),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _fetch_row(project_id: str) -> dict:
    sb = get_service_client()
    result = sb.table(PROJECTS_TABLE).select("*").eq("id", project_id).limit(1).execute()
    if not result.data:
        raise NotFoundError("Project not found")
    return result.data[0]


def _check_owner(row: dict, caller: CallerContext) -> None:
    if row["user_id"] != caller.user_id:
        logger.warning(f"User {caller.user_id} denied access to project {row['id']}")
        raise ForbiddenError()


def _serialize(value):
    """Make enums and pydantic models JSON-safe for the Supabase client."""
    if isinstance(value, ProjectStatus):
        return value.value
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(by_alias=True)
    return value


async def load_owned_row(caller: CallerContext, project_id: str) -> dict:
    """Fetch the raw row after verifying the caller owns it."""
    row = _fetch_row(project_id)
    _check_owner(row, caller)
    return row


# ═════════════════════════════════════════════════════════════════════════════
# A. Create
# ═════════════════════════════════════════════════════════════════════════════

async def create_project(
    caller: CallerContext,
    title: str,
    script: str,
    scenes: Optional[list[Scene]] = None,
    keywords: Optional[list[str]] = None,
) -> ProjectResponse:
    """
    POST /project

    Image prompts are copied out of the scenes at creation time and become
    the read-only input of the image stage.
    """
    if not title or not title.strip():
        raise ValidationError("Title and script are required")
    if not script or not script.strip():
        raise ValidationError("Title and script are required")

    scenes = scenes or []
    now = _now_iso()
    row = {
        "id": str(uuid4()),
        "user_id": caller.user_id,
        "title": title,
        "script": script,
        "scenes": _serialize(scenes) if scenes else None,
        "image_prompts": [s.image_prompt for s in scenes],
        "keywords": keywords,
        "generated_images": [],
        "broll_images": [],
        "status": ProjectStatus.DRAFT.value,
        "created_at": now,
        "updated_at": now,
    }

    sb = get_service_client()
    sb.table(PROJECTS_TABLE).insert(row).execute()
    logger.info(f"Project {row['id']} created for user {caller.user_id} ({len(scenes)} scenes)")
    return _project_to_response(_fetch_row(row["id"]))


# ═════════════════════════════════════════════════════════════════════════════
# B. Get / List
# ═════════════════════════════════════════════════════════════════════════════

async def get_project(caller: CallerContext, project_id: str) -> ProjectResponse:
    row = await load_owned_row(caller, project_id)
    return _project_to_response(row)


async def list_user_projects(caller: CallerContext) -> list[ProjectResponse]:
    """List all projects for a user, newest first."""
    sb = get_service_client()
    result = (
        sb.table(PROJECTS_TABLE)
        .select("*")
        .eq("user_id", caller.user_id)
        .order("created_at", desc=True)
        .execute()
    )
    return [_project_to_response(row) for row in result.data]


# ═════════════════════════════════════════════════════════════════════════════
# C. Partial Update
# ═════════════════════════════════════════════════════════════════════════════

async def update_project(
    caller: CallerContext,
    project_id: str,
    patch: dict,
) -> ProjectResponse:
    """
    Merge `patch` into the project, field by field.

    Rejects unknown / user-authored fields and illegal status transitions
    before anything is written. Always bumps updated_at.
    """
    row = await load_owned_row(caller, project_id)

    unknown = set(patch) - MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Fields not writable by pipeline stages: {sorted(unknown)}")

    if "status" in patch:
        current = ProjectStatus(row.get("status", ProjectStatus.DRAFT.value))
        target = ProjectStatus(patch["status"])
        if not can_transition(current, target):
            raise InvalidTransitionError(
                f"Illegal status transition {current.value} → {target.value}"
            )

    update = {key: _serialize(value) for key, value in patch.items()}
    update["updated_at"] = _now_iso()

    sb = get_service_client()
    sb.table(PROJECTS_TABLE).update(update).eq("id", project_id).execute()

    if "status" in update:
        logger.info(f"Project {project_id} → {update['status']}")
    else:
        logger.info(f"Project {project_id} updated: {sorted(patch)}")

    return _project_to_response(_fetch_row(project_id))


async def reset_project(caller: CallerContext, project_id: str) -> ProjectResponse:
    """Explicit reset: the only path back to DRAFT. Asset fields are kept."""
    await load_owned_row(caller, project_id)

    sb = get_service_client()
    sb.table(PROJECTS_TABLE).update({
        "status": ProjectStatus.DRAFT.value,
        "updated_at": _now_iso(),
    }).eq("id", project_id).execute()

    logger.info(f"Project {project_id} reset → DRAFT")
    return _project_to_response(_fetch_row(project_id))


# ═════════════════════════════════════════════════════════════════════════════
# D. Delete
# ═════════════════════════════════════════════════════════════════════════════

async def delete_project(caller: CallerContext, project_id: str) -> None:
    """Remove the row. Files already uploaded to storage are left in place."""
    await load_owned_row(caller, project_id)

    sb = get_service_client()
    sb.table(PROJECTS_TABLE).delete().eq("id", project_id).execute()
    logger.info(f"Project {project_id} deleted by user {caller.user_id}")
