"""
User profile store: the cloned voice id and the uploaded talking-head video.

Both are written by the user outside of a project (voice training, profile
upload) and read by the speech and lip-sync stages.
"""

import logging
from typing import Optional

from .db import get_service_client
from .errors import NotFoundError
from .models import CallerContext, UserProfile

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"


async def get_profile(caller: CallerContext) -> Optional[UserProfile]:
    sb = get_service_client()
    result = (
        sb.table(PROFILES_TABLE)
        .select("id, voice_id, video_url")
        .eq("id", caller.user_id)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return UserProfile(**result.data[0])


async def require_voice_id(caller: CallerContext) -> str:
    profile = await get_profile(caller)
    if not profile or not profile.voice_id:
        raise NotFoundError("Voice ID not found for user")
    return profile.voice_id


async def require_video_url(caller: CallerContext) -> str:
    profile = await get_profile(caller)
    if not profile or not profile.video_url:
        raise NotFoundError("You need to upload a video first")
    return profile.video_url


async def set_voice_id(caller: CallerContext, voice_id: str) -> None:
    sb = get_service_client()
    sb.table(PROFILES_TABLE).upsert({
        "id": caller.user_id,
        "voice_id": voice_id,
    }).execute()
    logger.info(f"Voice {voice_id} registered for user {caller.user_id}")
