"""
Supabase Storage helpers for the pipeline.

All generated artifacts are stored under:
  {bucket}/projects/{user_id}/{project_id}/{filename}

Free-standing speech (no project) goes under `users/{user_id}/speech/`.
"""

import os
import logging
import tempfile

import requests

from .db import get_service_client
from .errors import UpstreamError

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

STORAGE_BUCKET = os.getenv("SUPABASE_STORAGE_BUCKET", "videogen")
DOWNLOAD_CHUNK_SIZE = 1024 * 64


# ── Helpers ──────────────────────────────────────────────────────────────────

def project_artifact_path(user_id: str, project_id: str, filename: str) -> str:
    return f"projects/{user_id}/{project_id}/{filename}"


def user_artifact_path(user_id: str, filename: str) -> str:
    return f"users/{user_id}/{filename}"


async def upload_artifact(path: str, data: bytes, content_type: str) -> str:
    """Upload bytes to the bucket (overwriting) and return the public URL."""
    sb = get_service_client()
    bucket = sb.storage.from_(STORAGE_BUCKET)
    try:
        bucket.upload(
            path=path,
            file=data,
            file_options={"content-type": content_type, "upsert": "true"},
        )
    except Exception as e:
        logger.error(f"Storage upload failed for {path}: {e}")
        raise UpstreamError(f"Storage upload failed: {e}", vendor="storage") from e

    public_url = bucket.get_public_url(path)
    logger.info(f"Uploaded {len(data)} bytes → {public_url}")
    return public_url


def download_to_tempfile(url: str, suffix: str) -> str:
    """
    Stream a (possibly large) remote file to disk and return its path.
    Blocking; call through asyncio.to_thread from async code.
    """
    tf = tempfile.NamedTemporaryFile(suffix=suffix, delete=False, mode="wb")
    try:
        with requests.get(url, stream=True, timeout=120) as r:
            r.raise_for_status()
            for chunk in r.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                tf.write(chunk)
    except requests.exceptions.RequestException as e:
        tf.close()
        remove_files([tf.name])
        raise UpstreamError(f"Download failed for {url}: {e}", vendor="storage") from e
    tf.close()
    return tf.name


def remove_files(paths: list[str]) -> None:
    for path in paths:
        try:
            if path and os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning(f"Could not delete temp file {path}: {e}")
