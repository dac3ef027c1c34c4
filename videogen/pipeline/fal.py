"""
fal.ai queue client (image generation + lip-sync).

fal.ai queue protocol:
  POST {queue}/{endpoint}                       → { request_id, status_url, response_url }
  GET  status_url                               → { status: IN_QUEUE|IN_PROGRESS|COMPLETED }
  GET  response_url                             → result payload

Every call runs under a hard deadline (VENDOR_CALL_TIMEOUT). Jobs are
submitted exactly once: a failed submit is surfaced, not retried.
"""

import os
import asyncio
import logging
from typing import Optional

import httpx

from .errors import UpstreamError, UpstreamFormatError

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

FAL_API_KEY = os.getenv("FAL_API_KEY", "")
FAL_QUEUE_BASE = "https://queue.fal.run"
POLL_INTERVAL = 3  # seconds
VENDOR_CALL_TIMEOUT = float(os.getenv("VENDOR_CALL_TIMEOUT", "300"))


def _get_headers() -> dict:
    """Return auth headers for fal.ai."""
    if not FAL_API_KEY:
        raise UpstreamError("FAL_API_KEY not set", vendor="fal")
    return {
        "Authorization": f"Key {FAL_API_KEY}",
        "Content-Type": "application/json",
    }


async def _submit_and_poll(endpoint: str, input_data: dict) -> dict:
    headers = _get_headers()

    async with httpx.AsyncClient(timeout=60) as client:
        resp = await client.post(f"{FAL_QUEUE_BASE}/{endpoint}", json=input_data, headers=headers)
        resp.raise_for_status()
        submit_data = resp.json()

        request_id = submit_data.get("request_id")
        if not request_id:
            # Some endpoints answer synchronously
            if submit_data.get("images") or submit_data.get("video"):
                return submit_data
            raise UpstreamError(f"No request_id in fal.ai response: {submit_data}", vendor="fal")

        status_url = submit_data.get("status_url") or f"{FAL_QUEUE_BASE}/{endpoint}/requests/{request_id}/status"
        result_url = submit_data.get("response_url") or f"{FAL_QUEUE_BASE}/{endpoint}/requests/{request_id}"
        logger.info(f"[fal] Queued {endpoint}: request_id={request_id}")

        while True:
            await asyncio.sleep(POLL_INTERVAL)
            status_resp = await client.get(status_url, headers=headers)
            status_resp.raise_for_status()
            status_data = status_resp.json()
            status = status_data.get("status", "")

            if status == "COMPLETED":
                if status_data.get("error"):
                    raise UpstreamError(f"fal.ai job failed: {status_data['error']}", vendor="fal")
                result_resp = await client.get(result_url, headers=headers)
                result_resp.raise_for_status()
                logger.info(f"[fal] Completed {endpoint}: request_id={request_id}")
                return result_resp.json()

            if status in ("FAILED", "ERROR"):
                raise UpstreamError(
                    f"fal.ai job failed: {status_data.get('error', 'Unknown error')}",
                    vendor="fal",
                )

            # IN_QUEUE or IN_PROGRESS: keep polling
            logger.debug(f"[fal] {endpoint} {request_id}: {status}")


async def run(endpoint: str, input_data: dict, timeout: Optional[float] = None) -> dict:
    """Submit a job, wait for it, return the result payload. Raises UpstreamError."""
    deadline = timeout or VENDOR_CALL_TIMEOUT
    try:
        result = await asyncio.wait_for(_submit_and_poll(endpoint, input_data), timeout=deadline)
    except asyncio.TimeoutError as e:
        raise UpstreamError(f"fal.ai {endpoint} timed out after {deadline:.0f}s", vendor="fal") from e
    except httpx.HTTPStatusError as e:
        raise UpstreamError(
            f"fal.ai {endpoint} error {e.response.status_code}: {e.response.text[:300]}",
            vendor="fal",
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamError(f"fal.ai {endpoint} request failed: {e}", vendor="fal") from e
    except (ValueError, KeyError, AttributeError, TypeError) as e:
        # Non-JSON body (gateway HTML page) or an unexpected payload shape
        raise UpstreamFormatError(f"fal.ai {endpoint} returned an unreadable response: {e}", raw=str(e)) from e

    if not isinstance(result, dict):
        raise UpstreamFormatError(f"fal.ai {endpoint} returned a non-object payload", raw=str(result))
    return result
