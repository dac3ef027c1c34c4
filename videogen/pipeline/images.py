"""
Asset Stage B — image generation via fal.ai Flux Pro v1.1.

One fal.ai call per prompt, all issued concurrently. Each call is allowed to
fail on its own; the batch only fails when nothing came back. 4 images out of
6 prompts is a usable result, not an error.
"""

import asyncio
import logging

from .. import metrics
from . import fal
from . import project_service
from .errors import (
    AllGenerationsFailedError,
    PipelineError,
    UpstreamFormatError,
    ValidationError,
)
from .models import CallerContext, GenerationOutcome, ImageBatchResult

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

FLUX_ENDPOINT = "fal-ai/flux-pro/v1.1"
BROLL_PROMPT_TEMPLATE = (
    "Cinematic B-roll photograph of {keyword}, natural light, shallow depth of field, "
    "vertical 9:16 composition, no text"
)


async def generate_image(prompt: str) -> str:
    """Single prompt in, single public image URL out."""
    result = await fal.run(FLUX_ENDPOINT, {"prompt": prompt, "image_size": "portrait_16_9"})
    images = result.get("images") or []
    first = images[0] if isinstance(images, list) and images else None
    url = first.get("url") if isinstance(first, dict) else None
    if not url:
        raise UpstreamFormatError("No image URL in fal.ai response", raw=str(result))
    return url


async def _attempt(prompt: str) -> GenerationOutcome:
    try:
        url = await generate_image(prompt)
    except PipelineError as e:
        logger.warning(f"[images] Generation failed for prompt '{prompt[:60]}': {e.message}")
        return GenerationOutcome(prompt=prompt, error=e.message)
    return GenerationOutcome(prompt=prompt, url=url)


async def fan_out(prompts: list[str]) -> list[GenerationOutcome]:
    """Run every prompt concurrently. Outcomes come back in prompt order."""
    outcomes = list(await asyncio.gather(*(_attempt(p) for p in prompts)))
    metrics.record_fan_out(len(prompts), sum(1 for o in outcomes if o.ok))
    return outcomes


def collect_successes(outcomes: list[GenerationOutcome]) -> list[str]:
    """
    Partial-success policy: keep every URL that came back, in order.
    Zero successes is the only failure.
    """
    urls = [o.url for o in outcomes if o.ok]
    if not urls:
        raise AllGenerationsFailedError(
            "Failed to generate any images from the prompts",
            errors=[o.error or "unknown error" for o in outcomes],
        )
    return urls


def prompts_for_project(row: dict) -> list[str]:
    """Scene image prompts first; fall back to keywords."""
    prompts = row.get("image_prompts") or []
    if not prompts and row.get("scenes"):
        prompts = [s.get("imagePrompt", "") for s in row["scenes"]]
    if not prompts:
        prompts = row.get("keywords") or []
    return [p for p in prompts if p and p.strip()]


# ═════════════════════════════════════════════════════════════════════════════
# Stage entry points
# ═════════════════════════════════════════════════════════════════════════════

async def generate_images(caller: CallerContext, project_id: str) -> ImageBatchResult:
    """POST /images/generate — replace the project's generated image list."""
    row = await project_service.load_owned_row(caller, project_id)

    prompts = prompts_for_project(row)
    if not prompts:
        raise ValidationError("No image prompts found in project")

    logger.info(f"[images] Generating {len(prompts)} images for project {project_id}")
    outcomes = await fan_out(prompts)
    try:
        urls = collect_successes(outcomes)
    except AllGenerationsFailedError:
        logger.error(f"[images] All {len(prompts)} generations failed for project {project_id}")
        raise

    await project_service.update_project(caller, project_id, {"generated_images": urls})
    logger.info(f"[images] Generated {len(urls)}/{len(prompts)} images for project {project_id}")
    return ImageBatchResult(image_urls=urls, image_count=len(urls))


async def generate_broll_images(caller: CallerContext, project_id: str) -> ImageBatchResult:
    """POST /images/broll — keyword-driven B-roll stills."""
    row = await project_service.load_owned_row(caller, project_id)

    keywords = [k for k in (row.get("keywords") or []) if k and k.strip()]
    if not keywords:
        raise ValidationError("No keywords found in project")

    prompts = [BROLL_PROMPT_TEMPLATE.format(keyword=k) for k in keywords]
    logger.info(f"[images] Generating {len(prompts)} B-roll images for project {project_id}")
    urls = collect_successes(await fan_out(prompts))

    await project_service.update_project(caller, project_id, {"broll_images": urls})
    return ImageBatchResult(image_urls=urls, image_count=len(urls))
