"""
Local moviepy compositor for the slideshow and split-screen outputs.

Everything here is blocking and CPU-heavy; callers run it through
asyncio.to_thread. Output is always a 1080x1920 portrait MP4.
"""

import logging
import tempfile
from typing import Optional

from PIL import Image, ImageOps
from moviepy import (
    AudioFileClip,
    CompositeVideoClip,
    ImageClip,
    VideoFileClip,
    concatenate_videoclips,
    vfx,
)

from .models import PersonPosition
from .storage import remove_files

logger = logging.getLogger(__name__)

# ── Canvas layout constants ──────────────────────────────────────────────────

FRAME_WIDTH = 1080
FRAME_HEIGHT = 1920
FPS = 24
KEN_BURNS_ZOOM = 0.04  # scale gained per second
TRANSITION_SECONDS = 0.3
PERSON_MARGIN = 40

POSITION_ANCHORS = {
    PersonPosition.BOTTOM: "center",
    PersonPosition.BOTTOM_LEFT: "left",
    PersonPosition.BOTTOM_RIGHT: "right",
}


def _temp_path(suffix: str) -> str:
    tf = tempfile.NamedTemporaryFile(suffix=suffix, delete=False)
    tf.close()
    return tf.name


def fit_image(path: str) -> str:
    """Centre-crop an image to the portrait frame, return the new PNG path."""
    out = _temp_path(".png")
    with Image.open(path) as img:
        fitted = ImageOps.fit(img.convert("RGB"), (FRAME_WIDTH, FRAME_HEIGHT), Image.Resampling.LANCZOS)
        fitted.save(out, format="PNG")
    return out


def _ken_burns(image_path: str, duration: float):
    clip = ImageClip(image_path).with_duration(duration)
    zoomed = clip.resized(lambda t: 1 + KEN_BURNS_ZOOM * t).with_position("center")
    return CompositeVideoClip([zoomed], size=(FRAME_WIDTH, FRAME_HEIGHT)).with_duration(duration)


def _write(clip, suffix: str = ".mp4") -> str:
    out = _temp_path(suffix)
    clip.write_videofile(out, codec="libx264", audio_codec="aac", fps=FPS, logger=None)
    return out


def render_slideshow(
    image_paths: list[str],
    durations: list[float],
    audio_path: Optional[str] = None,
    ken_burns: bool = True,
) -> str:
    """
    One image per duration, in order, with a short crossfade and optional
    narration track. Returns the rendered file path (caller deletes it).
    """
    if len(image_paths) != len(durations):
        raise ValueError("image_paths and durations must have the same length")

    fitted = []
    clips = []
    audio = None
    try:
        for path, duration in zip(image_paths, durations):
            frame = fit_image(path)
            fitted.append(frame)
            if ken_burns:
                clip = _ken_burns(frame, duration)
            else:
                clip = ImageClip(frame).with_duration(duration)
            if clips:
                clip = clip.with_effects([vfx.CrossFadeIn(TRANSITION_SECONDS)])
            clips.append(clip)

        video = concatenate_videoclips(clips, method="compose")
        if audio_path:
            audio = AudioFileClip(audio_path)
            video = video.with_audio(audio).with_duration(min(video.duration, audio.duration))

        logger.info(f"[compositor] Slideshow: {len(clips)} images, {video.duration:.1f}s")
        return _write(video)
    finally:
        for clip in clips:
            clip.close()
        if audio:
            audio.close()
        remove_files(fitted)


def render_split_screen(
    person_path: str,
    background_path: str,
    person_size: float,
    person_position: PersonPosition,
) -> str:
    """
    Person video as an inset over a full-frame background. The background is
    looped or trimmed to the person's length; audio comes from the person clip.
    """
    person = VideoFileClip(person_path)
    background = VideoFileClip(background_path)
    try:
        duration = person.duration

        bg = background.resized(height=FRAME_HEIGHT)
        if bg.w < FRAME_WIDTH:
            bg = bg.resized(width=FRAME_WIDTH)
        bg = bg.cropped(x_center=bg.w / 2, y_center=bg.h / 2, width=FRAME_WIDTH, height=FRAME_HEIGHT)
        if bg.duration < duration:
            bg = bg.with_effects([vfx.Loop(duration=duration)])
        bg = bg.with_duration(duration).without_audio()

        inset = person.resized(width=int(FRAME_WIDTH * person_size))
        anchor = POSITION_ANCHORS[person_position]
        if anchor == "center":
            x = (FRAME_WIDTH - inset.w) / 2
        elif anchor == "left":
            x = PERSON_MARGIN
        else:
            x = FRAME_WIDTH - inset.w - PERSON_MARGIN
        y = max(0, FRAME_HEIGHT - inset.h - PERSON_MARGIN)
        inset = inset.with_position((x, y))

        final = CompositeVideoClip([bg, inset], size=(FRAME_WIDTH, FRAME_HEIGHT)).with_duration(duration)
        if person.audio is not None:
            final = final.with_audio(person.audio)

        logger.info(
            f"[compositor] Split-screen: person {person_size:.0%} at {person_position.value}, {duration:.1f}s"
        )
        return _write(final)
    finally:
        person.close()
        background.close()
