"""
Transcript and timed-scene alignment.

ElevenLabs returns per-character timestamps; these are grouped into words,
then scene boundaries are laid onto the word timeline in script order so the
slideshow can give every scene image exactly the time its narration takes.
"""

from typing import Optional

from .models import Scene, TimedScene, WordTiming

DEFAULT_IMAGE_SECONDS = 4.0
MIN_SCENE_SECONDS = 0.5


def words_from_alignment(
    characters: list[str],
    starts: list[float],
    ends: list[float],
) -> list[WordTiming]:
    """Group character timestamps into words, splitting on whitespace."""
    words: list[WordTiming] = []
    current = ""
    word_start = 0.0
    word_end = 0.0

    for ch, start, end in zip(characters, starts, ends):
        if ch.isspace():
            if current:
                words.append(WordTiming(word=current, start=word_start, end=word_end))
                current = ""
            continue
        if not current:
            word_start = start
        current += ch
        word_end = end

    if current:
        words.append(WordTiming(word=current, start=word_start, end=word_end))
    return words


def align_scenes(
    scenes: list[Scene],
    words: list[WordTiming],
    total_duration: Optional[float] = None,
) -> list[TimedScene]:
    """
    Map each scene onto the transcript by cumulative word count.

    Word counts are scaled to the transcript length, so small mismatches
    between script and spoken words (numbers, punctuation) do not shift
    later scenes off the end. Output order == scene order.
    """
    if not scenes:
        return []

    end_of_audio = total_duration or (words[-1].end if words else 0.0)
    if not words:
        durations = even_durations(len(scenes), end_of_audio or DEFAULT_IMAGE_SECONDS * len(scenes))
        timed, cursor = [], 0.0
        for i, (scene, d) in enumerate(zip(scenes, durations)):
            timed.append(TimedScene(
                index=i, content=scene.content, image_prompt=scene.image_prompt,
                start=cursor, end=cursor + d,
            ))
            cursor += d
        return timed

    counts = [len(scene.content.split()) for scene in scenes]
    total_words = sum(counts) or len(scenes)
    scale = len(words) / total_words

    starts: list[float] = []
    cumulative = 0
    for count in counts:
        idx = min(int(round(cumulative * scale)), len(words) - 1)
        starts.append(0.0 if not starts else words[idx].start)
        cumulative += count

    timed = []
    for i, scene in enumerate(scenes):
        start = starts[i]
        end = starts[i + 1] if i + 1 < len(scenes) else max(end_of_audio, start)
        timed.append(TimedScene(
            index=i, content=scene.content, image_prompt=scene.image_prompt,
            start=start, end=end,
        ))
    return timed


def even_durations(count: int, total: Optional[float]) -> list[float]:
    if count <= 0:
        return []
    if not total:
        return [DEFAULT_IMAGE_SECONDS] * count
    return [total / count] * count


def scene_durations(timed_scenes: list[TimedScene]) -> list[float]:
    return [max(MIN_SCENE_SECONDS, scene.duration) for scene in timed_scenes]
