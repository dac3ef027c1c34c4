import json

import pytest

from conftest import run
from videogen.pipeline import composition
from videogen.pipeline import orchestrator
from videogen.pipeline import compositor
from videogen.pipeline import images
from videogen.pipeline import project_service
from videogen.pipeline import scriptwriter
from videogen.pipeline import speech
from videogen.pipeline import storage
from videogen.pipeline.errors import (
    AllGenerationsFailedError,
    NotFoundError,
    UpstreamError,
    UpstreamFormatError,
)
from videogen.pipeline.models import ActionState, CompositionKind, ProjectStatus, WordTiming
from videogen.pipeline.orchestrator import VideoGenerationService


@pytest.fixture
def service():
    return VideoGenerationService()


@pytest.fixture
def lipsync_calls(monkeypatch):
    calls = []

    async def fake_lipsync(video_url, audio_url):
        calls.append((video_url, audio_url))
        return "https://fal.test/lipsynced.mp4"

    monkeypatch.setattr(composition, "lipsync", fake_lipsync)
    return calls


def _fake_tts(monkeypatch):
    async def fake_convert(voice_id, text):
        words = [WordTiming(word=w, start=i * 0.4, end=i * 0.4 + 0.3) for i, w in enumerate(text.split())]
        return b"mp3", words, words[-1].end

    monkeypatch.setattr(speech, "convert_with_timestamps", fake_convert)


class TestFullVideoChain:
    def test_speech_then_lipsync(self, service, alice, make_project, profile, lipsync_calls, monkeypatch):
        _fake_tts(monkeypatch)
        project = make_project()

        final = run(service.generate_full_video(alice, project.id))

        assert final.status == ProjectStatus.COMPLETED
        assert final.output_url == "https://fal.test/lipsynced.mp4"
        assert lipsync_calls == [("https://cdn.test/alice/face.mp4", final.audio_url)]
        state = service.get_action_state(project.id)
        assert state.state == ActionState.IDLE
        assert state.project.id == project.id

    def test_speech_failure_stops_the_chain(self, service, alice, make_project, profile, lipsync_calls, monkeypatch):
        project = make_project()

        async def failing_convert(voice_id, text):
            raise UpstreamError("ElevenLabs error 500: internal", vendor="elevenlabs")

        monkeypatch.setattr(speech, "convert_with_timestamps", failing_convert)

        with pytest.raises(UpstreamError):
            run(service.generate_full_video(alice, project.id))

        assert lipsync_calls == []
        stored = run(project_service.get_project(alice, project.id))
        assert stored.status == ProjectStatus.DRAFT
        state = service.get_action_state(project.id)
        assert state.state == ActionState.FAILED
        assert "internal" in state.error

    def test_empty_audio_url_stops_the_chain(self, service, alice, make_project, profile, lipsync_calls, monkeypatch):
        project = make_project()

        async def no_audio(caller, project_id):
            return ""

        monkeypatch.setattr(speech, "synthesize_speech", no_audio)

        with pytest.raises(UpstreamError, match="cannot proceed with video creation"):
            run(service.generate_full_video(alice, project.id))

        assert lipsync_calls == []
        assert run(project_service.get_project(alice, project.id)).status == ProjectStatus.DRAFT

    def test_missing_voice(self, service, alice, make_project, lipsync_calls):
        project = make_project()

        with pytest.raises(NotFoundError):
            run(service.generate_full_video(alice, project.id))
        assert lipsync_calls == []


class TestScriptAction:
    def test_failure_returns_to_idle_with_error(self, service, alice, monkeypatch):
        async def prose_only(prompt, temperature=0.7):
            return "No JSON today."

        monkeypatch.setattr(scriptwriter, "generate_text", prose_only)

        with pytest.raises(UpstreamFormatError):
            run(service.generate_script_action(alice, "coffee"))

        state = service.get_action_state("user:alice")
        assert state.state == ActionState.IDLE
        assert state.error

    def test_unknown_key_is_idle(self, service):
        assert service.get_action_state("never-seen").state == ActionState.IDLE


def test_topic_to_finished_videos(service, alice, profile, lipsync_calls, monkeypatch, tmp_path):
    """Topic → script → project → images (one fails) → speech + lip-sync → slideshow."""
    scene_reply = {
        "scenes": [
            {"content": "Mornings start slow.", "imagePrompt": "Sunrise over a quiet kitchen"},
            {"content": "Then the kettle sings.", "imagePrompt": "Steaming kettle on a stove"},
            {"content": "And the first sip lands.", "imagePrompt": "Hands holding a warm mug"},
        ]
    }

    async def fake_text(prompt, temperature=0.7):
        return "Here is your script!\n" + json.dumps(scene_reply)

    async def fake_image(prompt):
        if "kettle" in prompt:
            raise UpstreamError("fal.ai job failed: content policy", vendor="fal")
        return f"https://fal.test/{prompt.split()[0].lower()}.png"

    def fake_download(url, suffix):
        path = tmp_path / f"{abs(hash(url))}{suffix}"
        path.write_bytes(b"data")
        return str(path)

    rendered = []

    def fake_slideshow(image_paths, durations, audio_path=None):
        rendered.append((len(image_paths), durations))
        out = tmp_path / "slideshow.mp4"
        out.write_bytes(b"mp4")
        return str(out)

    monkeypatch.setattr(scriptwriter, "generate_text", fake_text)
    monkeypatch.setattr(images, "generate_image", fake_image)
    monkeypatch.setattr(storage, "download_to_tempfile", fake_download)
    monkeypatch.setattr(compositor, "render_slideshow", fake_slideshow)
    _fake_tts(monkeypatch)

    script = run(service.generate_script_action(alice, "slow mornings"))
    assert len(script.scenes) == 3

    project = run(project_service.create_project(
        alice, title="Slow Mornings", script=script.text, scenes=script.scenes,
    ))
    assert project.image_prompts == [s["imagePrompt"] for s in scene_reply["scenes"]]

    batch = run(images.generate_images(alice, project.id))
    assert batch.image_urls == ["https://fal.test/sunrise.png", "https://fal.test/hands.png"]

    done = run(service.generate_full_video(alice, project.id))
    assert done.status == ProjectStatus.COMPLETED
    assert done.transcript

    slideshow_url = run(composition.compose_video(alice, project.id, CompositionKind.SLIDESHOW))

    final = run(project_service.get_project(alice, project.id))
    assert final.slideshow_url == slideshow_url
    assert final.output_url == "https://fal.test/lipsynced.mp4"
    assert final.generated_images == batch.image_urls
    assert final.status == ProjectStatus.COMPLETED
    # Two images for three scenes: durations fall back to an even split of the audio.
    count, durations = rendered[0]
    assert count == 2
    assert sum(durations) == pytest.approx(final.audio_duration)


class TestImageChain:
    def _stub_render(self, monkeypatch, tmp_path):
        rendered = []

        def fake_download(url, suffix):
            path = tmp_path / f"{len(rendered)}_{abs(hash(url))}{suffix}"
            path.write_bytes(b"data")
            return str(path)

        def fake_slideshow(image_paths, durations, audio_path=None):
            rendered.append(image_paths)
            out = tmp_path / "slideshow.mp4"
            out.write_bytes(b"mp4")
            return str(out)

        monkeypatch.setattr(storage, "download_to_tempfile", fake_download)
        monkeypatch.setattr(compositor, "render_slideshow", fake_slideshow)
        return rendered

    def test_images_then_slideshow(self, service, alice, make_project, monkeypatch, tmp_path):
        rendered = self._stub_render(monkeypatch, tmp_path)

        async def fake_image(prompt):
            return f"https://fal.test/{abs(hash(prompt))}.png"

        monkeypatch.setattr(images, "generate_image", fake_image)
        project = make_project()

        final = run(service.generate_images_and_compose(alice, project.id))

        assert len(final.generated_images) == 3
        assert final.slideshow_url
        assert len(rendered[0]) == 3
        assert service.get_action_state(project.id).state == ActionState.IDLE

    def test_no_images_means_no_composition(self, service, alice, make_project, monkeypatch, tmp_path):
        rendered = self._stub_render(monkeypatch, tmp_path)

        async def failing_image(prompt):
            raise UpstreamError("fal.ai job failed", vendor="fal")

        monkeypatch.setattr(images, "generate_image", failing_image)
        project = make_project()

        with pytest.raises(AllGenerationsFailedError):
            run(service.generate_images_and_compose(alice, project.id))

        assert rendered == []
        assert service.get_action_state(project.id).state == ActionState.FAILED


class TestTrackedActions:
    def test_oldest_untouched_keys_are_evicted(self, service, monkeypatch):
        monkeypatch.setattr(orchestrator, "MAX_TRACKED_ACTIONS", 3)

        for key in ("p0", "p1", "p2"):
            service._set_state(key, ActionState.GENERATING_IMAGES, "Generating images...")
        service._set_state("p0", ActionState.COMPOSING_VIDEO, "Composing video...")
        for key in ("p3", "p4"):
            service._set_state(key, ActionState.GENERATING_IMAGES, "Generating images...")

        assert sorted(service._actions) == ["p0", "p3", "p4"]
        assert service.get_action_state("p1").state == ActionState.IDLE
        assert service.get_action_state("p0").state == ActionState.COMPOSING_VIDEO

    def test_forget(self, service):
        service._set_state("p0", ActionState.FAILED, error="boom")

        service.forget("p0")
        service.forget("never-seen")

        assert service.get_action_state("p0").state == ActionState.IDLE
