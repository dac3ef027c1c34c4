import asyncio
import json

import pytest

from conftest import run
from videogen.pipeline import fal
from videogen.pipeline.errors import UpstreamError, UpstreamFormatError


def _patch_queue(monkeypatch, behaviour):
    async def fake_submit_and_poll(endpoint, input_data):
        return behaviour()

    monkeypatch.setattr(fal, "_submit_and_poll", fake_submit_and_poll)


def test_result_payload_is_returned(monkeypatch):
    _patch_queue(monkeypatch, lambda: {"images": [{"url": "https://fal.test/1.png"}]})

    assert run(fal.run("fal-ai/flux-pro/v1.1", {"prompt": "x"})) == {"images": [{"url": "https://fal.test/1.png"}]}


def test_html_error_page_is_a_format_error(monkeypatch):
    _patch_queue(monkeypatch, lambda: json.loads("<html>bad gateway</html>"))

    with pytest.raises(UpstreamFormatError, match="unreadable response"):
        run(fal.run("fal-ai/flux-pro/v1.1", {"prompt": "x"}))


def test_non_object_payload_is_a_format_error(monkeypatch):
    _patch_queue(monkeypatch, lambda: ["not", "an", "object"])

    with pytest.raises(UpstreamFormatError, match="non-object payload"):
        run(fal.run("fal-ai/flux-pro/v1.1", {"prompt": "x"}))


def test_deadline(monkeypatch):
    async def never_finishes(endpoint, input_data):
        await asyncio.sleep(10)

    monkeypatch.setattr(fal, "_submit_and_poll", never_finishes)

    with pytest.raises(UpstreamError, match="timed out"):
        run(fal.run("fal-ai/sync-lipsync", {}, timeout=0.01))
