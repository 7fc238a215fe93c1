"""Tests for framecast.services (OpenAI generator, gallery, TRMNL, token purge)."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from framecast.core.errors import ArtifactStoreError, DeviceSyncError, GenerationError
from framecast.core.pipeline import GenerationPipeline
from framecast.services.auth import purge_expired_tokens
from framecast.services.base import GeneratedImage
from framecast.services.gallery import GalleryStore
from framecast.services.openai_images import OpenAIImageGenerator
from framecast.services.trmnl import TrmnlNotifier


def _session_factory(session):
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=session)
    ctx.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=ctx)


# ── OpenAI ─────────────────────────────────────────────────────────────────────


def _generator(handler, api_key="sk-test"):
    return OpenAIImageGenerator(
        api_key=api_key,
        api_base="https://api.openai.test/v1/",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


async def test_generate_returns_first_image():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"data": [{"url": "https://cdn.test/tmp.png", "revised_prompt": "A fox."}]}
        )

    image = await _generator(handler).generate(
        "a fox", model="dall-e-3", size="1024x1024", quality="hd"
    )

    assert image == GeneratedImage(url="https://cdn.test/tmp.png", revised_prompt="A fox.")
    assert seen["url"] == "https://api.openai.test/v1/images/generations"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["quality"] == "hd"
    assert seen["body"]["n"] == 1


async def test_generate_surfaces_provider_error_message():
    def handler(request):
        return httpx.Response(400, json={"error": {"message": "Your request was rejected"}})

    with pytest.raises(GenerationError, match="Your request was rejected"):
        await _generator(handler).generate(
            "x", model="dall-e-3", size="1024x1024", quality="standard"
        )


async def test_generate_error_without_body():
    def handler(request):
        return httpx.Response(503, text="upstream unavailable")

    with pytest.raises(GenerationError, match="HTTP 503"):
        await _generator(handler).generate(
            "x", model="dall-e-3", size="1024x1024", quality="standard"
        )


async def test_generate_network_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(GenerationError, match="request failed"):
        await _generator(handler).generate(
            "x", model="dall-e-3", size="1024x1024", quality="standard"
        )


async def test_generate_empty_data():
    def handler(request):
        return httpx.Response(200, json={"data": []})

    with pytest.raises(GenerationError, match="No image URL"):
        await _generator(handler).generate(
            "x", model="dall-e-3", size="1024x1024", quality="standard"
        )


async def test_generate_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    from framecast.config import get_settings

    get_settings.cache_clear()
    try:
        generator = _generator(lambda r: httpx.Response(200), api_key=None)
        with pytest.raises(GenerationError, match="OPENAI_API_KEY"):
            await generator.generate("x", model="dall-e-3", size="1024x1024", quality="standard")
    finally:
        get_settings.cache_clear()


# ── Gallery ────────────────────────────────────────────────────────────────────


def _gallery(tmp_path, handler=None, session=None):
    return GalleryStore(
        gallery_dir=tmp_path,
        public_base_url="https://framecast.test/",
        session_factory=_session_factory(session or AsyncMock()),
        transport=httpx.MockTransport(handler or (lambda r: httpx.Response(200, content=b"PNG"))),
    )


def test_permanent_url(tmp_path):
    assert (
        _gallery(tmp_path).permanent_url_for("img-1")
        == "https://framecast.test/api/v1/gallery/image/img-1"
    )


async def test_persist_writes_under_owner_directory(tmp_path):
    path = await _gallery(tmp_path).persist("https://cdn.test/tmp.png", "user-1", "img-1")
    assert path == tmp_path / "user-1" / "img-1.png"
    assert path.read_bytes() == b"PNG"


async def test_persist_download_failure(tmp_path):
    store = _gallery(tmp_path, handler=lambda r: httpx.Response(403))
    with pytest.raises(ArtifactStoreError, match="Failed to download"):
        await store.persist("https://cdn.test/expired.png", "user-1", "img-1")
    assert not (tmp_path / "user-1" / "img-1.png").exists()


async def test_create_record_returns_generated_id(tmp_path):
    session = AsyncMock()
    session.add = MagicMock()

    async def flush():
        session.add.call_args.args[0].id = "img-42"

    session.flush = AsyncMock(side_effect=flush)
    artifact_id = await _gallery(tmp_path, session=session).create_record(
        owner_id="user-1",
        source_url="https://cdn.test/tmp.png",
        prompt="a fox",
        revised_prompt=None,
        model="dall-e-3",
        size="1024x1024",
        style_preset="anime",
        source="schedule",
    )
    assert artifact_id == "img-42"
    record = session.add.call_args.args[0]
    assert record.source == "schedule"
    assert record.image_url == "https://cdn.test/tmp.png"
    session.commit.assert_awaited_once()


async def test_set_url_updates_record(tmp_path):
    session = AsyncMock()
    await _gallery(tmp_path, session=session).set_url("img-1", "https://framecast.test/x")
    stmt = session.execute.call_args.args[0]
    assert "UPDATE generated_images SET image_url" in str(stmt)
    session.commit.assert_awaited_once()


async def test_pipeline_runs_generator_then_gallery(tmp_path):
    generator = MagicMock()
    generator.generate = AsyncMock(return_value=GeneratedImage(url="https://cdn.test/t.png"))
    artifacts = MagicMock()
    artifacts.create_record = AsyncMock(return_value="img-7")
    artifacts.persist = AsyncMock(return_value=tmp_path / "img-7.png")
    artifacts.permanent_url_for = MagicMock(return_value="https://framecast.test/img-7")
    artifacts.set_url = AsyncMock()
    pipeline = GenerationPipeline(generator, artifacts, model="dall-e-3", quality="hd")

    artifact = await pipeline.run(
        owner_id="user-1", prompt="a fox", size=None, style_preset="sketch", source="batch"
    )

    assert artifact.id == "img-7"
    assert artifact.url == "https://framecast.test/img-7"
    styled = generator.generate.call_args.args[0]
    assert styled.startswith("a fox, pencil sketch style")
    assert generator.generate.call_args.kwargs == {
        "model": "dall-e-3",
        "size": "1024x1024",
        "quality": "hd",
    }
    # The gallery keeps the user's own prompt, not the styled one
    assert artifacts.create_record.call_args.kwargs["prompt"] == "a fox"
    artifacts.persist.assert_awaited_once_with("https://cdn.test/t.png", "user-1", "img-7")
    artifacts.set_url.assert_awaited_once_with("img-7", "https://framecast.test/img-7")


async def test_pipeline_stops_on_generation_error():
    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=GenerationError("rejected"))
    artifacts = MagicMock()
    artifacts.create_record = AsyncMock()
    pipeline = GenerationPipeline(generator, artifacts)

    with pytest.raises(GenerationError):
        await pipeline.run(
            owner_id="user-1", prompt="a fox", size="1024x1024", style_preset=None, source="batch"
        )
    artifacts.create_record.assert_not_called()


# ── TRMNL ──────────────────────────────────────────────────────────────────────


def _notifier(webhooks, handler):
    session = AsyncMock()
    result = MagicMock()
    result.scalars.return_value.all.return_value = webhooks
    session.execute = AsyncMock(return_value=result)
    return TrmnlNotifier(
        webhook_base="https://trmnl.test/api/custom_plugins/",
        session_factory=_session_factory(session),
        transport=httpx.MockTransport(handler),
    )


async def test_notify_posts_to_every_webhook():
    posted = []

    def handler(request):
        posted.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200)

    await _notifier(["uuid-a", "uuid-b"], handler).notify("https://img.test/1", "a fox", "user-1")

    assert sorted(url for url, _ in posted) == [
        "https://trmnl.test/api/custom_plugins/uuid-a",
        "https://trmnl.test/api/custom_plugins/uuid-b",
    ]
    assert posted[0][1] == {
        "merge_variables": {"image_url": "https://img.test/1", "prompt": "a fox"}
    }


async def test_notify_partial_failure_is_tolerated():
    def handler(request):
        return httpx.Response(500 if request.url.path.endswith("uuid-b") else 200)

    await _notifier(["uuid-a", "uuid-b"], handler).notify("https://img.test/1", "a fox", "user-1")


async def test_notify_all_failing_raises():
    with pytest.raises(DeviceSyncError, match="All device webhooks failed"):
        await _notifier(["uuid-a"], lambda r: httpx.Response(502)).notify(
            "https://img.test/1", "a fox", "user-1"
        )


async def test_notify_without_devices_sends_nothing():
    def handler(request):
        raise AssertionError("no request expected")

    await _notifier([], handler).notify("https://img.test/1", "a fox", "user-1")


# ── token purge ────────────────────────────────────────────────────────────────


async def test_purge_expired_tokens_counts_rows():
    session = AsyncMock()
    session.execute = AsyncMock(side_effect=[MagicMock(rowcount=2), MagicMock(rowcount=1)])
    now = datetime(2026, 3, 5, 12, tzinfo=UTC)

    removed = await purge_expired_tokens(session_factory=_session_factory(session), now=now)

    assert removed == 3
    statements = [str(c.args[0]) for c in session.execute.call_args_list]
    assert statements[0].startswith("DELETE FROM revoked_tokens")
    assert statements[1].startswith("DELETE FROM refresh_tokens")
    session.commit.assert_awaited_once()
