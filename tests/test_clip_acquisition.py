import asyncio
import random
from pathlib import Path

import httpx
import pytest

from conftest import FakeLLM, FakeRunner
from promptreel.models.job import ClipTiming, KeywordType, ResolvedClip
from promptreel.services.clip_acquisition import ClipAcquirer, SelectionContext
from promptreel.services.clip_ranker import ClipRanker
from promptreel.services.effects import Effect
from promptreel.services.media_search import MediaCandidate
from promptreel.services.search_audit import SearchAuditLog
from promptreel.utils.exceptions import StorageError


class FakeSearch:
    def __init__(self, name, results):
        self.name = name
        self.results = results
        self.queries = []

    async def search(self, query, target_aspect_ratio, orientation=None):
        self.queries.append((query, orientation))
        return list(self.results.get(query, []))


class FakeAnimator:
    def __init__(self):
        self.photos = []

    async def animate(self, photo_path, output_path, aspect_ratio, duration=3.0, fps=25, forced_effect=None):
        self.photos.append(photo_path)
        Path(output_path).write_bytes(b"\0" * 8192)
        return output_path, Effect.KEN_BURNS


def _media_transport():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith(".mp4"):
            return httpx.Response(200, content=b"\0" * 2048, headers={"content-type": "video/mp4"})
        return httpx.Response(200, content=b"\xff" * 2048, headers={"content-type": "image/jpeg"})
    return httpx.MockTransport(handler)


def _video(identity, title):
    return MediaCandidate(
        id=identity, title=title, url=f"https://videos.example/{identity}.mp4",
        width=1080, height=1920, provider="Pexels", kind="video", duration=8.0,
    )


def _image(identity, width=1080, height=1920):
    return MediaCandidate(
        id=identity, title=f"photo {identity}", url=f"https://images.example/{identity}.jpg",
        width=width, height=height, provider="Google", kind="image",
    )


def _context():
    return SelectionContext(job_id="job-1", user_id="user-1", script="narration", target_aspect_ratio=9 / 16)


@pytest.fixture
def audit(tmp_path):
    return SearchAuditLog(str(tmp_path / "audit.jsonl"))


def _acquirer(settings, object_store, audit, video=None, image=None, llm=None, animator=None):
    return ClipAcquirer(
        settings,
        video_search=video or FakeSearch("Pexels", {}),
        image_search=image or FakeSearch("Google", {}),
        ranker=ClipRanker(llm or FakeLLM()),
        animator=animator or FakeAnimator(),
        runner=FakeRunner(),
        object_store=object_store,
        audit=audit,
        transport=_media_transport(),
    )


async def test_clips_come_back_in_segment_order_with_bounded_concurrency(settings, object_store, audit, tmp_path) -> None:
    acquirer = _acquirer(settings, object_store, audit)
    rng = random.Random(5)
    active = 0
    peak = 0

    async def fake_acquire_one(index, timing, ctx, workdir):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(rng.random() / 100)
        active -= 1
        return ResolvedClip(
            clip_url=f"file:///clip-{index}", keyword=timing.keyword,
            start_time=timing.start_time, duration=timing.duration, actual_duration=timing.duration,
        )

    acquirer.acquire_one = fake_acquire_one
    timings = [ClipTiming(keyword=f"k{i}", start_time=i * 2.0, duration=2.0) for i in range(8)]
    rng.shuffle(timings)

    resolved, skipped = await acquirer.acquire_all(_context(), timings, tmp_path)

    assert [c.start_time for c in resolved] == [i * 2.0 for i in range(8)]
    assert skipped == []
    assert peak <= 3


async def test_search_segment_tries_alternatives_in_order(settings, object_store, audit, tmp_path) -> None:
    image = FakeSearch("Google", {"lighthouse keeper": [_image("a")]})
    animator = FakeAnimator()
    acquirer = _acquirer(settings, object_store, audit, image=image, animator=animator)
    timing = ClipTiming(
        keyword="fresnel lens,lighthouse keeper", keyword_type=KeywordType.SEARCH,
        start_time=0.0, duration=1.5,
    )

    resolved, skipped = await acquirer.acquire_all(_context(), [timing], tmp_path)

    assert skipped == []
    assert resolved[0].keyword == "lighthouse keeper"
    assert resolved[0].media_kind == "photo"
    assert resolved[0].effect == "ken_burns"
    assert "/user-1/job-1/clips/000-lighthouse-keeper.mp4" in resolved[0].clip_url
    assert image.queries[0][0] == "fresnel lens"

    failures = audit.entries()
    assert failures and all(f.query == "fresnel lens" for f in failures)
    assert failures[0].source == "Google"
    assert failures[0].search_type == "image"
    assert failures[0].job_id == "job-1"
    assert failures[0].target_aspect_ratio == pytest.approx(0.5625)


async def test_stock_segments_never_repeat_a_selected_clip(settings, object_store, audit, tmp_path) -> None:
    settings.clip_batch_size = 1
    video = FakeSearch("Pexels", {"ocean waves": [_video("1", "blue wave"), _video("2", "surf at dawn")]})
    acquirer = _acquirer(settings, object_store, audit, video=video, llm=FakeLLM(["1", "1"]))
    timings = [
        ClipTiming(keyword="ocean waves", keyword_type=KeywordType.STOCK, start_time=0.0, duration=2.0),
        ClipTiming(keyword="ocean waves", keyword_type=KeywordType.STOCK, start_time=2.0, duration=2.0),
    ]
    ctx = _context()

    resolved, _ = await acquirer.acquire_all(ctx, timings, tmp_path)

    assert len(resolved) == 2
    assert {"Pexels:1", "Pexels:2"} <= ctx.selected
    assert all(c.media_kind == "video" for c in resolved)
    assert len(video.queries) == settings.search_attempts


async def test_unresolvable_segment_is_reported_as_skipped(settings, object_store, audit, tmp_path) -> None:
    acquirer = _acquirer(settings, object_store, audit)
    workdir = tmp_path / "work"
    workdir.mkdir()
    timing = ClipTiming(keyword="nothing here", keyword_type=KeywordType.STOCK, start_time=0.0, duration=2.0)

    resolved, skipped = await acquirer.acquire_all(_context(), [timing], workdir)

    assert resolved == []
    assert skipped == [timing]
    assert audit.stats()["by_search_type"] == {"video": 3, "image": 3}
    assert list(workdir.iterdir()) == []


async def test_storage_failure_aborts_acquisition(settings, audit, tmp_path) -> None:
    class BrokenStore:
        async def put_file(self, local_path, key):
            raise StorageError("bucket unavailable", key=key)

    image = FakeSearch("Google", {"castle": [_image("c")]})
    acquirer = _acquirer(settings, BrokenStore(), audit, image=image)
    timing = ClipTiming(keyword="castle", keyword_type=KeywordType.SEARCH, start_time=0.0, duration=2.0)

    with pytest.raises(StorageError):
        await acquirer.acquire_all(_context(), [timing], tmp_path)


class SlowSearch(FakeSearch):
    async def search(self, query, target_aspect_ratio, orientation=None):
        await asyncio.sleep(0.01)
        return await super().search(query, target_aspect_ratio, orientation)


class SlowLLM(FakeLLM):
    async def generate(self, prompt, json_output=False, temperature=None, grounded=False):
        await asyncio.sleep(0.01)
        return await super().generate(prompt, json_output, temperature, grounded)


async def test_concurrent_segments_do_not_share_a_ranked_clip(settings, object_store, audit, tmp_path) -> None:
    video = SlowSearch("Pexels", {"ocean waves": [_video("1", "blue wave"), _video("2", "surf at dawn")]})
    acquirer = _acquirer(settings, object_store, audit, video=video, llm=SlowLLM(["1", "1"]))
    timings = [
        ClipTiming(keyword="ocean waves", keyword_type=KeywordType.STOCK, start_time=0.0, duration=2.0),
        ClipTiming(keyword="ocean waves", keyword_type=KeywordType.STOCK, start_time=2.0, duration=2.0),
    ]
    ctx = _context()

    resolved, skipped = await acquirer.acquire_all(ctx, timings, tmp_path)

    assert settings.clip_batch_size > 1
    assert skipped == []
    assert len(resolved) == 2
    assert {"Pexels:1", "Pexels:2"} <= ctx.selected
    sources = [args[args.index("-i") + 1] for args in acquirer.runner.calls if "-i" in args]
    stock_sources = [Path(s).name for s in sources if Path(s).name.startswith("stock-")]
    assert sorted(stock_sources) == ["stock-1.mp4", "stock-2.mp4"]
