import httpx
import pytest

from promptreel.services.media_search import (
    GoogleImageSearch, MediaCandidate, PexelsVideoSearch, orientation_for, rank_by_aspect_ratio,
)
from promptreel.utils.exceptions import APIKeyError, ProviderError, RateLimitError

PEXELS_PAYLOAD = {
    "videos": [
        {
            "id": 101,
            "url": "https://www.pexels.com/video/waves-on-rocks-101/",
            "duration": 12,
            "user": {"name": "Ana"},
            "tags": ["sea", 7],
            "video_files": [
                {"link": "https://cdn.example/101-hd.mp4", "quality": "hd", "width": 1080, "height": 1920},
                {"link": "https://cdn.example/101-4k.mp4", "quality": "uhd", "width": 2160, "height": 3840},
                {"link": "https://cdn.example/101-wide.mp4", "quality": "hd", "width": 1920, "height": 1080},
            ],
        },
        {"id": 102, "url": "", "duration": 2, "video_files": [
            {"link": "https://cdn.example/102.mp4", "quality": "hd", "width": 1080, "height": 1920},
        ]},
        {"id": 103, "url": "", "duration": 9, "video_files": [
            {"link": "https://cdn.example/103.mp4", "quality": "sd", "width": 540, "height": 960},
        ]},
    ]
}


def test_orientation_sequence_for_vertical_target() -> None:
    assert [orientation_for(9 / 16, attempt) for attempt in range(3)] == ["portrait", "landscape", None]
    assert orientation_for(1.0, 0) == "square"


def test_pexels_parse_filters_by_shape_duration_and_quality() -> None:
    candidates = PexelsVideoSearch.parse(PEXELS_PAYLOAD, 9 / 16)

    assert len(candidates) == 1
    video = candidates[0]
    assert video.url == "https://cdn.example/101-hd.mp4"
    assert video.title == "waves on rocks"
    assert video.identity == "Pexels:101"
    assert video.tags == ["sea"]
    assert video.duration == 12.0


def test_google_parse_skips_items_without_dimensions() -> None:
    payload = {"items": [
        {"link": "https://img.example/a.jpg", "title": "Eiffel Tower", "image": {"width": 800, "height": 1200}},
        {"link": "https://img.example/b.jpg", "title": "no size", "image": {}},
    ]}
    candidates = GoogleImageSearch.parse(payload)
    assert [c.title for c in candidates] == ["Eiffel Tower"]
    assert candidates[0].id == "google-0"


def test_rank_by_aspect_ratio_prefers_closest_shape() -> None:
    wide = MediaCandidate(id="w", title="w", url="u", width=1920, height=1080, provider="G", kind="image")
    tall = MediaCandidate(id="t", title="t", url="u", width=1080, height=1920, provider="G", kind="image")
    assert rank_by_aspect_ratio([wide, tall], 9 / 16) == [tall, wide]


async def test_search_sends_key_and_orientation(settings) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=PEXELS_PAYLOAD)

    search = PexelsVideoSearch(settings, transport=httpx.MockTransport(handler))
    results = await search.search("waves", 9 / 16, orientation="portrait")

    assert len(results) == 1
    assert seen[0].headers["Authorization"] == "pexels-key"
    assert seen[0].url.params["orientation"] == "portrait"
    assert seen[0].url.params["query"] == "waves"


async def test_missing_key_fails_without_a_request(settings) -> None:
    settings.pexels_api_key = ""
    search = PexelsVideoSearch(settings, transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    with pytest.raises(APIKeyError):
        await search.search("waves", 9 / 16)


@pytest.mark.parametrize("status, error", [(401, APIKeyError), (404, ProviderError)])
async def test_client_errors_are_not_retried(settings, status, error) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status)

    search = GoogleImageSearch(settings, transport=httpx.MockTransport(handler))
    with pytest.raises(error):
        await search.search("tower", 9 / 16)
    assert len(calls) == 1


async def test_server_errors_and_rate_limits_are_retried(settings, monkeypatch) -> None:
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr("promptreel.utils.retry.asyncio.sleep", fake_sleep)
    responses = [httpx.Response(503), httpx.Response(429, headers={"retry-after": "4"}),
                 httpx.Response(200, json={"items": []})]

    search = GoogleImageSearch(settings, transport=httpx.MockTransport(lambda r: responses.pop(0)))

    assert await search.search("tower", 9 / 16) == []
    assert len(delays) == 2
    assert delays[1] == 4.0


async def test_rate_limit_surfaces_after_retries(settings, monkeypatch) -> None:
    async def fake_sleep(delay):
        return None

    monkeypatch.setattr("promptreel.utils.retry.asyncio.sleep", fake_sleep)
    search = GoogleImageSearch(settings, transport=httpx.MockTransport(lambda r: httpx.Response(429)))
    with pytest.raises(RateLimitError):
        await search.search("tower", 9 / 16)
