"""
Background Music Service
Mood-matched instrumental tracks from Jamendo
"""

from pathlib import Path
from typing import Dict, List, Optional

import httpx

from ..config import Settings, get_settings
from ..utils.exceptions import APIKeyError, ProviderError, ValidationError
from ..utils.ffmpeg import FFmpegRunner, get_ffmpeg_runner
from ..utils.logger import get_logger
from ..utils.retry import retry_async
from .downloads import download_to_file

logger = get_logger()

SERVICE = "Jamendo"
JAMENDO_TRACKS_URL = "https://api.jamendo.com/v3.0/tracks/"

MOOD_TAGS: Dict[str, str] = {
    "happy": "happy cheerful upbeat positive",
    "funny": "happy cheerful upbeat positive",
    "sad": "sad emotional melancholic",
    "romantic": "sad emotional melancholic",
    "exciting": "epic action cinematic energetic",
    "thrilling": "epic action cinematic energetic",
    "powerful": "epic action cinematic energetic",
    "dramatic": "epic action cinematic energetic",
    "calm": "ambient calm peaceful relaxing",
    "mysterious": "mysterious suspense dark",
    "scary": "mysterious suspense dark",
    "inspirational": "inspirational motivational",
    "neutral": "background corporate technology",
}
GENERIC_TAGS = "instrumental background"


class MusicFinder:
    """Finds, downloads and decode-validates one background track"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[FFmpegRunner] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.settings = settings or get_settings()
        self.runner = runner or get_ffmpeg_runner()
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport, follow_redirects=True)

    async def find_track(self, mood: str, workdir: Path) -> Optional[Path]:
        """
        Local path of a validated track for the mood, or None if nothing usable was found.

        Tries the mood's tags first, then a generic instrumental search.
        """
        if not self.settings.jamendo_client_id:
            raise APIKeyError(SERVICE)

        for tags in (MOOD_TAGS.get(mood, MOOD_TAGS["neutral"]), GENERIC_TAGS):
            try:
                urls = await self.search(tags)
            except ProviderError as exc:
                logger.warning(f"Music search failed for '{tags}': {exc}")
                continue

            for index, url in enumerate(urls):
                target = workdir / f"music-{index}.mp3"
                try:
                    await download_to_file(
                        url, target, self.settings.download_timeout,
                        service=SERVICE, expected_prefix="audio/", transport=self._transport,
                    )
                    info = await self.runner.probe(str(target))
                    if not info.has_audio or info.duration <= 0:
                        raise ValidationError("Track has no decodable audio", path=str(target))
                    logger.info(f"Background music selected ({info.duration:.1f}s, tags '{tags}')")
                    return target
                except (ProviderError, ValidationError) as exc:
                    logger.warning(f"Skipping music track {url}: {exc}")

        logger.warning(f"No background music found for mood '{mood}'")
        return None

    @retry_async(max_retries=2)
    async def search(self, tags: str) -> List[str]:
        params = {
            "client_id": self.settings.jamendo_client_id,
            "format": "json",
            "limit": 5,
            "include": "musicinfo",
            "fuzzytags": f"instrumental {tags}",
            "audioformat": "mp32",
            "boost": "popularity_total",
        }
        try:
            async with self._client(self.settings.provider_timeout) as client:
                response = await client.get(JAMENDO_TRACKS_URL, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as exc:
            raise ProviderError(SERVICE, "search timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                SERVICE, f"HTTP {exc.response.status_code}",
                retryable=exc.response.status_code >= 500,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise ProviderError(SERVICE, f"search failed: {exc}") from exc

        headers = data.get("headers", {})
        if headers.get("status") == "failed":
            raise ProviderError(SERVICE, headers.get("error_message", "request failed"), retryable=False)

        return [track["audio"] for track in data.get("results", []) if track.get("audio")]
