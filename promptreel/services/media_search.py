"""
Media Search Providers
Pexels stock video/photo search and Google image search
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..config import Settings, get_settings
from ..utils.aspect import orientation_of
from ..utils.exceptions import APIKeyError, ProviderError, RateLimitError
from ..utils.logger import get_logger
from ..utils.retry import retry_async

logger = get_logger()

PEXELS_VIDEO_URL = "https://api.pexels.com/videos/search"
PEXELS_PHOTO_URL = "https://api.pexels.com/v1/search"
GOOGLE_CSE_URL = "https://www.googleapis.com/customsearch/v1"

ASPECT_TOLERANCE = 0.2
MIN_VIDEO_DURATION = 3.0
HD_MIN_WIDTH = 1280
SD_MIN_WIDTH = 640


@dataclass
class MediaCandidate:
    """One search hit with the metadata the ranker sees"""
    id: str
    title: str
    url: str
    width: int
    height: int
    provider: str
    kind: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    duration: Optional[float] = None
    quality: str = ""

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 0.0

    @property
    def identity(self) -> str:
        return f"{self.provider}:{self.id}"


def orientation_for(target_aspect_ratio: float, attempt: int) -> Optional[str]:
    """Preferred orientation first, then the opposite one, then no filter"""
    preferred = orientation_of(target_aspect_ratio)
    opposite = {"portrait": "landscape", "landscape": "portrait"}.get(preferred)
    if attempt == 0:
        return preferred
    if attempt == 1:
        return opposite
    return None


def within_tolerance(aspect_ratio: float, target: float, tolerance: float = ASPECT_TOLERANCE) -> bool:
    return abs(aspect_ratio - target) <= tolerance


def _title_from_url(url: str) -> str:
    slug = url.rstrip("/").rsplit("/", 1)[-1]
    slug = re.sub(r"-?\d+$", "", slug)
    return slug.replace("-", " ").strip()


class _HttpSearch:
    """Shared JSON GET with status mapping"""

    name = "search"

    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    @retry_async(max_retries=2)
    async def _get_json(self, url: str, params: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.provider_timeout, transport=self._transport
            ) as client:
                response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(self.name, "request timed out") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"request failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise APIKeyError(self.name)
        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(self.name, int(retry_after) if retry_after and retry_after.isdigit() else None)
        if response.status_code >= 400:
            raise ProviderError(
                self.name, f"HTTP {response.status_code}", retryable=response.status_code >= 500
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(self.name, "invalid JSON response", retryable=False) from exc


class PexelsVideoSearch(_HttpSearch):
    """Stock footage candidates filtered by aspect ratio and duration"""

    name = "Pexels"

    async def search(
        self,
        query: str,
        target_aspect_ratio: float,
        orientation: Optional[str] = None,
        min_duration: float = MIN_VIDEO_DURATION
    ) -> List[MediaCandidate]:
        if not self.settings.pexels_api_key:
            raise APIKeyError(self.name)

        params: Dict[str, Any] = {"query": query, "per_page": 30}
        if orientation:
            params["orientation"] = orientation
        data = await self._get_json(
            PEXELS_VIDEO_URL, params, headers={"Authorization": self.settings.pexels_api_key}
        )
        return self.parse(data, target_aspect_ratio, min_duration)

    @staticmethod
    def parse(data: Dict[str, Any], target_aspect_ratio: float, min_duration: float = MIN_VIDEO_DURATION) -> List[MediaCandidate]:
        candidates: List[MediaCandidate] = []
        for video in data.get("videos", []):
            duration = float(video.get("duration") or 0)
            if duration < min_duration:
                continue

            files = [
                f for f in video.get("video_files", [])
                if f.get("link") and f.get("width") and f.get("height")
                and within_tolerance(f["width"] / f["height"], target_aspect_ratio)
            ]
            hd = [f for f in files if f.get("quality") == "hd" and f["width"] >= HD_MIN_WIDTH]
            usable = hd or [f for f in files if f["width"] >= SD_MIN_WIDTH]
            if not usable:
                continue

            # Smallest file that still meets the bar keeps downloads fast
            chosen = min(usable, key=lambda f: f["width"])
            title = _title_from_url(video.get("url", "")) or f"pexels video {video.get('id')}"
            candidates.append(MediaCandidate(
                id=str(video.get("id")),
                title=title,
                url=chosen["link"],
                width=int(chosen["width"]),
                height=int(chosen["height"]),
                provider="Pexels",
                kind="video",
                description=(video.get("user") or {}).get("name", ""),
                tags=[t for t in video.get("tags", []) if isinstance(t, str)],
                duration=duration,
                quality=chosen.get("quality") or "",
            ))
        return candidates


class PexelsPhotoSearch(_HttpSearch):
    """Photo candidates for exact-image segments"""

    name = "Pexels"

    async def search(self, query: str, target_aspect_ratio: float, orientation: Optional[str] = None) -> List[MediaCandidate]:
        if not self.settings.pexels_api_key:
            raise APIKeyError(self.name)

        params: Dict[str, Any] = {"query": query, "per_page": 40}
        if orientation:
            params["orientation"] = orientation
        data = await self._get_json(
            PEXELS_PHOTO_URL, params, headers={"Authorization": self.settings.pexels_api_key}
        )
        return self.parse(data)

    @staticmethod
    def parse(data: Dict[str, Any]) -> List[MediaCandidate]:
        candidates = []
        for photo in data.get("photos", []):
            src = photo.get("src") or {}
            url = src.get("large2x") or src.get("original")
            if not url or not photo.get("width") or not photo.get("height"):
                continue
            candidates.append(MediaCandidate(
                id=str(photo.get("id")),
                title=photo.get("alt") or _title_from_url(photo.get("url", "")),
                url=url,
                width=int(photo["width"]),
                height=int(photo["height"]),
                provider="Pexels",
                kind="image",
                description=photo.get("photographer", ""),
            ))
        return candidates


class GoogleImageSearch(_HttpSearch):
    """Google Custom Search image results for exact matches"""

    name = "Google"

    async def search(self, query: str, target_aspect_ratio: float, orientation: Optional[str] = None) -> List[MediaCandidate]:
        if not self.settings.google_api_key or not self.settings.google_search_engine_id:
            raise APIKeyError(self.name)

        params = {
            "key": self.settings.google_api_key,
            "cx": self.settings.google_search_engine_id,
            "q": query,
            "searchType": "image",
            "imgSize": "xxlarge",
            "imgType": "photo",
            "num": 10,
            "safe": "active",
        }
        data = await self._get_json(GOOGLE_CSE_URL, params)
        return self.parse(data)

    @staticmethod
    def parse(data: Dict[str, Any]) -> List[MediaCandidate]:
        candidates = []
        for index, item in enumerate(data.get("items", [])):
            image = item.get("image") or {}
            width, height = image.get("width"), image.get("height")
            if not item.get("link") or not width or not height:
                continue
            candidates.append(MediaCandidate(
                id=item.get("cacheId") or f"google-{index}",
                title=item.get("title", ""),
                url=item["link"],
                width=int(width),
                height=int(height),
                provider="Google",
                kind="image",
                description=item.get("snippet", ""),
            ))
        return candidates


def rank_by_aspect_ratio(candidates: List[MediaCandidate], target_aspect_ratio: float) -> List[MediaCandidate]:
    """Closest aspect ratio first; stable for ties"""
    return sorted(candidates, key=lambda c: abs(c.aspect_ratio - target_aspect_ratio))
