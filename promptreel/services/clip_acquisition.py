"""
Clip Acquisition Service
Resolves one playable clip per timed segment, in bounded concurrent batches
"""

import asyncio
import functools
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..config import Settings, get_settings
from ..models.job import ClipTiming, KeywordType, ResolvedClip
from ..utils.aspect import output_dimensions
from ..utils.exceptions import APIKeyError, EncodingError, ProviderError, ValidationError
from ..utils.ffmpeg import FFmpegRunner, get_ffmpeg_runner
from ..utils.files import slugify
from ..utils.logger import get_logger
from .clip_ranker import ClipRanker
from .downloads import download_to_file
from .effects import PhotoAnimator
from .media_search import (
    GoogleImageSearch, MediaCandidate, PexelsPhotoSearch, PexelsVideoSearch,
    orientation_for, rank_by_aspect_ratio,
)
from .object_store import get_object_store
from .search_audit import SearchAuditLog, SearchFailure, get_search_audit

logger = get_logger()

MIN_POOL_SIZE = 5
MAX_SLOWDOWN = 2.0
MIN_IMAGE_BYTES = 100
MIN_VIDEO_BYTES = 1024


@dataclass
class SelectionContext:
    """Exclusion and cache state for one job's acquisition run"""
    job_id: str
    user_id: str
    script: str
    target_aspect_ratio: float
    selected: Set[str] = field(default_factory=set)
    search_cache: Dict[Tuple[str, str, Optional[str]], List[MediaCandidate]] = field(default_factory=dict)

    def mark_selected(self, candidate: MediaCandidate):
        self.selected.add(candidate.identity)
        if candidate.title:
            self.selected.add(candidate.title.lower())

    def is_selected(self, candidate: MediaCandidate) -> bool:
        return candidate.identity in self.selected or candidate.title.lower() in self.selected


@dataclass
class AcquiredMedia:
    """A local, validated video ready to be fitted to its segment"""
    path: Path
    kind: str
    keyword: str
    duration: float
    effect: Optional[str] = None


Strategy = Callable[[], Awaitable[Optional[AcquiredMedia]]]


class ClipAcquirer:
    """Search, rank, download and fit media for every ClipTiming"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        video_search: Optional[PexelsVideoSearch] = None,
        image_search=None,
        ranker: Optional[ClipRanker] = None,
        animator: Optional[PhotoAnimator] = None,
        runner: Optional[FFmpegRunner] = None,
        object_store=None,
        audit: Optional[SearchAuditLog] = None,
        transport=None
    ):
        self.settings = settings or get_settings()
        self.video_search = video_search or PexelsVideoSearch(self.settings)
        if image_search is None:
            if self.settings.image_search_provider == "google":
                image_search = GoogleImageSearch(self.settings)
            else:
                image_search = PexelsPhotoSearch(self.settings)
        self.image_search = image_search
        self.ranker = ranker or ClipRanker()
        self.runner = runner or get_ffmpeg_runner()
        self.animator = animator or PhotoAnimator(self.runner)
        self.object_store = object_store or get_object_store()
        self.audit = audit or get_search_audit()
        self._transport = transport

    async def acquire_all(
        self,
        ctx: SelectionContext,
        timings: Sequence[ClipTiming],
        workdir: Path
    ) -> Tuple[List[ResolvedClip], List[ClipTiming]]:
        """
        Resolve every timing in batches of clip_batch_size.

        Returns (resolved clips sorted by segment start, abandoned timings).
        Storage failures abort the run after the current batch settles.
        """
        ordered = sorted(timings, key=lambda t: t.start_time)
        batch_size = self.settings.clip_batch_size
        resolved: List[ResolvedClip] = []
        skipped: List[ClipTiming] = []

        for offset in range(0, len(ordered), batch_size):
            batch = ordered[offset:offset + batch_size]
            logger.info(
                f"Acquiring clips {offset + 1}-{offset + len(batch)} of {len(ordered)}"
            )
            results = await asyncio.gather(
                *(self.acquire_one(offset + i, timing, ctx, workdir) for i, timing in enumerate(batch)),
                return_exceptions=True,
            )
            for timing, result in zip(batch, results):
                if isinstance(result, BaseException):
                    raise result
                if result is None:
                    skipped.append(timing)
                else:
                    resolved.append(result)

        resolved.sort(key=lambda clip: clip.start_time)
        return resolved, skipped

    async def acquire_one(
        self,
        index: int,
        timing: ClipTiming,
        ctx: SelectionContext,
        workdir: Path
    ) -> Optional[ResolvedClip]:
        """First strategy that yields fitted, uploaded media wins; None if all fail"""
        segment_dir = workdir / f"segment-{index:03d}"
        segment_dir.mkdir(parents=True, exist_ok=True)
        try:
            for strategy in self._strategies(timing, ctx, segment_dir):
                media = await strategy()
                if media is None:
                    continue
                try:
                    return await self._finish(index, timing, media, ctx, segment_dir)
                except (EncodingError, ValidationError) as exc:
                    logger.warning(f"Could not fit media for '{media.keyword}': {exc.message}")

            logger.warning(
                f"Abandoning segment at {timing.start_time:.2f}s ('{timing.keyword}'): "
                "no keyword option produced a playable clip"
            )
            return None
        finally:
            shutil.rmtree(segment_dir, ignore_errors=True)

    def _strategies(self, timing: ClipTiming, ctx: SelectionContext, segment_dir: Path) -> List[Strategy]:
        options = timing.keyword_options()
        exact = [
            functools.partial(self._exact_image, option, timing, ctx, segment_dir)
            for option in options
        ]
        stock = functools.partial(self._stock_video, options, timing, ctx, segment_dir)
        if timing.keyword_type == KeywordType.SEARCH:
            return exact + [stock]
        return [stock] + exact

    # =========================================================================
    # Search helpers
    # =========================================================================

    def _record(self, ctx: SelectionContext, query: str, source: str, search_type: str, reason: str,
                attempt: int, orientation: Optional[str]):
        self.audit.record(SearchFailure(
            query=query,
            source=source,
            search_type=search_type,
            reason=reason,
            attempt_number=attempt,
            orientation=orientation,
            target_aspect_ratio=round(ctx.target_aspect_ratio, 4),
            job_id=ctx.job_id,
        ))

    async def _cached_search(self, ctx: SelectionContext, kind: str, query: str,
                             orientation: Optional[str]) -> List[MediaCandidate]:
        key = (kind, query.lower(), orientation)
        if key not in ctx.search_cache:
            provider = self.video_search if kind == "video" else self.image_search
            ctx.search_cache[key] = await provider.search(query, ctx.target_aspect_ratio, orientation)
        return ctx.search_cache[key]

    # =========================================================================
    # Stock video path
    # =========================================================================

    async def _collect_stock_candidates(
        self,
        options: Sequence[str],
        ctx: SelectionContext
    ) -> Dict[str, Tuple[MediaCandidate, str]]:
        """identity -> (candidate, query) across label alternatives, unique by id and title"""
        collected: Dict[str, Tuple[MediaCandidate, str]] = {}
        titles: Set[str] = set()
        source = self.video_search.name

        for query in options:
            for attempt in range(self.settings.search_attempts):
                orientation = orientation_for(ctx.target_aspect_ratio, attempt)
                if attempt == 1 and orientation is None:
                    continue
                try:
                    found = await self._cached_search(ctx, "video", query, orientation)
                except APIKeyError as exc:
                    self._record(ctx, query, source, "video", exc.message, attempt + 1, orientation)
                    return collected
                except ProviderError as exc:
                    self._record(ctx, query, source, "video", exc.message, attempt + 1, orientation)
                    continue

                if not found:
                    self._record(ctx, query, source, "video",
                                 "No results within aspect-ratio tolerance and minimum duration",
                                 attempt + 1, orientation)
                    continue

                for candidate in found:
                    title = candidate.title.lower()
                    if candidate.identity in collected or title in titles or ctx.is_selected(candidate):
                        continue
                    collected[candidate.identity] = (candidate, query)
                    titles.add(title)

                if len(collected) >= MIN_POOL_SIZE:
                    break
            if len(collected) >= self.settings.max_candidates:
                break

        return collected

    async def _stock_video(
        self,
        options: Sequence[str],
        timing: ClipTiming,
        ctx: SelectionContext,
        segment_dir: Path
    ) -> Optional[AcquiredMedia]:
        collected = await self._collect_stock_candidates(options, ctx)
        if not collected:
            return None

        pool = [candidate for candidate, _ in collected.values()][:self.settings.max_candidates]
        choice = await self.ranker.select(timing.sentence_text, pool, ctx.script, ctx.selected)
        if choice is None:
            return None

        # Concurrent segments may have claimed candidates while the ranker ran
        ordered = [choice] + [c for c in pool if c is not choice]
        for candidate in ordered:
            if ctx.is_selected(candidate):
                continue
            ctx.mark_selected(candidate)
            query = collected[candidate.identity][1]
            target = segment_dir / f"stock-{slugify(candidate.id)}.mp4"
            try:
                await download_to_file(
                    candidate.url, target, self.settings.download_timeout,
                    service=candidate.provider, min_bytes=MIN_VIDEO_BYTES, transport=self._transport,
                )
                info = await self.runner.probe(str(target))
                if not info.has_video:
                    raise ValidationError("Download has no video stream", path=str(target))
            except (ProviderError, ValidationError) as exc:
                logger.warning(f"Stock candidate '{candidate.title}' unusable: {exc.message}")
                continue

            logger.info(f"Selected stock video '{candidate.title}' for '{query}'")
            return AcquiredMedia(target, "video", query, info.duration or candidate.duration or 0.0)

        return None

    # =========================================================================
    # Exact image path
    # =========================================================================

    async def _exact_image(
        self,
        query: str,
        timing: ClipTiming,
        ctx: SelectionContext,
        segment_dir: Path
    ) -> Optional[AcquiredMedia]:
        source = self.image_search.name
        attempts = 1 if isinstance(self.image_search, GoogleImageSearch) else self.settings.search_attempts

        for attempt in range(attempts):
            orientation = None if attempts == 1 else orientation_for(ctx.target_aspect_ratio, attempt)
            if attempt == 1 and orientation is None:
                continue
            try:
                found = await self._cached_search(ctx, "image", query, orientation)
            except APIKeyError as exc:
                self._record(ctx, query, source, "image", exc.message, attempt + 1, orientation)
                return None
            except ProviderError as exc:
                self._record(ctx, query, source, "image", exc.message, attempt + 1, orientation)
                continue

            ranked = [c for c in rank_by_aspect_ratio(found, ctx.target_aspect_ratio) if not ctx.is_selected(c)]
            if not ranked:
                self._record(ctx, query, source, "image", "No results", attempt + 1, orientation)
                continue

            for position, candidate in enumerate(ranked):
                media = await self._try_photo(query, candidate, position, timing, ctx, segment_dir)
                if media is not None:
                    return media

            self._record(ctx, query, source, "image", "All images failed to download or validate",
                         attempt + 1, orientation)
        return None

    async def _try_photo(
        self,
        query: str,
        candidate: MediaCandidate,
        position: int,
        timing: ClipTiming,
        ctx: SelectionContext,
        segment_dir: Path
    ) -> Optional[AcquiredMedia]:
        photo = segment_dir / f"photo-{position}.img"
        clip = segment_dir / f"photo-{position}.mp4"
        try:
            await download_to_file(
                candidate.url, photo, self.settings.download_timeout,
                service=candidate.provider, expected_prefix="image/",
                min_bytes=MIN_IMAGE_BYTES, transport=self._transport,
            )
            info = await self.runner.probe(str(photo))
            if not info.has_video or not info.width:
                raise ValidationError("Image did not decode", path=str(photo))

            duration = max(self.settings.photo_clip_duration, timing.duration)
            _, effect = await self.animator.animate(
                str(photo), str(clip), ctx.target_aspect_ratio,
                duration=duration, fps=self.settings.photo_clip_fps,
            )
        except (ProviderError, ValidationError, EncodingError) as exc:
            logger.warning(f"Image candidate {candidate.url} unusable: {exc.message}")
            return None

        ctx.mark_selected(candidate)
        logger.info(f"Animated exact image for '{query}' with {effect.value}")
        return AcquiredMedia(clip, "photo", query, duration, effect.value)

    # =========================================================================
    # Fit & store
    # =========================================================================

    async def _finish(
        self,
        index: int,
        timing: ClipTiming,
        media: AcquiredMedia,
        ctx: SelectionContext,
        segment_dir: Path
    ) -> ResolvedClip:
        fitted = segment_dir / "fitted.mp4"
        actual = await self.fit_clip(media.path, fitted, timing.duration, media.duration, ctx.target_aspect_ratio)
        key = f"{ctx.user_id}/{ctx.job_id}/clips/{index:03d}-{slugify(media.keyword)}.mp4"
        url = await self.object_store.put_file(str(fitted), key)
        return ResolvedClip(
            clip_url=url,
            keyword=media.keyword,
            start_time=timing.start_time,
            duration=timing.duration,
            actual_duration=round(actual, 3),
            media_kind=media.kind,
            effect=media.effect,
        )

    async def fit_clip(
        self,
        source: Path,
        target: Path,
        desired: float,
        source_duration: float,
        aspect_ratio: float
    ) -> float:
        """Trim (or slow down, at most 2x) and letterbox media to the segment; returns actual seconds"""
        width, height = output_dimensions(aspect_ratio)
        speed = 1.0
        clip_duration = desired
        if 0 < source_duration < desired:
            speed = min(desired / source_duration, MAX_SLOWDOWN)
            clip_duration = min(desired, source_duration * speed)

        vf = (
            f"setpts={speed:.4f}*PTS,"
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,"
            f"fps={self.settings.output_fps}"
        )
        await self.runner.run([
            "-i", str(source),
            "-t", f"{clip_duration:.3f}",
            "-vf", vf,
            "-an",
            "-c:v", "libx264",
            "-preset", "faster",
            "-crf", "26",
            "-pix_fmt", "yuv420p",
            "-movflags", "+faststart",
            str(target),
        ], description="fit clip")

        info = await self.runner.probe(str(target))
        return info.duration or clip_duration
