"""
Generation Pipeline
Stage-resumable orchestration from prompt to captioned video
"""

from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel

from ..config import Settings, get_settings
from ..languages import get_language
from ..models.job import (
    STAGE_ORDER, AudioBlock, AudioScriptSource, BaseVideoBlock, ClipsBlock, ClipTiming,
    FinalVideoBlock, GenerationJob, KeywordsBlock, Provenance, ScriptBlock, Stage,
    StageFailure, TimingsSource,
)
from ..utils.aspect import parse_aspect_ratio
from ..utils.exceptions import PreconditionError, PromptReelError, StageFailedError
from ..utils.files import scratch_dir
from ..utils.logger import get_logger
from .assembler import VideoAssembler
from .clip_acquisition import ClipAcquirer, SelectionContext
from .job_store import JobStore, get_job_store
from .music import MusicFinder
from .object_store import get_object_store
from .script_writer import ScriptWriter, clean_script
from .segmenter import SpeechSegmenter
from .subtitles import SubtitleBurner
from .voice_over import VoiceOver, narration_duration

logger = get_logger()

StageRunner = Callable[[GenerationJob, Path], Awaitable[BaseModel]]


class GenerationPipeline:
    """
    Runs the six generation stages against persisted job state.

    A stage runs only when its block is missing during advance(); standalone
    stage calls always recompute and replace that one block. Preconditions are
    checked against block presence, never against the derived status.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        script_writer: Optional[ScriptWriter] = None,
        voice_over: Optional[VoiceOver] = None,
        music: Optional[MusicFinder] = None,
        segmenter: Optional[SpeechSegmenter] = None,
        acquirer: Optional[ClipAcquirer] = None,
        assembler: Optional[VideoAssembler] = None,
        subtitles: Optional[SubtitleBurner] = None,
        object_store=None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or get_settings()
        self.store = store or get_job_store()
        self.object_store = object_store or get_object_store()
        self.script_writer = script_writer or ScriptWriter()
        self.voice_over = voice_over or VoiceOver(self.settings)
        self.music = music or MusicFinder(self.settings)
        self.segmenter = segmenter or SpeechSegmenter(
            max_duration=self.settings.max_segment_duration,
            trailing_pad=self.settings.trailing_pad,
        )
        self.acquirer = acquirer or ClipAcquirer(self.settings, object_store=self.object_store)
        self.assembler = assembler or VideoAssembler(self.settings, object_store=self.object_store)
        self.subtitles = subtitles or SubtitleBurner(self.settings)

    # =========================================================================
    # Full run
    # =========================================================================

    async def advance(self, job_id: str) -> GenerationJob:
        """Run every stage whose block is missing, in order. Safe to call repeatedly."""
        job = await self.store.require(job_id)
        for stage in STAGE_ORDER:
            if job.has_block(stage):
                logger.debug(f"Job {job_id}: {stage.value} already present, skipping")
                continue
            job = await self.run_stage(job_id, stage)
        logger.info(f"Job {job_id} complete: {job.final_video.video_url if job.final_video else '-'}")
        return job

    async def run_stage(self, job_id: str, stage: Stage) -> GenerationJob:
        runners: Dict[Stage, Callable[[str], Awaitable[GenerationJob]]] = {
            Stage.SCRIPT: self.generate_script,
            Stage.AUDIO: self.generate_audio,
            Stage.KEYWORDS: self.extract_keywords,
            Stage.CLIPS: self.process_clips,
            Stage.BASE_VIDEO: self.concatenate,
            Stage.FINAL_VIDEO: self.apply_subtitles,
        }
        return await runners[stage](job_id)

    async def _execute(self, job_id: str, stage: Stage, runner: StageRunner,
                       check: Optional[Callable[[GenerationJob], None]] = None) -> GenerationJob:
        job = await self.store.require(job_id)
        if check is not None:
            check(job)

        logger.info(f"Job {job_id}: running stage {stage.value}")
        try:
            with scratch_dir(self.settings.temp_dir, prefix=f"{stage.value}-{job_id[:8]}") as workdir:
                block = await runner(job, workdir)
        except Exception as exc:
            reason = exc.message if isinstance(exc, PromptReelError) else str(exc)
            logger.error(f"Job {job_id}: stage {stage.value} failed: {reason}")
            await self.store.update(job_id, {"last_error": StageFailure(stage=stage, reason=reason)})
            raise StageFailedError(stage.value, reason, job_id=job_id) from exc

        updated = await self.store.update(job_id, {stage.value: block, "last_error": None})
        logger.info(f"Job {job_id}: stage {stage.value} stored (status {updated.status.value})")
        return updated

    # =========================================================================
    # Stage 1: Script
    # =========================================================================

    async def generate_script(
        self,
        job_id: str,
        user_script: Optional[str] = None,
        memories: Optional[List[str]] = None
    ) -> GenerationJob:
        async def _run(job: GenerationJob, workdir: Path) -> ScriptBlock:
            if user_script is not None:
                content, source = clean_script(user_script), Provenance.USER
            else:
                options = job.initial_params.options
                content = await self.script_writer.write_script(
                    job.initial_params.prompt,
                    options.language,
                    two_phase=options.two_phase_script,
                    memories=memories,
                )
                source = Provenance.GENERATED
            mood = await self.script_writer.classify_mood(content)
            return ScriptBlock(content=content, mood=mood, source=source)

        def _check(job: GenerationJob):
            if user_script is not None and not clean_script(user_script):
                raise PreconditionError(Stage.SCRIPT.value, "script text")

        return await self._execute(job_id, Stage.SCRIPT, _run, _check)

    # =========================================================================
    # Stage 2: Audio
    # =========================================================================

    def _voice_for(self, job: GenerationJob) -> str:
        options = job.initial_params.options
        voice = options.voice_id or get_language(options.language).default_voice_id
        if not voice:
            raise PreconditionError(Stage.AUDIO.value, f"voice for language {options.language}")
        return voice

    async def generate_audio(self, job_id: str, edited_script: Optional[str] = None) -> GenerationJob:
        def _check(job: GenerationJob):
            if edited_script is None and job.script is None:
                raise PreconditionError(Stage.AUDIO.value, "script")
            if edited_script is not None and not clean_script(edited_script):
                raise PreconditionError(Stage.AUDIO.value, "script text")
            self._voice_for(job)

        async def _run(job: GenerationJob, workdir: Path) -> AudioBlock:
            language = job.initial_params.options.language
            voice = self._voice_for(job)
            if edited_script is not None:
                text, source = clean_script(edited_script), AudioScriptSource.CUSTOM_FOR_AUDIO
            else:
                text, source = job.script.content, AudioScriptSource.PROJECT_SCRIPT

            narration = await self.voice_over.narrate(text, language, voice)
            marks = narration.marks
            audio_url = await self.object_store.put_bytes(
                narration.audio, f"{job.user_id}/{job.id}/audio/narration.mp3", "audio/mpeg"
            )

            music_url = None
            mood = job.script.mood if job.script else "neutral"
            if self.settings.jamendo_client_id:
                track = await self.music.find_track(mood, workdir)
                if track is not None:
                    music_url = await self.object_store.put_file(
                        str(track), f"{job.user_id}/{job.id}/audio/music.mp3"
                    )
            else:
                logger.warning("Jamendo client id not configured, skipping background music")

            return AudioBlock(
                audio_url=audio_url,
                speech_marks=marks,
                background_music_url=music_url,
                duration=narration_duration(marks),
                script_content_used=text,
                script_source=source,
            )

        return await self._execute(job_id, Stage.AUDIO, _run, _check)

    # =========================================================================
    # Stage 3: Keywords
    # =========================================================================

    async def extract_keywords(
        self,
        job_id: str,
        clip_timings: Optional[Sequence[ClipTiming]] = None
    ) -> GenerationJob:
        def _check(job: GenerationJob):
            if clip_timings is not None:
                if not clip_timings:
                    raise PreconditionError(Stage.KEYWORDS.value, "clip timings")
                return
            if job.audio is None:
                raise PreconditionError(Stage.KEYWORDS.value, "audio")

        async def _run(job: GenerationJob, workdir: Path) -> KeywordsBlock:
            if clip_timings is not None:
                ordered = sorted(clip_timings, key=lambda t: t.start_time)
                return KeywordsBlock(clip_timings=ordered, source=Provenance.USER)

            context = job.audio.script_content_used or (job.script.content if job.script else "")
            timings = await self.segmenter.segment(job.audio.word_marks, context)
            return KeywordsBlock(clip_timings=timings, source=Provenance.GENERATED)

        return await self._execute(job_id, Stage.KEYWORDS, _run, _check)

    # =========================================================================
    # Stage 4: Clips
    # =========================================================================

    async def process_clips(
        self,
        job_id: str,
        clip_timings: Optional[Sequence[ClipTiming]] = None
    ) -> GenerationJob:
        def _check(job: GenerationJob):
            if clip_timings is not None:
                if not clip_timings:
                    raise PreconditionError(Stage.CLIPS.value, "clip timings")
                return
            if job.keywords is None:
                raise PreconditionError(Stage.CLIPS.value, "keywords")

        async def _run(job: GenerationJob, workdir: Path) -> ClipsBlock:
            if clip_timings is not None:
                timings, source = list(clip_timings), TimingsSource.CUSTOM_FOR_CLIPS_STEP
            else:
                timings, source = list(job.keywords.clip_timings), TimingsSource.FROM_KEYWORDS_STEP

            script = ""
            if job.audio is not None:
                script = job.audio.script_content_used
            elif job.script is not None:
                script = job.script.content

            ctx = SelectionContext(
                job_id=job.id,
                user_id=job.user_id,
                script=script,
                target_aspect_ratio=parse_aspect_ratio(job.initial_params.options.aspect_ratio),
            )
            resolved, skipped = await self.acquirer.acquire_all(ctx, timings, workdir)
            if not resolved:
                raise PromptReelError(
                    f"No clips could be resolved for {len(timings)} segments",
                    code="NO_CLIPS_RESOLVED",
                    recoverable=True,
                    recovery_hint="Check the search provider keys or edit the keywords.",
                )
            if skipped:
                logger.warning(f"Job {job.id}: {len(skipped)} of {len(timings)} segments had no clip")

            return ClipsBlock(
                processed_clips=resolved,
                clip_timings_used=sorted(timings, key=lambda t: t.start_time),
                timings_source=source,
                skipped_timings=skipped,
            )

        return await self._execute(job_id, Stage.CLIPS, _run, _check)

    # =========================================================================
    # Stage 5: Concatenate
    # =========================================================================

    async def concatenate(self, job_id: str) -> GenerationJob:
        def _check(job: GenerationJob):
            if job.clips is None:
                raise PreconditionError(Stage.BASE_VIDEO.value, "clips")
            if job.audio is None:
                raise PreconditionError(Stage.BASE_VIDEO.value, "audio")

        async def _run(job: GenerationJob, workdir: Path) -> BaseVideoBlock:
            merged = await self.assembler.assemble(
                job.clips.processed_clips,
                job.audio.audio_url,
                job.audio.background_music_url,
                parse_aspect_ratio(job.initial_params.options.aspect_ratio),
                workdir,
            )
            url = await self.object_store.put_file(str(merged), f"{job.user_id}/{job.id}/video/base.mp4")
            return BaseVideoBlock(merged_video_url=url)

        return await self._execute(job_id, Stage.BASE_VIDEO, _run, _check)

    # =========================================================================
    # Stage 6: Subtitles
    # =========================================================================

    async def apply_subtitles(self, job_id: str) -> GenerationJob:
        def _check(job: GenerationJob):
            if job.base_video is None:
                raise PreconditionError(Stage.FINAL_VIDEO.value, "base video")
            if job.audio is None or not job.audio.word_marks:
                raise PreconditionError(Stage.FINAL_VIDEO.value, "audio speech marks")

        async def _run(job: GenerationJob, workdir: Path) -> FinalVideoBlock:
            base = workdir / "base.mp4"
            await self.object_store.download(job.base_video.merged_video_url, str(base))
            output = workdir / "final.mp4"
            await self.subtitles.burn(
                str(base),
                str(output),
                job.audio.word_marks,
                job.audio.duration,
                parse_aspect_ratio(job.initial_params.options.aspect_ratio),
                get_language(job.initial_params.options.language),
                workdir,
            )
            url = await self.object_store.put_file(str(output), f"{job.user_id}/{job.id}/video/final.mp4")
            return FinalVideoBlock(video_url=url)

        return await self._execute(job_id, Stage.FINAL_VIDEO, _run, _check)



_pipeline: Optional[GenerationPipeline] = None


def get_pipeline() -> GenerationPipeline:
    """Return the shared pipeline"""
    global _pipeline
    if _pipeline is None:
        _pipeline = GenerationPipeline()
    return _pipeline
