from pathlib import Path

import pytest

from conftest import FakeLLM, word
from promptreel.models.job import (
    AudioScriptSource, ClipTiming, JobStatus, KeywordType, Provenance, ResolvedClip, Stage, TimingsSource,
)
from promptreel.services.keyword_labeler import KeywordLabeler
from promptreel.services.pipeline import GenerationPipeline
from promptreel.services.segmenter import SpeechSegmenter
from promptreel.services.voice_over import Narration
from promptreel.utils.exceptions import NoTimingDataError, PreconditionError, ProviderError, StageFailedError

SCRIPT = "Lighthouses guided ships home"
MARKS = [word("Lighthouses", 0, 700), word("guided", 800, 400), word("ships", 2100, 400), word("home", 2600, 500)]


class FakeScriptWriter:
    def __init__(self):
        self.calls = 0
        self.memories = None

    async def write_script(self, prompt, language, two_phase=False, memories=None):
        self.calls += 1
        self.memories = memories
        return SCRIPT

    async def classify_mood(self, script):
        return "calm"


class FakeVoice:
    def __init__(self, marks=MARKS):
        self.marks = marks
        self.texts = []

    async def narrate(self, text, language, voice_id):
        self.texts.append(text)
        return Narration(audio=b"ID3-narration", marks=list(self.marks))


class FakeSegmenter:
    def __init__(self):
        self.calls = 0

    async def segment(self, word_marks, full_text):
        self.calls += 1
        return [
            ClipTiming(keyword="lighthouse", keyword_type=KeywordType.STOCK, start_time=0.0, duration=2.1),
            ClipTiming(keyword="ship,harbor", keyword_type=KeywordType.STOCK, start_time=2.1, duration=1.3),
        ]


class FakeAcquirer:
    def __init__(self, failures=0, resolve=True):
        self.calls = 0
        self.failures = failures
        self.resolve = resolve
        self.contexts = []

    async def acquire_all(self, ctx, timings, workdir):
        self.calls += 1
        self.contexts.append(ctx)
        if self.failures:
            self.failures -= 1
            raise ProviderError("Pexels", "service unavailable")
        if not self.resolve:
            return [], list(timings)
        clips = [
            ResolvedClip(
                clip_url=f"file:///clips/{i}.mp4", keyword=t.keyword, start_time=t.start_time,
                duration=t.duration, actual_duration=t.duration,
            )
            for i, t in reversed(list(enumerate(timings)))
        ]
        return clips, []


class FakeAssembler:
    def __init__(self):
        self.calls = 0

    async def assemble(self, clips, narration_url, music_url, aspect_ratio, workdir):
        self.calls += 1
        merged = Path(workdir) / "mixed.mp4"
        merged.write_bytes(b"merged")
        return merged


class FakeSubtitles:
    def __init__(self):
        self.calls = 0

    async def burn(self, video_path, output_path, word_marks, duration, aspect_ratio, language, workdir):
        self.calls += 1
        Path(output_path).write_bytes(Path(video_path).read_bytes() + b"+captions")
        return output_path


@pytest.fixture
def fakes():
    return {
        "script_writer": FakeScriptWriter(),
        "voice_over": FakeVoice(),
        "segmenter": FakeSegmenter(),
        "acquirer": FakeAcquirer(),
        "assembler": FakeAssembler(),
        "subtitles": FakeSubtitles(),
    }


@pytest.fixture
def pipeline(settings, store, object_store, fakes):
    return GenerationPipeline(store=store, object_store=object_store, settings=settings, music=object(), **fakes)


async def test_full_run_builds_every_block(pipeline, store, object_store, make_job, fakes, tmp_path) -> None:
    job = await store.save(make_job())

    done = await pipeline.advance(job.id)

    assert done.status == JobStatus.FINAL_VIDEO_READY
    assert done.script.content == SCRIPT and done.script.mood == "calm"
    assert done.audio.duration == pytest.approx(3.1)
    assert done.audio.background_music_url is None
    assert [c.start_time for c in done.clips.processed_clips] == [0.0, 2.1]
    assert done.final_video.video_url.endswith(f"/user-1/{job.id}/video/final.mp4")
    assert done.last_error is None
    assert fakes["acquirer"].contexts[0].target_aspect_ratio == pytest.approx(9 / 16)

    stored = await object_store.download(done.audio.audio_url, str(tmp_path / "narration.mp3"))
    assert Path(stored).read_bytes() == b"ID3-narration"
    assert done.audio.speech_marks == MARKS


async def test_rerunning_a_finished_job_calls_no_provider(pipeline, store, make_job, fakes) -> None:
    job = await store.save(make_job())
    first = await pipeline.advance(job.id)

    second = await pipeline.advance(job.id)

    assert fakes["script_writer"].calls == 1
    assert fakes["segmenter"].calls == 1
    assert fakes["acquirer"].calls == 1
    assert fakes["assembler"].calls == 1
    assert fakes["subtitles"].calls == 1
    for stage in Stage:
        assert second.block(stage) == first.block(stage)


async def test_failed_stage_keeps_earlier_blocks_and_resumes(pipeline, store, make_job, fakes) -> None:
    fakes["acquirer"].failures = 1
    job = await store.save(make_job())

    with pytest.raises(StageFailedError) as excinfo:
        await pipeline.advance(job.id)
    assert isinstance(excinfo.value.__cause__, ProviderError)

    failed = await store.require(job.id)
    assert failed.keywords is not None and failed.clips is None
    assert failed.last_error.stage == Stage.CLIPS
    assert "service unavailable" in failed.last_error.reason
    assert failed.status == JobStatus.KEYWORDS_GENERATED

    resumed = await pipeline.advance(job.id)

    assert resumed.is_complete
    assert resumed.last_error is None
    assert resumed.script == failed.script
    assert resumed.audio == failed.audio
    assert fakes["script_writer"].calls == 1
    assert fakes["segmenter"].calls == 1
    assert fakes["acquirer"].calls == 2


async def test_keywords_without_audio_is_a_precondition_error(pipeline, store, make_job) -> None:
    job = await store.save(make_job())
    before = await store.require(job.id)

    with pytest.raises(PreconditionError):
        await pipeline.extract_keywords(job.id)

    after = await store.require(job.id)
    assert after.model_dump() == before.model_dump()


async def test_later_stages_check_their_own_inputs(pipeline, store, make_job) -> None:
    job = await store.save(make_job())
    with pytest.raises(PreconditionError):
        await pipeline.generate_audio(job.id)
    with pytest.raises(PreconditionError):
        await pipeline.process_clips(job.id)
    with pytest.raises(PreconditionError):
        await pipeline.concatenate(job.id)
    with pytest.raises(PreconditionError):
        await pipeline.apply_subtitles(job.id)


async def test_no_resolved_clips_fails_the_stage(pipeline, store, make_job, fakes) -> None:
    fakes["acquirer"].resolve = False
    job = await store.save(make_job())

    with pytest.raises(StageFailedError):
        await pipeline.advance(job.id)

    failed = await store.require(job.id)
    assert failed.clips is None
    assert failed.last_error.stage == Stage.CLIPS


async def test_user_overrides_keep_the_same_block_shape(pipeline, store, make_job, fakes) -> None:
    job = await store.save(make_job())

    await pipeline.generate_script(job.id, user_script="  My own words.  ")
    job = await pipeline.generate_audio(job.id, edited_script="Edited narration for voice")
    assert job.script.source == Provenance.USER
    assert job.script.content == "My own words."
    assert job.audio.script_source == AudioScriptSource.CUSTOM_FOR_AUDIO
    assert fakes["voice_over"].texts == ["Edited narration for voice"]

    manual = [
        ClipTiming(keyword="b", start_time=1.5, duration=1.6),
        ClipTiming(keyword="a", start_time=0.0, duration=1.5),
    ]
    job = await pipeline.extract_keywords(job.id, clip_timings=manual)
    assert job.keywords.source == Provenance.USER
    assert [t.keyword for t in job.keywords.clip_timings] == ["a", "b"]

    job = await pipeline.process_clips(job.id, clip_timings=manual[:1])
    assert job.clips.timings_source == TimingsSource.CUSTOM_FOR_CLIPS_STEP
    assert len(job.clips.processed_clips) == 1
    assert fakes["script_writer"].calls == 0
    assert fakes["segmenter"].calls == 0


async def test_memories_reach_the_script_writer(pipeline, store, make_job, fakes) -> None:
    job = await store.save(make_job())
    await pipeline.generate_script(job.id, memories=["audience: kids"])
    assert fakes["script_writer"].memories == ["audience: kids"]


async def test_narration_without_word_marks_cannot_be_segmented(settings, store, object_store, make_job, fakes) -> None:
    fakes["voice_over"] = FakeVoice(marks=[])
    fakes["segmenter"] = SpeechSegmenter(KeywordLabeler(FakeLLM()))
    pipeline = GenerationPipeline(store=store, object_store=object_store, settings=settings, music=object(), **fakes)
    job = await store.save(make_job())
    await pipeline.generate_script(job.id)
    await pipeline.generate_audio(job.id)

    with pytest.raises(StageFailedError) as excinfo:
        await pipeline.extract_keywords(job.id)

    assert isinstance(excinfo.value.__cause__, NoTimingDataError)
    assert (await store.require(job.id)).keywords is None


async def test_scratch_directories_are_removed(pipeline, store, make_job, settings) -> None:
    job = await store.save(make_job())
    await pipeline.advance(job.id)
    assert list(Path(settings.temp_dir).iterdir()) == []
