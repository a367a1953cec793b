import random

import pytest

from conftest import FakeLLM, word
from promptreel.models.job import ClipTiming, KeywordType
from promptreel.services.keyword_labeler import KeywordLabeler, fallback_label
from promptreel.services.segmenter import SpeechSegmenter, split_into_segments, validate_coverage
from promptreel.utils.exceptions import NoTimingDataError, ProviderError, TimingCoverageError


def test_two_words_make_one_padded_segment() -> None:
    marks = [word("Hi", 0, 500), word("there", 600, 700)]
    segments = split_into_segments(marks, max_duration=2.0, trailing_pad=0.3)

    assert len(segments) == 1
    assert segments[0].text == "Hi there"
    assert segments[0].start == 0.0
    assert segments[0].duration == pytest.approx(1.6)


def test_segments_close_at_the_next_word_start() -> None:
    marks = [
        word("one", 0, 400), word("two", 900, 400), word("three", 2100, 400),
        word("four", 3000, 400), word("five", 4500, 400),
    ]
    segments = split_into_segments(marks, max_duration=2.0, trailing_pad=0.3)

    assert [s.text for s in segments] == ["one two", "three four", "five"]
    assert segments[0].duration == pytest.approx(2.1)
    assert segments[1].start == pytest.approx(2.1)
    assert segments[1].duration == pytest.approx(2.4)
    assert segments[2].start + segments[2].duration == pytest.approx(4.5 + 0.4 + 0.3)


def test_random_narrations_segment_contiguously() -> None:
    rng = random.Random(11)
    for _ in range(200):
        marks, clock = [], rng.randint(0, 800)
        for i in range(rng.randint(1, 40)):
            length = rng.randint(80, 900)
            marks.append(word(f"w{i}", clock, length))
            clock += length + rng.randint(0, 1500)

        segments = split_into_segments(marks, max_duration=2.0, trailing_pad=0.3)

        assert segments[0].start == pytest.approx(marks[0].time / 1000, abs=0.1)
        for previous, current in zip(segments, segments[1:]):
            assert current.start == pytest.approx(previous.start + previous.duration, abs=0.1)
        last_end = (marks[-1].time + marks[-1].duration) / 1000 + 0.3
        assert segments[-1].start + segments[-1].duration == pytest.approx(last_end, abs=0.1)
        assert " ".join(s.text for s in segments).split() == [m.value for m in marks]


def test_missing_duration_uses_default_word_length() -> None:
    segments = split_into_segments([word("Hello", 1000)], trailing_pad=0.3)
    assert segments[0].start == 1.0
    assert segments[0].duration == pytest.approx(0.8)


def test_no_word_marks_is_an_explicit_error() -> None:
    with pytest.raises(NoTimingDataError):
        split_into_segments([])


def test_coverage_rejects_gaps() -> None:
    marks = [word("a", 0, 500), word("b", 2000, 500)]
    timings = [
        ClipTiming(keyword="x", start_time=0.0, duration=1.0),
        ClipTiming(keyword="y", start_time=2.0, duration=0.8),
    ]
    with pytest.raises(TimingCoverageError):
        validate_coverage(timings, marks, trailing_pad=0.3)


async def test_segmenter_labels_each_segment_and_passes_used_labels() -> None:
    llm = FakeLLM(json_replies=[
        {"keywords": ["eiffel tower", "paris"], "contentType": "search"},
        {"keywords": ["city lights"], "contentType": "stock"},
    ])
    segmenter = SpeechSegmenter(KeywordLabeler(llm))
    marks = [word("Paris", 0, 500), word("glows", 600, 500), word("at", 2200, 200), word("night", 2500, 500)]

    timings = await segmenter.segment(marks, "Paris glows at night")

    assert [t.keyword for t in timings] == ["eiffel tower,paris", "city lights"]
    assert timings[0].keyword_type == KeywordType.SEARCH
    assert timings[1].keyword_type == KeywordType.STOCK
    assert timings[0].sentence_text == "Paris glows"
    assert "eiffel tower" in llm.prompts[1]
    assert timings[1].end_time == pytest.approx(3.0 + 0.3)


async def test_segmenter_falls_back_to_local_label_on_provider_error() -> None:
    llm = FakeLLM(json_replies=[ProviderError("Gemini", "down", retryable=False)])
    segmenter = SpeechSegmenter(KeywordLabeler(llm))

    timings = await segmenter.segment([word("Ancient", 0, 400), word("pyramids", 500, 600)], "")

    assert timings[0].keyword == "Ancient,pyramids"
    assert timings[0].keyword_type == KeywordType.SEARCH


def test_fallback_label_prefers_long_non_stop_words() -> None:
    assert fallback_label("the volcano erupted over their village").keywords == ["volcano", "erupted", "village"]
    assert fallback_label("it is so").keywords == ["it", "is"]
    assert fallback_label("...").keywords == ["background"]
