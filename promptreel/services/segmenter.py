"""
Speech-Timing Segmenter
Turns word timing marks into contiguous, labeled visual segments
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..models.job import ClipTiming, SpeechMark
from ..utils.exceptions import NoTimingDataError, ProviderError, TimingCoverageError
from ..utils.logger import get_logger
from .keyword_labeler import KeywordLabeler, SegmentLabel, fallback_label

logger = get_logger()

DEFAULT_MAX_DURATION = 2.0
DEFAULT_TRAILING_PAD = 0.3
DEFAULT_WORD_MS = 500
COVERAGE_TOLERANCE = 0.1


@dataclass
class Segment:
    """An unlabeled slice of narration"""
    text: str
    start: float
    duration: float


def word_end(mark: SpeechMark) -> float:
    return (mark.time + (mark.duration or DEFAULT_WORD_MS)) / 1000.0


def split_into_segments(
    word_marks: Sequence[SpeechMark],
    max_duration: float = DEFAULT_MAX_DURATION,
    trailing_pad: float = DEFAULT_TRAILING_PAD
) -> List[Segment]:
    """
    Greedy segmentation: a word joins the open segment while it starts less
    than max_duration after the segment start. Otherwise the segment is closed
    at that word's start and a new one begins there, so segments are contiguous.
    The last segment ends at the last word's end plus trailing_pad.
    """
    if not word_marks:
        raise NoTimingDataError()

    segments: List[Segment] = []
    words: List[str] = []
    segment_start = 0.0

    for mark in word_marks:
        start = mark.start_seconds
        if not words:
            segment_start = start
            words.append(mark.value)
        elif start - segment_start < max_duration:
            words.append(mark.value)
        else:
            segments.append(Segment(" ".join(words), segment_start, start - segment_start))
            segment_start = start
            words = [mark.value]

    end = word_end(word_marks[-1]) + trailing_pad
    segments.append(Segment(" ".join(words), segment_start, max(end - segment_start, 0.01)))
    return segments


def validate_coverage(
    timings: Sequence[ClipTiming],
    word_marks: Sequence[SpeechMark],
    trailing_pad: float = DEFAULT_TRAILING_PAD,
    tolerance: float = COVERAGE_TOLERANCE
):
    """Raise TimingCoverageError unless timings tile the narration span"""
    if not word_marks:
        raise NoTimingDataError()
    if not timings:
        raise TimingCoverageError("Segmentation produced no segments")

    first_word = word_marks[0].start_seconds
    if abs(timings[0].start_time - first_word) > tolerance:
        raise TimingCoverageError(
            "First segment does not start at the first word",
            segment_start=timings[0].start_time, first_word=first_word,
        )

    for previous, current in zip(timings, timings[1:]):
        gap = current.start_time - previous.end_time
        if abs(gap) > tolerance:
            raise TimingCoverageError(
                "Segments have a gap or overlap",
                previous_end=round(previous.end_time, 3),
                next_start=round(current.start_time, 3),
            )

    expected_end = word_end(word_marks[-1]) + trailing_pad
    if abs(timings[-1].end_time - expected_end) > tolerance:
        raise TimingCoverageError(
            "Last segment does not reach the end of the narration",
            segment_end=round(timings[-1].end_time, 3), narration_end=round(expected_end, 3),
        )


class SpeechSegmenter:
    """Segments narration and labels each segment for clip search"""

    def __init__(
        self,
        labeler: Optional[KeywordLabeler] = None,
        max_duration: float = DEFAULT_MAX_DURATION,
        trailing_pad: float = DEFAULT_TRAILING_PAD
    ):
        self.labeler = labeler or KeywordLabeler()
        self.max_duration = max_duration
        self.trailing_pad = trailing_pad

    async def segment(self, word_marks: Sequence[SpeechMark], full_text: str) -> List[ClipTiming]:
        """Word marks -> labeled ClipTimings covering the whole narration"""
        segments = split_into_segments(word_marks, self.max_duration, self.trailing_pad)
        logger.info(f"Split {len(word_marks)} words into {len(segments)} segments")

        timings: List[ClipTiming] = []
        used_labels: List[str] = []
        for segment in segments:
            label = await self._label(segment, full_text, used_labels)
            used_labels.extend(label.keywords)
            timings.append(ClipTiming(
                keyword=label.joined,
                keyword_type=label.keyword_type,
                start_time=round(segment.start, 3),
                duration=round(segment.duration, 3),
                sentence_text=segment.text,
            ))
            logger.debug(
                f"Segment {segment.start:.2f}s +{segment.duration:.2f}s "
                f"[{label.keyword_type.value}] {label.joined}"
            )

        validate_coverage(timings, word_marks, self.trailing_pad)
        return timings

    async def _label(self, segment: Segment, context: str, used_labels: List[str]) -> SegmentLabel:
        try:
            return await self.labeler.label(segment.text, context, list(used_labels))
        except ProviderError as exc:
            label = fallback_label(segment.text)
            logger.warning(f"Labeling failed for '{segment.text}', using fallback '{label.joined}': {exc}")
            return label
