"""
Voice-Over Service
ElevenLabs narration audio and word/sentence timing marks
"""

import asyncio
import base64
import binascii
import string
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..config import Settings, get_settings
from ..models.job import SpeechMark
from ..utils.exceptions import APIKeyError, ProviderError, RateLimitError
from ..utils.logger import get_logger
from ..utils.retry import retry_async

logger = get_logger()

SERVICE = "ElevenLabs"
SENTENCE_ENDINGS = ".!?。！？"
WORD_PUNCTUATION = string.punctuation + "“”‘’«»…—–¿¡。、！？"


@dataclass
class Narration:
    """Audio and the timing marks of that same rendition"""
    audio: bytes
    marks: List[SpeechMark]


class VoiceOver:
    """Text-to-speech with timing marks"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client = None

    def _ensure_initialized(self):
        """Lazy initialize ElevenLabs client"""
        if self._client is not None:
            return

        if not self.settings.elevenlabs_api_key:
            raise APIKeyError(SERVICE)

        from elevenlabs import ElevenLabs
        self._client = ElevenLabs(api_key=self.settings.elevenlabs_api_key)
        logger.info("ElevenLabs client initialized")

    async def _call(self, func, description: str):
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, func), timeout=self.settings.llm_timeout
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(SERVICE, f"{description} timed out") from exc
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            if status == 401:
                raise APIKeyError(SERVICE) from exc
            if status == 429:
                raise RateLimitError(SERVICE) from exc
            raise ProviderError(SERVICE, f"{description} failed: {str(exc)[:200]}") from exc

    @retry_async(max_retries=2)
    async def narrate(self, text: str, language: str, voice_id: str) -> Narration:
        """
        Synthesize narration once and return its mp3 bytes with word/sentence marks.

        Both come from a single timestamped generation, so the marks always
        describe the audio that is stored.
        """
        self._ensure_initialized()
        logger.info(f"Synthesizing narration ({len(text)} chars, voice {voice_id}, {language})")

        def _convert():
            return self._client.text_to_speech.convert_with_timestamps(
                voice_id=voice_id,
                text=text,
                model_id=self.settings.elevenlabs_model,
                output_format=self.settings.elevenlabs_output_format,
            )

        response = await self._call(_convert, "speech synthesis")
        narration = narration_from_response(response)
        logger.info(
            f"Narration ready ({len(narration.audio) / 1024:.0f} KB, "
            f"{sum(1 for m in narration.marks if m.type == 'word')} word marks)"
        )
        return narration


def narration_from_response(response) -> Narration:
    """Decode a timestamped synthesis response into audio bytes and marks"""
    encoded = getattr(response, "audio_base_64", None)
    if not encoded:
        raise ProviderError(SERVICE, "speech synthesis returned no audio", retryable=False)
    try:
        audio = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProviderError(SERVICE, "speech synthesis audio is not valid base64", retryable=False) from exc

    alignment = getattr(response, "alignment", None)
    if alignment is None:
        raise ProviderError(SERVICE, "no alignment in timestamp response", retryable=False)

    marks = alignment_to_speech_marks(
        alignment.characters,
        alignment.character_start_times_seconds,
        alignment.character_end_times_seconds,
    )
    return Narration(audio=audio, marks=marks)


def alignment_to_speech_marks(
    characters: Sequence[str],
    starts: Sequence[float],
    ends: Sequence[float]
) -> List[SpeechMark]:
    """
    Group character-level alignment into word and sentence marks.

    Times in the result are integer milliseconds. Sentence marks come
    first for each sentence, followed by its words.
    """
    if not (len(characters) == len(starts) == len(ends)):
        raise ProviderError(SERVICE, "alignment arrays have different lengths", retryable=False)

    words = []
    current: List[int] = []
    for index, char in enumerate(characters):
        if char.isspace():
            if current:
                words.append(current)
                current = []
            continue
        current.append(index)
    if current:
        words.append(current)

    marks: List[SpeechMark] = []
    sentence: List[List[int]] = []

    def _flush_sentence():
        if not sentence:
            return
        first, last = sentence[0][0], sentence[-1][-1]
        start_ms = int(round(starts[first] * 1000))
        end_ms = int(round(ends[last] * 1000))
        marks.append(SpeechMark(
            type="sentence",
            value=" ".join("".join(characters[i] for i in word) for word in sentence),
            time=start_ms,
            duration=max(0, end_ms - start_ms),
        ))
        for word in sentence:
            value = "".join(characters[i] for i in word).strip(WORD_PUNCTUATION)
            if not value:
                continue
            word_start = int(round(starts[word[0]] * 1000))
            word_end = int(round(ends[word[-1]] * 1000))
            marks.append(SpeechMark(
                type="word",
                value=value,
                time=word_start,
                duration=max(0, word_end - word_start),
            ))
        sentence.clear()

    for word in words:
        sentence.append(word)
        if characters[word[-1]] in SENTENCE_ENDINGS:
            _flush_sentence()
    _flush_sentence()

    return marks


def narration_duration(marks: Sequence[SpeechMark]) -> float:
    """Seconds from zero to the end of the last word"""
    words = [m for m in marks if m.type == "word"]
    if not words:
        return 0.0
    last = words[-1]
    return (last.time + (last.duration or 0)) / 1000.0
