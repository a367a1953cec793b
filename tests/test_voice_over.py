import base64
from types import SimpleNamespace

import pytest

from promptreel.services.voice_over import (
    VoiceOver, alignment_to_speech_marks, narration_duration, narration_from_response,
)
from promptreel.utils.exceptions import ProviderError


def _align(text):
    characters = list(text)
    starts = [i / 10 for i in range(len(characters))]
    ends = [(i + 1) / 10 for i in range(len(characters))]
    return characters, starts, ends


def _timestamped(text, audio=b"ID3-one-take"):
    characters, starts, ends = _align(text)
    return SimpleNamespace(
        audio_base_64=base64.b64encode(audio).decode(),
        alignment=SimpleNamespace(
            characters=characters,
            character_start_times_seconds=starts,
            character_end_times_seconds=ends,
        ),
    )


class FakeTextToSpeech:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def convert_with_timestamps(self, **kwargs):
        self.calls.append(kwargs)
        return self.response

    def convert(self, **kwargs):
        raise AssertionError("narration must come from the timestamped call")


def test_characters_group_into_sentences_and_words() -> None:
    marks = alignment_to_speech_marks(*_align("Hi there. Bye!"))

    assert [(m.type, m.value, m.time, m.duration) for m in marks] == [
        ("sentence", "Hi there.", 0, 900),
        ("word", "Hi", 0, 200),
        ("word", "there", 300, 600),
        ("sentence", "Bye!", 1000, 400),
        ("word", "Bye", 1000, 400),
    ]
    assert narration_duration(marks) == pytest.approx(1.4)


def test_trailing_sentence_without_punctuation_is_kept() -> None:
    marks = alignment_to_speech_marks(*_align("go on"))
    assert [m.value for m in marks if m.type == "word"] == ["go", "on"]
    assert marks[0].type == "sentence"


def test_mismatched_alignment_is_a_provider_error() -> None:
    with pytest.raises(ProviderError):
        alignment_to_speech_marks(["a", "b"], [0.0], [0.1, 0.2])


def test_duration_without_words_is_zero() -> None:
    assert narration_duration([]) == 0.0


async def test_audio_and_marks_come_from_one_generation(settings) -> None:
    tts = FakeTextToSpeech(_timestamped("Hi there. Bye!"))
    voice = VoiceOver(settings)
    voice._client = SimpleNamespace(text_to_speech=tts)

    narration = await voice.narrate("Hi there. Bye!", "en", "voice-1")

    assert len(tts.calls) == 1
    assert tts.calls[0]["voice_id"] == "voice-1"
    assert tts.calls[0]["output_format"] == settings.elevenlabs_output_format
    assert narration.audio == b"ID3-one-take"
    assert [m.value for m in narration.marks if m.type == "word"] == ["Hi", "there", "Bye"]
    assert narration_duration(narration.marks) == pytest.approx(1.4)


def test_response_without_audio_is_rejected() -> None:
    response = _timestamped("Hi")
    response.audio_base_64 = ""
    with pytest.raises(ProviderError):
        narration_from_response(response)

    response = _timestamped("Hi")
    response.alignment = None
    with pytest.raises(ProviderError):
        narration_from_response(response)
