from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from promptreel.config import Settings
from promptreel.models.job import GenerationJob, InitialParams, GenerationOptions, SpeechMark
from promptreel.services.job_store import JobStore
from promptreel.services.object_store import LocalObjectStore
from promptreel.utils.ffmpeg import MediaInfo


class FakeRunner:
    """Records ffmpeg calls and writes a dummy output file instead of encoding."""

    def __init__(self, output_bytes: int = 8192, duration: float = 2.0) -> None:
        self.calls: List[List[str]] = []
        self.descriptions: List[str] = []
        self.output_bytes = output_bytes
        self.probe_duration = duration
        self.fail_when: Optional[Any] = None

    async def run(self, args: List[str], description: str = "ffmpeg") -> None:
        self.calls.append(list(args))
        self.descriptions.append(description)
        if self.fail_when is not None and self.fail_when(args, description):
            from promptreel.utils.exceptions import EncodingError
            raise EncodingError(f"fake failure: {description}", command=description, stderr="boom")
        output = Path(args[-1])
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"\0" * self.output_bytes)

    async def probe(self, path: str) -> MediaInfo:
        return MediaInfo(
            duration=self.probe_duration, width=1080, height=1920,
            has_video=True, has_audio=True, streams=[{"codec_type": "video"}],
        )

    async def duration(self, path: str) -> float:
        return self.probe_duration

    def is_available(self) -> bool:
        return True


class FakeLLM:
    """Scripted Gemini replacement: queued replies, or an exception to raise."""

    def __init__(self, replies: Optional[List[Any]] = None, json_replies: Optional[List[Any]] = None) -> None:
        self.replies = list(replies or [])
        self.json_replies = list(json_replies or [])
        self.prompts: List[str] = []

    async def generate(self, prompt: str, json_output: bool = False, temperature=None, grounded: bool = False) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else "1"
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def generate_json(self, prompt: str, temperature=None) -> Dict[str, Any]:
        self.prompts.append(prompt)
        reply = self.json_replies.pop(0) if self.json_replies else {}
        if isinstance(reply, Exception):
            raise reply
        return reply


def word(value: str, time_ms: int, duration_ms: Optional[int] = None) -> SpeechMark:
    return SpeechMark(type="word", value=value, time=time_ms, duration=duration_ms)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        temp_dir=str(tmp_path / "temp"),
        data_dir=str(tmp_path / "data"),
        output_dir=str(tmp_path / "output"),
        pexels_api_key="pexels-key",
        google_api_key="google-key",
        google_search_engine_id="engine",
        jamendo_client_id="",
        font_dirs=[str(tmp_path / "fonts")],
        api_key="",
    )


@pytest.fixture
def store(tmp_path: Path) -> JobStore:
    return JobStore(str(tmp_path / "data" / "jobs.db"))


@pytest.fixture
def object_store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(str(tmp_path / "objects"))


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_job():
    def _make(prompt: str = "The history of the lighthouse", aspect_ratio: str = "9:16",
              user_id: str = "user-1", **fields: Any) -> GenerationJob:
        return GenerationJob(
            user_id=user_id,
            initial_params=InitialParams(
                prompt=prompt,
                options=GenerationOptions(aspect_ratio=aspect_ratio, language="en-US"),
            ),
            **fields,
        )
    return _make
