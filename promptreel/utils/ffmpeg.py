"""
FFmpeg Runner
Blocking ffmpeg/ffprobe subprocesses awaited through the default executor
"""

import asyncio
import json
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .exceptions import EncodingError, ValidationError
from .logger import get_logger

logger = get_logger()


@dataclass
class MediaInfo:
    """Subset of ffprobe output the pipeline cares about"""
    duration: float = 0.0
    width: int = 0
    height: int = 0
    has_video: bool = False
    has_audio: bool = False
    format_name: str = ""
    size: int = 0
    streams: List[Dict] = field(default_factory=list)

    @classmethod
    def from_probe(cls, data: Dict) -> "MediaInfo":
        streams = data.get("streams", []) or []
        fmt = data.get("format", {}) or {}
        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

        duration = fmt.get("duration")
        if duration in (None, "N/A") and video:
            duration = video.get("duration")
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            duration = 0.0

        return cls(
            duration=duration,
            width=int(video.get("width", 0)) if video else 0,
            height=int(video.get("height", 0)) if video else 0,
            has_video=video is not None,
            has_audio=audio is not None,
            format_name=fmt.get("format_name", ""),
            size=int(fmt.get("size", 0) or 0),
            streams=streams,
        )


class FFmpegRunner:
    """Runs ffmpeg commands and parses ffprobe metadata"""

    def __init__(self, ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe"):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg_bin) is not None and shutil.which(self.ffprobe_bin) is not None

    async def run(
        self,
        args: List[str],
        description: str = "ffmpeg"
    ):
        """Run ffmpeg with the given arguments (without the binary name)"""
        cmd = [self.ffmpeg_bin, "-hide_banner", "-y", *args]
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._run_blocking, cmd, description)

    def _run_blocking(self, cmd: List[str], description: str):
        logger.debug(f"FFmpeg command ({description}): {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                universal_newlines=True
            )
        except FileNotFoundError as exc:
            raise EncodingError(f"{self.ffmpeg_bin} not found in PATH", command=description) from exc

        _, stderr = process.communicate()

        if process.returncode != 0:
            error_msg = "\n".join(stderr.splitlines()[-15:])
            logger.error(f"FFmpeg {description} failed (exit {process.returncode})")
            raise EncodingError(
                f"FFmpeg {description} failed with exit code {process.returncode}",
                command=" ".join(cmd),
                stderr=error_msg,
            )

    async def probe(self, path: str) -> MediaInfo:
        """Probe a media file; raises ValidationError if ffprobe cannot read it"""
        if not os.path.exists(path):
            raise ValidationError(f"Media file not found: {path}", path=path)

        cmd = [
            self.ffprobe_bin, "-v", "error",
            "-print_format", "json",
            "-show_format", "-show_streams",
            path,
        ]
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: subprocess.run(cmd, capture_output=True, text=True)
            )
        except FileNotFoundError as exc:
            raise EncodingError(f"{self.ffprobe_bin} not found in PATH", command="ffprobe") from exc

        if result.returncode != 0:
            raise ValidationError(
                f"ffprobe could not decode {os.path.basename(path)}",
                path=path,
                stderr=(result.stderr or "")[-300:],
            )

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Unreadable ffprobe output for {path}", path=path) from exc

        info = MediaInfo.from_probe(data)
        if not info.streams:
            raise ValidationError(f"No media streams in {os.path.basename(path)}", path=path)
        return info

    async def duration(self, path: str) -> float:
        info = await self.probe(path)
        return info.duration


_runner: Optional[FFmpegRunner] = None


def get_ffmpeg_runner() -> FFmpegRunner:
    """Return the shared runner"""
    global _runner
    if _runner is None:
        _runner = FFmpegRunner()
    return _runner
