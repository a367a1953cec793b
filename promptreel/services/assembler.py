"""
Video Assembler Service
Normalizes resolved clips, concatenates them over the narration and mixes in music
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from ..config import Settings, get_settings
from ..models.job import ResolvedClip
from ..utils.aspect import output_dimensions
from ..utils.exceptions import ValidationError
from ..utils.ffmpeg import FFmpegRunner, get_ffmpeg_runner
from ..utils.logger import get_logger
from .object_store import get_object_store

logger = get_logger()


@dataclass
class NormalizedClip:
    """A clip re-encoded to the shared resolution, frame rate and pixel format"""
    path: Path
    source_url: str
    keyword: str
    start_time: float
    requested_duration: float
    actual_duration: float


def normalize_args(source: str, target: str, width: int, height: int, fps: int = 30) -> List[str]:
    return [
        "-i", source,
        "-vf", (
            f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
        ),
        "-r", str(fps),
        "-g", str(fps * 2),
        "-pix_fmt", "yuv420p",
        "-c:v", "libx264",
        "-profile:v", "main",
        "-preset", "faster",
        "-b:v", "4000k",
        "-an",
        target,
    ]


def concat_filter(count: int) -> str:
    """'[0:v]setsar=1[v0];...[v0][v1]...concat=n=N:v=1:a=0[v]'"""
    labels = "".join(f"[v{i}]" for i in range(count))
    prepared = ";".join(f"[{i}:v]setsar=1[v{i}]" for i in range(count))
    return f"{prepared};{labels}concat=n={count}:v=1:a=0[v]"


def concat_args(clips: Sequence[str], narration: str, target: str) -> List[str]:
    """Join clips in the given order into one video track carrying the narration"""
    args: List[str] = []
    for clip in clips:
        args += ["-i", clip]
    args += ["-i", narration]
    args += [
        "-filter_complex", concat_filter(len(clips)),
        "-map", "[v]",
        "-map", f"{len(clips)}:a",
        "-c:v", "libx264",
        "-preset", "faster",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", "192k",
        target,
    ]
    return args


def mix_filter(voice_volume: float = 1.0, music_volume: float = 0.1) -> str:
    return (
        f"[0:a]volume={voice_volume}[a1];"
        f"[1:a]volume={music_volume}[a2];"
        f"[a1][a2]amix=inputs=2:duration=shortest[aout]"
    )


def mix_args(
    video: str,
    music: str,
    target: str,
    voice_volume: float = 1.0,
    music_volume: float = 0.1,
    loop_music: bool = False
) -> List[str]:
    """
    Mix the narration channel of `video` with `music`.

    Output length is the shorter input. With loop_music the music input
    repeats, so the narration becomes the shorter side.
    """
    music_input = ["-stream_loop", "-1", "-i", music] if loop_music else ["-i", music]
    return [
        "-i", video,
        *music_input,
        "-filter_complex", mix_filter(voice_volume, music_volume),
        "-map", "0:v",
        "-map", "[aout]",
        "-c:v", "libx264",
        "-preset", "medium",
        "-profile:v", "main",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", "192k",
        "-shortest",
        target,
    ]


class VideoAssembler:
    """Builds the subtitle-free base video from stored clips and audio"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        runner: Optional[FFmpegRunner] = None,
        object_store=None
    ):
        self.settings = settings or get_settings()
        self.runner = runner or get_ffmpeg_runner()
        self.object_store = object_store or get_object_store()

    async def assemble(
        self,
        clips: Sequence[ResolvedClip],
        narration_url: str,
        music_url: Optional[str],
        aspect_ratio: float,
        workdir: Path
    ) -> Path:
        """
        Normalize, concatenate and mix into a local file under workdir.

        Clips are re-sorted by segment start so the output order never
        depends on the order they were stored in.
        """
        if not clips:
            raise ValidationError("No clips to assemble")

        ordered = sorted(clips, key=lambda clip: clip.start_time)
        width, height = output_dimensions(aspect_ratio)
        logger.info(f"Assembling {len(ordered)} clips at {width}x{height}")

        normalized = []
        for index, clip in enumerate(ordered):
            normalized.append(await self.normalize(clip, index, width, height, workdir))
        log_clip_table(normalized)

        narration = workdir / "narration.mp3"
        await self.object_store.download(narration_url, str(narration))

        merged = workdir / "merged.mp4"
        await self.runner.run(
            concat_args([str(c.path) for c in normalized], str(narration), str(merged)),
            description="concatenate clips",
        )

        if not music_url:
            logger.info("No background music; base video carries narration only")
            return merged

        music = workdir / "music.mp3"
        await self.object_store.download(music_url, str(music))
        mixed = workdir / "mixed.mp4"
        await self.runner.run(
            mix_args(
                str(merged), str(music), str(mixed),
                voice_volume=self.settings.voice_volume,
                music_volume=self.settings.music_volume,
                loop_music=self.settings.loop_music,
            ),
            description="mix background music",
        )
        return mixed

    async def normalize(
        self,
        clip: ResolvedClip,
        index: int,
        width: int,
        height: int,
        workdir: Path
    ) -> NormalizedClip:
        raw = workdir / f"raw-{index:03d}.mp4"
        target = workdir / f"norm-{index:03d}.mp4"
        await self.object_store.download(clip.clip_url, str(raw))
        await self.runner.run(
            normalize_args(str(raw), str(target), width, height, self.settings.output_fps),
            description=f"normalize clip {index}",
        )
        actual = await self.runner.duration(str(target))
        return NormalizedClip(
            path=target,
            source_url=clip.clip_url,
            keyword=clip.keyword,
            start_time=clip.start_time,
            requested_duration=clip.duration,
            actual_duration=actual,
        )


def log_clip_table(clips: Sequence[NormalizedClip]):
    """Timeline of normalized clips, with drift between requested and actual length"""
    position = 0.0
    for index, clip in enumerate(clips):
        drift = clip.actual_duration - clip.requested_duration
        logger.info(
            f"  #{index:02d} {position:7.2f}s  '{clip.keyword}'  "
            f"requested={clip.requested_duration:.2f}s actual={clip.actual_duration:.2f}s "
            f"drift={drift:+.2f}s"
        )
        position += clip.actual_duration
    logger.info(f"  Total video track: {position:.2f}s")
