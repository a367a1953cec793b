"""
Subtitle Burner Service
Word-synchronized drawtext captions burned into the base video
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from ..config import Settings, get_settings
from ..languages import FALLBACK_FONTS, UNIVERSAL_FONT_FAMILY, LanguageConfig
from ..models.job import SpeechMark
from ..utils.ffmpeg import FFmpegRunner, get_ffmpeg_runner
from ..utils.logger import get_logger

logger = get_logger()

SKIP_WORDS = {"a", "an", "the", "of", "to", "in", "for", "on", "at", "by", "is", "are"}
PALETTE = [
    "#FFE66D", "#FF6B6B", "#4ECDC4", "#95E1D3", "#A8E6CF",
    "#FFB6B9", "#8860D0", "#F8B195", "#C06C84", "#87CEEB",
]
WORD_GAP = 0.05
LAST_WORD_HOLD = 1.5
FONT_SCALE = 5.4
FONT_EXTENSIONS = (".ttf", ".otf", ".ttc")


@dataclass
class CaptionWindow:
    text: str
    start: float
    end: float
    color: str


def caption_windows(word_marks: Sequence[SpeechMark], duration: float) -> List[CaptionWindow]:
    """
    One window per displayed word: [start, next start - 50ms], last word +1.5s.

    Articles and short prepositions are dropped unless they are the last word.
    Windows are clamped to the narration duration.
    """
    words = [mark for mark in word_marks if mark.type == "word" and mark.value.strip()]
    windows: List[CaptionWindow] = []

    for index, mark in enumerate(words):
        is_last = index == len(words) - 1
        text = mark.value.strip()
        if text.lower() in SKIP_WORDS and not is_last:
            continue

        start = mark.start_seconds
        if is_last:
            end = start + LAST_WORD_HOLD
        else:
            end = words[index + 1].start_seconds - WORD_GAP
        if duration > 0:
            end = min(end, duration)
            if start >= duration:
                continue
        if end <= start:
            continue

        windows.append(CaptionWindow(
            text=text.upper().replace("'", "").replace("’", ""),
            start=round(start, 3),
            end=round(end, 3),
            color=PALETTE[len(windows) % len(PALETTE)],
        ))
    return windows


def escape_drawtext(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace("'", "\\'")
        .replace(":", "\\:")
        .replace(",", "\\,")
    )


def caption_font_size(aspect_ratio: float) -> int:
    if aspect_ratio < 1:
        base = 18
    elif abs(aspect_ratio - 4 / 3) < 0.1:
        base = 32
    else:
        base = 36
    return int(round(base * FONT_SCALE))


def _font_files(font_dirs: Iterable[str]) -> List[Path]:
    files: List[Path] = []
    for directory in font_dirs:
        root = Path(directory).expanduser()
        if not root.is_dir():
            continue
        files.extend(p for p in root.rglob("*") if p.suffix.lower() in FONT_EXTENSIONS)
    return files


def resolve_font(language: LanguageConfig, font_dirs: Iterable[str]) -> Optional[str]:
    """First font file matching the language's list, then the shared fallbacks"""
    files = _font_files(font_dirs)
    if not files:
        return None
    for name in list(language.caption_fonts) + FALLBACK_FONTS:
        pattern = re.compile(re.escape(name).replace("\\ ", ".*"), re.IGNORECASE)
        for path in files:
            if pattern.search(path.stem):
                return str(path)
    return None


def drawtext_filter(
    window: CaptionWindow,
    font_size: int,
    caption_y: float,
    font_file: Optional[str] = None
) -> str:
    if font_file:
        font = f"fontfile='{escape_drawtext(font_file)}'"
    else:
        font = f"font='{UNIVERSAL_FONT_FAMILY}'"
    s, e = f"{window.start:.3f}", f"{window.end:.3f}"
    return (
        f"drawtext={font}:text='{escape_drawtext(window.text)}':"
        f"fontsize={font_size}:fontcolor={window.color}:"
        f"borderw=6:bordercolor=black@0.9:shadowx=4:shadowy=4:"
        f"x=(w-tw)/2:y=(h*{caption_y}):"
        f"alpha='if(lt(t,{s}),0,if(gt(t,{e}),0,1))':"
        f"enable='between(t,{s},{e})'"
    )


def build_caption_graph(
    windows: Sequence[CaptionWindow],
    aspect_ratio: float,
    language: LanguageConfig,
    font_file: Optional[str] = None
) -> str:
    if not windows:
        return "[0:v]null[v]"
    size = caption_font_size(aspect_ratio)
    chain = ",".join(drawtext_filter(w, size, language.caption_y, font_file) for w in windows)
    return f"[0:v]{chain}[v]"


class SubtitleBurner:
    """Renders caption windows onto a video with one ffmpeg pass"""

    def __init__(self, settings: Optional[Settings] = None, runner: Optional[FFmpegRunner] = None):
        self.settings = settings or get_settings()
        self.runner = runner or get_ffmpeg_runner()

    def filter_args(self, graph: str, workdir: Path) -> List[str]:
        """Inline graph, or a script file once it passes the command-line threshold"""
        if len(graph) <= self.settings.subtitle_script_threshold:
            return ["-filter_complex", graph]
        script = workdir / "captions.filter"
        script.write_text(graph, encoding="utf-8")
        logger.info(f"Caption graph is {len(graph)} chars, using script file")
        return ["-filter_complex_script", str(script)]

    async def burn(
        self,
        video_path: str,
        output_path: str,
        word_marks: Sequence[SpeechMark],
        duration: float,
        aspect_ratio: float,
        language: LanguageConfig,
        workdir: Path
    ) -> str:
        windows = caption_windows(word_marks, duration)
        font_file = resolve_font(language, self.settings.font_dirs)
        if font_file is None:
            logger.warning(f"No caption font found for {language.code}, using {UNIVERSAL_FONT_FAMILY}")

        graph = build_caption_graph(windows, aspect_ratio, language, font_file)
        logger.info(f"Burning {len(windows)} captions ({language.code})")

        await self.runner.run([
            "-i", video_path,
            *self.filter_args(graph, workdir),
            "-map", "[v]",
            "-map", "0:a?",
            "-c:v", "libx264",
            "-preset", "faster",
            "-crf", "23",
            "-pix_fmt", "yuv420p",
            "-c:a", "copy",
            "-movflags", "+faststart",
            "-shortest",
            output_path,
        ], description="burn captions")
        return output_path
