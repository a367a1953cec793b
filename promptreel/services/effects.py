"""
Photo Animator Service
Turns a still photo into a short motion clip with one of nine effects
"""

import os
import random
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from ..utils.aspect import output_dimensions
from ..utils.exceptions import EncodingError, PromptReelError, ValidationError
from ..utils.ffmpeg import FFmpegRunner, get_ffmpeg_runner
from ..utils.files import remove_file
from ..utils.logger import get_logger

logger = get_logger()

FADE_DURATION = 0.4
MIN_PHOTO_BYTES = 1024
MIN_OUTPUT_BYTES = 4096
ZOOM_AMOUNT = 0.2
SWING_DEGREES = 5
SWING_PERIOD = 3


class Effect(str, Enum):
    KEN_BURNS = "ken_burns"
    ZOOM_IN = "zoom_in"
    ZOOM_OUT = "zoom_out"
    PAN_LEFT = "pan_left"
    PAN_RIGHT = "pan_right"
    TILT_UP = "tilt_up"
    TILT_DOWN = "tilt_down"
    ROTATE_SWING = "rotate_swing"
    PULSE_SATURATION = "pulse_saturation"


def effect_order(forced: Optional[Effect] = None, rng: Optional[random.Random] = None) -> List[Effect]:
    """Shuffled catalog, with a forced effect moved to the front"""
    effects = list(Effect)
    (rng or random).shuffle(effects)
    if forced is not None:
        effects.remove(forced)
        effects.insert(0, forced)
    return effects


def _fit(width: int, height: int) -> str:
    return f"scale={width}:{height}:force_original_aspect_ratio=decrease,setsar=1"


def _cover(width: int, height: int, factor: float = 1.0) -> str:
    """Scale so the image fills width x height (times factor) keeping its aspect"""
    w = f"trunc({width}*{factor}/2)*2"
    h = f"trunc({height}*{factor}/2)*2"
    return (
        f"scale=w='if(gt(a,{width}/{height}),-2,{w})':"
        f"h='if(gt(a,{width}/{height}),{h},-2)',setsar=1"
    )


def foreground_filter(effect: Effect, width: int, height: int, duration: float, fps: int = 25) -> str:
    """Filter chain that turns [fgsrc] into the animated [fg] layer"""
    d = f"{duration:.3f}"

    if effect == Effect.PULSE_SATURATION:
        chain = f"{_fit(width, height)},eq=saturation='1+0.3*sin(2*PI*t/{SWING_PERIOD})':eval=frame"
    elif effect == Effect.ROTATE_SWING:
        chain = (
            f"{_fit(width, height)},"
            f"rotate='PI/180*{SWING_DEGREES}*sin(2*PI*t/{SWING_PERIOD})':fillcolor=black"
        )
    elif effect in (Effect.ZOOM_IN, Effect.ZOOM_OUT):
        frames = max(1, int(round(duration * fps)))
        if effect == Effect.ZOOM_IN:
            zoom = f"1+{ZOOM_AMOUNT}*on/{frames}"
        else:
            zoom = f"{1 + ZOOM_AMOUNT}-{ZOOM_AMOUNT}*on/{frames}"
        chain = (
            f"{_cover(width, height)},crop={width}:{height},"
            f"zoompan=z='{zoom}':d=1:x='iw/2-(iw/zoom/2)':y='ih/2-(ih/zoom/2)':"
            f"s={width}x{height}:fps={fps}"
        )
    elif effect == Effect.KEN_BURNS:
        chain = (
            f"{_cover(width, height, 1 + ZOOM_AMOUNT)},"
            f"crop={width}:{height}:x='(iw-ow)*t/{d}':y='(ih-oh)*(1-t/{d})'"
        )
    elif effect == Effect.PAN_LEFT:
        chain = (
            f"{_cover(width, height, 1 + ZOOM_AMOUNT)},"
            f"crop={width}:{height}:x='max(0,(iw-ow)*(1-t/{d}))':y='(ih-oh)/2'"
        )
    elif effect == Effect.PAN_RIGHT:
        chain = (
            f"{_cover(width, height, 1 + ZOOM_AMOUNT)},"
            f"crop={width}:{height}:x='max(0,(iw-ow)*t/{d})':y='(ih-oh)/2'"
        )
    elif effect == Effect.TILT_UP:
        chain = (
            f"{_cover(width, height, 1 + ZOOM_AMOUNT)},"
            f"crop={width}:{height}:x='(iw-ow)/2':y='max(0,(ih-oh)*(1-t/{d}))'"
        )
    elif effect == Effect.TILT_DOWN:
        chain = (
            f"{_cover(width, height, 1 + ZOOM_AMOUNT)},"
            f"crop={width}:{height}:x='(iw-ow)/2':y='max(0,(ih-oh)*t/{d})'"
        )
    else:
        raise ValueError(f"Unknown effect: {effect}")

    return f"[fgsrc]{chain}[fg]"


def build_effect_graph(effect: Effect, width: int, height: int, duration: float, fps: int = 25) -> str:
    """Blurred cover background + animated foreground, faded in and out"""
    background = (
        f"[0:v]split=2[bgsrc][fgsrc];"
        f"[bgsrc]{_cover(width, height)},crop={width}:{height},"
        f"boxblur=luma_radius=min(h\\,w)/20:luma_power=1[bg]"
    )
    fade_out_start = max(0.0, duration - FADE_DURATION)
    composite = (
        f"[bg][fg]overlay=(W-w)/2:(H-h)/2:shortest=1,"
        f"fade=t=in:st=0:d={FADE_DURATION},"
        f"fade=t=out:st={fade_out_start:.3f}:d={FADE_DURATION},"
        f"format=yuv420p[v]"
    )
    return ";".join([background, foreground_filter(effect, width, height, duration, fps), composite])


def build_effect_command(
    photo_path: str,
    output_path: str,
    effect: Effect,
    width: int,
    height: int,
    duration: float,
    fps: int
) -> List[str]:
    return [
        "-loop", "1",
        "-i", photo_path,
        "-filter_complex", build_effect_graph(effect, width, height, duration, fps),
        "-map", "[v]",
        "-t", f"{duration:.3f}",
        "-r", str(fps),
        "-c:v", "libx264",
        "-pix_fmt", "yuv420p",
        "-preset", "ultrafast",
        "-profile:v", "main",
        "-crf", "23",
        "-movflags", "+faststart",
        output_path,
    ]


class PhotoAnimator:
    """Tries effects in shuffled order until one encodes a valid clip"""

    def __init__(self, runner: Optional[FFmpegRunner] = None, rng: Optional[random.Random] = None):
        self.runner = runner or get_ffmpeg_runner()
        self.rng = rng

    async def animate(
        self,
        photo_path: str,
        output_path: str,
        aspect_ratio: float,
        duration: float = 3.0,
        fps: int = 25,
        forced_effect: Optional[Effect] = None
    ) -> Tuple[str, Effect]:
        """
        Encode a motion clip from a still photo

        Args:
            photo_path: Validated local image
            output_path: Where the accepted clip is written
            aspect_ratio: Target width / height
            duration: Clip length in seconds
            fps: Output frame rate
            forced_effect: Effect to try first

        Returns:
            (output_path, effect that succeeded)
        """
        if not os.path.exists(photo_path) or os.path.getsize(photo_path) < MIN_PHOTO_BYTES:
            raise ValidationError("Photo missing or too small to animate", path=photo_path)

        width, height = output_dimensions(aspect_ratio)
        attempt_path = str(Path(output_path).with_suffix(".attempt.mp4"))
        last_error: Optional[PromptReelError] = None

        for effect in effect_order(forced_effect, self.rng):
            cmd = build_effect_command(photo_path, attempt_path, effect, width, height, duration, fps)
            try:
                await self.runner.run(cmd, description=f"effect {effect.value}")
                size = os.path.getsize(attempt_path) if os.path.exists(attempt_path) else 0
                if size < MIN_OUTPUT_BYTES:
                    raise ValidationError(
                        f"Effect output too small ({size} bytes)", path=attempt_path, effect=effect.value
                    )
            except (EncodingError, ValidationError) as exc:
                last_error = exc
                logger.warning(f"Effect {effect.value} failed, trying next: {exc.message}")
                remove_file(attempt_path)
                continue

            os.replace(attempt_path, output_path)
            logger.info(f"Animated photo with {effect.value} ({width}x{height}, {duration:.1f}s)")
            return output_path, effect

        raise EncodingError(
            f"All {len(Effect)} effects failed for {os.path.basename(photo_path)}: "
            f"{last_error.message if last_error else 'unknown error'}"
        )
