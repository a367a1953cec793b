"""
Language Table
Per-locale narration, voice and caption settings
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass(frozen=True)
class LanguageConfig:
    code: str
    display_name: str
    default_voice_id: Optional[str] = None
    caption_fonts: List[str] = field(default_factory=list)
    caption_y: float = 0.3

    @property
    def short_code(self) -> str:
        return self.code.split("-")[0].lower()


LATIN_FONTS = ["SparkyStonesRegular-BW6ld", "Arial", "Roboto"]
EUROPEAN_FONTS = ["Montserrat", "Arial", "Roboto"]
FALLBACK_FONTS = ["Arial Unicode MS", "Arial", "DejaVu Sans"]
UNIVERSAL_FONT_FAMILY = "Sans"

# ElevenLabs premade voices; any voice id from the account works
LANGUAGES: Dict[str, LanguageConfig] = {
    "en-US": LanguageConfig("en-US", "English (US)", "pNInz6obpgDQGcFmaJgB", LATIN_FONTS),
    "en-IN": LanguageConfig("en-IN", "English (India)", "21m00Tcm4TlvDq8ikWAM", LATIN_FONTS),
    "es-ES": LanguageConfig("es-ES", "Spanish", "ErXwobaYiN019PkySvjV", LATIN_FONTS),
    "fr-FR": LanguageConfig("fr-FR", "French", "TxGEqnHWrfWFTfGW9XjX", EUROPEAN_FONTS),
    "de-DE": LanguageConfig("de-DE", "German", "VR6AewLTigWG4xSOukaG", EUROPEAN_FONTS),
    "it-IT": LanguageConfig("it-IT", "Italian", "yoZ06aMxZJJ28mfd3POQ", EUROPEAN_FONTS),
    "pt-BR": LanguageConfig("pt-BR", "Portuguese (Brazil)", "TX3LPaxmHKxFdv7VOQHJ", EUROPEAN_FONTS),
    "ja-JP": LanguageConfig(
        "ja-JP", "Japanese", "AZnzlk1XvdvUeBnXmlld",
        ["Noto Sans JP", "Meiryo", "MS Gothic", "Arial Unicode MS"], caption_y=0.35,
    ),
    "cmn-CN": LanguageConfig(
        "cmn-CN", "Chinese (Mandarin)", "EXAVITQu4vr4xnSDxMaL",
        ["Noto Sans SC", "SimHei", "Microsoft YaHei", "Arial Unicode MS"], caption_y=0.35,
    ),
    "hi-IN": LanguageConfig(
        "hi-IN", "Hindi", "MF3mGyEYCl7XYWbV9V6O",
        ["Lohit-Devanagari", "Mangal", "Arial Unicode MS"],
    ),
}

DEFAULT_LANGUAGE = "en-US"


def get_language(code: Optional[str]) -> LanguageConfig:
    """Exact locale, then same language prefix, then English"""
    if code and code in LANGUAGES:
        return LANGUAGES[code]
    if code:
        prefix = code.split("-")[0].lower()
        for config in LANGUAGES.values():
            if config.short_code == prefix:
                return config
    return LANGUAGES[DEFAULT_LANGUAGE]


def supported_languages() -> Dict[str, str]:
    return {code: config.display_name for code, config in LANGUAGES.items()}
