"""
Keyword Labeler Service
Visual search labels for narration segments using Gemini
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..models.job import KeywordType
from ..utils.exceptions import ProviderError
from ..utils.logger import get_logger
from .llm import GeminiClient, get_gemini_client

logger = get_logger()

STOP_WORDS = {
    "the", "and", "is", "in", "to", "a", "of", "that", "with", "as", "for", "on",
    "by", "it", "at", "from", "this", "was", "be", "have", "has", "had", "are",
    "an", "but", "or", "so", "what", "when", "where", "which", "who", "how",
    "they", "them", "their", "there", "here", "you", "your", "we", "our", "us",
}
MAX_LABELS = 3


@dataclass
class SegmentLabel:
    """Ordered label alternatives for one segment"""
    keywords: List[str]
    keyword_type: KeywordType

    @property
    def joined(self) -> str:
        return ",".join(self.keywords)


class KeywordLabeler:
    """Asks Gemini what a segment should show and whether it needs an exact image"""

    def __init__(self, llm: Optional[GeminiClient] = None):
        self.llm = llm or get_gemini_client()

    async def label(self, text: str, context: str, used_labels: Sequence[str]) -> SegmentLabel:
        """Label a segment; raises ProviderError if the model reply is unusable"""
        data = await self.llm.generate_json(self._build_prompt(text, context, used_labels), temperature=0.4)

        keywords = data.get("keywords")
        if isinstance(keywords, str):
            keywords = [keywords]
        if not isinstance(keywords, list):
            raise ProviderError("Gemini", "label reply has no keyword list", retryable=False)

        cleaned = []
        for keyword in keywords:
            if not isinstance(keyword, str):
                continue
            keyword = re.sub(r"[,\n]+", " ", keyword).strip()
            if keyword and keyword.lower() not in (k.lower() for k in cleaned):
                cleaned.append(keyword)
        if not cleaned:
            raise ProviderError("Gemini", "label reply has no usable keywords", retryable=False)

        content_type = str(data.get("contentType", data.get("content_type", "stock"))).lower()
        keyword_type = KeywordType.SEARCH if content_type == "search" else KeywordType.STOCK
        return SegmentLabel(keywords=cleaned[:MAX_LABELS], keyword_type=keyword_type)

    @staticmethod
    def _build_prompt(text: str, context: str, used_labels: Sequence[str]) -> str:
        used = ", ".join(sorted(set(used_labels))) or "none"
        return (
            "You choose the footage for one line of a short narrated video.\n\n"
            f"Full narration: {context}\n"
            f"Current line: {text}\n"
            f"Labels already used (avoid repeating them): {used}\n\n"
            "Return JSON: {\"keywords\": [..], \"contentType\": \"search\" | \"stock\"}.\n"
            "- keywords: 1 to 3 short visual search phrases, best first\n"
            "- contentType \"search\" when the line names a specific person, place, product or event "
            "that needs a real photo of exactly that; \"stock\" when generic footage works"
        )


def fallback_label(text: str) -> SegmentLabel:
    """Deterministic local label from the segment's own words"""
    words = re.findall(r"\b(\w+)\b", text)
    meaningful = [w for w in words if len(w) > 4 and w.lower() not in STOP_WORDS]
    keywords = meaningful[:MAX_LABELS] or words[:2] or ["background"]
    return SegmentLabel(keywords=keywords, keyword_type=KeywordType.SEARCH)
