"""
Clip Ranker Service
Picks the stock candidate that best fits a narration line
"""

import re
from typing import Collection, List, Optional

from ..utils.exceptions import ProviderError
from ..utils.logger import get_logger
from .llm import GeminiClient, get_gemini_client
from .media_search import MediaCandidate

logger = get_logger()


class ClipRanker:
    """Best-candidate selection via Gemini with a first-candidate fallback"""

    def __init__(self, llm: Optional[GeminiClient] = None):
        self.llm = llm or get_gemini_client()

    async def select(
        self,
        segment_text: str,
        candidates: List[MediaCandidate],
        script: str,
        excluded: Collection[str] = ()
    ) -> Optional[MediaCandidate]:
        """
        Choose one candidate for the segment.

        Candidates whose identity or title is in `excluded` are never chosen.
        Returns None only when nothing is left after exclusion.
        """
        available = [
            c for c in candidates
            if c.identity not in excluded and c.title.lower() not in excluded
        ]
        if not available:
            return None
        if len(available) == 1:
            return available[0]

        try:
            reply = await self.llm.generate(
                self._build_prompt(segment_text, available, script), temperature=0.2
            )
        except ProviderError as exc:
            logger.warning(f"Ranking failed, using first candidate: {exc}")
            return available[0]

        index = parse_choice(reply, len(available))
        if index is None:
            logger.warning(f"Unparseable ranking reply '{reply[:50]}', using first candidate")
            return available[0]
        return available[index]

    @staticmethod
    def _build_prompt(segment_text: str, candidates: List[MediaCandidate], script: str) -> str:
        lines = []
        for number, candidate in enumerate(candidates, start=1):
            details = [candidate.title or "untitled"]
            if candidate.description:
                details.append(candidate.description)
            if candidate.tags:
                details.append("tags: " + ", ".join(candidate.tags[:8]))
            if candidate.duration:
                details.append(f"{candidate.duration:.0f}s")
            details.append(f"{candidate.width}x{candidate.height} ({candidate.aspect_ratio:.2f})")
            if candidate.quality:
                details.append(f"quality {candidate.quality}")
            lines.append(f"Video {number}: " + ". ".join(details))

        return (
            "Pick the stock video that best illustrates the current line of this narration.\n\n"
            f"Full narration: {script}\n"
            f"Current line: {segment_text}\n\n"
            + "\n".join(lines)
            + "\n\nAnswer with the video number only."
        )


def parse_choice(reply: str, count: int) -> Optional[int]:
    """1-based number in the reply -> 0-based index, None if absent or out of range"""
    match = re.search(r"\d+", reply or "")
    if not match:
        return None
    index = int(match.group()) - 1
    if 0 <= index < count:
        return index
    return None
