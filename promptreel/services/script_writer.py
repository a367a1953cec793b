"""
Script Writer Service
Narration script and mood generation using Gemini
"""

import re
from typing import List, Optional

from ..languages import get_language
from ..utils.exceptions import ProviderError
from ..utils.logger import get_logger
from .llm import GeminiClient, get_gemini_client

logger = get_logger()

MOODS = [
    "happy", "sad", "exciting", "calm", "mysterious", "inspirational",
    "funny", "scary", "romantic", "dramatic", "thrilling", "powerful", "neutral",
]
DEFAULT_MOOD = "neutral"
MAX_SCRIPT_WORDS = 50


class ScriptWriter:
    """Writes short narration scripts and classifies their mood"""

    def __init__(self, llm: Optional[GeminiClient] = None):
        self.llm = llm or get_gemini_client()

    async def write_script(
        self,
        prompt: str,
        language: str,
        two_phase: bool = False,
        memories: Optional[List[str]] = None
    ) -> str:
        """
        Generate a narration script for a prompt

        Args:
            prompt: What the video is about
            language: Narration locale (e.g. en-US)
            two_phase: Run a grounded research call first and feed its facts in
            memories: Extra user context lines (tone, audience, facts to keep)

        Returns:
            Plain narration text
        """
        language_name = get_language(language).display_name
        research = None

        if two_phase:
            logger.info("Researching topic before writing script...")
            try:
                research = await self.llm.generate(
                    self._build_research_prompt(prompt), grounded=True, temperature=0.3
                )
            except ProviderError as exc:
                logger.warning(f"Research phase failed, writing from prompt only: {exc}")

        text = await self.llm.generate(
            self._build_script_prompt(prompt, language_name, research, memories),
            temperature=0.8,
        )
        script = clean_script(text)
        if not script:
            raise ProviderError("Gemini", "script generation returned no usable text", retryable=False)

        logger.info(f"Script generated ({len(script.split())} words)")
        return script

    async def classify_mood(self, script: str) -> str:
        """Pick one mood from the closed vocabulary; neutral when unsure"""
        prompt = (
            "Classify the overall mood of this short video narration. "
            f"Answer with exactly one word from this list: {', '.join(MOODS)}.\n\n"
            f"Narration:\n{script}"
        )
        try:
            reply = await self.llm.generate(prompt, temperature=0.0)
        except ProviderError as exc:
            logger.warning(f"Mood classification failed, using {DEFAULT_MOOD}: {exc}")
            return DEFAULT_MOOD
        return normalize_mood(reply)

    @staticmethod
    def _build_research_prompt(prompt: str) -> str:
        return (
            "Find the most surprising, accurate and current facts about the topic below. "
            "Return 3 to 5 short bullet points, no introduction.\n\n"
            f"Topic: {prompt}"
        )

    @staticmethod
    def _build_script_prompt(
        prompt: str,
        language_name: str,
        research: Optional[str],
        memories: Optional[List[str]]
    ) -> str:
        sections = [
            f"Write the voice-over for a short social video in {language_name}.",
            f"Topic: {prompt}",
        ]
        if research:
            sections.append(f"Facts you can use:\n{research}")
        if memories:
            sections.append("Keep in mind:\n" + "\n".join(f"- {m}" for m in memories if m.strip()))
        sections.append(
            "Rules:\n"
            f"- At most {MAX_SCRIPT_WORDS} words, about 20 seconds when spoken\n"
            "- Open with a hook in the first sentence\n"
            "- End by asking viewers to comment, like and subscribe\n"
            "- Plain spoken text only: no title, headings, emojis, hashtags or stage directions"
        )
        return "\n\n".join(sections)


def clean_script(text: str) -> str:
    """Strip markdown, labels and quotes a model sometimes wraps around the script"""
    text = re.sub(r"[*_#`]+", "", text)
    text = re.sub(r"^\s*(script|narration|voice-?over)\s*:\s*", "", text, flags=re.IGNORECASE)
    text = re.sub(r"\[[^\]]*\]|\([^)]*\)", "", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text.strip('"“” ')


def normalize_mood(reply: str) -> str:
    words = re.findall(r"[a-z]+", reply.lower())
    for word in words:
        if word in MOODS:
            return word
    return DEFAULT_MOOD
