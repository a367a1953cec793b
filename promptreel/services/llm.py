"""
Gemini Client
Shared text-generation wrapper used by the script, labeling and ranking services
"""

import asyncio
import json
import re
from typing import Any, Dict, Optional

from ..config import Settings, get_settings
from ..utils.exceptions import APIKeyError, ProviderError, RateLimitError
from ..utils.logger import get_logger
from ..utils.retry import retry_async

logger = get_logger()

SERVICE = "Gemini"


class GeminiClient:
    """Thin async facade over google-genai generate_content"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._client = None

    def _ensure_client(self):
        """Lazy load the Gemini client"""
        if self._client is not None:
            return

        if not self.settings.gemini_api_key:
            raise APIKeyError(SERVICE)

        from google import genai
        self._client = genai.Client(api_key=self.settings.gemini_api_key)
        logger.info("Gemini client initialized")

    @retry_async(max_retries=2)
    async def generate(
        self,
        prompt: str,
        json_output: bool = False,
        temperature: Optional[float] = None,
        grounded: bool = False
    ) -> str:
        """Return the response text; raises ProviderError on failure or empty output"""
        self._ensure_client()

        config: Dict[str, Any] = {}
        if json_output:
            config['response_mime_type'] = 'application/json'
        if temperature is not None:
            config['temperature'] = temperature
        if grounded:
            config['tools'] = [{'google_search': {}}]

        loop = asyncio.get_running_loop()
        try:
            response = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: self._client.models.generate_content(
                        model=self.settings.gemini_model,
                        contents=prompt,
                        config=config or None
                    )
                ),
                timeout=self.settings.llm_timeout
            )
        except asyncio.TimeoutError as exc:
            raise ProviderError(SERVICE, f"timed out after {self.settings.llm_timeout:.0f}s") from exc
        except Exception as exc:
            message = str(exc)
            if "429" in message or "RESOURCE_EXHAUSTED" in message:
                raise RateLimitError(SERVICE) from exc
            if "API key" in message or "PERMISSION_DENIED" in message:
                raise APIKeyError(SERVICE) from exc
            raise ProviderError(SERVICE, message[:200]) from exc

        text = getattr(response, 'text', None) if response else None
        if not text or not text.strip():
            raise ProviderError(SERVICE, "empty response (possibly blocked)", retryable=False)
        return text.strip()

    async def generate_json(self, prompt: str, temperature: Optional[float] = None) -> Dict[str, Any]:
        text = await self.generate(prompt, json_output=True, temperature=temperature)
        return parse_json_object(text)


def parse_json_object(text: str) -> Dict[str, Any]:
    """Extract the first JSON object from a model reply"""
    json_match = re.search(r'\{[\s\S]*\}', text)
    if not json_match:
        raise ProviderError(SERVICE, "no JSON object in response", retryable=False)
    try:
        data = json.loads(json_match.group())
    except json.JSONDecodeError as exc:
        raise ProviderError(SERVICE, f"invalid JSON: {exc}", retryable=False) from exc
    if not isinstance(data, dict):
        raise ProviderError(SERVICE, "JSON response is not an object", retryable=False)
    return data


_gemini: Optional[GeminiClient] = None


def get_gemini_client() -> GeminiClient:
    global _gemini
    if _gemini is None:
        _gemini = GeminiClient()
    return _gemini
