"""
Media Downloads
Streaming HTTP downloads with content checks
"""

from pathlib import Path
from typing import Optional

import httpx

from ..utils.exceptions import ProviderError, ValidationError
from ..utils.logger import get_logger

logger = get_logger()

CHUNK_SIZE = 64 * 1024
USER_AGENT = "PromptReel/0.4"


async def download_to_file(
    url: str,
    target: Path,
    timeout: float,
    service: str = "download",
    expected_prefix: Optional[str] = None,
    min_bytes: int = 1,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> Path:
    """
    Stream a URL to disk.

    Raises ProviderError for network/HTTP failures and ValidationError when
    the content type or size is wrong. A partial file is removed on failure.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    try:
        async with httpx.AsyncClient(
            timeout=timeout, transport=transport, follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                content_type = response.headers.get("content-type", "").lower()
                if expected_prefix and not content_type.startswith(expected_prefix):
                    raise ValidationError(
                        f"Unexpected content type '{content_type or 'none'}'",
                        path=str(target), url=url,
                    )
                with open(target, "wb") as output:
                    async for chunk in response.aiter_bytes(CHUNK_SIZE):
                        output.write(chunk)
                        written += len(chunk)
    except httpx.TimeoutException as exc:
        target.unlink(missing_ok=True)
        raise ProviderError(service, f"download timed out: {url}") from exc
    except httpx.HTTPStatusError as exc:
        target.unlink(missing_ok=True)
        raise ProviderError(
            service, f"download failed with HTTP {exc.response.status_code}",
            retryable=exc.response.status_code >= 500, url=url,
        ) from exc
    except httpx.HTTPError as exc:
        target.unlink(missing_ok=True)
        raise ProviderError(service, f"download failed: {exc}", url=url) from exc
    except ValidationError:
        target.unlink(missing_ok=True)
        raise

    if written < min_bytes:
        target.unlink(missing_ok=True)
        raise ValidationError(
            f"Downloaded file too small ({written} bytes)", path=str(target), url=url
        )

    logger.debug(f"Downloaded {written / 1024:.0f} KB from {url}")
    return target
