import httpx
import pytest

from promptreel.services.downloads import download_to_file
from promptreel.utils.exceptions import ProviderError, ValidationError


def _transport(seen, status=200, content_type="video/mp4", body=b"\0" * 2048):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, content=body, headers={"content-type": content_type})
    return httpx.MockTransport(handler)


async def test_download_identifies_with_a_plain_product_token(tmp_path) -> None:
    seen = []
    target = tmp_path / "clip.mp4"

    await download_to_file("https://videos.example/1.mp4", target, 5.0, transport=_transport(seen))

    assert target.stat().st_size == 2048
    agent = seen[0].headers["user-agent"]
    assert agent.startswith("PromptReel/")
    assert "http" not in agent and "Mozilla" not in agent


async def test_wrong_content_type_leaves_no_partial_file(tmp_path) -> None:
    target = tmp_path / "photo.jpg"

    with pytest.raises(ValidationError):
        await download_to_file(
            "https://images.example/1.jpg", target, 5.0,
            expected_prefix="image/", transport=_transport([], content_type="text/html"),
        )

    assert not target.exists()


async def test_server_errors_are_retryable_provider_errors(tmp_path) -> None:
    with pytest.raises(ProviderError) as excinfo:
        await download_to_file(
            "https://videos.example/1.mp4", tmp_path / "clip.mp4", 5.0,
            service="Pexels", transport=_transport([], status=503),
        )

    assert excinfo.value.retryable
