"""校验器与分享链接改写、URL 探测测试。"""

from __future__ import annotations

import asyncio
import io

import httpx
import pytest
from PIL import Image

from media_ingest.core.config import ValidationPolicy
from media_ingest.core.exceptions import LoadError, ValidationError
from media_ingest.core.models import FileInput
from media_ingest.processing.validation import validate
from media_ingest.remote.url_normalizer import is_share_link, normalize, resolve


def _png_bytes(size: tuple[int, int] = (32, 24)) -> bytes:
    output = io.BytesIO()
    Image.new("RGB", size, "teal").save(output, format="PNG")
    return output.getvalue()


def test_validate_accepts_allowed_type_within_limit() -> None:
    raw = FileInput(data=b"x" * 100, mime_type="image/png", filename="a.png")

    validate(raw, ValidationPolicy(max_bytes=100))


def test_validate_rejects_unsupported_format() -> None:
    raw = FileInput(data=b"x", mime_type="image/bmp", filename="a.bmp")

    with pytest.raises(ValidationError) as excinfo:
        validate(raw, ValidationPolicy())

    assert excinfo.value.kind == "unsupported-format"


def test_validate_rejects_too_large() -> None:
    raw = FileInput(data=b"x" * 101, mime_type="image/jpeg", filename="a.jpg")

    with pytest.raises(ValidationError) as excinfo:
        validate(raw, ValidationPolicy(max_bytes=100))

    assert excinfo.value.kind == "too-large"


def test_format_is_checked_before_size() -> None:
    raw = FileInput(data=b"x" * 500, mime_type="text/plain", filename="notes.txt")

    with pytest.raises(ValidationError) as excinfo:
        validate(raw, ValidationPolicy(max_bytes=10))

    assert excinfo.value.kind == "unsupported-format"


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        (
            "https://drive.google.com/file/d/1AbC_xyz/view?usp=sharing",
            "https://drive.google.com/uc?export=view&id=1AbC_xyz",
        ),
        (
            "https://drive.google.com/open?id=1AbC_xyz",
            "https://drive.google.com/uc?export=view&id=1AbC_xyz",
        ),
        (
            "https://www.dropbox.com/s/abc123/photo.jpg?dl=0",
            "https://www.dropbox.com/s/abc123/photo.jpg?raw=1",
        ),
        (
            "https://github.com/octo/site/blob/main/images/logo.png",
            "https://raw.githubusercontent.com/octo/site/main/images/logo.png",
        ),
        ("https://example.com/images/cat.jpg", "https://example.com/images/cat.jpg"),
    ],
)
def test_normalize_rewrites_share_links(url: str, expected: str) -> None:
    assert normalize(url) == expected


@pytest.mark.parametrize(
    "url",
    [
        "https://drive.google.com/file/d/1AbC_xyz/view?usp=sharing",
        "https://drive.google.com/uc?export=view&id=1AbC_xyz",
        "https://www.dropbox.com/scl/fi/k2/photo.png?rlkey=abc&dl=0",
        "https://github.com/octo/site/blob/main/a.png",
        "  https://example.com/x.webp  ",
        "",
    ],
)
def test_normalize_is_idempotent(url: str) -> None:
    once = normalize(url)

    assert normalize(once) == once


def test_is_share_link() -> None:
    assert is_share_link("https://drive.google.com/file/d/abc/view")
    assert not is_share_link("https://drive.google.com/uc?export=view&id=abc")
    assert not is_share_link("https://example.com/a.png")


def test_resolve_returns_natural_dimensions() -> None:
    payload = _png_bytes((40, 30))

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=payload, headers={"content-type": "image/png"})

    async def run() -> tuple[int, int]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await resolve("https://drive.google.com/uc?export=view&id=abc", client=client)

    assert asyncio.run(run()) == (40, 30)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(404, text="missing"),
        httpx.Response(200, text="<html>login</html>", headers={"content-type": "text/html"}),
    ],
)
def test_resolve_fails_for_missing_or_non_image(response: httpx.Response) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return response

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await resolve("https://example.com/a.png", client=client)

    with pytest.raises(LoadError) as excinfo:
        asyncio.run(run())

    assert excinfo.value.kind == "unreachable-or-not-an-image"


def test_resolve_timeout_is_load_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await resolve("https://example.com/a.png", client=client, timeout=0.1)

    with pytest.raises(LoadError):
        asyncio.run(run())


def test_resolve_rejects_malformed_url_without_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await resolve("not a url", client=client)

    with pytest.raises(LoadError):
        asyncio.run(run())
    assert calls == []


def test_resolve_oversized_image_is_load_error() -> None:
    output = io.BytesIO()
    Image.new("1", (15000, 12000)).save(output, format="PNG")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=output.getvalue())

    async def run() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await resolve("https://example.com/poster.png", client=client)

    with pytest.raises(LoadError):
        asyncio.run(run())
