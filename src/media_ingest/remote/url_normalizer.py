"""分享链接改写与 URL 图片探测。"""

from __future__ import annotations

import io
import logging
import re
from typing import Callable, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import httpx
from PIL import Image, UnidentifiedImageError

from media_ingest.core.exceptions import LoadError

LOGGER = logging.getLogger(__name__)

DEFAULT_RESOLVE_TIMEOUT = 5.0

GOOGLE_DRIVE_FILE_RE = re.compile(r"/file/d/([^/?#]+)")
GOOGLE_DRIVE_ID_RE = re.compile(r"[?&]id=([^&#]+)")
GITHUB_BLOB_RE = re.compile(r"^/([^/]+)/([^/]+)/blob/(.+)$")


def _rewrite_google_drive(url: str) -> Optional[str]:
    """drive.google.com/file/d/ID/view 或 open?id=ID -> uc?export=view&id=ID。"""

    if "drive.google.com" not in urlparse(url).netloc.lower():
        return None

    file_id = None
    match = GOOGLE_DRIVE_FILE_RE.search(url)
    if match:
        file_id = match.group(1)
    match = GOOGLE_DRIVE_ID_RE.search(url)
    if match:
        file_id = match.group(1)

    if not file_id:
        return None
    return f"https://drive.google.com/uc?export=view&id={file_id}"


def _rewrite_dropbox(url: str) -> Optional[str]:
    """www.dropbox.com 分享链接：去掉 dl 参数并追加 raw=1。"""

    parsed = urlparse(url)
    if parsed.netloc.lower() not in {"dropbox.com", "www.dropbox.com"}:
        return None

    query = [(key, value) for key, value in parse_qsl(parsed.query, keep_blank_values=True) if key not in {"dl", "raw"}]
    query.append(("raw", "1"))
    return urlunparse(parsed._replace(scheme="https", netloc="www.dropbox.com", query=urlencode(query)))


def _rewrite_github(url: str) -> Optional[str]:
    """github.com/owner/repo/blob/ref/path -> raw.githubusercontent.com/owner/repo/ref/path。"""

    parsed = urlparse(url)
    if parsed.netloc.lower() not in {"github.com", "www.github.com"}:
        return None

    match = GITHUB_BLOB_RE.match(parsed.path)
    if not match:
        return None
    owner, repo, rest = match.groups()
    return f"https://raw.githubusercontent.com/{owner}/{repo}/{rest}"


SHARE_LINK_REWRITERS: Tuple[Callable[[str], Optional[str]], ...] = (
    _rewrite_google_drive,
    _rewrite_dropbox,
    _rewrite_github,
)


def normalize(url: str) -> str:
    """把已知的分享链接改写为可直接获取的地址，对已改写的地址幂等。"""

    if not url:
        return url
    candidate = url.strip()
    for rewrite in SHARE_LINK_REWRITERS:
        rewritten = rewrite(candidate)
        if rewritten is not None:
            return rewritten
    return candidate


def is_share_link(url: str) -> bool:
    return bool(url) and normalize(url) != url.strip()


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


async def resolve(
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_RESOLVE_TIMEOUT,
) -> Tuple[int, int]:
    """以只读方式加载 URL 并解码为图片，返回 (width, height)。"""

    if not is_valid_url(url):
        raise LoadError(f"无效的 URL: {url}")

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(follow_redirects=True)

    try:
        response = await client.get(url, timeout=timeout, follow_redirects=True)
        response.raise_for_status()
        content = response.content
    except httpx.TimeoutException as exc:
        LOGGER.info("探测 URL 超时: %s", url)
        raise LoadError(f"加载超时: {url}") from exc
    except httpx.HTTPError as exc:
        LOGGER.info("探测 URL 失败: %s -> %s", url, exc)
        raise LoadError() from exc
    finally:
        if owns_client:
            await client.aclose()

    try:
        with Image.open(io.BytesIO(content)) as img:
            width, height = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        raise LoadError() from exc

    if width <= 0 or height <= 0:
        raise LoadError()
    return width, height
