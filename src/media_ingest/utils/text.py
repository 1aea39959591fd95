"""根据文件名或 URL 生成替代文本。"""

from __future__ import annotations

import re
from urllib.parse import urlparse

SEPARATORS_RE = re.compile(r"[-_]+")


def alt_text_from_filename(filename: str, default: str = "") -> str:
    """去掉扩展名并把 - / _ 替换为空格。"""

    stem = filename.rsplit("/", 1)[-1].split(".", 1)[0]
    text = SEPARATORS_RE.sub(" ", stem).strip()
    return text or default


def alt_text_from_url(url: str, default: str = "Featured image") -> str:
    """取 URL 路径最后一段作为替代文本。"""

    path = urlparse(url).path
    return alt_text_from_filename(path.rsplit("/", 1)[-1], default=default)
