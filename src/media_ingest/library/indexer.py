"""媒体库本地检索。"""

from __future__ import annotations

from typing import Iterable, Sequence

from media_ingest.core.models import Asset


def matches(asset: Asset, query: str) -> bool:
    needle = query.lower()
    if needle in asset.public_id.lower() or needle in asset.original_filename.lower():
        return True
    return any(needle in tag.lower() for tag in asset.tags)


def search(assets: Iterable[Asset], query: str) -> list[Asset]:
    """按 public_id、原始文件名与标签做不区分大小写的子串过滤，保持输入顺序。"""

    items: Sequence[Asset] = list(assets)
    if not query or not query.strip():
        return list(items)
    needle = query.strip()
    return [asset for asset in items if matches(asset, needle)]
