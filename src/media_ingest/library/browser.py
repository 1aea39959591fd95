"""通过 Admin API 浏览与删除媒体库资源。"""

from __future__ import annotations

import logging
from typing import AsyncIterator, Optional, Tuple

import httpx

from media_ingest.core.config import LibraryConfig
from media_ingest.core.exceptions import LibraryError, UploadError
from media_ingest.core.models import Asset
from media_ingest.remote.uploader import asset_from_payload, error_message_from_response

LOGGER = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 30


class LibraryBrowser:
    """分页列出 prefix 下的已上传资源，供检索与清理使用。"""

    def __init__(self, config: LibraryConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "LibraryBrowser":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def _auth(self) -> Tuple[str, str]:
        return self.config.api_key, self.config.api_secret

    async def list_assets(
        self,
        *,
        prefix: Optional[str] = None,
        max_results: int = DEFAULT_PAGE_SIZE,
        next_cursor: Optional[str] = None,
    ) -> Tuple[list[Asset], Optional[str]]:
        """返回一页资源与下一页游标。"""

        params = {
            "type": "upload",
            "prefix": prefix if prefix is not None else self.config.prefix,
            "max_results": str(max_results),
            "tags": "true",
            "context": "true",
        }
        if next_cursor:
            params["next_cursor"] = next_cursor

        response = await self._request("GET", self.config.resources_url, params=params)
        body = response.json()
        assets: list[Asset] = []
        for item in body.get("resources", []):
            try:
                assets.append(asset_from_payload(item))
            except UploadError as exc:
                LOGGER.warning("忽略无法解析的资源 %s: %s", item.get("public_id"), exc)
        return assets, body.get("next_cursor")

    async def iter_all(self, *, prefix: Optional[str] = None, page_size: int = DEFAULT_PAGE_SIZE) -> AsyncIterator[Asset]:
        cursor: Optional[str] = None
        while True:
            assets, cursor = await self.list_assets(prefix=prefix, max_results=page_size, next_cursor=cursor)
            for asset in assets:
                yield asset
            if not cursor:
                return

    async def delete_asset(self, public_id: str) -> None:
        """删除单个资源；重新导入后遗留的旧资源由调用方负责清理。"""

        if not public_id:
            raise LibraryError("public_id 不能为空")
        url = f"{self.config.resources_url}/upload"
        await self._request("DELETE", url, json={"public_ids": [public_id]})
        LOGGER.info("已删除资源 %s", public_id)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(
                method, url, auth=self._auth, timeout=self.config.timeout_seconds, **kwargs
            )
        except httpx.HTTPError as exc:
            raise LibraryError(f"媒体库请求失败: {exc}") from exc
        if response.is_error:
            message = error_message_from_response(response, f"媒体库请求失败 (HTTP {response.status_code})")
            raise LibraryError(message, status_code=response.status_code)
        return response
