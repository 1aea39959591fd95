"""远程对象存储上传客户端。"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping, Optional

import httpx

from media_ingest.core.config import Destination, UploaderConfig
from media_ingest.core.exceptions import UploadError
from media_ingest.core.models import Asset, ProcessedBuffer

LOGGER = logging.getLogger(__name__)

REQUIRED_FIELDS = ("secure_url", "public_id", "width", "height", "bytes")


def parse_timestamp(value: Any) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_tags(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(tag.strip() for tag in value.split(",") if tag.strip())
    return tuple(str(tag) for tag in value)


def asset_from_payload(payload: Mapping[str, Any], fallback_filename: str = "") -> Asset:
    """把远端 JSON 响应转换为 Asset，尺寸与体积以远端为准。"""

    missing = [name for name in REQUIRED_FIELDS if name not in payload]
    if missing:
        raise UploadError(f"远端响应缺少字段: {', '.join(missing)}")

    public_id = str(payload["public_id"])
    original_filename = payload.get("original_filename") or fallback_filename or public_id.rsplit("/", 1)[-1]
    return Asset(
        public_id=public_id,
        secure_url=str(payload["secure_url"]),
        width=int(payload["width"]),
        height=int(payload["height"]),
        bytes=int(payload["bytes"]),
        original_filename=str(original_filename),
        tags=parse_tags(payload.get("tags")),
        created_at=parse_timestamp(payload.get("created_at")),
        format=payload.get("format"),
    )


def error_message_from_response(response: httpx.Response, default: str) -> str:
    """取出远端返回的 error.message 原文，取不到时使用默认文案。"""

    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return default


class RemoteUploader:
    """单次 multipart 上传，不做内部重试。"""

    def __init__(self, config: UploaderConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "RemoteUploader":
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

    def build_form(self, destination: Destination) -> dict[str, str]:
        form = {
            "upload_preset": destination.preset_name or self.config.upload_preset,
            "folder": destination.folder,
        }
        if destination.tags:
            form["tags"] = ",".join(destination.tags)
        return form

    async def upload(self, buffer: ProcessedBuffer, destination: Destination) -> Asset:
        """上传缓冲区并返回远端确认的 Asset。"""

        files = {"file": (buffer.filename, buffer.data, buffer.mime_type)}
        LOGGER.debug("上传 %s (%d 字节) 到 %s", buffer.filename, buffer.byte_length, destination.folder)
        try:
            response = await self.client.post(
                self.config.upload_url,
                data=self.build_form(destination),
                files=files,
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise UploadError(f"上传超时（{self.config.timeout_seconds:g} 秒）") from exc
        except httpx.HTTPError as exc:
            raise UploadError(f"无法连接远程存储: {exc}") from exc

        if response.is_error:
            message = error_message_from_response(response, f"Upload failed (HTTP {response.status_code})")
            LOGGER.error("上传被拒绝 %s: %s", buffer.filename, message)
            raise UploadError(message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UploadError("远端返回了无法解析的响应") from exc
        if not isinstance(payload, Mapping):
            raise UploadError("远端返回了无法解析的响应")

        return asset_from_payload(payload, fallback_filename=buffer.filename)
