"""导入流水线：校验、裁剪、缩放、转换与上传的编排。"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Sequence, Union

import httpx

from media_ingest.core.config import Destination, PipelineConfig
from media_ingest.core.exceptions import (
    IngestionCancelled,
    MediaIngestError,
    ProcessingError,
    UploadError,
    ValidationError,
)
from media_ingest.core.models import (
    Asset,
    BatchResult,
    CropSpec,
    FileInput,
    IngestionOutcome,
    IngestionState,
    ProcessedBuffer,
    ResolvedUrl,
)
from media_ingest.core.progress import ProgressCallback, emit_progress
from media_ingest.processing.converter import compute_compression_stats, convert_stage
from media_ingest.processing.cropper import crop_stage
from media_ingest.processing.image_loader import decode_buffer, undecoded_buffer
from media_ingest.processing.optimizer import optimize_stage
from media_ingest.processing.stages import StageResult, degrade
from media_ingest.processing.validation import validate
from media_ingest.remote.uploader import RemoteUploader
from media_ingest.remote.url_normalizer import normalize, resolve

LOGGER = logging.getLogger(__name__)

CropPrompt = Callable[[ProcessedBuffer], Union[Optional[CropSpec], Awaitable[Optional[CropSpec]]]]
CropInput = Union[CropSpec, CropPrompt, None]

STATE_ORDER = (
    IngestionState.VALIDATING,
    IngestionState.CROPPING,
    IngestionState.OPTIMIZING,
    IngestionState.CONVERTING,
    IngestionState.UPLOADING,
    IngestionState.DONE,
)


class IngestionPipeline:
    """按固定顺序执行单个文件的导入，并协调批量导入。"""

    def __init__(
        self,
        config: PipelineConfig,
        uploader: Optional[RemoteUploader] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.uploader = uploader or RemoteUploader(config.uploader, client)
        self._probe_client = client

    async def __aenter__(self) -> "IngestionPipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.uploader.aclose()

    async def ingest_file(
        self,
        raw: FileInput,
        destination: Destination,
        *,
        crop: CropInput = None,
        cancel_event: Optional[asyncio.Event] = None,
        progress_callback: ProgressCallback = None,
    ) -> Asset:
        """导入单个文件，成功时返回 Asset，致命错误以异常形式抛出。"""

        outcome = await self.run_file(
            raw,
            destination,
            crop=crop,
            cancel_event=cancel_event,
            progress_callback=progress_callback,
        )
        return outcome.asset

    async def run_file(
        self,
        raw: FileInput,
        destination: Destination,
        *,
        crop: CropInput = None,
        cancel_event: Optional[asyncio.Event] = None,
        progress_callback: ProgressCallback = None,
    ) -> IngestionOutcome:
        """与 ingest_file 相同，但额外返回警告、压缩统计与状态轨迹。"""

        states: list[IngestionState] = []
        warnings: list[str] = []

        def transition(state: IngestionState) -> None:
            states.append(state)
            LOGGER.debug("%s -> %s", raw.filename, state.value)
            status = "failed" if state is IngestionState.FAILED else "running"
            if state is IngestionState.DONE:
                status = "done"
            completed = STATE_ORDER.index(state) if state in STATE_ORDER else len(STATE_ORDER) - 1
            emit_progress(progress_callback, completed, len(STATE_ORDER) - 1, f"{raw.filename}: {state.value}", status)

        def record(result: StageResult) -> ProcessedBuffer:
            if result.error is not None:
                warnings.append(str(result.error))
            return degrade(result)

        def check_cancelled() -> None:
            if cancel_event is not None and cancel_event.is_set():
                LOGGER.info("导入已取消: %s", raw.filename)
                raise IngestionCancelled(f"导入已取消: {raw.filename}")

        try:
            transition(IngestionState.VALIDATING)
            validate(raw, self.config.policy)

            original = await self._decode(raw, warnings)
            buffer = original
            check_cancelled()

            # 未能解码时尺寸为 0，后续阶段无法处理，直接上传原文件
            decoded = buffer.width > 0 and buffer.height > 0
            spec = await self._confirm_crop(crop, buffer) if decoded else None
            if spec is not None:
                transition(IngestionState.CROPPING)
                buffer = record(await asyncio.to_thread(crop_stage, buffer, spec))
                check_cancelled()

            optimization = self.config.optimization
            transition(IngestionState.OPTIMIZING)
            if optimization.enabled and decoded:
                buffer = record(
                    await asyncio.to_thread(optimize_stage, buffer, optimization.max_width, optimization.max_height)
                )
            check_cancelled()

            stats = None
            transition(IngestionState.CONVERTING)
            if self.config.conversion.enabled and decoded:
                result, stats = await asyncio.to_thread(convert_stage, buffer, self.config.conversion.quality)
                buffer = record(result)
            check_cancelled()

            transition(IngestionState.UPLOADING)
            asset, used_fallback = await self._upload_with_fallback(buffer, original, destination, warnings)
        except (MediaIngestError, asyncio.CancelledError) as exc:
            transition(IngestionState.FAILED)
            if isinstance(exc, ValidationError):
                LOGGER.info("校验未通过 %s: %s", raw.filename, exc)
            elif isinstance(exc, MediaIngestError):
                LOGGER.error("导入失败 %s: %s", raw.filename, exc)
            raise

        transition(IngestionState.DONE)
        end_to_end = compute_compression_stats(raw.byte_length, buffer.byte_length) if stats else None
        return IngestionOutcome(
            asset=asset,
            warnings=warnings,
            stats=stats,
            end_to_end_stats=end_to_end,
            used_fallback=used_fallback,
            states=states,
        )

    async def ingest_url(self, url: str) -> ResolvedUrl:
        """改写分享链接并探测是否为可加载的图片，不上传任何数据。"""

        normalized = normalize(url)
        if normalized != (url or "").strip():
            LOGGER.info("检测到分享链接，已改写为直链: %s", normalized)
        width, height = await resolve(
            normalized,
            client=self._probe_client,
            timeout=self.config.resolve_timeout_seconds,
        )
        return ResolvedUrl(secure_url=normalized, width=width, height=height)

    async def ingest_batch(
        self,
        files: Sequence[FileInput],
        destination: Destination,
        *,
        progress_callback: ProgressCallback = None,
    ) -> list[BatchResult]:
        """并发导入多个文件，结果顺序与输入顺序一致，单个失败不影响其他文件。"""

        total = len(files)
        if total == 0:
            emit_progress(progress_callback, 0, 0, "没有需要上传的图片", "done")
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        completed = 0

        async def run_one(raw: FileInput) -> BatchResult:
            nonlocal completed
            async with semaphore:
                try:
                    asset = await self.ingest_file(raw, destination)
                    entry = BatchResult(file_name=raw.filename, status="success", asset=asset)
                except MediaIngestError as exc:
                    entry = BatchResult(
                        file_name=raw.filename,
                        status="error",
                        error_message=exc.message,
                        error_kind=exc.kind,
                    )
                except Exception as exc:  # noqa: BLE001
                    LOGGER.exception("导入任务异常：%s", exc)
                    entry = BatchResult(
                        file_name=raw.filename,
                        status="error",
                        error_message=str(exc),
                        error_kind="unexpected-error",
                    )
            completed += 1
            emit_progress(progress_callback, completed, total, f"完成 {raw.filename}")
            return entry

        LOGGER.info("开始批量导入 %d 个文件（并发上限 %d）", total, self.config.max_concurrency)
        results = list(await asyncio.gather(*(run_one(raw) for raw in files)))
        failed = sum(1 for entry in results if not entry.succeeded)
        LOGGER.info("批量导入完成：成功 %d，失败 %d", total - failed, failed)
        emit_progress(progress_callback, total, total, "批量导入完成", "done")
        return results

    async def _decode(self, raw: FileInput, warnings: list[str]) -> ProcessedBuffer:
        try:
            return await asyncio.to_thread(decode_buffer, raw)
        except ProcessingError as exc:
            LOGGER.warning("无法解码 %s，将直接上传原文件：%s", raw.filename, exc)
            warnings.append(str(exc))
            return undecoded_buffer(raw)

    async def _confirm_crop(self, crop: CropInput, buffer: ProcessedBuffer) -> Optional[CropSpec]:
        """CropSpec 直接使用；回调返回 None 表示用户取消裁剪，按原图继续。"""

        if crop is None or isinstance(crop, CropSpec):
            return crop
        spec = crop(buffer)
        if inspect.isawaitable(spec):
            spec = await spec
        if spec is None:
            LOGGER.debug("裁剪已取消，使用原图: %s", buffer.filename)
        return spec

    async def _upload_with_fallback(
        self,
        buffer: ProcessedBuffer,
        original: ProcessedBuffer,
        destination: Destination,
        warnings: list[str],
    ) -> tuple[Asset, bool]:
        try:
            return await self.uploader.upload(buffer, destination), False
        except UploadError as exc:
            if not self.config.fallback_to_original or buffer is original:
                raise
            LOGGER.warning("处理后的文件上传失败，改为上传原文件 %s：%s", original.filename, exc)
            warnings.append(f"upload: {exc.message}")
            first_error = exc

        try:
            return await self.uploader.upload(original, destination), True
        except UploadError as exc:
            raise exc from first_error
