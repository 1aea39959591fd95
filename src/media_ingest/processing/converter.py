"""WebP 格式转换与压缩统计。"""

from __future__ import annotations

import logging
from typing import Tuple

from media_ingest.core.exceptions import InvalidConfigurationError
from media_ingest.core.models import WEBP, CompressionStats, ProcessedBuffer
from media_ingest.processing.image_loader import encode_image, open_image, replace_extension
from media_ingest.processing.stages import StageResult, degrade, run_stage

LOGGER = logging.getLogger(__name__)


def compute_compression_stats(original_bytes: int, final_bytes: int) -> CompressionStats:
    """ratio = max(0, round((1 - final / original) * 100, 1))。"""

    if original_bytes <= 0:
        ratio = 0.0
    else:
        ratio = max(0.0, round((1 - final_bytes / original_bytes) * 100, 1))
    return CompressionStats(original_bytes=original_bytes, final_bytes=final_bytes, ratio_percent=ratio)


def convert_stage(buffer: ProcessedBuffer, quality: float) -> Tuple[StageResult, CompressionStats]:
    """转换为 WebP，统计相对本阶段输入（而非原始上传）的体积变化。"""

    if not 0 < quality <= 1:
        raise InvalidConfigurationError(f"quality 必须位于 (0, 1] 区间: {quality}")

    if buffer.mime_type.lower() == WEBP:
        result = StageResult(buffer=buffer)
    else:

        def encode(current: ProcessedBuffer) -> ProcessedBuffer:
            with open_image(current.data, current.filename) as img:
                data = encode_image(img, WEBP, quality)
                width, height = img.size
            return ProcessedBuffer(
                data=data,
                mime_type=WEBP,
                width=width,
                height=height,
                filename=replace_extension(current.filename, WEBP),
            )

        result = run_stage("convert", encode, buffer)

    stats = compute_compression_stats(buffer.byte_length, result.buffer.byte_length)
    if result.ok and result.buffer is not buffer:
        LOGGER.debug(
            "已转换为 WebP %s: %.2fKB -> %.2fKB (%.1f%%)",
            buffer.filename,
            buffer.byte_length / 1024,
            result.buffer.byte_length / 1024,
            stats.ratio_percent,
        )
    return result, stats


def convert(buffer: ProcessedBuffer, quality: float) -> ProcessedBuffer:
    """转换为 WebP；已是 WebP 或编码失败时返回原缓冲区。"""

    result, _ = convert_stage(buffer, quality)
    return degrade(result)

