"""尺寸优化：缩放到最大包围盒以内并保持宽高比。"""

from __future__ import annotations

import logging
from typing import Tuple

from media_ingest.core.exceptions import InvalidConfigurationError, ProcessingError
from media_ingest.core.models import ProcessedBuffer
from media_ingest.processing.image_loader import RESAMPLE, encode_image, open_image
from media_ingest.processing.stages import StageResult, degrade, run_stage

LOGGER = logging.getLogger(__name__)

# 与原格式一致的重新编码质量
REENCODE_QUALITY = 0.92


def compute_scale(width: int, height: int, max_w: int, max_h: int) -> float:
    """scale = min(1, max_w / width, max_h / height)。"""

    if max_w <= 0 or max_h <= 0:
        raise InvalidConfigurationError("最大宽高必须大于 0")
    if width <= 0 or height <= 0:
        raise ProcessingError("optimize", f"无效的图片尺寸: {width}x{height}")
    return min(1.0, max_w / width, max_h / height)


def compute_scaled_size(width: int, height: int, max_w: int, max_h: int) -> Tuple[int, int]:
    """计算缩放后的目标尺寸，不放大。"""

    scale = compute_scale(width, height, max_w, max_h)
    if scale >= 1.0:
        return width, height
    target_w = min(max_w, max(1, round(width * scale)))
    target_h = min(max_h, max(1, round(height * scale)))
    return target_w, target_h


def optimize_stage(buffer: ProcessedBuffer, max_w: int, max_h: int) -> StageResult:
    """执行缩放阶段并返回 StageResult。"""

    if max_w <= 0 or max_h <= 0:
        raise InvalidConfigurationError("最大宽高必须大于 0")

    def redraw(current: ProcessedBuffer) -> ProcessedBuffer:
        target = compute_scaled_size(current.width, current.height, max_w, max_h)
        if target == current.size:
            return current

        with open_image(current.data, current.filename) as img:
            resized = img.resize(target, RESAMPLE)
        try:
            data = encode_image(resized, current.mime_type, REENCODE_QUALITY)
        finally:
            resized.close()

        LOGGER.debug(
            "图片已缩放 %s: %dx%d -> %dx%d", current.filename, current.width, current.height, *target
        )
        return ProcessedBuffer(
            data=data,
            mime_type=current.mime_type,
            width=target[0],
            height=target[1],
            filename=current.filename,
        )

    return run_stage("optimize", redraw, buffer)


def optimize(buffer: ProcessedBuffer, max_w: int, max_h: int) -> ProcessedBuffer:
    """缩放到 (max_w, max_h) 以内；无需缩放或重绘失败时返回原缓冲区。"""

    return degrade(optimize_stage(buffer, max_w, max_h))
