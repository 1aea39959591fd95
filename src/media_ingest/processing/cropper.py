"""裁剪阶段：按用户确认的矩形截取子图。"""

from __future__ import annotations

import logging

from PIL import Image

from media_ingest.core.exceptions import InvalidConfigurationError, ProcessingError
from media_ingest.core.models import CropSpec, ProcessedBuffer
from media_ingest.processing.image_loader import encode_image, open_image, replace_extension
from media_ingest.processing.stages import StageResult, degrade, run_stage

LOGGER = logging.getLogger(__name__)

CROP_MIME = "image/jpeg"
CROP_QUALITY = 0.95

_RESAMPLING = getattr(Image, "Resampling", Image)
_TRANSPOSE = getattr(Image, "Transpose", Image)


def fit_crop_to_aspect(width: int, height: int, aspect_ratio: float) -> CropSpec:
    """在图片中心取符合宽高比的最大矩形。"""

    if aspect_ratio <= 0:
        raise InvalidConfigurationError("aspect_ratio 必须大于 0")
    if width <= 0 or height <= 0:
        raise ProcessingError("crop", f"无效的图片尺寸: {width}x{height}")

    if width / height > aspect_ratio:
        crop_h = height
        crop_w = max(1, round(height * aspect_ratio))
    else:
        crop_w = width
        crop_h = max(1, round(width / aspect_ratio))
    return CropSpec(
        x=(width - crop_w) // 2,
        y=(height - crop_h) // 2,
        width=crop_w,
        height=crop_h,
        aspect_ratio=aspect_ratio,
    )


def ratio_matches(width: int, height: int, aspect_ratio: float, *, tolerance: float = 0.01) -> bool:
    """宽高比允许 1 像素的取整误差或 tolerance 的相对误差。"""

    if width <= 0 or height <= 0 or aspect_ratio <= 0:
        return False
    expected_width = height * aspect_ratio
    return abs(width - expected_width) <= max(1.0, expected_width * tolerance)


def crop_stage(buffer: ProcessedBuffer, spec: CropSpec) -> StageResult:
    def extract(current: ProcessedBuffer) -> ProcessedBuffer:
        if spec.width <= 0 or spec.height <= 0:
            raise ProcessingError("crop", f"无效的裁剪尺寸: {spec.width}x{spec.height}")
        if not ratio_matches(spec.width, spec.height, spec.aspect_ratio):
            raise ProcessingError(
                "crop", f"裁剪尺寸 {spec.width}x{spec.height} 与目标宽高比 {spec.aspect_ratio:.4f} 不符"
            )

        with open_image(current.data, current.filename) as img:
            working = img
            if spec.flip_horizontal:
                working = working.transpose(_TRANSPOSE.FLIP_LEFT_RIGHT)
            if spec.flip_vertical:
                working = working.transpose(_TRANSPOSE.FLIP_TOP_BOTTOM)
            if spec.rotation % 360:
                # PIL 逆时针为正，裁剪框坐标以顺时针旋转后的包围盒为准
                working = working.rotate(-spec.rotation, resample=_RESAMPLING.BICUBIC, expand=True)
            box = (spec.x, spec.y, spec.x + spec.width, spec.y + spec.height)
            cropped = working.crop(box)
            data = encode_image(cropped, CROP_MIME, CROP_QUALITY)

        LOGGER.debug("已裁剪 %s: %s", current.filename, box)
        return ProcessedBuffer(
            data=data,
            mime_type=CROP_MIME,
            width=spec.width,
            height=spec.height,
            filename=replace_extension(current.filename, CROP_MIME),
        )

    return run_stage("crop", extract, buffer)


def crop(buffer: ProcessedBuffer, spec: CropSpec) -> ProcessedBuffer:
    """截取 spec 指定的矩形，输出尺寸恰为 (spec.width, spec.height)。"""

    return degrade(crop_stage(buffer, spec))
