"""图片解码、编码与模式归一化。"""

from __future__ import annotations

import io
import logging
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError, features

from media_ingest.core.exceptions import ProcessingError
from media_ingest.core.models import WEBP, FileInput, ProcessedBuffer

LOGGER = logging.getLogger(__name__)

_RESAMPLING = getattr(Image, "Resampling", Image)
RESAMPLE = _RESAMPLING.LANCZOS

PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WEBP",
    "image/gif": "GIF",
}

MIME_BY_FORMAT = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": WEBP,
    "GIF": "image/gif",
}

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


class ImageLoadingError(ProcessingError):
    """图片解码失败。"""

    def __init__(self, message: str) -> None:
        super().__init__("decode", message)


def decode_buffer(raw: FileInput) -> ProcessedBuffer:
    """读取原始文件的尺寸并包装为 ProcessedBuffer，不修改数据。"""

    with open_image(raw.data, raw.filename) as img:
        width, height = img.size
    return ProcessedBuffer(
        data=raw.data,
        mime_type=raw.mime_type,
        width=width,
        height=height,
        filename=raw.filename,
    )


def undecoded_buffer(raw: FileInput) -> ProcessedBuffer:
    """无法解码时的占位缓冲区，尺寸以 0 表示未知。"""

    return ProcessedBuffer(data=raw.data, mime_type=raw.mime_type, width=0, height=0, filename=raw.filename)


def open_image(data: bytes, name: str = "upload") -> Image.Image:
    """解码字节并执行 EXIF 旋转校正。

    返回值为新的 Image 对象，调用者负责关闭。
    """

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            transposed = ImageOps.exif_transpose(img)
            return transposed.copy() if transposed is img else transposed
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as exc:
        LOGGER.debug("无法识别图像 %s: %s", name, exc)
        raise ImageLoadingError(f"无法加载图像: {name}") from exc


def encode_image(image: Image.Image, mime_type: str, quality: Optional[float] = None) -> bytes:
    """按目标 MIME 类型编码图片，quality 取值 (0, 1]。"""

    image_format = PIL_FORMATS.get(mime_type.lower())
    if not image_format:
        raise ProcessingError("encode", f"不支持的输出格式: {mime_type}")
    if image_format == "WEBP" and not features.check("webp"):
        raise ProcessingError("encode", "当前 Pillow 未启用 WebP 编码")

    save_params: dict = {}
    image_to_save = image
    if image_format == "JPEG":
        save_params.update(quality=_to_percent(quality, 92), optimize=True)
        if image.mode != "RGB":
            image_to_save = convert_to_rgb(image)
    elif image_format == "WEBP":
        save_params.update(quality=_to_percent(quality, 90), method=4)
        if image.mode not in {"RGB", "RGBA"}:
            image_to_save = image.convert("RGBA" if _has_alpha(image) else "RGB")
    elif image_format == "PNG":
        save_params.update(optimize=True)
        if image.mode not in {"RGB", "RGBA", "L", "LA", "P"}:
            image_to_save = image.convert("RGB")

    output = io.BytesIO()
    try:
        image_to_save.save(output, format=image_format, **save_params)
    except (OSError, ValueError) as exc:
        raise ProcessingError("encode", f"编码 {image_format} 失败: {exc}") from exc
    return output.getvalue()


def convert_to_rgb(img: Image.Image) -> Image.Image:
    """将任意模式图像转换为 RGB，透明区域以白色背景混合。"""

    if img.mode in {"RGBA", "LA"} or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[-1])
        return background

    return img.convert("RGB")


def replace_extension(filename: str, mime_type: str) -> str:
    suffix = EXTENSIONS.get(mime_type.lower())
    if not suffix:
        return filename
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    return stem + suffix


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in {"RGBA", "LA", "PA"} or (img.mode == "P" and "transparency" in img.info)


def _to_percent(quality: Optional[float], default: int) -> int:
    if quality is None:
        return default
    return max(1, min(100, int(round(quality * 100))))
