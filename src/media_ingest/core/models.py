"""核心数据模型定义。"""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

WEBP = "image/webp"

# 部分 Python 版本的 mimetypes 不认识 .webp
SUFFIX_TYPES = {".webp": WEBP, ".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png", ".gif": "image/gif"}


@dataclass(frozen=True, slots=True)
class FileInput:
    """调用方提供的原始文件（二进制 + 声明的 MIME 类型）。"""

    data: bytes
    mime_type: str
    filename: str = "upload"

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "FileInput":
        """从磁盘读取文件，未指定类型时按扩展名推断。"""

        guessed = (
            mime_type
            or SUFFIX_TYPES.get(path.suffix.lower())
            or mimetypes.guess_type(path.name)[0]
            or "application/octet-stream"
        )
        return cls(data=path.read_bytes(), mime_type=guessed, filename=path.name)


@dataclass(frozen=True, slots=True)
class CropSpec:
    """用户确认的裁剪矩形。

    width / height 必须与 aspect_ratio 一致（允许 1 像素取整误差），否则裁剪阶段降级。
    rotation 以角度为单位，与翻转一起先围绕图片中心应用，再截取矩形。
    """

    x: int
    y: int
    width: int
    height: int
    aspect_ratio: float
    rotation: float = 0.0
    flip_horizontal: bool = False
    flip_vertical: bool = False


@dataclass(frozen=True, slots=True)
class ProcessedBuffer:
    """在各阶段之间传递的图片数据。"""

    data: bytes
    mime_type: str
    width: int
    height: int
    filename: str = "upload"

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True, slots=True)
class CompressionStats:
    """转换前后的体积统计。"""

    original_bytes: int
    final_bytes: int
    ratio_percent: float


@dataclass(frozen=True, slots=True)
class Asset:
    """远程存储返回的最终资源。"""

    public_id: str
    secure_url: str
    width: int
    height: int
    bytes: int
    original_filename: str
    tags: Tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    format: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ResolvedUrl:
    """URL 导入路径的结果。"""

    secure_url: str
    width: int
    height: int


class IngestionState(str, Enum):
    """单次导入的状态机。"""

    VALIDATING = "validating"
    CROPPING = "cropping"
    OPTIMIZING = "optimizing"
    CONVERTING = "converting"
    UPLOADING = "uploading"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class IngestionOutcome:
    """单次导入的完整结果，包含非致命警告与压缩统计。"""

    asset: Asset
    warnings: list[str] = field(default_factory=list)
    stats: Optional[CompressionStats] = None
    end_to_end_stats: Optional[CompressionStats] = None
    used_fallback: bool = False
    states: list[IngestionState] = field(default_factory=list)


@dataclass(slots=True)
class BatchResult:
    """批量导入中单个文件的结果。"""

    file_name: str
    status: str
    asset: Optional[Asset] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"
