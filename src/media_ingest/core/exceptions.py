"""项目内使用的自定义异常定义。"""

from __future__ import annotations

from typing import Optional


class MediaIngestError(Exception):
    """基础异常类型，携带可区分的错误类别。"""

    kind = "media-ingest-error"

    def __init__(self, message: str, *, kind: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class InvalidConfigurationError(MediaIngestError):
    """配置不合法时抛出。"""

    kind = "invalid-configuration"


class ValidationError(MediaIngestError):
    """文件未通过格式或大小校验，不可重试。"""

    UNSUPPORTED_FORMAT = "unsupported-format"
    TOO_LARGE = "too-large"

    def __init__(self, kind: str, message: Optional[str] = None) -> None:
        super().__init__(message or kind, kind=kind)


class ProcessingError(MediaIngestError):
    """裁剪、缩放或格式转换阶段失败（可恢复）。"""

    kind = "processing-failed"

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class UploadError(MediaIngestError):
    """远程存储拒绝或不可达。message 保留远端返回的原文。"""

    kind = "upload-failed"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LoadError(MediaIngestError):
    """URL 无法作为图片加载。"""

    kind = "unreachable-or-not-an-image"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.kind)


class IngestionCancelled(MediaIngestError):
    """调用方中断了正在进行的导入。"""

    kind = "cancelled"


class LibraryError(MediaIngestError):
    """媒体库浏览或删除请求失败。"""

    kind = "library-request-failed"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
