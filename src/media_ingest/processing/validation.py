"""上传前的格式与大小校验。"""

from __future__ import annotations

from media_ingest.core.config import ValidationPolicy
from media_ingest.core.exceptions import ValidationError
from media_ingest.core.models import FileInput


def check_format(mime_type: str, policy: ValidationPolicy) -> None:
    if mime_type.lower() not in {t.lower() for t in policy.allowed_types}:
        allowed = ", ".join(t.split("/")[-1] for t in policy.allowed_types)
        raise ValidationError(
            ValidationError.UNSUPPORTED_FORMAT,
            f"不支持的图片格式 {mime_type}，可用格式: {allowed}",
        )


def check_size(byte_length: int, policy: ValidationPolicy) -> None:
    if byte_length > policy.max_bytes:
        limit_mb = policy.max_bytes / (1024 * 1024)
        raise ValidationError(
            ValidationError.TOO_LARGE,
            f"文件大小 {byte_length} 字节超过上限 {limit_mb:g}MB",
        )


def validate(raw: FileInput, policy: ValidationPolicy) -> None:
    """纯校验：先检查格式再检查大小，失败时抛出 ValidationError。"""

    check_format(raw.mime_type, policy)
    check_size(raw.byte_length, policy)
