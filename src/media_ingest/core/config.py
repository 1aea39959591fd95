"""导入流水线的不可变配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from media_ingest.core.exceptions import InvalidConfigurationError

DEFAULT_ALLOWED_TYPES: Tuple[str, ...] = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/gif",
)
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_API_BASE = "https://api.cloudinary.com/v1_1"


@dataclass(frozen=True, slots=True)
class ValidationPolicy:
    """上传前的格式与大小策略。"""

    allowed_types: Tuple[str, ...] = DEFAULT_ALLOWED_TYPES
    max_bytes: int = DEFAULT_MAX_BYTES


@dataclass(frozen=True, slots=True)
class OptimizationConfig:
    """尺寸优化配置（最大包围盒）。"""

    max_width: int = 1920
    max_height: int = 1080
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class ConversionConfig:
    """WebP 转换配置，quality 取值 (0, 1]。"""

    quality: float = 0.9
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class Destination:
    """远程存储中的目标位置。"""

    folder: str
    tags: Tuple[str, ...] = ()
    preset_name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class UploaderConfig:
    """远程上传端点配置。"""

    cloud_name: str
    upload_preset: str
    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = 60.0

    @property
    def upload_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/{self.cloud_name}/image/upload"


@dataclass(frozen=True, slots=True)
class LibraryConfig:
    """媒体库浏览（Admin API）配置。"""

    cloud_name: str
    api_key: str
    api_secret: str
    prefix: str = "media-library"
    api_base: str = DEFAULT_API_BASE
    timeout_seconds: float = 30.0

    @property
    def resources_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/{self.cloud_name}/resources/image"


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """单次导入与批量导入共享的配置集合。"""

    uploader: UploaderConfig
    policy: ValidationPolicy = field(default_factory=ValidationPolicy)
    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)
    conversion: ConversionConfig = field(default_factory=ConversionConfig)
    fallback_to_original: bool = True
    max_concurrency: int = 3
    resolve_timeout_seconds: float = 5.0

    def validate(self) -> None:
        """检查配置取值，不合法时抛出 InvalidConfigurationError。"""

        if not self.uploader.cloud_name or not self.uploader.upload_preset:
            raise InvalidConfigurationError("缺少远程存储配置：cloud_name 与 upload_preset 均不能为空")
        if self.max_concurrency < 1:
            raise InvalidConfigurationError("max_concurrency 必须大于等于 1")
        if not 0 < self.conversion.quality <= 1:
            raise InvalidConfigurationError("quality 必须位于 (0, 1] 区间")
        if self.optimization.max_width <= 0 or self.optimization.max_height <= 0:
            raise InvalidConfigurationError("最大宽高必须大于 0")
        if self.policy.max_bytes <= 0:
            raise InvalidConfigurationError("max_bytes 必须大于 0")
        if self.resolve_timeout_seconds <= 0 or self.uploader.timeout_seconds <= 0:
            raise InvalidConfigurationError("超时时间必须大于 0")


FEATURED_CROP_ASPECT = 16 / 9


def featured_image_config(uploader: UploaderConfig) -> Tuple[PipelineConfig, Destination]:
    """文章头图的默认配置：1920x1080 包围盒，WebP 质量 0.90。"""

    config = PipelineConfig(
        uploader=uploader,
        optimization=OptimizationConfig(max_width=1920, max_height=1080),
        conversion=ConversionConfig(quality=0.9),
    )
    return config, Destination(folder="posts/featured", preset_name=uploader.upload_preset)


def library_config(uploader: UploaderConfig) -> Tuple[PipelineConfig, Destination]:
    """媒体库批量上传的默认配置：WebP 质量 0.85，不做尺寸缩放。"""

    config = PipelineConfig(
        uploader=uploader,
        optimization=OptimizationConfig(enabled=False),
        conversion=ConversionConfig(quality=0.85),
    )
    return config, Destination(folder="media-library", preset_name=uploader.upload_preset)


def with_quality(config: PipelineConfig, quality: float) -> PipelineConfig:
    """返回替换了转换质量的新配置。"""

    return replace(config, conversion=replace(config.conversion, quality=quality))
