"""裁剪、缩放与 WebP 转换阶段测试。"""

from __future__ import annotations

import io

import pytest
from PIL import Image

from media_ingest.core.exceptions import InvalidConfigurationError, ProcessingError
from media_ingest.core.models import CropSpec, ProcessedBuffer
from media_ingest.processing.converter import compute_compression_stats, convert, convert_stage
from media_ingest.processing.cropper import crop, crop_stage, fit_crop_to_aspect
from media_ingest.processing.optimizer import compute_scaled_size, optimize, optimize_stage
from media_ingest.processing.stages import compose, run_stage


def _make_buffer(size: tuple[int, int], fmt: str = "JPEG", mime: str = "image/jpeg", color: str = "orange") -> ProcessedBuffer:
    output = io.BytesIO()
    Image.new("RGB", size, color).save(output, format=fmt)
    return ProcessedBuffer(data=output.getvalue(), mime_type=mime, width=size[0], height=size[1], filename="sample.jpg")


def _decoded_size(buffer: ProcessedBuffer) -> tuple[int, int]:
    with Image.open(io.BytesIO(buffer.data)) as img:
        return img.size


@pytest.mark.parametrize("size", [(4000, 3000), (3000, 4000), (2500, 900), (1921, 1081), (2000, 500)])
def test_optimize_fits_bounding_box_and_keeps_aspect(size: tuple[int, int]) -> None:
    buffer = _make_buffer(size)

    result = optimize(buffer, 1920, 1080)

    assert result.width <= 1920 and result.height <= 1080
    assert abs(result.width / result.height - size[0] / size[1]) < 0.01
    assert _decoded_size(result) == result.size
    assert result.mime_type == "image/jpeg"


def test_optimize_example_height_is_binding() -> None:
    assert compute_scaled_size(4000, 3000, 1920, 1080) == (1440, 1080)


def test_optimize_small_image_passes_through() -> None:
    buffer = _make_buffer((800, 600))

    result = optimize(buffer, 1920, 1080)

    assert result is buffer


def test_optimize_failure_returns_original() -> None:
    broken = ProcessedBuffer(data=b"garbage", mime_type="image/png", width=5000, height=5000)

    result = optimize_stage(broken, 1920, 1080)

    assert not result.ok
    assert isinstance(result.error, ProcessingError)
    assert result.buffer is broken


def test_optimize_rejects_invalid_box() -> None:
    with pytest.raises(InvalidConfigurationError):
        optimize(_make_buffer((10, 10)), 0, 100)


def test_convert_produces_webp() -> None:
    buffer = _make_buffer((320, 200), fmt="PNG", mime="image/png")

    result, stats = convert_stage(buffer, 0.9)

    assert result.ok
    assert result.buffer.mime_type == "image/webp"
    assert result.buffer.filename == "sample.webp"
    assert result.buffer.data[8:12] == b"WEBP"
    assert stats.original_bytes == buffer.byte_length
    assert stats.final_bytes == result.buffer.byte_length
    assert stats.ratio_percent >= 0


def test_convert_webp_is_noop() -> None:
    buffer = _make_buffer((64, 64), fmt="WEBP", mime="image/webp")

    result = convert(buffer, 0.5)

    assert result is buffer
    assert result.data == buffer.data


def test_convert_failure_returns_input() -> None:
    broken = ProcessedBuffer(data=b"not an image", mime_type="image/jpeg", width=10, height=10)

    result, stats = convert_stage(broken, 0.9)

    assert result.buffer is broken
    assert result.error is not None
    assert stats.ratio_percent == 0


@pytest.mark.parametrize("quality", [0, -0.1, 1.5])
def test_convert_rejects_out_of_range_quality(quality: float) -> None:
    with pytest.raises(InvalidConfigurationError):
        convert(_make_buffer((10, 10)), quality)


def test_compression_ratio_is_clamped() -> None:
    assert compute_compression_stats(1000, 250).ratio_percent == 75.0
    assert compute_compression_stats(1000, 1000).ratio_percent == 0
    assert compute_compression_stats(1000, 1500).ratio_percent == 0
    assert compute_compression_stats(0, 10).ratio_percent == 0
    assert compute_compression_stats(3, 2).ratio_percent == 33.3


def test_crop_outputs_exact_dimensions() -> None:
    buffer = _make_buffer((400, 300))
    spec = CropSpec(x=10, y=20, width=160, height=90, aspect_ratio=16 / 9)

    result = crop(buffer, spec)

    assert result.size == (160, 90)
    assert _decoded_size(result) == (160, 90)
    assert result.mime_type == "image/jpeg"


def test_crop_applies_flip_before_extraction() -> None:
    image = Image.new("RGB", (100, 50), "white")
    image.paste((255, 0, 0), (0, 0, 50, 50))
    output = io.BytesIO()
    image.save(output, format="PNG")
    buffer = ProcessedBuffer(data=output.getvalue(), mime_type="image/png", width=100, height=50)

    result = crop(buffer, CropSpec(x=0, y=0, width=40, height=40, aspect_ratio=1.0, flip_horizontal=True))

    with Image.open(io.BytesIO(result.data)) as cropped:
        red, green, blue = cropped.convert("RGB").getpixel((20, 20))
    assert red > 200 and green > 200 and blue > 200


def test_crop_rotation_uses_rotated_bounding_box() -> None:
    buffer = _make_buffer((200, 100))

    result = crop(buffer, CropSpec(x=0, y=0, width=100, height=200, aspect_ratio=0.5, rotation=90))

    assert result.size == (100, 200)


def test_crop_invalid_spec_degrades() -> None:
    buffer = _make_buffer((50, 50))

    result = crop(buffer, CropSpec(x=0, y=0, width=0, height=10, aspect_ratio=1.0))

    assert result is buffer


def test_fit_crop_to_aspect_centres_rectangle() -> None:
    spec = fit_crop_to_aspect(1600, 1000, 16 / 9)

    assert (spec.width, spec.height) == (1600, 900)
    assert spec.x == 0
    assert spec.y == 50


def test_compose_collects_errors_and_continues() -> None:
    buffer = _make_buffer((30, 30))

    def explode(_: ProcessedBuffer) -> ProcessedBuffer:
        raise RuntimeError("canvas unavailable")

    def shrink(current: ProcessedBuffer) -> ProcessedBuffer:
        return optimize(current, 10, 10)

    result, errors = compose(buffer, [("explode", explode), ("shrink", shrink)])

    assert result.size == (10, 10)
    assert len(errors) == 1
    assert errors[0].stage == "explode"
    assert run_stage("explode", explode, buffer).buffer is buffer


def test_crop_rejects_spec_that_breaks_aspect_ratio() -> None:
    buffer = _make_buffer((400, 300))

    result = crop_stage(buffer, CropSpec(x=0, y=0, width=200, height=50, aspect_ratio=16 / 9))

    assert result.buffer is buffer
    assert result.error is not None and result.error.stage == "crop"


def test_crop_tolerates_rounding_of_aspect_ratio() -> None:
    buffer = _make_buffer((40, 40))
    spec = fit_crop_to_aspect(10, 10, 16 / 9)

    result = crop(buffer, spec)

    assert result.size == (10, 6)
