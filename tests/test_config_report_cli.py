"""配置预设、CSV 报告、替代文本与命令行测试。"""

from __future__ import annotations

import csv
import io
from pathlib import Path

from PIL import Image
from typer.testing import CliRunner

from media_ingest.cli.main import app
from media_ingest.core.config import UploaderConfig, featured_image_config, library_config, with_quality
from media_ingest.core.models import Asset, BatchResult, FileInput
from media_ingest.core.report import write_csv_report
from media_ingest.utils.text import alt_text_from_filename, alt_text_from_url

UPLOADER = UploaderConfig(cloud_name="demo", upload_preset="blog_uploads")


def test_call_site_presets() -> None:
    featured, featured_dest = featured_image_config(UPLOADER)
    library, library_dest = library_config(UPLOADER)

    assert featured.conversion.quality == 0.9
    assert (featured.optimization.max_width, featured.optimization.max_height) == (1920, 1080)
    assert featured_dest.folder == "posts/featured"
    assert library.conversion.quality == 0.85
    assert not library.optimization.enabled
    assert library_dest.preset_name == "blog_uploads"
    assert with_quality(featured, 0.7).conversion.quality == 0.7
    assert featured.conversion.quality == 0.9
    assert UPLOADER.upload_url == "https://api.cloudinary.com/v1_1/demo/image/upload"


def test_file_input_from_path_guesses_mime(tmp_path: Path) -> None:
    path = tmp_path / "cover.png"
    Image.new("RGB", (8, 8), "red").save(path)

    raw = FileInput.from_path(path)

    assert raw.mime_type == "image/png"
    assert raw.filename == "cover.png"
    assert raw.byte_length == path.stat().st_size


def test_write_csv_report_keeps_input_order(tmp_path: Path) -> None:
    asset = Asset(
        public_id="media-library/a1",
        secure_url="https://res.test/a1.webp",
        width=64,
        height=48,
        bytes=900,
        original_filename="a",
    )
    results = [
        BatchResult(file_name="a.jpg", status="success", asset=asset),
        BatchResult(file_name="b.bmp", status="error", error_message="bad", error_kind="unsupported-format"),
    ]

    report = write_csv_report(results, tmp_path / "out" / "report.csv")

    with report.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["file_name"] for row in rows] == ["a.jpg", "b.bmp"]
    assert rows[0]["public_id"] == "media-library/a1"
    assert rows[0]["width"] == "64"
    assert rows[1]["error_kind"] == "unsupported-format"
    assert rows[1]["public_id"] == ""


def test_alt_text_helpers() -> None:
    assert alt_text_from_filename("my-summer_trip.final.jpg") == "my summer trip"
    assert alt_text_from_url("https://example.com/img/red-fox.webp?x=1") == "red fox"
    assert alt_text_from_url("https://example.com/") == "Featured image"


def test_cli_rejects_oversized_file_without_uploading(tmp_path: Path) -> None:
    path = tmp_path / "big.jpg"
    output = io.BytesIO()
    Image.new("RGB", (64, 64), "blue").save(output, format="JPEG")
    path.write_bytes(output.getvalue())

    result = CliRunner().invoke(
        app,
        ["ingest", str(path), "--max-mb", "0.0001"],
        env={"MEDIA_CLOUD_NAME": "demo", "MEDIA_UPLOAD_PRESET": "blog_uploads"},
    )

    assert result.exit_code == 1
    assert "too-large" in result.output


def test_cli_requires_remote_configuration(tmp_path: Path) -> None:
    path = tmp_path / "a.png"
    Image.new("RGB", (8, 8), "red").save(path)

    result = CliRunner().invoke(
        app,
        ["ingest", str(path)],
        env={"MEDIA_CLOUD_NAME": "", "MEDIA_UPLOAD_PRESET": ""},
    )

    assert result.exit_code == 1
    assert "invalid-configuration" in result.output
