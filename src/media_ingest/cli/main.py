"""命令行入口：导入流水线的适配层，负责进度展示与错误提示。"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from media_ingest.core.config import (
    DEFAULT_ALLOWED_TYPES,
    ConversionConfig,
    Destination,
    LibraryConfig,
    OptimizationConfig,
    PipelineConfig,
    UploaderConfig,
    ValidationPolicy,
)
from media_ingest.core.exceptions import MediaIngestError, UploadError
from media_ingest.core.models import FileInput, ProcessedBuffer
from media_ingest.core.progress import ProgressUpdate
from media_ingest.core.report import write_csv_report
from media_ingest.library.browser import LibraryBrowser
from media_ingest.library.indexer import search
from media_ingest.processing.cropper import fit_crop_to_aspect
from media_ingest.processing.pipeline import IngestionPipeline
from media_ingest.remote.url_normalizer import normalize, resolve
from media_ingest.utils.logging import setup_logging
from media_ingest.utils.text import alt_text_from_filename, alt_text_from_url

app = typer.Typer(help="图片导入与优化工具：校验、缩放、WebP 转换并上传到远程存储。")
console = Console()

CLOUD_NAME_OPTION = typer.Option("", "--cloud-name", envvar="MEDIA_CLOUD_NAME", help="远程存储 cloud name")
PRESET_OPTION = typer.Option("", "--upload-preset", envvar="MEDIA_UPLOAD_PRESET", help="上传预设名称")


def _parse_ratio(value: str) -> float:
    parts = value.split(":")
    if len(parts) != 2:
        raise typer.BadParameter("比例必须形如 16:9")
    try:
        w = int(parts[0])
        h = int(parts[1])
    except ValueError as exc:
        raise typer.BadParameter("比例必须为整数") from exc
    if w <= 0 or h <= 0:
        raise typer.BadParameter("比例必须大于 0")
    return w / h


def _build_config(
    cloud_name: str,
    upload_preset: str,
    *,
    quality: float,
    max_width: int,
    max_height: int,
    optimize: bool,
    convert: bool,
    max_mb: float,
    workers: int = 3,
    timeout: float = 60.0,
) -> PipelineConfig:
    return PipelineConfig(
        uploader=UploaderConfig(cloud_name=cloud_name, upload_preset=upload_preset, timeout_seconds=timeout),
        policy=ValidationPolicy(allowed_types=DEFAULT_ALLOWED_TYPES, max_bytes=int(max_mb * 1024 * 1024)),
        optimization=OptimizationConfig(max_width=max_width, max_height=max_height, enabled=optimize),
        conversion=ConversionConfig(quality=quality, enabled=convert),
        max_concurrency=workers,
    )


def _build_progress_callback(progress: Progress, description: str):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task(description, total=update.total)
        progress.update(task_id, completed=update.completed)
        if update.message and update.status != "running":
            progress.log(update.message)

    return callback


def _new_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
    )


def _fail(exc: MediaIngestError) -> NoReturn:
    console.print(f"[red]{exc.kind}[/red]: {exc.message}")
    if isinstance(exc, UploadError):
        console.print("可以改用 ingest-url 命令提供图片链接。")
    raise typer.Exit(code=1)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志")) -> None:
    setup_logging(logging.DEBUG if verbose else logging.INFO)


@app.command("ingest")
def ingest_cli(  # noqa: PLR0913
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="待上传的图片文件"),
    folder: str = typer.Option("posts/featured", "--folder", help="远程存储目录"),
    tags: List[str] = typer.Option([], "--tag", help="资源标签，可指定多个"),
    quality: float = typer.Option(0.9, "--quality", help="WebP 质量 (0, 1]"),
    max_width: int = typer.Option(1920, "--max-width", help="最大宽度"),
    max_height: int = typer.Option(1080, "--max-height", help="最大高度"),
    optimize: bool = typer.Option(True, "--optimize/--no-optimize", help="是否缩放到最大尺寸以内"),
    convert: bool = typer.Option(True, "--webp/--no-webp", help="是否转换为 WebP"),
    crop_ratio: Optional[str] = typer.Option(None, "--crop", help="按比例居中裁剪，形如 16:9"),
    max_mb: float = typer.Option(10.0, "--max-mb", help="文件大小上限 (MB)"),
    timeout: float = typer.Option(60.0, "--timeout", help="上传超时（秒）"),
    cloud_name: str = CLOUD_NAME_OPTION,
    upload_preset: str = PRESET_OPTION,
) -> None:
    """导入单个图片文件。"""

    aspect = _parse_ratio(crop_ratio) if crop_ratio else None
    try:
        config = _build_config(
            cloud_name,
            upload_preset,
            quality=quality,
            max_width=max_width,
            max_height=max_height,
            optimize=optimize,
            convert=convert,
            max_mb=max_mb,
            timeout=timeout,
        )
        raw = FileInput.from_path(source)
        destination = Destination(folder=folder, tags=tuple(tags))

        def centre_crop(buffer: ProcessedBuffer):
            if aspect is None or not buffer.width:
                return None
            return fit_crop_to_aspect(buffer.width, buffer.height, aspect)

        async def run():
            async with IngestionPipeline(config) as pipeline:
                with _new_progress() as progress:
                    return await pipeline.run_file(
                        raw,
                        destination,
                        crop=centre_crop if aspect else None,
                        progress_callback=_build_progress_callback(progress, source.name),
                    )

        outcome = asyncio.run(run())
    except MediaIngestError as exc:
        _fail(exc)

    for warning in outcome.warnings:
        console.print(f"[yellow]警告[/yellow]: {warning}")
    if outcome.stats and outcome.stats.ratio_percent > 0:
        console.print(f"图片已优化，体积减少 {outcome.stats.ratio_percent}%")
    asset = outcome.asset
    console.print(f"[green]上传成功[/green]: {asset.secure_url} ({asset.width}x{asset.height}, {asset.bytes} 字节)")
    console.print(f"替代文本: {alt_text_from_filename(source.name)}")


@app.command("ingest-url")
def ingest_url_cli(
    url: str = typer.Argument(..., help="图片链接或分享链接"),
    timeout: float = typer.Option(5.0, "--timeout", help="探测超时（秒）"),
) -> None:
    """校验图片链接并输出可直接使用的地址。"""

    direct_url = normalize(url)
    try:
        width, height = asyncio.run(resolve(direct_url, timeout=timeout))
    except MediaIngestError as exc:
        _fail(exc)

    console.print(f"[green]链接可用[/green]: {direct_url} ({width}x{height})")
    console.print(f"替代文本: {alt_text_from_url(direct_url)}")


@app.command("batch")
def batch_cli(  # noqa: PLR0913
    sources: List[Path] = typer.Argument(..., exists=True, dir_okay=False, help="待上传的图片文件，可指定多个"),
    folder: str = typer.Option("media-library", "--folder", help="远程存储目录"),
    tags: List[str] = typer.Option([], "--tag", help="资源标签，可指定多个"),
    quality: float = typer.Option(0.85, "--quality", help="WebP 质量 (0, 1]"),
    max_mb: float = typer.Option(10.0, "--max-mb", help="单个文件大小上限 (MB)"),
    workers: int = typer.Option(3, "--workers", "-w", help="并发上传数量"),
    report: Optional[Path] = typer.Option(None, "--report", help="CSV 报告输出路径"),
    cloud_name: str = CLOUD_NAME_OPTION,
    upload_preset: str = PRESET_OPTION,
) -> None:
    """批量导入到媒体库。"""

    try:
        config = _build_config(
            cloud_name,
            upload_preset,
            quality=quality,
            max_width=1920,
            max_height=1080,
            optimize=False,
            convert=True,
            max_mb=max_mb,
            workers=workers,
        )
        inputs = [FileInput.from_path(path) for path in sources]
        destination = Destination(folder=folder, tags=tuple(tags))

        async def run():
            async with IngestionPipeline(config) as pipeline:
                with _new_progress() as progress:
                    return await pipeline.ingest_batch(
                        inputs,
                        destination,
                        progress_callback=_build_progress_callback(progress, "上传图片"),
                    )

        results = asyncio.run(run())
    except MediaIngestError as exc:
        _fail(exc)

    for entry in results:
        if entry.succeeded and entry.asset:
            console.print(f"[green]✓[/green] {entry.file_name} -> {entry.asset.secure_url}")
        else:
            console.print(f"[red]✗[/red] {entry.file_name}: {entry.error_message}")

    succeeded = sum(1 for entry in results if entry.succeeded)
    typer.echo(f"上传完成：成功 {succeeded} 张，失败 {len(results) - succeeded} 张。")
    if report:
        typer.echo(f"报告文件：{write_csv_report(results, report)}")
    if succeeded < len(results):
        raise typer.Exit(code=1)


@app.command("search")
def search_cli(
    query: str = typer.Argument("", help="按文件名、public_id 或标签检索"),
    prefix: str = typer.Option("media-library", "--prefix", help="媒体库目录前缀"),
    cloud_name: str = CLOUD_NAME_OPTION,
    api_key: str = typer.Option("", "--api-key", envvar="MEDIA_API_KEY", help="Admin API key"),
    api_secret: str = typer.Option("", "--api-secret", envvar="MEDIA_API_SECRET", help="Admin API secret"),
) -> None:
    """列出媒体库资源并按关键字过滤。"""

    if not cloud_name or not api_key or not api_secret:
        raise typer.BadParameter("需要提供 cloud name、API key 与 API secret")

    config = LibraryConfig(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, prefix=prefix)

    async def run():
        async with LibraryBrowser(config) as browser:
            return [asset async for asset in browser.iter_all()]

    try:
        assets = asyncio.run(run())
    except MediaIngestError as exc:
        _fail(exc)

    table = Table("public_id", "filename", "size", "tags")
    for asset in search(assets, query):
        table.add_row(asset.public_id, asset.original_filename, f"{asset.width}x{asset.height}", ", ".join(asset.tags))
    console.print(table)


if __name__ == "__main__":
    app()
