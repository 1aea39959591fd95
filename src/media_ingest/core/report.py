"""批量导入报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from media_ingest.core.models import BatchResult

HEADER = ["file_name", "status", "public_id", "secure_url", "width", "height", "bytes", "error_kind", "error_message"]


def write_csv_report(results: Iterable[BatchResult], report_path: Path) -> Path:
    """将批量结果写入 CSV 报告，行顺序与输入顺序一致。"""

    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in results:
            asset = record.asset
            writer.writerow(
                [
                    record.file_name,
                    record.status,
                    asset.public_id if asset else "",
                    asset.secure_url if asset else "",
                    _format_int(asset.width if asset else None),
                    _format_int(asset.height if asset else None),
                    _format_int(asset.bytes if asset else None),
                    record.error_kind or "",
                    record.error_message or "",
                ]
            )
    return report_path


def _format_int(value: int | None) -> str:
    if value is None:
        return ""
    return str(value)
