"""进度更新的数据模型。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional


@dataclass(slots=True)
class ProgressUpdate:
    """导入过程中的进度信息。"""

    total: int
    completed: int
    message: Optional[str] = None
    status: str = "running"


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


def emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
    status: str = "running",
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message, status=status))
