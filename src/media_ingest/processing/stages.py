"""阶段结果类型与降级组合器。

每个处理阶段返回 StageResult：成功时携带新的缓冲区，失败时携带
ProcessingError 并原样保留输入缓冲区，流水线据此继续执行。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Tuple

from media_ingest.core.exceptions import ProcessingError
from media_ingest.core.models import ProcessedBuffer

LOGGER = logging.getLogger(__name__)

StageFunc = Callable[[ProcessedBuffer], ProcessedBuffer]


@dataclass(frozen=True, slots=True)
class StageResult:
    """单个阶段的结果。"""

    buffer: ProcessedBuffer
    error: Optional[ProcessingError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_stage(name: str, func: StageFunc, buffer: ProcessedBuffer) -> StageResult:
    """执行阶段函数，把任何异常转换为携带原始输入的失败结果。"""

    try:
        output = func(buffer)
    except ProcessingError as exc:
        LOGGER.warning("阶段 %s 失败，沿用输入数据：%s", name, exc)
        return StageResult(buffer=buffer, error=exc)
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning("阶段 %s 异常，沿用输入数据：%s", name, exc)
        error = ProcessingError(name, str(exc) or exc.__class__.__name__)
        error.__cause__ = exc
        return StageResult(buffer=buffer, error=error)
    return StageResult(buffer=output)


def degrade(result: StageResult) -> ProcessedBuffer:
    """降级策略：无论成功与否都返回可继续使用的缓冲区。"""

    return result.buffer


def compose(
    buffer: ProcessedBuffer, stages: Iterable[Tuple[str, StageFunc]]
) -> Tuple[ProcessedBuffer, list[ProcessingError]]:
    """依次执行多个阶段，收集失败信息但不中断。"""

    errors: list[ProcessingError] = []
    current = buffer
    for name, func in stages:
        result = run_stage(name, func, current)
        if result.error is not None:
            errors.append(result.error)
        current = degrade(result)
    return current, errors
