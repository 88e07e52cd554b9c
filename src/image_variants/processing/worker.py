"""并发转码的工作单元。"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from image_variants.core.config import CodecOptions
from image_variants.core.exceptions import TranscodeError
from image_variants.core.models import GeneratedVariant, VariantOutcome, VariantSpec
from image_variants.processing.transcoder import transcode

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TranscodeTask:
    """描述单个（宽度, 格式）转码任务。"""

    source_path: Path
    spec: VariantSpec
    output_path: Path
    site_path: str
    codec: CodecOptions
    dry_run: bool = False


def run_task(task: TranscodeTask) -> VariantOutcome:
    """在工作线程中执行一次转码；失败以结果对象返回，不向外抛出。"""

    try:
        height = transcode(
            task.source_path,
            task.spec.width,
            task.spec.format,
            task.output_path,
            task.codec,
            dry_run=task.dry_run,
        )
    except TranscodeError as exc:
        return VariantOutcome(spec=task.spec, output_path=task.output_path, error=str(exc))

    variant = GeneratedVariant(
        file=task.output_path,
        path=task.site_path,
        width=task.spec.width,
        height=None if task.dry_run else height,
        format=task.spec.format,
    )
    return VariantOutcome(spec=task.spec, output_path=task.output_path, variant=variant)


class TimedUnit:
    """包装 ``run_task``，记录开始时间，并支持在超时后作废迟到的结果。

    超时从单元真正开始执行时计算，排队时间不计入。被作废的单元若之后仍写出了文件，
    该文件会被删除，避免留下清单中没有记录的产物。
    """

    def __init__(self, task: TranscodeTask) -> None:
        self.task = task
        self.started = threading.Event()
        self.start_time = 0.0
        self._lock = threading.Lock()
        self._finished = False
        self._abandoned = False

    def __call__(self) -> VariantOutcome:
        self.start_time = time.monotonic()
        self.started.set()
        outcome = run_task(self.task)
        with self._lock:
            if not self._abandoned:
                self._finished = True
                return outcome
        if outcome.ok and not self.task.dry_run:
            LOGGER.debug("删除超时单元写出的文件：%s", self.task.output_path)
            self.task.output_path.unlink(missing_ok=True)
        return self.timed_out()

    def deadline(self, timeout: float) -> float:
        return self.start_time + timeout

    def abandon(self) -> bool:
        """标记为超时；单元已经完成时返回 False，此时应使用其结果。"""

        with self._lock:
            if self._finished:
                return False
            self._abandoned = True
            return True

    def timed_out(self) -> VariantOutcome:
        return VariantOutcome(spec=self.task.spec, output_path=self.task.output_path, error="转码超时")
