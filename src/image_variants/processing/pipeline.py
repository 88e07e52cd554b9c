"""处理流水线：读取尺寸、规划变体、并发转码、写入清单并复制原图。"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Iterable, Optional

from image_variants.core.catalog import Catalog
from image_variants.core.config import BuildConfig
from image_variants.core.exceptions import (
    InvalidConfigurationError,
    PathInvariantError,
    PersistError,
    SourceReadError,
)
from image_variants.core.models import (
    BatchResult,
    CatalogEntry,
    FormatVariants,
    ImageOutcome,
    ProgressUpdate,
    SourceImage,
    VariantOutcome,
    VariantSpec,
)
from image_variants.core.output_manager import FileCopier, ImageWriteError, OutputManager
from image_variants.core.scanner import collect_source_images
from image_variants.processing.image_loader import read_dimensions
from image_variants.processing.planner import plan_variants
from image_variants.processing.worker import TimedUnit, TranscodeTask

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]
SkipPredicate = Optional[Callable[[SourceImage], bool]]


def aggregate_outcomes(outcomes: Iterable[VariantOutcome]) -> CatalogEntry:
    """把成功的转码结果按格式归组，文件列表按宽度升序。"""

    entry = CatalogEntry()
    for outcome in outcomes:
        if outcome.variant is None:
            continue
        group = entry.formats.setdefault(outcome.spec.format, FormatVariants())
        if outcome.spec.thumbnail:
            group.thumbnail = outcome.variant
        else:
            group.files.append(outcome.variant)

    for group in entry.formats.values():
        group.sort()
    return entry


class ImageProcessingPipeline:
    """负责一次构建中所有源图片的变体生成。

    流水线在构建期间独占清单；每处理完一张图片就把清单完整写回磁盘，
    进程中途崩溃时最多丢失正在处理的那一张。
    """

    def __init__(
        self,
        config: BuildConfig,
        catalog: Optional[Catalog] = None,
        copier: Optional[FileCopier] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.catalog = catalog if catalog is not None else Catalog(config.store_path)
        self.output_manager = OutputManager(config, copier)
        self._executor: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> "ImageProcessingPipeline":
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def open(self) -> "ImageProcessingPipeline":
        """加载清单（传入的清单已加载时不再重读）并启动转码线程池。"""

        if not self.catalog.loaded:
            self.catalog.load()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.transcode_workers,
                thread_name_prefix="transcode",
            )
        return self

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def process(self, source: SourceImage, skip: bool = False) -> ImageOutcome:
        """处理单张源图片。

        ``skip=True`` 时不读取、不转码、不改动清单，只执行复制。
        尺寸读取失败抛出 SourceReadError，路径不变量被破坏抛出 PathInvariantError，
        清单写入失败抛出 PersistError。
        """

        self.open()

        if skip:
            LOGGER.debug("跳过变体生成：%s", source.key)
            outcome = ImageOutcome(source_path=source.source_path, status="skipped")
        else:
            outcome = self._generate(source)

        self.output_manager.copy_source(source, dry_run=self.config.dry_run)
        return outcome

    def _generate(self, source: SourceImage) -> ImageOutcome:
        LOGGER.info("处理图片：%s", source.key)
        dimensions = read_dimensions(source.source_path)
        LOGGER.debug("源图尺寸 %d x %d", dimensions.width, dimensions.height)

        plan = plan_variants(dimensions, source.extension, self.config.variants)
        tasks = [self._build_task(source, spec) for spec in plan.specs]
        LOGGER.debug("输出目录 %s，共 %d 个转码任务", self.output_manager.output_dir_for(source), len(tasks))

        outcomes = self._run_tasks(tasks)
        failures = [outcome for outcome in outcomes if not outcome.ok]
        for failure in failures:
            LOGGER.warning("变体生成失败 %s: %s", failure.output_path, failure.error)

        entry = aggregate_outcomes(outcomes)
        if not entry.formats:
            if self.catalog.discard(source.key, persist=not self.config.dry_run):
                LOGGER.warning("移除旧的清单记录：%s", source.key)
            return ImageOutcome(
                source_path=source.source_path,
                status="error-transcode",
                failed_variants=failures,
                message=f"所有 {len(outcomes)} 个变体均生成失败",
            )

        if self.config.dry_run:
            LOGGER.info("[dry-run] 不写入清单文件：%s", source.key)
        self.catalog.commit(source.key, entry, persist=not self.config.dry_run)

        status = "processed-partial" if failures else "processed"
        message = f"{len(failures)} 个变体失败" if failures else None
        return ImageOutcome(
            source_path=source.source_path,
            status=status,
            entry=entry,
            failed_variants=failures,
            message=message,
        )

    def _build_task(self, source: SourceImage, spec: VariantSpec) -> TranscodeTask:
        output_path = self.output_manager.variant_path(source, spec)
        self.output_manager.check_path(output_path)
        return TranscodeTask(
            source_path=source.source_path,
            spec=spec,
            output_path=output_path,
            site_path=self.output_manager.site_relative(output_path),
            codec=self.config.variants.codec,
            dry_run=self.config.dry_run,
        )

    def _run_tasks(self, tasks: list[TranscodeTask]) -> list[VariantOutcome]:
        """并发执行全部转码任务并等待全部结束，按任务顺序返回结果。

        ``task_timeout`` 对每个单元单独计时，从该单元开始执行算起；超时只让该单元失败。
        """

        assert self._executor is not None
        units = [TimedUnit(task) for task in tasks]
        futures: list[Future] = [self._executor.submit(unit) for unit in units]
        return [self._join_unit(unit, future) for unit, future in zip(units, futures)]

    def _join_unit(self, unit: TimedUnit, future: Future) -> VariantOutcome:
        task = unit.task
        timeout = self.config.task_timeout
        try:
            if timeout is None:
                return future.result()
            unit.started.wait()
            remaining = unit.deadline(timeout) - time.monotonic()
            try:
                return future.result(timeout=max(0.0, remaining))
            except FutureTimeoutError:
                if not unit.abandon():
                    return future.result()
                LOGGER.error("转码超时（%ss）：%s", timeout, task.output_path)
                return unit.timed_out()
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("转码任务异常：%s", task.output_path)
            return VariantOutcome(spec=task.spec, output_path=task.output_path, error=str(exc))


def process_batch(
    config: BuildConfig,
    sources: Optional[Iterable[SourceImage]] = None,
    *,
    skip: SkipPredicate = None,
    progress_callback: ProgressCallback = None,
    catalog: Optional[Catalog] = None,
    copier: Optional[FileCopier] = None,
) -> BatchResult:
    """构建入口：扫描站点（或使用给定列表），逐张处理并汇总结果。

    单张图片的致命错误只影响该图片；清单写入失败会中止整个构建。
    """

    if sources is None:
        LOGGER.info("开始扫描站点目录 %s", config.site_root)
        sources = collect_source_images(config)
    source_list = list(sources)
    total = len(source_list)
    LOGGER.info("发现 %d 个源图片", total)

    successes: list[ImageOutcome] = []
    skipped: list[ImageOutcome] = []
    failed: list[ImageOutcome] = []
    completed = 0

    if total == 0:
        _emit_progress(progress_callback, completed=0, total=0, message="没有需要处理的图片")
        return BatchResult(succeeded=successes, skipped=skipped, failed=failed)

    with ImageProcessingPipeline(config, catalog=catalog, copier=copier) as pipeline:
        _emit_progress(progress_callback, completed, total, "开始生成变体")

        if config.max_workers <= 1:
            for source in source_list:
                outcome = _process_one(pipeline, source, skip)
                _record_outcome(outcome, successes, skipped, failed)
                completed += 1
                _emit_progress(progress_callback, completed, total, f"完成 {source.key}")
        else:
            with ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="image") as executor:
                future_map = {executor.submit(_process_one, pipeline, source, skip): source for source in source_list}
                for future in as_completed(future_map):
                    source = future_map[future]
                    try:
                        outcome = future.result()
                    except PersistError:
                        for other in future_map:
                            other.cancel()
                        raise
                    except Exception as exc:  # noqa: BLE001
                        LOGGER.exception("任务执行异常：%s", exc)
                        outcome = ImageOutcome(
                            source_path=source.source_path,
                            status="error-worker",
                            message=str(exc),
                        )
                    _record_outcome(outcome, successes, skipped, failed)
                    completed += 1
                    _emit_progress(progress_callback, completed, total, f"完成 {source.key}")

    _emit_progress(progress_callback, total, total, "处理完成")
    return BatchResult(succeeded=successes, skipped=skipped, failed=failed)


def _process_one(pipeline: ImageProcessingPipeline, source: SourceImage, skip: SkipPredicate) -> ImageOutcome:
    should_skip = bool(skip and skip(source))
    try:
        return pipeline.process(source, skip=should_skip)
    except SourceReadError as exc:
        status, message = "error-read", str(exc)
    except PathInvariantError as exc:
        status, message = "error-path", str(exc)
    except InvalidConfigurationError as exc:
        status, message = "error-config", f"{source.key}: {exc}"
    except ImageWriteError as exc:
        status, message = "error-copy", str(exc)

    LOGGER.error("%s", message)
    return ImageOutcome(source_path=source.source_path, status=status, message=message)


def _record_outcome(
    outcome: ImageOutcome,
    successes: list[ImageOutcome],
    skipped: list[ImageOutcome],
    failed: list[ImageOutcome],
) -> None:
    if outcome.status.startswith("processed"):
        successes.append(outcome)
    elif outcome.status == "skipped":
        skipped.append(outcome)
    else:
        failed.append(outcome)


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message))
