"""命令行入口。"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from image_variants.core.catalog import Catalog
from image_variants.core.config import (
    DEFAULT_GENERATED_DIR,
    DEFAULT_STORE_FILE,
    BuildConfig,
    CodecOptions,
    ThumbnailConfig,
    VariantConfig,
)
from image_variants.core.exceptions import CatalogLookupError, ImageVariantsError, PersistError
from image_variants.core.models import ProgressUpdate, SourceImage
from image_variants.processing.pipeline import process_batch
from image_variants.utils.logging import setup_logging

app = typer.Typer(help="响应式图片变体生成工具。")


def _parse_widths(value: Optional[str]) -> Optional[Tuple[int, ...]]:
    if not value:
        return None
    try:
        widths = tuple(int(part) for part in value.split(",") if part.strip())
    except ValueError as exc:
        raise typer.BadParameter("宽度列表必须为逗号分隔的整数") from exc
    if not widths or any(width <= 0 for width in widths):
        raise typer.BadParameter("宽度必须大于 0")
    return widths


def _parse_pairs(values: List[str], option: str) -> Dict[str, str]:
    parsed: Dict[str, str] = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip() or not value.strip():
            raise typer.BadParameter(f"{option} 必须形如 KEY=VALUE: {item}")
        parsed[key.strip().lower()] = value.strip()
    return parsed


def _coerce_value(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    for caster in (int, float):
        try:
            return caster(raw)
        except ValueError:
            continue
    return raw


def _parse_codec_options(values: List[str]) -> CodecOptions:
    """``--codec-option webp:quality=80``，在默认参数上逐项覆盖。"""

    defaults = CodecOptions()
    encoders: Dict[str, Dict[str, Any]] = {fmt: dict(opts) for fmt, opts in defaults.encoders.items()}
    for item in values:
        fmt, sep, assignment = item.partition(":")
        key, eq, raw = assignment.partition("=")
        if not sep or not eq or not fmt.strip() or not key.strip():
            raise typer.BadParameter(f"--codec-option 必须形如 FORMAT:KEY=VALUE: {item}")
        encoders.setdefault(fmt.strip().lower(), {})[key.strip()] = _coerce_value(raw.strip())
    return CodecOptions(encoders=encoders)


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("生成变体", total=update.total)
        progress.update(task_id, completed=update.completed)

    return callback


def _unchanged_predicate(config: BuildConfig, catalog: Catalog):
    """已在清单中且复制目标不比源文件旧的图片视为未变化。"""

    def is_unchanged(source: SourceImage) -> bool:
        if source.key not in catalog:
            return False
        destination = config.output_path / source.relative_path
        if not destination.exists():
            return False
        return destination.stat().st_mtime >= source.source_path.stat().st_mtime

    return is_unchanged


@app.command("build")
def build_cli(  # noqa: PLR0913
    site_root: Path = typer.Argument(..., help="站点根目录"),
    output: Path = typer.Option(..., "--output", "-o", help="原图复制的输出目录"),
    widths: Optional[str] = typer.Option(None, "--widths", help="候选宽度，逗号分隔，如 1920,1024,480"),
    formats: Optional[List[str]] = typer.Option(None, "--format", help="扩展名对应的输出格式，如 png=webp,png，可重复"),
    aliases: Optional[List[str]] = typer.Option(None, "--alias", help="扩展名别名，如 jpg=jpeg，可重复"),
    allow_upscale: bool = typer.Option(False, "--allow-upscale", help="允许生成比源图更宽的变体"),
    filename_mask: str = typer.Option("{fn}-{width}.{ext}", "--filename-mask", help="变体文件名模板"),
    thumbnail: bool = typer.Option(False, "--thumbnail/--no-thumbnail", help="是否生成缩略图"),
    thumbnail_size: Tuple[int, int] = typer.Option((1280, 720), "--thumbnail-size", help="缩略图最大宽高"),
    thumbnail_mask: str = typer.Option(
        "{fn}-{width}-thumbnail.{ext}", "--thumbnail-mask", help="缩略图文件名模板"
    ),
    codec_options: Optional[List[str]] = typer.Option(None, "--codec-option", help="编码参数，如 webp:quality=80，可重复"),
    generated_dir: str = typer.Option(DEFAULT_GENERATED_DIR, "--generated-dir", help="生成目录标记"),
    output_dir: Optional[str] = typer.Option(None, "--output-dir", help="生成图片目录（相对站点根目录）"),
    store_file: str = typer.Option(DEFAULT_STORE_FILE, "--store-file", help="清单文件名（相对站点根目录）"),
    dry_run: bool = typer.Option(False, "--dry-run", help="只记录将要执行的操作，不写文件"),
    incremental: bool = typer.Option(False, "--incremental", help="跳过已生成且未修改的图片"),
    max_workers: int = typer.Option(1, "--workers", "-w", help="同时处理的图片数量"),
    transcode_workers: int = typer.Option(4, "--transcode-workers", help="单张图片的并发转码数量"),
    task_timeout: Optional[float] = typer.Option(None, "--timeout", help="单个转码任务超时（秒）"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """为站点中的所有图片生成变体并更新清单。"""

    setup_logging(verbose)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    defaults = VariantConfig()
    format_map = dict(defaults.formats)
    for ext, value in _parse_pairs(formats or [], "--format").items():
        format_map[ext] = tuple(part.strip().lower() for part in value.split(",") if part.strip())
    alias_map = dict(defaults.aliases)
    alias_map.update({ext: value.lower() for ext, value in _parse_pairs(aliases or [], "--alias").items()})

    variants = VariantConfig(
        widths=_parse_widths(widths) or defaults.widths,
        formats=format_map,
        aliases=alias_map,
        extensions=tuple(dict.fromkeys([*defaults.extensions, *format_map, *alias_map])),
        allow_upscale=allow_upscale,
        filename_mask=filename_mask,
        thumbnail_filename_mask=thumbnail_mask,
        thumbnail=ThumbnailConfig(enabled=thumbnail, width=thumbnail_size[0], height=thumbnail_size[1]),
        codec=_parse_codec_options(codec_options or []),
        generated_dir=generated_dir,
    )

    config = BuildConfig(
        site_root=site_root.expanduser().resolve(),
        output_path=output.expanduser().resolve(),
        variants=variants,
        output_dir=output_dir or generated_dir,
        store_file=store_file or None,
        dry_run=dry_run,
        max_workers=max_workers,
        transcode_workers=transcode_workers,
        task_timeout=task_timeout,
    )

    try:
        config.validate()
        catalog = Catalog(config.store_path).load()
    except ImageVariantsError as exc:
        typer.echo(f"配置错误：{exc}", err=True)
        raise typer.Exit(code=2) from exc

    skip = _unchanged_predicate(config, catalog) if incremental else None

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    try:
        with progress:
            result = process_batch(
                config,
                skip=skip,
                catalog=catalog,
                progress_callback=_build_progress_callback(progress),
            )
    except PersistError as exc:
        typer.echo(f"清单写入失败，构建中止：{exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(
        f"处理完成：成功 {len(result.succeeded)} 张，跳过 {len(result.skipped)} 张，失败 {len(result.failed)} 张。"
    )
    for outcome in result.failed:
        typer.echo(f"  失败 [{outcome.status}] {outcome.source_path}: {outcome.message or ''}", err=True)
    if config.store_path and not dry_run:
        typer.echo(f"清单文件：{config.store_path}")
    if result.failed:
        raise typer.Exit(code=1)


@app.command("show")
def show_cli(
    site_root: Path = typer.Argument(..., help="站点根目录"),
    image: str = typer.Argument(..., help="源图片相对路径，如 images/photo.jpg"),
    store_file: str = typer.Option(DEFAULT_STORE_FILE, "--store-file", help="清单文件名（相对站点根目录）"),
) -> None:
    """打印某张图片在清单中的记录。"""

    catalog = Catalog(site_root.expanduser().resolve() / store_file)
    try:
        entry = catalog.load().lookup(image)
    except (CatalogLookupError, PersistError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(json.dumps(entry.to_dict(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    app()
