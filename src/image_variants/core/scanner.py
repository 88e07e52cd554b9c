"""站点目录扫描：找出需要生成变体的源图片。"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

from image_variants.core.config import BuildConfig
from image_variants.core.models import SourceImage


def _iter_candidate_files(root: Path) -> Iterator[Path]:
    """遍历路径下的所有文件。"""

    if not root.is_dir():
        return

    for candidate in root.rglob("*"):
        if candidate.is_file():
            yield candidate


def _is_within(path: Path, parent: Path) -> bool:
    try:
        path.relative_to(parent)
    except ValueError:
        return False
    return True


def collect_source_images(config: BuildConfig) -> list[SourceImage]:
    """扫描站点根目录，返回扩展名匹配的源图片列表。

    生成目录与复制输出目录本身会被排除，避免把产物再次当作源图片。
    """

    site_root = config.site_root.resolve()
    output_path = config.output_path.resolve()
    generated_root = (site_root / config.output_dir).resolve()
    extensions = {ext.lower().lstrip(".") for ext in config.variants.extensions}
    token = config.variants.generated_dir

    exclude_output = not _is_within(site_root, output_path)

    collected: list[SourceImage] = []
    for candidate in _iter_candidate_files(site_root):
        if candidate.suffix.lower().lstrip(".") not in extensions:
            continue
        if _is_within(candidate, generated_root) or (exclude_output and _is_within(candidate, output_path)):
            continue
        relative = candidate.relative_to(site_root)
        if token in relative.parts:
            continue
        collected.append(SourceImage(source_path=candidate, relative_path=relative))

    collected.sort(key=lambda x: str(x.relative_path).lower())
    return collected
