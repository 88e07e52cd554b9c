"""输出路径计算、路径不变量检查与原图复制。"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Callable, Optional

from image_variants.core.config import BuildConfig
from image_variants.core.exceptions import ImageVariantsError, PathInvariantError
from image_variants.core.models import SourceImage, VariantSpec
from image_variants.core.naming import count_path_token, render_filename

LOGGER = logging.getLogger(__name__)

FileCopier = Callable[[Path, Path], None]


class ImageWriteError(ImageVariantsError):
    """原图复制失败。"""


def copy_file(source: Path, destination: Path) -> None:
    """默认的文件复制实现：创建父目录后复制。"""

    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, destination)


class OutputManager:
    """负责生成目录下的变体路径，以及把原图复制到输出目录。"""

    def __init__(self, config: BuildConfig, copier: Optional[FileCopier] = None) -> None:
        self.config = config
        self.site_root = config.site_root
        self.generated_root = config.generated_root
        self.token = config.variants.generated_dir
        self.copier = copier or copy_file

    def output_dir_for(self, source: SourceImage) -> Path:
        return self.generated_root / source.relative_path.parent

    def variant_path(self, source: SourceImage, spec: VariantSpec) -> Path:
        """根据命名模板计算变体的输出路径。"""

        variants = self.config.variants
        mask = variants.thumbnail_filename_mask if spec.thumbnail else variants.filename_mask
        filename = render_filename(mask, source.basename, spec.width, spec.format)
        return self.output_dir_for(source) / filename

    def check_path(self, path: Path) -> None:
        """生成目录标记出现超过一次说明输出目录与源目录配置冲突。"""

        try:
            scoped = path.relative_to(self.site_root)
        except ValueError:
            scoped = path
        if count_path_token(scoped, self.token) > 1:
            raise PathInvariantError(f"输出路径中 {self.token!r} 出现多次: {path}")

    def site_relative(self, path: Path) -> str:
        """返回相对站点根目录的 POSIX 路径，供渲染端拼接 URL。"""

        try:
            return path.relative_to(self.site_root).as_posix()
        except ValueError:
            return path.as_posix()

    def copy_source(self, source: SourceImage, *, dry_run: bool = False) -> Path:
        """把原图复制到输出目录的对应位置。"""

        destination = self.config.output_path / source.relative_path
        if dry_run:
            LOGGER.info("[dry-run] 将复制 %s => %s", source.source_path, destination)
            return destination

        LOGGER.debug("复制 %s => %s", source.source_path, destination)
        try:
            self.copier(source.source_path, destination)
        except OSError as exc:
            raise ImageWriteError(f"复制文件失败: {source.source_path} -> {destination}") from exc
        return destination
