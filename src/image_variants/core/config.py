"""变体生成任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from image_variants.core.exceptions import InvalidConfigurationError

DEFAULT_WIDTHS: Tuple[int, ...] = (1920, 1440, 1280, 1024, 768, 640, 480, 320)
DEFAULT_EXTENSIONS: Tuple[str, ...] = ("jpg", "jpeg", "png", "webp")
DEFAULT_GENERATED_DIR = "_generatedImages"
DEFAULT_STORE_FILE = ".generatedImages.json"

MASK_PLACEHOLDERS = ("{fn}", "{width}", "{ext}")


def _default_formats() -> Dict[str, Tuple[str, ...]]:
    return {
        "png": ("webp", "png"),
        "jpeg": ("webp", "jpeg"),
        "webp": ("webp", "jpeg"),
    }


def _default_encoder_options() -> Dict[str, Dict[str, Any]]:
    return {
        "jpeg": {"quality": 95, "optimize": True, "subsampling": 1},
        "png": {"optimize": True},
        "webp": {"quality": 90},
        "avif": {},
        "svg": {},
    }


@dataclass(slots=True, frozen=True)
class ThumbnailConfig:
    """缩略图（aspect-fit）相关配置。"""

    enabled: bool = False
    width: int = 1280
    height: int = 720


@dataclass(slots=True, frozen=True)
class CodecOptions:
    """各输出格式的编码参数，直接传给 Pillow 的 ``save``。"""

    encoders: Mapping[str, Mapping[str, Any]] = field(default_factory=_default_encoder_options)

    def for_format(self, fmt: str) -> Dict[str, Any]:
        """返回指定格式的编码参数副本。"""

        return dict(self.encoders.get(fmt, {}))


@dataclass(slots=True, frozen=True)
class VariantConfig:
    """宽度、格式、命名与放大策略配置。"""

    widths: Tuple[int, ...] = DEFAULT_WIDTHS
    formats: Mapping[str, Tuple[str, ...]] = field(default_factory=_default_formats)
    aliases: Mapping[str, str] = field(default_factory=lambda: {"jpg": "jpeg"})
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    allow_upscale: bool = False
    filename_mask: str = "{fn}-{width}.{ext}"
    thumbnail_filename_mask: str = "{fn}-{width}-thumbnail.{ext}"
    thumbnail: ThumbnailConfig = field(default_factory=ThumbnailConfig)
    codec: CodecOptions = field(default_factory=CodecOptions)
    generated_dir: str = DEFAULT_GENERATED_DIR

    def resolve_extension(self, extension: str) -> str:
        """处理扩展名别名（例如 jpg -> jpeg）。"""

        ext = extension.lower().lstrip(".")
        return self.aliases.get(ext, ext)


@dataclass(slots=True, frozen=True)
class BuildConfig:
    """单次站点构建的配置集合。

    ``output_dir`` 为生成图片目录（相对站点根目录），``output_path`` 为
    原图复制的目标根目录。
    """

    site_root: Path
    output_path: Path
    variants: VariantConfig = field(default_factory=VariantConfig)
    output_dir: str = DEFAULT_GENERATED_DIR
    store_file: Optional[str] = DEFAULT_STORE_FILE
    dry_run: bool = False
    max_workers: int = 1
    transcode_workers: int = 4
    task_timeout: Optional[float] = None

    @property
    def store_path(self) -> Optional[Path]:
        if not self.store_file:
            return None
        return self.site_root / self.store_file

    @property
    def generated_root(self) -> Path:
        return self.site_root / self.output_dir

    def validate(self) -> None:
        """检查配置取值，发现问题时抛出 InvalidConfigurationError。"""

        variants = self.variants
        if not variants.widths:
            raise InvalidConfigurationError("widths 不能为空")
        if any(width <= 0 for width in variants.widths):
            raise InvalidConfigurationError(f"widths 必须为正整数: {list(variants.widths)}")
        for mask in (variants.filename_mask, variants.thumbnail_filename_mask):
            missing = [token for token in MASK_PLACEHOLDERS if token not in mask]
            if missing:
                raise InvalidConfigurationError(f"文件名模板 {mask!r} 缺少占位符: {', '.join(missing)}")
        if variants.thumbnail.enabled and (variants.thumbnail.width <= 0 or variants.thumbnail.height <= 0):
            raise InvalidConfigurationError("缩略图尺寸必须大于 0")
        if not variants.generated_dir:
            raise InvalidConfigurationError("generated_dir 不能为空")
        if self.max_workers < 1 or self.transcode_workers < 1:
            raise InvalidConfigurationError("并发数量必须大于等于 1")
        if self.task_timeout is not None and self.task_timeout <= 0:
            raise InvalidConfigurationError("task_timeout 必须大于 0")
