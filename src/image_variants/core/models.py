"""核心数据模型定义。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional


@dataclass(slots=True, frozen=True)
class SourceImage:
    """站点中被追踪的源图片。"""

    source_path: Path
    relative_path: Path

    @classmethod
    def from_site(cls, site_root: Path, source_path: Path) -> "SourceImage":
        """根据站点根目录与绝对路径构造。"""

        return cls(source_path=source_path, relative_path=source_path.relative_to(site_root))

    @property
    def basename(self) -> str:
        return self.relative_path.stem

    @property
    def extension(self) -> str:
        return self.relative_path.suffix.lstrip(".").lower()

    @property
    def key(self) -> str:
        """清单中使用的键：站点相对 POSIX 路径。"""

        return self.relative_path.as_posix()


@dataclass(slots=True, frozen=True)
class ImageDimensions:
    width: int
    height: int


@dataclass(slots=True, frozen=True)
class VariantSpec:
    """待生成的（宽度, 格式）组合。"""

    width: int
    format: str
    thumbnail: bool = False


@dataclass(slots=True, frozen=True)
class ThumbnailTarget:
    width: int
    height: int


@dataclass(slots=True)
class GeneratedVariant:
    """实际写出的变体文件。

    ``height`` 为转码器测得的高度；dry run 时为 None。
    """

    file: Path
    path: str
    width: int
    height: Optional[int]
    format: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": str(self.file),
            "path": self.path,
            "width": self.width,
            "height": self.height,
            "format": self.format,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneratedVariant":
        return cls(
            file=Path(data["file"]),
            path=data["path"],
            width=int(data["width"]),
            height=None if data.get("height") is None else int(data["height"]),
            format=data["format"],
        )


@dataclass(slots=True)
class FormatVariants:
    """单一格式下的文件列表与缩略图。"""

    files: list[GeneratedVariant] = field(default_factory=list)
    thumbnail: Optional[GeneratedVariant] = None

    def sort(self) -> None:
        self.files.sort(key=lambda variant: variant.width)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [variant.to_dict() for variant in sorted(self.files, key=lambda v: v.width)],
            "thumbnail": self.thumbnail.to_dict() if self.thumbnail else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormatVariants":
        thumbnail = data.get("thumbnail")
        variants = cls(
            files=[GeneratedVariant.from_dict(item) for item in data.get("files", [])],
            thumbnail=GeneratedVariant.from_dict(thumbnail) if thumbnail else None,
        )
        variants.sort()
        return variants


@dataclass(slots=True)
class CatalogEntry:
    """一张源图片生成的全部变体，按格式分组。"""

    formats: Dict[str, FormatVariants] = field(default_factory=dict)

    def all_variants(self) -> list[GeneratedVariant]:
        collected: list[GeneratedVariant] = []
        for group in self.formats.values():
            collected.extend(group.files)
            if group.thumbnail is not None:
                collected.append(group.thumbnail)
        return collected

    def to_dict(self) -> Dict[str, Any]:
        return {fmt: group.to_dict() for fmt, group in self.formats.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CatalogEntry":
        return cls(formats={fmt: FormatVariants.from_dict(group) for fmt, group in data.items()})


@dataclass(slots=True)
class VariantOutcome:
    """单个转码单元的结果：成功时有 variant，失败时有 error。"""

    spec: VariantSpec
    output_path: Path
    variant: Optional[GeneratedVariant] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.variant is not None


@dataclass(slots=True)
class ImageOutcome:
    """记录单张源图片的处理结果（用于汇总/日志）。"""

    source_path: Path
    status: str
    entry: Optional[CatalogEntry] = None
    failed_variants: list[VariantOutcome] = field(default_factory=list)
    message: Optional[str] = None


@dataclass(slots=True)
class BatchResult:
    """整次构建的产出。"""

    succeeded: list[ImageOutcome]
    skipped: list[ImageOutcome]
    failed: list[ImageOutcome]

    def all_outcomes(self) -> list[ImageOutcome]:
        """返回所有结果记录。"""

        return [*self.succeeded, *self.skipped, *self.failed]


@dataclass(slots=True)
class ProgressUpdate:
    """构建过程中的进度信息。"""

    total: int
    completed: int
    message: Optional[str] = None
