"""命名模板、路径不变量、复制与配置校验测试。"""

from __future__ import annotations

from pathlib import Path

import pytest
from PIL import Image

from image_variants.core.config import BuildConfig, ThumbnailConfig, VariantConfig
from image_variants.core.exceptions import InvalidConfigurationError, PathInvariantError
from image_variants.core.models import SourceImage, VariantSpec
from image_variants.core.naming import MIME_TYPES, parse_variant_width, render_filename
from image_variants.core.output_manager import ImageWriteError, OutputManager
from image_variants.core.scanner import collect_source_images


def test_render_filename_substitutes_placeholders() -> None:
    assert render_filename("{fn}-{width}.{ext}", "photo", 480, "webp") == "photo-480.webp"
    assert render_filename("{fn}-{width}-thumbnail.{ext}", "photo", 320, "png") == "photo-320-thumbnail.png"


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/_generatedImages/images/photo-480.webp", 480),
        ("my-holiday-photo-1024.jpeg", 1024),
        ("photo-320-thumbnail.png", 320),
        ("C:\\site\\photo-640.png", 640),
    ],
)
def test_parse_variant_width(path: str, expected: int) -> None:
    assert parse_variant_width(path) == expected


def test_parse_variant_width_without_width() -> None:
    with pytest.raises(ValueError):
        parse_variant_width("photo.png")


def test_mime_types_cover_every_format() -> None:
    assert {"jpeg", "webp", "png", "svg", "avif"} <= set(MIME_TYPES)


def test_variant_paths_follow_source_layout(tmp_path: Path) -> None:
    config = BuildConfig(site_root=tmp_path, output_path=tmp_path / "out")
    manager = OutputManager(config)
    source = SourceImage(source_path=tmp_path / "blog" / "cat.jpg", relative_path=Path("blog/cat.jpg"))

    regular = manager.variant_path(source, VariantSpec(width=640, format="webp"))
    thumb = manager.variant_path(source, VariantSpec(width=320, format="jpeg", thumbnail=True))

    assert regular == tmp_path / "_generatedImages" / "blog" / "cat-640.webp"
    assert thumb == tmp_path / "_generatedImages" / "blog" / "cat-320-thumbnail.jpeg"
    assert manager.site_relative(regular) == "_generatedImages/blog/cat-640.webp"


def test_check_path_rejects_repeated_generated_token(tmp_path: Path) -> None:
    manager = OutputManager(BuildConfig(site_root=tmp_path, output_path=tmp_path / "out"))

    manager.check_path(tmp_path / "_generatedImages" / "a" / "x-480.webp")
    with pytest.raises(PathInvariantError):
        manager.check_path(tmp_path / "_generatedImages" / "_generatedImages" / "x-480.webp")


def test_check_path_only_counts_inside_site_root(tmp_path: Path) -> None:
    site = tmp_path / "_generatedImages" / "site"
    manager = OutputManager(BuildConfig(site_root=site, output_path=tmp_path / "out"))

    manager.check_path(site / "_generatedImages" / "x-480.webp")


def test_copy_uses_injected_copier(tmp_path: Path) -> None:
    calls = []
    config = BuildConfig(site_root=tmp_path, output_path=tmp_path / "out")
    manager = OutputManager(config, copier=lambda src, dst: calls.append((src, dst)))
    source = SourceImage(source_path=tmp_path / "a.png", relative_path=Path("a.png"))

    destination = manager.copy_source(source)

    assert calls == [(tmp_path / "a.png", tmp_path / "out" / "a.png")]
    assert destination == tmp_path / "out" / "a.png"


def test_copy_failure_is_wrapped(tmp_path: Path) -> None:
    config = BuildConfig(site_root=tmp_path, output_path=tmp_path / "out")
    manager = OutputManager(config)
    source = SourceImage(source_path=tmp_path / "missing.png", relative_path=Path("missing.png"))

    with pytest.raises(ImageWriteError):
        manager.copy_source(source)


@pytest.mark.parametrize(
    "overrides",
    [
        {"variants": VariantConfig(widths=())},
        {"variants": VariantConfig(widths=(480, -1))},
        {"variants": VariantConfig(filename_mask="{fn}.{ext}")},
        {"variants": VariantConfig(thumbnail=ThumbnailConfig(enabled=True, width=0, height=720))},
        {"max_workers": 0},
        {"task_timeout": 0},
    ],
)
def test_invalid_configuration(tmp_path: Path, overrides) -> None:
    config = BuildConfig(site_root=tmp_path, output_path=tmp_path / "out", **overrides)

    with pytest.raises(InvalidConfigurationError):
        config.validate()


def test_store_path_can_be_disabled(tmp_path: Path) -> None:
    assert BuildConfig(site_root=tmp_path, output_path=tmp_path, store_file=None).store_path is None
    assert BuildConfig(site_root=tmp_path, output_path=tmp_path).store_path == tmp_path / ".generatedImages.json"


def test_scanner_filters_by_extension(tmp_path: Path) -> None:
    site = tmp_path / "site"
    (site / "images").mkdir(parents=True)
    (site / "_generatedImages").mkdir()
    for name in ("images/b.JPG", "images/a.png", "_generatedImages/a-480.png"):
        Image.new("RGB", (10, 10)).save(site / name, format="PNG")
    (site / "images" / "c.gif").write_bytes(b"GIF89a")

    found = collect_source_images(BuildConfig(site_root=site, output_path=tmp_path / "out"))

    assert [source.key for source in found] == ["images/a.png", "images/b.JPG"]
    assert found[1].extension == "jpg"
    assert found[1].basename == "b"
