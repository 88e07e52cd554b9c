"""流水线：规划、并发转码、清单写入与复制。"""

from __future__ import annotations

import json
import time
from pathlib import Path

import pytest
from PIL import Image

from image_variants.core.catalog import Catalog
from image_variants.core.config import BuildConfig, ThumbnailConfig, VariantConfig
from image_variants.core.exceptions import PathInvariantError, PersistError, SourceReadError, TranscodeError
from image_variants.core.models import CatalogEntry, FormatVariants, GeneratedVariant, SourceImage
from image_variants.core.naming import parse_variant_width
from image_variants.processing import worker
from image_variants.processing.pipeline import ImageProcessingPipeline, process_batch


def make_config(site: Path, output: Path, **overrides) -> BuildConfig:
    variant_overrides = overrides.pop("variants", {})
    variant_overrides.setdefault("widths", (1920, 1024, 480))
    return BuildConfig(site_root=site, output_path=output, variants=VariantConfig(**variant_overrides), **overrides)


def make_source(site: Path, relative: str, size=(1200, 600), color="blue") -> SourceImage:
    path = site / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path)
    return SourceImage.from_site(site, path)


@pytest.fixture()
def site(tmp_path: Path) -> Path:
    root = tmp_path / "site"
    root.mkdir()
    return root


@pytest.fixture()
def output(tmp_path: Path) -> Path:
    return tmp_path / "public"


def test_process_generates_sorted_variants_and_persists(site: Path, output: Path) -> None:
    source = make_source(site, "images/photo.jpg")
    config = make_config(site, output)

    with ImageProcessingPipeline(config) as pipeline:
        outcome = pipeline.process(source)

    assert outcome.status == "processed"
    assert outcome.entry is not None
    assert list(outcome.entry.formats) == ["webp", "jpeg"]
    for fmt, group in outcome.entry.formats.items():
        assert [(v.width, v.height) for v in group.files] == [(480, 240), (1024, 512)]
        for variant in group.files:
            assert variant.file.exists()
            assert variant.format == fmt
            assert parse_variant_width(variant.path) == variant.width
        assert group.thumbnail is None

    jpeg_480 = outcome.entry.formats["jpeg"].files[0]
    assert jpeg_480.file == site / "_generatedImages" / "images" / "photo-480.jpeg"
    assert jpeg_480.path == "_generatedImages/images/photo-480.jpeg"

    store = json.loads((site / ".generatedImages.json").read_text(encoding="utf-8"))
    assert [key for key, _ in store] == ["images/photo.jpg"]

    assert (output / "images" / "photo.jpg").read_bytes() == source.source_path.read_bytes()


def test_small_source_falls_back_to_native_width(site: Path, output: Path) -> None:
    source = make_source(site, "icon.png", size=(100, 100))

    with ImageProcessingPipeline(make_config(site, output)) as pipeline:
        outcome = pipeline.process(source)

    assert outcome.entry is not None
    assert [v.width for v in outcome.entry.formats["png"].files] == [100]
    assert [v.width for v in outcome.entry.formats["webp"].files] == [100]
    assert (site / "_generatedImages" / "icon-100.png").exists()


def test_thumbnail_recorded_per_format(site: Path, output: Path) -> None:
    source = make_source(site, "wide.png", size=(3000, 1000))
    config = make_config(
        site,
        output,
        variants={"thumbnail": ThumbnailConfig(enabled=True, width=1280, height=720)},
    )

    with ImageProcessingPipeline(config) as pipeline:
        outcome = pipeline.process(source)

    assert outcome.entry is not None
    for fmt in ("webp", "png"):
        thumb = outcome.entry.formats[fmt].thumbnail
        assert thumb is not None
        assert thumb.file.name == f"wide-1280-thumbnail.{fmt}"
        assert (thumb.width, thumb.height) == (1280, 427)
        assert thumb.file.exists()


def test_reprocessing_is_idempotent(site: Path, output: Path) -> None:
    source = make_source(site, "images/photo.jpg")
    config = make_config(site, output)
    store = site / ".generatedImages.json"

    with ImageProcessingPipeline(config) as pipeline:
        pipeline.process(source)
    first = store.read_bytes()

    with ImageProcessingPipeline(config) as pipeline:
        pipeline.process(source)

    assert store.read_bytes() == first


def test_catalog_loaded_at_start_keeps_other_entries(site: Path, output: Path) -> None:
    first = make_source(site, "a.png", size=(600, 300))
    second = make_source(site, "b.png", size=(600, 300))
    config = make_config(site, output)

    with ImageProcessingPipeline(config) as pipeline:
        pipeline.process(first)
    with ImageProcessingPipeline(config) as pipeline:
        pipeline.process(second)

    catalog = Catalog(config.store_path).load()
    assert sorted(catalog.keys()) == ["a.png", "b.png"]


def test_skip_leaves_catalog_untouched_but_copies(site: Path, output: Path) -> None:
    source = make_source(site, "images/photo.jpg")
    config = make_config(site, output)
    sentinel = CatalogEntry(
        formats={
            "webp": FormatVariants(
                files=[GeneratedVariant(file=Path("/old.webp"), path="old.webp", width=1, height=1, format="webp")]
            )
        }
    )
    catalog = Catalog(config.store_path)
    catalog.put(source.key, sentinel)
    catalog.save()
    before = config.store_path.read_bytes()

    with ImageProcessingPipeline(config) as pipeline:
        outcome = pipeline.process(source, skip=True)

    assert outcome.status == "skipped"
    assert config.store_path.read_bytes() == before
    assert not (site / "_generatedImages").exists()
    assert (output / "images" / "photo.jpg").exists()


def test_duplicate_generated_token_is_fatal_before_writing(site: Path, output: Path) -> None:
    source = make_source(site, "_generatedImages/images/photo.jpg")
    config = make_config(site, output)

    with ImageProcessingPipeline(config) as pipeline:
        with pytest.raises(PathInvariantError, match="_generatedImages"):
            pipeline.process(source)

    nested = site / "_generatedImages" / "_generatedImages"
    assert not nested.exists()
    assert not config.store_path.exists()
    assert not (output / "_generatedImages").exists()


def test_unreadable_source_raises(site: Path, output: Path) -> None:
    broken = site / "broken.png"
    broken.write_text("not an image")
    source = SourceImage.from_site(site, broken)

    with ImageProcessingPipeline(make_config(site, output)) as pipeline:
        with pytest.raises(SourceReadError, match="broken.png"):
            pipeline.process(source)


def test_failed_variant_does_not_stop_siblings(
    site: Path, output: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    source = make_source(site, "images/photo.png")
    config = make_config(
        site,
        output,
        variants={"thumbnail": ThumbnailConfig(enabled=True, width=320, height=320)},
    )
    real_transcode = worker.transcode

    def flaky_transcode(source_path, width, fmt, output_path, codec=None, *, dry_run=False):
        if fmt == "webp" and width == 480:
            raise TranscodeError(f"模拟失败: {output_path}")
        return real_transcode(source_path, width, fmt, output_path, codec, dry_run=dry_run)

    monkeypatch.setattr(worker, "transcode", flaky_transcode)

    with ImageProcessingPipeline(config) as pipeline:
        outcome = pipeline.process(source)

    assert outcome.status == "processed-partial"
    assert [(f.spec.format, f.spec.width) for f in outcome.failed_variants] == [("webp", 480)]

    entry = Catalog(config.store_path).load().lookup("images/photo.png")
    assert [v.width for v in entry.formats["webp"].files] == [1024]
    assert [v.width for v in entry.formats["png"].files] == [480, 1024]
    assert entry.formats["webp"].thumbnail is not None
    assert entry.formats["png"].thumbnail is not None


def test_all_variants_failing_writes_no_entry(site: Path, output: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    source = make_source(site, "photo.png")
    with ImageProcessingPipeline(make_config(site, output)) as pipeline:
        assert pipeline.process(source).status == "processed"
    assert "photo.png" in Catalog(make_config(site, output).store_path).load()

    config = make_config(site, output, variants={"widths": (800,)})

    def failing_transcode(source_path, width, fmt, output_path, codec=None, *, dry_run=False):
        raise TranscodeError("模拟失败")

    monkeypatch.setattr(worker, "transcode", failing_transcode)

    with ImageProcessingPipeline(config) as pipeline:
        outcome = pipeline.process(source)

    assert outcome.status == "error-transcode"
    assert "photo.png" not in pipeline.catalog
    assert "photo.png" not in Catalog(config.store_path).load()
    assert (output / "photo.png").exists()


def test_slow_variant_times_out_without_cancelling_siblings(
    site: Path, output: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    source = make_source(site, "photo.png")
    config = make_config(site, output, task_timeout=1.0, transcode_workers=8)
    real_transcode = worker.transcode

    def slow_transcode(source_path, width, fmt, output_path, codec=None, *, dry_run=False):
        if fmt == "png" and width == 1024:
            time.sleep(3.0)
        return real_transcode(source_path, width, fmt, output_path, codec, dry_run=dry_run)

    monkeypatch.setattr(worker, "transcode", slow_transcode)

    with ImageProcessingPipeline(config) as pipeline:
        outcome = pipeline.process(source)

    assert outcome.status == "processed-partial"
    assert outcome.entry is not None
    assert [v.width for v in outcome.entry.formats["png"].files] == [480]
    assert [v.width for v in outcome.entry.formats["webp"].files] == [480, 1024]
    assert not (site / "_generatedImages" / "photo-1024.png").exists()


def test_timeout_does_not_count_time_spent_queued(
    site: Path, output: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    source = make_source(site, "photo.png")
    config = make_config(
        site, output, task_timeout=1.0, transcode_workers=1, variants={"widths": (1024, 480)}
    )
    real_transcode = worker.transcode

    def steady_transcode(source_path, width, fmt, output_path, codec=None, *, dry_run=False):
        time.sleep(0.6)
        return real_transcode(source_path, width, fmt, output_path, codec, dry_run=dry_run)

    monkeypatch.setattr(worker, "transcode", steady_transcode)

    with ImageProcessingPipeline(config) as pipeline:
        outcome = pipeline.process(source)

    assert outcome.status == "processed"
    assert outcome.failed_variants == []
    assert outcome.entry is not None
    assert [v.width for v in outcome.entry.formats["png"].files] == [480, 1024]
    assert [v.width for v in outcome.entry.formats["webp"].files] == [480, 1024]


def test_preloaded_catalog_is_not_reloaded(site: Path, output: Path) -> None:
    source = make_source(site, "photo.png", size=(600, 300))
    config = make_config(site, output)
    catalog = Catalog(config.store_path).load()
    catalog.put("pending.png", CatalogEntry())
    config.store_path.write_text("not json", encoding="utf-8")

    with ImageProcessingPipeline(config, catalog=catalog) as pipeline:
        pipeline.process(source)

    assert sorted(pipeline.catalog.keys()) == ["pending.png", "photo.png"]


def test_dry_run_writes_nothing(site: Path, output: Path) -> None:
    source = make_source(site, "images/photo.jpg")
    config = make_config(site, output, dry_run=True)

    with ImageProcessingPipeline(config) as pipeline:
        outcome = pipeline.process(source)
        in_memory = pipeline.catalog.lookup(source.key)

    assert outcome.status == "processed"
    assert all(v.height is None for v in in_memory.all_variants())
    assert not (site / "_generatedImages").exists()
    assert not config.store_path.exists()
    assert not output.exists()


def test_persist_error_is_fatal(site: Path, output: Path) -> None:
    (site / "blocker").write_text("file, not a directory")
    source = make_source(site, "photo.png", size=(600, 300))
    config = make_config(site, output, store_file="blocker/store.json")

    with ImageProcessingPipeline(config) as pipeline:
        with pytest.raises(PersistError):
            pipeline.process(source)

    with pytest.raises(PersistError):
        process_batch(config, [source])


@pytest.mark.parametrize("workers", [1, 3])
def test_process_batch_collects_outcomes(site: Path, output: Path, workers: int) -> None:
    make_source(site, "images/a.jpg")
    make_source(site, "images/b.png", size=(300, 200))
    make_source(site, "c.webp", size=(2000, 1000))
    (site / "images" / "broken.png").write_text("not an image")
    (site / "notes.txt").write_text("hello")
    config = make_config(site, output, max_workers=workers)

    result = process_batch(config)

    assert len(result.succeeded) == 3
    assert len(result.skipped) == 0
    assert [outcome.status for outcome in result.failed] == ["error-read"]

    catalog = Catalog(config.store_path).load()
    assert sorted(catalog.keys()) == ["c.webp", "images/a.jpg", "images/b.png"]
    assert [v.width for v in catalog.lookup("c.webp").formats["jpeg"].files] == [480, 1024, 1920]


def test_process_batch_skip_predicate(site: Path, output: Path) -> None:
    make_source(site, "a.png", size=(600, 300))
    make_source(site, "b.png", size=(600, 300))
    config = make_config(site, output)

    result = process_batch(config, skip=lambda source: source.key == "a.png")

    assert [o.source_path.name for o in result.skipped] == ["a.png"]
    assert [o.source_path.name for o in result.succeeded] == ["b.png"]
    assert Catalog(config.store_path).load().keys() == ["b.png"]
    assert (output / "a.png").exists()


def test_process_batch_reports_progress(site: Path, output: Path) -> None:
    make_source(site, "a.png", size=(600, 300))
    updates = []

    process_batch(make_config(site, output), progress_callback=updates.append)

    assert updates[-1].completed == updates[-1].total == 1


def test_scanner_ignores_generated_and_output_trees(site: Path) -> None:
    make_source(site, "a.png", size=(600, 300))
    output = site / "_site"
    config = make_config(site, output)

    process_batch(config)
    result = process_batch(config)

    assert [o.source_path.name for o in result.succeeded] == ["a.png"]
