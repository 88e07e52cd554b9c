"""单个变体的缩放与重新编码。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from PIL import Image

from image_variants.core.config import CodecOptions
from image_variants.core.exceptions import SourceReadError, TranscodeError
from image_variants.processing.image_loader import load_image

LOGGER = logging.getLogger(__name__)

# dry run 时返回的占位高度，不是实际测量值。
DRY_RUN_HEIGHT = 0

PIL_FORMATS = {
    "jpeg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
    "avif": "AVIF",
}


def transcode(
    source_path: Path,
    width: int,
    fmt: str,
    output_path: Path,
    codec: Optional[CodecOptions] = None,
    *,
    dry_run: bool = False,
) -> int:
    """按宽度缩放源图并编码为目标格式，返回实际输出高度。"""

    if dry_run:
        LOGGER.info("[dry-run] 将生成 %s（宽度 %d，格式 %s）", output_path, width, fmt)
        return DRY_RUN_HEIGHT

    pil_format = PIL_FORMATS.get(fmt)
    if pil_format is None:
        LOGGER.error("无法生成 %s: 不支持的输出格式 %s", output_path, fmt)
        raise TranscodeError(f"不支持的输出格式 {fmt!r}: {output_path}")

    codec = codec or CodecOptions()
    image: Optional[Image.Image] = None
    resized: Optional[Image.Image] = None
    prepared: Optional[Image.Image] = None
    try:
        image = load_image(source_path)
        resized = _resize_to_width(image, width)
        prepared = _prepare_mode(resized, pil_format)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        prepared.save(output_path, format=pil_format, **codec.for_format(fmt))
        produced_height = prepared.height
    except SourceReadError as exc:
        LOGGER.error("无法生成 %s: %s", output_path, exc)
        raise TranscodeError(f"读取源图失败，无法生成 {output_path}") from exc
    except (OSError, ValueError, KeyError) as exc:
        LOGGER.error("无法生成 %s: %s", output_path, exc)
        raise TranscodeError(f"写入变体失败: {output_path}: {exc}") from exc
    finally:
        _close_if_needed(image, resized, prepared)

    LOGGER.debug("已写入变体文件：%s", output_path)
    return produced_height


def _resize_to_width(image: Image.Image, width: int) -> Image.Image:
    """仅指定宽度，高度按原比例推算。"""

    src_width, src_height = image.size
    height = max(1, round(src_height * width / src_width))
    if (width, height) == image.size:
        return image.copy()
    return image.resize((width, height), Image.LANCZOS)


def _prepare_mode(image: Image.Image, pil_format: str) -> Image.Image:
    """按目标格式归一化颜色模式。"""

    if pil_format == "JPEG":
        if image.mode == "RGB":
            return image.copy()
        if image.mode in {"RGBA", "LA"} or "transparency" in image.info:
            # 透明区域以白色背景混合。
            rgba = image.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.split()[-1])
            rgba.close()
            return background
        return image.convert("RGB")

    if image.mode in {"RGB", "RGBA"}:
        return image.copy()
    if "A" in image.getbands() or "transparency" in image.info:
        return image.convert("RGBA")
    return image.convert("RGB")


def _close_if_needed(*images: Optional[Image.Image]) -> None:
    for img in images:
        if img is not None:
            img.close()
