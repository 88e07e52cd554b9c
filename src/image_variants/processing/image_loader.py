"""源图片读取：尺寸探测与完整解码。"""

from __future__ import annotations

import logging
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from image_variants.core.exceptions import SourceReadError
from image_variants.core.models import ImageDimensions

LOGGER = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 274
# EXIF Orientation 5~8 表示图像需要旋转 90/270 度，宽高互换。
TRANSPOSED_ORIENTATIONS = {5, 6, 7, 8}


def read_dimensions(path: Path) -> ImageDimensions:
    """只读取文件头得到显示宽高（考虑 EXIF 旋转）。"""

    try:
        with Image.open(path) as img:
            width, height = img.size
            orientation = img.getexif().get(EXIF_ORIENTATION_TAG)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise SourceReadError(f"无法读取图像尺寸: {path}") from exc

    if width <= 0 or height <= 0:
        raise SourceReadError(f"图像尺寸无效 {width}x{height}: {path}")

    if orientation in TRANSPOSED_ORIENTATIONS:
        width, height = height, width
    return ImageDimensions(width=width, height=height)


def load_image(path: Path) -> Image.Image:
    """加载单张图片并执行 EXIF 旋转校正。

    返回值为新的 Image 对象，调用者负责关闭。
    """

    try:
        with Image.open(path) as img:
            img.load()
            transposed = ImageOps.exif_transpose(img)
            return transposed.copy()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        LOGGER.debug("无法解码图像文件 %s: %s", path, exc)
        raise SourceReadError(f"无法加载图像: {path}") from exc
