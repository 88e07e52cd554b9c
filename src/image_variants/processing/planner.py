"""变体规划：决定要生成哪些（宽度, 格式）组合以及缩略图尺寸。"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Tuple

from image_variants.core.config import VariantConfig
from image_variants.core.exceptions import InvalidConfigurationError
from image_variants.core.models import ImageDimensions, ThumbnailTarget, VariantSpec

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class VariantPlan:
    """单张源图片的规划结果。"""

    specs: list[VariantSpec] = field(default_factory=list)
    thumbnail: Optional[ThumbnailTarget] = None

    def widths_for(self, fmt: str) -> list[int]:
        return [spec.width for spec in self.specs if spec.format == fmt and not spec.thumbnail]

    @property
    def formats(self) -> list[str]:
        seen: list[str] = []
        for spec in self.specs:
            if spec.format not in seen:
                seen.append(spec.format)
        return seen


def _round_half_up(value: float) -> int:
    return max(1, int(math.floor(value + 0.5)))


def aspect_fit(
    src_width: int,
    src_height: int,
    max_width: int,
    max_height: int,
    allow_upscale: bool = False,
) -> Tuple[int, int]:
    """在最大框内按原比例缩放，返回取整后的宽高。"""

    if src_width <= 0 or src_height <= 0:
        raise InvalidConfigurationError(f"源尺寸必须大于 0: {src_width}x{src_height}")

    aspect = src_width / src_height
    scale = min(max_width / src_width, max_height / src_height)
    width = src_width * scale
    height = src_height * scale

    if width > max_width:
        width = max_width
        height = width / aspect

    if height > max_height:
        height = max_height
        width = height * aspect

    if not allow_upscale:
        if width > src_width:
            width = src_width
            height = width / aspect
        if height > src_height:
            height = src_height
            width = height * aspect

    return _round_half_up(width), _round_half_up(height)


def formats_for_extension(extension: str, config: VariantConfig) -> Tuple[str, ...]:
    """解析别名后查找该扩展名对应的输出格式列表。"""

    resolved = config.resolve_extension(extension)
    formats = config.formats.get(resolved)
    if not formats:
        raise InvalidConfigurationError(f"扩展名 {extension!r} 没有配置输出格式")
    return tuple(formats)


def plan_variants(dimensions: ImageDimensions, extension: str, config: VariantConfig) -> VariantPlan:
    """枚举需要生成的变体。

    默认不放大：宽度大于源图宽度的候选会被跳过；若某个格式没有任何候选
    宽度满足条件，则退回到源图原始宽度生成一张。
    """

    formats = formats_for_extension(extension, config)
    widths = list(dict.fromkeys(config.widths))
    plan = VariantPlan()

    for fmt in formats:
        planned = 0
        for width in widths:
            if dimensions.width >= width or config.allow_upscale:
                plan.specs.append(VariantSpec(width=width, format=fmt))
                planned += 1
            else:
                LOGGER.debug("跳过 %s@%d：源图宽度仅 %d", fmt, width, dimensions.width)

        if planned == 0:
            LOGGER.debug("格式 %s 无可用宽度，按原始宽度 %d 生成", fmt, dimensions.width)
            plan.specs.append(VariantSpec(width=dimensions.width, format=fmt))

    thumb_cfg = config.thumbnail
    if thumb_cfg.enabled:
        thumb_w, thumb_h = aspect_fit(
            dimensions.width,
            dimensions.height,
            thumb_cfg.width,
            thumb_cfg.height,
            config.allow_upscale,
        )
        plan.thumbnail = ThumbnailTarget(width=thumb_w, height=thumb_h)
        for fmt in formats:
            plan.specs.append(VariantSpec(width=thumb_w, format=fmt, thumbnail=True))

    return plan
