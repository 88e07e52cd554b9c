"""变体文件命名规则。

文件名中的宽度会被渲染端重新解析出来（按 ``-`` 切分，取扩展名前的数字），
因此命名模板实际上是对外约定，修改时需同步更新 ``parse_variant_width``。
"""

from __future__ import annotations

from pathlib import Path, PurePosixPath
from typing import Union

MIME_TYPES = {
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "png": "image/png",
    "svg": "image/svg+xml",
    "avif": "image/avif",
}


def render_filename(mask: str, basename: str, width: int, ext: str) -> str:
    """将文件名、宽度与扩展名代入模板。"""

    return mask.replace("{fn}", basename).replace("{width}", str(width)).replace("{ext}", ext)


def parse_variant_width(path: Union[str, Path]) -> int:
    """从变体文件名中解析宽度（``photo-480.webp`` -> 480）。"""

    stem = PurePosixPath(str(path).replace("\\", "/")).name.rsplit(".", 1)[0]
    for token in reversed(stem.split("-")):
        if token.isdigit():
            return int(token)
    raise ValueError(f"文件名中没有宽度信息: {path}")


def count_path_token(path: Path, token: str) -> int:
    """统计路径中等于 token 的目录层级数量。"""

    return sum(1 for part in path.parts if part == token)
