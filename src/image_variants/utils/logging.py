"""日志工具。"""

from __future__ import annotations

import logging

# Pillow 在 DEBUG 级别会为每次打开文件输出插件探测信息。
NOISY_LOGGERS = ("PIL",)


def setup_logging(verbose: bool = False) -> None:
    """初始化项目日志配置；verbose 时输出本项目的调试日志。"""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s",
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
