"""生成清单：源图片相对路径 -> 各格式变体列表，持久化为 JSON。"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path, PurePosixPath
from typing import Dict, Iterator, Optional, Union

from image_variants.core.exceptions import CatalogLookupError, PersistError
from image_variants.core.models import CatalogEntry

LOGGER = logging.getLogger(__name__)

KeyLike = Union[str, Path]


def normalize_key(key: KeyLike) -> str:
    """统一为不带前导 ``/`` 的 POSIX 相对路径。"""

    if isinstance(key, Path):
        key = key.as_posix()
    return str(PurePosixPath(key.replace("\\", "/").lstrip("/")))


class Catalog:
    """构建期间由流水线持有的生成清单。

    磁盘格式为 ``[[key, entry], ...]`` 列表；每次保存都写入完整内容并原子替换。
    """

    def __init__(self, store_path: Optional[Path] = None) -> None:
        self.store_path = store_path
        self._entries: Dict[str, CatalogEntry] = {}
        self._lock = threading.Lock()
        self.loaded = False

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (str, Path)):
            return False
        return normalize_key(key) in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def keys(self) -> list[str]:
        return list(self._entries)

    def load(self) -> "Catalog":
        """从磁盘加载清单；未配置路径或文件不存在时保持为空。"""

        if self.store_path is None or not self.store_path.exists():
            LOGGER.debug("清单文件不存在，使用空清单：%s", self.store_path)
            self._entries = {}
            self.loaded = True
            return self

        try:
            raw = json.loads(self.store_path.read_text(encoding="utf-8"))
            entries = {normalize_key(key): CatalogEntry.from_dict(value) for key, value in raw}
        except (OSError, ValueError, TypeError, KeyError) as exc:
            raise PersistError(f"无法读取清单文件 {self.store_path}: {exc}") from exc

        self._entries = entries
        self.loaded = True
        LOGGER.info("已加载清单：%d 条记录（%s）", len(entries), self.store_path)
        return self

    def save(self) -> None:
        """将完整清单写回磁盘（临时文件 + 原子替换）。"""

        if self.store_path is None:
            return

        payload = [[key, entry.to_dict()] for key, entry in self._entries.items()]
        tmp_path = self.store_path.with_name(f"{self.store_path.name}.tmp.{os.getpid()}.{threading.get_ident()}")
        try:
            self.store_path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, ensure_ascii=False)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, self.store_path)
        except OSError as exc:
            raise PersistError(f"写入清单文件失败: {self.store_path}: {exc}") from exc
        finally:
            if tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    LOGGER.warning("无法删除临时清单文件 %s", tmp_path)
        LOGGER.debug("已保存清单：%d 条记录", len(payload))

    def get(self, key: KeyLike) -> Optional[CatalogEntry]:
        return self._entries.get(normalize_key(key))

    def put(self, key: KeyLike, entry: CatalogEntry) -> None:
        """写入条目，同一个键后写覆盖先写。"""

        for group in entry.formats.values():
            group.sort()
        self._entries[normalize_key(key)] = entry

    def commit(self, key: KeyLike, entry: CatalogEntry, *, persist: bool = True) -> None:
        """串行化的 put + save，供多张图片并发处理时使用。"""

        with self._lock:
            self.put(key, entry)
            if persist:
                self.save()

    def discard(self, key: KeyLike, *, persist: bool = True) -> bool:
        """移除某张图片的记录；键存在时返回 True 并（可选）写回磁盘。"""

        with self._lock:
            removed = self._entries.pop(normalize_key(key), None) is not None
            if removed and persist:
                self.save()
        return removed

    def lookup(self, key: KeyLike) -> CatalogEntry:
        """渲染端使用的查询接口；缺失即视为错误。"""

        entry = self.get(key)
        if entry is None:
            raise CatalogLookupError(f"没有为该图片生成任何文件: {key}")
        return entry
