from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path


logger = logging.getLogger(__name__)

CURSOR_PATH_ENV = "DD_CURSOR_PATH"
DEFAULT_CURSOR_PATH = "~/.diffdelta/cursors.json"


def resolve_cursor_path(path: str | os.PathLike[str] | None = None) -> Path:
    """
    cursor 文件路径优先级：显式参数 > 环境变量 DD_CURSOR_PATH > ~/.diffdelta/cursors.json
    """
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CURSOR_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return Path(DEFAULT_CURSOR_PATH).expanduser()


class JsonCursorStore:
    """
    持久化 cursor 存储：单个 JSON 文档 {feed_key: cursor}，让进程重启后能续跑。

    说明：
    - 构造时加载一次；文件缺失、损坏或不可读都视为空存储，不报错
    - 每次 set/clear 都整体重写文件；写失败则退化为仅内存，首次失败打一条 WARNING
    - 读-改-写不是跨进程原子的，多个进程共享同一个文件会互相覆盖
    """

    def __init__(self, path: str | os.PathLike[str] | None = None) -> None:
        self._cursors: dict[str, str] = {}
        self._lock = threading.Lock()
        self._degraded = False
        self._path: Path | None = None
        try:
            self._path = resolve_cursor_path(path)
        except RuntimeError as e:
            # 例如 ~unknown_user/... 或 HOME 无法确定
            logger.warning("cursor path unresolvable, keeping cursors in memory only: error=%s", e)
            self._degraded = True
            return
        self._load()

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def degraded(self) -> bool:
        return self._degraded

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._cursors.get(key)

    def set(self, key: str, cursor: str) -> None:
        with self._lock:
            self._cursors[key] = cursor
            self._save()

    def clear(self, key: str | None = None) -> None:
        with self._lock:
            if key is None:
                self._cursors = {}
            else:
                self._cursors.pop(key, None)
            self._save()

    def _load(self) -> None:
        if self._path is None:
            return
        try:
            if not self._path.exists():
                return
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("cursor file unreadable, starting empty: path=%s error=%s", self._path, e)
            return
        if not isinstance(data, dict):
            logger.warning("cursor file is not a JSON object, starting empty: path=%s", self._path)
            return
        self._cursors = {k: v for k, v in data.items() if isinstance(k, str) and isinstance(v, str)}

    def _save(self) -> None:
        if self._path is None:
            return
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self._cursors, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as e:
            if not self._degraded:
                logger.warning(
                    "cursor file not writable, keeping cursors in memory only: path=%s error=%s",
                    self._path,
                    e,
                )
            else:
                logger.debug("cursor save failed again: path=%s error=%s", self._path, e)
            self._degraded = True
