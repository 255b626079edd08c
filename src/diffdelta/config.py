from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping


DEFAULT_BASE_URL = "https://diffdelta.io"
DEFAULT_TIMEOUT_MS = 15_000

# cursor_path 的特殊取值：显式内存模式（serverless / edge）
MEMORY_CURSORS = "memory"

UNSET = object()


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    v = env.get(key)
    if v is None or not v.strip():
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _get_str(env: Mapping[str, str], key: str) -> str | None:
    v = env.get(key)
    if v is None or not v.strip():
        return None
    return v.strip()


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """
    客户端配置（均为可选项）。

    base_url:
      - 服务地址，末尾的 "/" 会被去掉
    api_key:
      - Pro/Enterprise 的 API key（dd_live_...），配置后附带 X-DiffDelta-Key 头
    cursor_path:
      - 文件路径：持久化到该 JSON 文件
      - None 或 "memory"：仅内存
      - 不设置：DD_CURSOR_PATH 环境变量，或 ~/.diffdelta/cursors.json
    timeout_ms:
      - 单次请求超时（毫秒），默认 15000
    """

    base_url: str = DEFAULT_BASE_URL
    api_key: str | None = None
    cursor_path: object = UNSET
    timeout_ms: int = DEFAULT_TIMEOUT_MS

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", (self.base_url or DEFAULT_BASE_URL).rstrip("/"))
        if self.timeout_ms <= 0:
            object.__setattr__(self, "timeout_ms", DEFAULT_TIMEOUT_MS)

    @property
    def cursor_path_is_default(self) -> bool:
        return self.cursor_path is UNSET

    @property
    def in_memory_cursors(self) -> bool:
        return self.cursor_path is None or self.cursor_path == MEMORY_CURSORS

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @property
    def tier(self) -> str:
        return "pro" if self.api_key else "free"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ClientConfig":
        """
        从环境变量读取配置：DD_BASE_URL / DD_API_KEY / DD_CURSOR_PATH / DD_TIMEOUT_MS。

        数值解析失败时回退默认值，不报错。
        """
        env = os.environ if env is None else env
        cursor_path = _get_str(env, "DD_CURSOR_PATH")
        return cls(
            base_url=_get_str(env, "DD_BASE_URL") or DEFAULT_BASE_URL,
            api_key=_get_str(env, "DD_API_KEY"),
            cursor_path=cursor_path if cursor_path is not None else UNSET,
            timeout_ms=_get_int(env, "DD_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
        )
