import os
import sys
from dataclasses import dataclass, field
from typing import Any


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")

if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


BASE_URL = "https://dd.test"


@dataclass
class FakeHttp:
    """
    纯内存 JSON 拉取器：按 URL 返回预设文档；预设值为异常时直接抛出。
    """

    responses: dict[str, Any]
    calls: list[str] = field(default_factory=list)

    def get_json(self, url: str) -> Any:
        self.calls.append(url)
        value = self.responses.get(url)
        if isinstance(value, Exception):
            raise value
        if url not in self.responses:
            from diffdelta.http_utils import TransportError

            raise TransportError(f"HTTP 404: Not Found ({url})", url=url, status=404)
        return value
