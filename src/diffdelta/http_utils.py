from __future__ import annotations

import http.client
import json
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Mapping


class TransportError(Exception):
    """
    一次 JSON 拉取失败：非 2xx 状态码、网络错误、超时或响应体不是合法 JSON。

    超时与网络错误不做结构化区分，只能通过 message 区分。
    """

    def __init__(self, message: str, *, url: str, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


@dataclass(frozen=True, slots=True)
class HttpResponse:
    status: int
    url: str
    headers: Mapping[str, str]
    body: bytes

    def text(self, encoding: str = "utf-8") -> str:
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


class HttpClient:
    """
    轻量 HTTP 客户端（仅依赖标准库），只做幂等的 GET + JSON。

    策略：
    - 每次请求一个独立的超时窗口（默认 15 秒），超时即放弃该请求
    - 统一 User-Agent / Accept，配置了 api_key 时附带 X-DiffDelta-Key
    - 不做自动重试；重试单位是调用方的下一个轮询周期
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 15.0,
        user_agent: str = "diffdelta-python/0",
        api_key: str | None = None,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._api_key = api_key
        self._ssl_context = ssl.create_default_context()

    def _headers(self) -> dict[str, str]:
        headers = {
            "User-Agent": self._user_agent,
            "Accept": "application/json",
        }
        if self._api_key:
            headers["X-DiffDelta-Key"] = self._api_key
        return headers

    def get(self, url: str) -> HttpResponse:
        req = urllib.request.Request(url=url, headers=self._headers(), method="GET")
        try:
            with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:
                status = getattr(resp, "status", 200)
                body = resp.read()
                resp_headers = {k: v for k, v in resp.headers.items()} if resp.headers else {}
                final_url = resp.geturl() if hasattr(resp, "geturl") else url
        except urllib.error.HTTPError as e:
            raise TransportError(f"HTTP {e.code}: {e.reason} ({url})", url=url, status=e.code) from e
        except TimeoutError as e:
            raise TransportError(
                f"request timed out after {self._timeout_seconds:g}s ({url})", url=url
            ) from e
        except urllib.error.URLError as e:
            raise TransportError(f"network error: {e.reason} ({url})", url=url) from e
        except OSError as e:
            raise TransportError(f"network error: {e} ({url})", url=url) from e
        except http.client.HTTPException as e:
            # 响应截断或状态行损坏
            raise TransportError(f"network error: {e!r} ({url})", url=url) from e

        if not 200 <= status < 300:
            raise TransportError(f"HTTP {status} ({url})", url=url, status=status)
        return HttpResponse(status=status, url=final_url, headers=resp_headers, body=body)

    def get_json(self, url: str) -> Any:
        resp = self.get(url)
        try:
            return resp.json()
        except ValueError as e:
            body_prefix = resp.text()[:200]
            raise TransportError(
                f"invalid JSON response: status={resp.status} body_prefix={body_prefix!r} ({url})",
                url=url,
                status=resp.status,
            ) from e
