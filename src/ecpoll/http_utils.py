from __future__ import annotations

import base64
import json
import logging
import random
import ssl
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Mapping


logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


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
    仅依赖标准库的 HTTP 客户端，供 Twilio / DoH 等数据源读取接口。

    传输层策略（与轮询层的 source_error_retries 相互独立）：
    - 对 429/5xx 与网络错误做有限次指数退避重试（带抖动）
    - 4xx（429 除外）立即抛出
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 20.0,
        user_agent: str = "ecpoll/0",
        max_retries: int = 2,
        base_backoff_seconds: float = 0.5,
        verify_ssl: bool = True,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._user_agent = user_agent
        self._max_retries = max_retries
        self._base_backoff_seconds = base_backoff_seconds
        self._ssl_context = ssl.create_default_context() if verify_ssl else ssl._create_unverified_context()

    def _open(self, url: str, headers: Mapping[str, str]) -> HttpResponse:
        req = urllib.request.Request(url=url, headers=dict(headers), method="GET")
        with urllib.request.urlopen(req, timeout=self._timeout_seconds, context=self._ssl_context) as resp:
            return HttpResponse(
                status=getattr(resp, "status", 200),
                url=resp.geturl(),
                headers=dict(resp.headers.items()),
                body=resp.read(),
            )

    def get(self, url: str, *, headers: Mapping[str, str] | None = None) -> HttpResponse:
        request_headers = {"User-Agent": self._user_agent}
        if headers:
            request_headers.update(headers)

        attempt = 0
        while True:
            try:
                return self._open(url, request_headers)
            except urllib.error.HTTPError as e:
                if e.code not in RETRYABLE_STATUS or attempt >= self._max_retries:
                    raise
                reason = f"HTTP {e.code}"
            except (urllib.error.URLError, TimeoutError) as e:
                if attempt >= self._max_retries:
                    raise
                reason = f"{type(e).__name__}: {e}"

            backoff = self._base_backoff_seconds * (2**attempt)
            backoff += random.random() * 0.25 * backoff
            logger.debug("http retry: url=%s attempt=%d reason=%s backoff_s=%.2f", url, attempt + 1, reason, backoff)
            time.sleep(backoff)
            attempt += 1


def basic_auth_header(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def with_query_params(url: str, params: Mapping[str, str | None]) -> str:
    parsed = urllib.parse.urlparse(url)
    q = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))
    q.update({k: v for k, v in params.items() if v is not None})
    return urllib.parse.urlunparse(parsed._replace(query=urllib.parse.urlencode(q)))
