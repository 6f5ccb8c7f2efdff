from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlsplit, urlunsplit

import httpx
import structlog

from gov_alerts.errors import DecodeError, FetchError


logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 8.0


@dataclass(frozen=True)
class FetchResult:
    body: bytes
    status_code: int
    url: str
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecodeError(
                f"malformed JSON body: {type(exc).__name__}: {exc}",
                endpoint=self.url,
                status_code=self.status_code,
            ) from exc


def safe_url(url: str) -> str:
    """
    Drop query string and fragment so logs and errors stay short and never carry
    pagination keys or tokens.
    """
    s = (url or "").strip()
    if not s:
        return s
    try:
        parts = urlsplit(s)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
    except ValueError:
        return s[:500]


def join_url(base_url: str, path: str) -> str:
    base = (base_url or "").strip().rstrip("/")
    if not path:
        return base
    if not path.startswith("/"):
        path = "/" + path
    return base + path


async def fetch(
    client: httpx.AsyncClient,
    base_url: str,
    path: str,
    params: Mapping[str, Any] | None = None,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> FetchResult:
    url = join_url(base_url, path)
    started = time.perf_counter()
    try:
        resp = await client.get(
            url,
            params=dict(params) if params else None,
            timeout=max(0.1, float(timeout)),
            follow_redirects=True,
        )
    except httpx.HTTPError as exc:
        raise FetchError(f"http_error: {type(exc).__name__}: {exc}", endpoint=safe_url(url)) from exc

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    logger.debug("fetched", url=safe_url(url), status_code=resp.status_code, elapsed_ms=round(elapsed_ms, 3))
    return FetchResult(
        body=resp.content,
        status_code=resp.status_code,
        url=safe_url(str(resp.url)),
        elapsed_ms=round(elapsed_ms, 3),
    )
