from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from gov_alerts.config import ChainRegistryConfig, GovAlertsConfig
from gov_alerts.errors import DecodeError, FetchError
from gov_alerts.http_fetch import fetch


logger = structlog.get_logger(__name__)

HEALTH_PATH = "/cosmos/base/tendermint/v1beta1/syncing"


@dataclass(frozen=True)
class CandidateEndpoint:
    base_url: str
    healthy: bool
    source: str = "config"  # 'config' | 'registry'
    error: str | None = None
    elapsed_ms: float | None = None


@dataclass(frozen=True)
class ChainRegistryInfo:
    chain_name: str
    bech32_prefix: str | None = None
    rest_endpoints: list[str] = field(default_factory=list)


def _normalize_base_url(url: Any) -> str:
    s = str(url or "").strip().rstrip("/")
    if not s.startswith(("http://", "https://")):
        return ""
    return s


def dedupe_candidates(urls: list[tuple[str, str]]) -> list[tuple[str, str]]:
    """Keep the first occurrence of each base URL; input is ``(url, source)`` pairs."""
    seen: set[str] = set()
    out: list[tuple[str, str]] = []
    for url, source in urls:
        norm = _normalize_base_url(url)
        if not norm:
            continue
        key = norm.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append((norm, source))
    return out


async def fetch_chain_registry_info(
    client: httpx.AsyncClient,
    chain_name: str,
    registry: ChainRegistryConfig,
    *,
    timeout: float,
) -> ChainRegistryInfo:
    """
    Read ``chain.json`` for a chain from the chain-registry.
    Raises FetchError/DecodeError; callers decide whether that is fatal.
    """
    result = await fetch(client, registry.base_url, f"/{chain_name}/chain.json", timeout=timeout)
    if not result.ok:
        raise FetchError("chain-registry lookup failed", endpoint=result.url, status_code=result.status_code)
    data = result.json()
    if not isinstance(data, dict):
        raise DecodeError("chain.json is not an object", endpoint=result.url, status_code=result.status_code)

    apis = data.get("apis") if isinstance(data.get("apis"), dict) else {}
    rest = apis.get("rest") if isinstance(apis.get("rest"), list) else []
    endpoints: list[str] = []
    for item in rest:
        if not isinstance(item, dict):
            continue
        url = _normalize_base_url(item.get("address"))
        if url:
            endpoints.append(url)

    prefix = data.get("bech32_prefix")
    return ChainRegistryInfo(
        chain_name=chain_name,
        bech32_prefix=str(prefix).strip() if isinstance(prefix, str) and prefix.strip() else None,
        rest_endpoints=endpoints[: registry.max_endpoints],
    )


async def probe_endpoint(
    client: httpx.AsyncClient,
    base_url: str,
    *,
    source: str = "config",
    timeout: float = 3.0,
) -> CandidateEndpoint:
    """
    Lightweight reachability check. Healthy means a 2xx from the syncing route
    and a node that does not report itself as catching up.
    """
    try:
        result = await fetch(client, base_url, HEALTH_PATH, timeout=timeout)
    except FetchError as exc:
        return CandidateEndpoint(base_url=base_url, healthy=False, source=source, error=str(exc))

    if not result.ok:
        return CandidateEndpoint(
            base_url=base_url,
            healthy=False,
            source=source,
            error=f"status_code={result.status_code}",
            elapsed_ms=result.elapsed_ms,
        )

    try:
        data = result.json()
    except FetchError as exc:
        return CandidateEndpoint(
            base_url=base_url, healthy=False, source=source, error=str(exc), elapsed_ms=result.elapsed_ms
        )

    if not isinstance(data, dict):
        return CandidateEndpoint(
            base_url=base_url, healthy=False, source=source, error="unexpected_body", elapsed_ms=result.elapsed_ms
        )
    if data.get("syncing") is True:
        return CandidateEndpoint(
            base_url=base_url, healthy=False, source=source, error="node_syncing", elapsed_ms=result.elapsed_ms
        )
    return CandidateEndpoint(base_url=base_url, healthy=True, source=source, elapsed_ms=result.elapsed_ms)


class EndpointResolver:
    """Builds and health-checks the ordered list of REST endpoints for a chain."""

    def __init__(self, client: httpx.AsyncClient, config: GovAlertsConfig) -> None:
        self._client = client
        self._config = config
        self._registry_info: dict[str, ChainRegistryInfo] = {}

    def registry_info(self, chain_name: str) -> ChainRegistryInfo | None:
        return self._registry_info.get(chain_name)

    async def candidate_urls(self, chain_name: str) -> list[tuple[str, str]]:
        urls: list[tuple[str, str]] = [(u, "config") for u in self._config.chain(chain_name).rest_endpoints]

        registry = self._config.chain_registry
        if registry.enabled:
            try:
                info = await fetch_chain_registry_info(
                    self._client, chain_name, registry, timeout=self._config.http_timeout_seconds
                )
            except FetchError as exc:
                logger.warning("chain-registry lookup failed", chain=chain_name, error=str(exc))
            else:
                self._registry_info[chain_name] = info
                urls.extend((u, "registry") for u in info.rest_endpoints)

        return dedupe_candidates(urls)

    async def probe_all(self, chain_name: str) -> list[CandidateEndpoint]:
        candidates = await self.candidate_urls(chain_name)
        if not candidates:
            return []

        results = await asyncio.gather(
            *(
                probe_endpoint(
                    self._client, url, source=source, timeout=self._config.probe_timeout_seconds
                )
                for url, source in candidates
            ),
            return_exceptions=True,
        )

        out: list[CandidateEndpoint] = []
        for (url, source), res in zip(candidates, results):
            if isinstance(res, BaseException):
                if isinstance(res, asyncio.CancelledError):
                    raise res
                out.append(
                    CandidateEndpoint(
                        base_url=url, healthy=False, source=source, error=f"{type(res).__name__}: {res}"
                    )
                )
            else:
                out.append(res)
        return out

    async def resolve(self, chain_name: str) -> list[str]:
        """
        Ordered healthy base URLs, most preferred first. Empty means the chain has
        no reachable endpoint right now.
        """
        probed = await self.probe_all(chain_name)
        healthy = [c.base_url for c in probed if c.healthy]
        unhealthy = [c for c in probed if not c.healthy]
        if unhealthy:
            logger.info(
                "unhealthy endpoints",
                chain=chain_name,
                endpoints=[f"{c.base_url}: {c.error}" for c in unhealthy[:5]],
            )
        logger.debug("endpoints resolved", chain=chain_name, healthy=len(healthy), total=len(probed))
        return healthy
