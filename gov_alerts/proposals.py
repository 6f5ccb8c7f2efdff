from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any

import httpx
import structlog

from gov_alerts.errors import DecodeError, FetchError
from gov_alerts.http_fetch import DEFAULT_TIMEOUT_SECONDS, FetchResult, fetch


logger = structlog.get_logger(__name__)

PROPOSALS_PATH = "/cosmos/gov/v1beta1/proposals"


class ProposalStatus(IntEnum):
    UNSPECIFIED = 0
    DEPOSIT_PERIOD = 1
    VOTING_PERIOD = 2
    PASSED = 3
    REJECTED = 4
    FAILED = 5

    @classmethod
    def parse(cls, value: Any) -> "ProposalStatus":
        """Accepts ``2``, ``"2"`` or ``"PROPOSAL_STATUS_VOTING_PERIOD"``."""
        if isinstance(value, bool):
            raise ValueError(f"invalid proposal status: {value!r}")
        if isinstance(value, int):
            return cls(value)
        s = str(value or "").strip().upper()
        if not s:
            raise ValueError("missing proposal status")
        if s.isdigit():
            return cls(int(s))
        if s.startswith("PROPOSAL_STATUS_"):
            s = s[len("PROPOSAL_STATUS_") :]
        try:
            return cls[s]
        except KeyError as exc:
            raise ValueError(f"invalid proposal status: {value!r}") from exc


@dataclass(frozen=True)
class Proposal:
    id: str
    voting_end_time: datetime
    status: ProposalStatus
    title: str | None = None

    @property
    def in_voting_period(self) -> bool:
        return self.status is ProposalStatus.VOTING_PERIOD


def parse_rfc3339(value: Any) -> datetime:
    """
    Parse the RFC3339 timestamps emitted by the gRPC gateway, e.g.
    ``2024-01-02T03:04:05.123456789Z``. Nanosecond fractions are truncated.
    """
    s = str(value or "").strip()
    if not s:
        raise ValueError("empty timestamp")
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"

    # fromisoformat() only takes up to microseconds.
    if "." in s:
        head, rest = s.split(".", 1)
        frac = rest
        tz = ""
        for sep in ("+", "-"):
            if sep in rest:
                frac, tz_part = rest.split(sep, 1)
                tz = sep + tz_part
                break
        s = f"{head}.{frac[:6].ljust(6, '0')}{tz}" if frac else f"{head}{tz}"

    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _proposal_title(item: dict[str, Any]) -> str | None:
    content = item.get("content")
    if isinstance(content, dict):
        title = content.get("title")
        if isinstance(title, str) and title.strip():
            return title.strip()
    title = item.get("title")
    if isinstance(title, str) and title.strip():
        return title.strip()
    return None


def decode_proposal(item: Any, *, endpoint: str) -> Proposal:
    if not isinstance(item, dict):
        raise DecodeError(f"proposal entry is not an object: {type(item).__name__}", endpoint=endpoint)
    raw_id = item.get("proposal_id", item.get("id"))
    proposal_id = str(raw_id).strip() if raw_id is not None else ""
    if not proposal_id:
        raise DecodeError("proposal entry without proposal_id", endpoint=endpoint)
    try:
        voting_end = parse_rfc3339(item.get("voting_end_time"))
        status = ProposalStatus.parse(item.get("status"))
    except ValueError as exc:
        raise DecodeError(f"proposal {proposal_id}: {exc}", endpoint=endpoint) from exc
    return Proposal(id=proposal_id, voting_end_time=voting_end, status=status, title=_proposal_title(item))


def decode_proposals_page(result: FetchResult) -> tuple[list[Proposal], str | None]:
    """
    Decode one page of the proposal list. Returns the proposals and the
    pagination ``next_key`` (None on the last page).
    """
    data = result.json()
    if not isinstance(data, dict):
        raise DecodeError("proposal list response is not an object", endpoint=result.url)
    items = data.get("proposals")
    if not isinstance(items, list):
        raise DecodeError("proposal list response has no 'proposals' list", endpoint=result.url)

    proposals = [decode_proposal(item, endpoint=result.url) for item in items]

    next_key = None
    pagination = data.get("pagination")
    if isinstance(pagination, dict):
        nk = pagination.get("next_key")
        if isinstance(nk, str) and nk.strip():
            next_key = nk.strip()
    return proposals, next_key


async def fetch_active_proposals(
    client: httpx.AsyncClient,
    base_url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    max_pages: int = 5,
) -> list[Proposal]:
    """
    All proposals currently in their voting period on one endpoint.

    An empty list means the chain confirmed zero active proposals. Transport
    errors and non-2xx raise FetchError, bad bodies raise DecodeError.
    """
    params: dict[str, Any] = {"proposal_status": int(ProposalStatus.VOTING_PERIOD)}
    out: list[Proposal] = []
    seen: set[str] = set()

    for page in range(max(1, int(max_pages))):
        result = await fetch(client, base_url, PROPOSALS_PATH, params, timeout=timeout)
        if not result.ok:
            raise FetchError("proposal list request failed", endpoint=result.url, status_code=result.status_code)

        proposals, next_key = decode_proposals_page(result)
        for p in proposals:
            if p.id in seen:
                continue
            seen.add(p.id)
            if not p.in_voting_period:
                logger.debug("ignoring proposal outside voting period", proposal_id=p.id, status=p.status.name)
                continue
            out.append(p)

        if not next_key:
            break
        if page + 1 >= max_pages:
            logger.warning("proposal pagination truncated", endpoint=result.url, pages=max_pages)
            break
        params = {**params, "pagination.key": next_key}

    return out
