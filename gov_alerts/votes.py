from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from gov_alerts.errors import DecodeError, FetchError
from gov_alerts.http_fetch import DEFAULT_TIMEOUT_SECONDS, FetchResult, fetch


logger = structlog.get_logger(__name__)

# gRPC status codes the gateway puts in error bodies for a missing vote.
# cosmos-sdk answers "voter: ... not found for proposal: ..." with InvalidArgument (3);
# some releases use NotFound (5).
_GRPC_INVALID_ARGUMENT = 3
_GRPC_NOT_FOUND = 5

_UNSPECIFIED_OPTION = "VOTE_OPTION_UNSPECIFIED"


@dataclass(frozen=True)
class VoteRecord:
    proposal_id: str
    voter_address: str
    option: str | None
    options: tuple[str, ...] = ()


def votes_path(proposal_id: str, account_address: str) -> str:
    return f"/cosmos/gov/v1beta1/proposals/{proposal_id}/votes/{account_address}"


def _is_missing_vote_error(result: FetchResult) -> bool:
    if result.status_code == 404:
        return True
    if result.status_code != 400:
        return False
    try:
        data = result.json()
    except DecodeError:
        return False
    if not isinstance(data, dict):
        return False
    try:
        code = int(data.get("code"))
    except (TypeError, ValueError):
        return False
    message = str(data.get("message") or "").lower()
    return code in (_GRPC_INVALID_ARGUMENT, _GRPC_NOT_FOUND) and "not found" in message


def decode_vote(result: FetchResult, *, proposal_id: str, account_address: str) -> VoteRecord | None:
    """
    Decode a 2xx vote response. ``None`` means the chain has no vote on record
    for the address; malformed bodies raise DecodeError.
    """
    data = result.json()
    if not isinstance(data, dict):
        raise DecodeError("vote response is not an object", endpoint=result.url)
    vote = data.get("vote")
    if vote is None:
        return None
    if not isinstance(vote, dict):
        raise DecodeError("vote response has a non-object 'vote'", endpoint=result.url)

    raw_options: Any = vote.get("options")
    if raw_options is None:
        raw_options = []
    if not isinstance(raw_options, list):
        raise DecodeError("vote.options is not a list", endpoint=result.url)

    options: list[str] = []
    for item in raw_options:
        if not isinstance(item, dict):
            raise DecodeError("vote.options entry is not an object", endpoint=result.url)
        opt = str(item.get("option") or "").strip()
        if opt and opt != _UNSPECIFIED_OPTION:
            options.append(opt)

    # Pre-weighted-vote nodes only fill the legacy single 'option' field.
    legacy = str(vote.get("option") or "").strip()
    if not options and legacy and legacy != _UNSPECIFIED_OPTION:
        options.append(legacy)

    if not options:
        return None
    return VoteRecord(
        proposal_id=proposal_id,
        voter_address=str(vote.get("voter") or account_address),
        option=options[0],
        options=tuple(options),
    )


async def fetch_vote(
    client: httpx.AsyncClient,
    base_url: str,
    proposal_id: str,
    account_address: str,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> VoteRecord | None:
    """
    Three-way result: a VoteRecord when the address voted, None when it has
    not, and FetchError/DecodeError when the chain could not tell us.
    """
    result = await fetch(client, base_url, votes_path(proposal_id, account_address), timeout=timeout)
    if result.ok:
        return decode_vote(result, proposal_id=proposal_id, account_address=account_address)
    if _is_missing_vote_error(result):
        logger.debug("no vote on record", proposal_id=proposal_id, voter=account_address, status_code=result.status_code)
        return None
    raise FetchError("vote lookup failed", endpoint=result.url, status_code=result.status_code)
