from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

import httpx
import structlog

from gov_alerts.addresses import operator_to_account
from gov_alerts.config import GovAlertsConfig
from gov_alerts.endpoints import EndpointResolver
from gov_alerts.errors import AddressError, DataAccessError, DecodeError, EndpointUnavailable, FetchError, SinkError
from gov_alerts.proposals import Proposal, fetch_active_proposals
from gov_alerts.sinks import AlertSink
from gov_alerts.state import AlertKey, AlertStore
from gov_alerts.validators import Validator, ValidatorProvider, distinct_chains
from gov_alerts.votes import VoteRecord, fetch_vote


logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AlertDecision(str, Enum):
    ALERT = "alert"
    VOTED = "voted"
    NOT_VOTING_PERIOD = "not_voting_period"
    TOO_EARLY = "too_early"
    CLOSED = "closed"
    ALREADY_ALERTED = "already_alerted"


def evaluate(
    *,
    proposal: Proposal,
    voted: bool,
    now: datetime,
    window: timedelta,
    already_alerted: bool,
    inclusive: bool = True,
) -> AlertDecision:
    """Alert timing policy for one (validator, proposal) pair. Pure, no I/O."""
    if not proposal.in_voting_period:
        return AlertDecision.NOT_VOTING_PERIOD
    if voted:
        return AlertDecision.VOTED
    remaining = proposal.voting_end_time - now
    if remaining <= timedelta(0):
        return AlertDecision.CLOSED
    within = remaining <= window if inclusive else remaining < window
    if not within:
        return AlertDecision.TOO_EARLY
    if already_alerted:
        return AlertDecision.ALREADY_ALERTED
    return AlertDecision.ALERT


def format_remaining(delta: timedelta) -> str:
    seconds = max(0, int(delta.total_seconds()))
    days, rem = divmod(seconds, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, _ = divmod(rem, 60)
    if days:
        return f"{days}d {hours:02}h {minutes:02}m"
    if hours:
        return f"{hours}h {minutes:02}m"
    return f"{minutes}m"


def build_alert_message(
    *,
    validator: Validator,
    account_address: str,
    proposal: Proposal,
    now: datetime,
) -> str:
    title = f" {proposal.title}" if proposal.title else ""
    lines = [
        f"Governance vote pending on {validator.chain_name} ⏳",
        f"You have not voted on proposal {proposal.id} with address {account_address}",
        f"Proposal: #{proposal.id}{title}",
        f"Validator: {validator.address}",
        f"Voting ends: {proposal.voting_end_time.strftime('%Y-%m-%d %H:%M UTC')} "
        f"(in {format_remaining(proposal.voting_end_time - now)})",
    ]
    return "\n".join(lines)


@dataclass
class CycleReport:
    started_at: datetime
    chains: list[str] = field(default_factory=list)
    chains_skipped: dict[str, str] = field(default_factory=dict)
    proposals_seen: int = 0
    alerts_sent: list[AlertKey] = field(default_factory=list)
    delivery_failures: list[AlertKey] = field(default_factory=list)
    pair_errors: int = 0
    evicted: int = 0
    timed_out: bool = False
    elapsed_seconds: float = 0.0


class AlertEngine:
    """
    One poll cycle: validators -> chains -> endpoints -> proposals -> votes ->
    timing policy -> sink. Chains run as separate tasks, bounded by
    ``chain_concurrency``; work inside a chain is sequential.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        config: GovAlertsConfig,
        provider: ValidatorProvider,
        sink: AlertSink,
        store: AlertStore,
        resolver: EndpointResolver | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.client = client
        self.config = config
        self.provider = provider
        self.sink = sink
        self.store = store
        self.resolver = resolver or EndpointResolver(client, config)
        self.clock = clock
        self.window = timedelta(hours=float(config.alert_window_hours))

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(started_at=self.clock())
        started = time.perf_counter()
        try:
            validators = self.provider.get_monitored_validators()
        except DataAccessError as exc:
            logger.error("failed to load monitored validators; skipping cycle", error=str(exc))
            report.elapsed_seconds = round(time.perf_counter() - started, 3)
            return report

        by_chain: dict[str, list[Validator]] = {}
        for chain in distinct_chains(validators):
            by_chain[chain] = [v for v in validators if v.chain_name == chain]
        report.chains = list(by_chain)

        semaphore = asyncio.Semaphore(max(1, int(self.config.chain_concurrency)))

        async def _bounded(chain: str, chain_validators: list[Validator]) -> None:
            async with semaphore:
                await self._run_chain(chain, chain_validators, report)

        tasks = [asyncio.create_task(_bounded(c, vs), name=f"chain:{c}") for c, vs in by_chain.items()]
        try:
            results = await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True),
                timeout=float(self.config.cycle_timeout_seconds),
            )
        except asyncio.TimeoutError:
            report.timed_out = True
            logger.warning("poll cycle timed out; in-flight work cancelled", timeout_seconds=self.config.cycle_timeout_seconds)
        else:
            for chain, res in zip(by_chain, results):
                if isinstance(res, Exception):
                    report.chains_skipped.setdefault(chain, f"crashed: {type(res).__name__}")
                    logger.error("chain worker crashed", chain=chain, error=f"{type(res).__name__}: {res}", exc_info=res)
        finally:
            # Alerts delivered before a timeout or shutdown must still be remembered.
            self._persist(report)

        report.elapsed_seconds = round(time.perf_counter() - started, 3)
        logger.info(
            "cycle complete",
            chains=len(report.chains),
            skipped=len(report.chains_skipped),
            proposals=report.proposals_seen,
            alerts_sent=len(report.alerts_sent),
            delivery_failures=len(report.delivery_failures),
            pair_errors=report.pair_errors,
            evicted=report.evicted,
            timed_out=report.timed_out,
            elapsed_seconds=report.elapsed_seconds,
        )
        return report

    def _persist(self, report: CycleReport) -> None:
        report.evicted = len(self.store.evict_expired(self.clock()))
        try:
            self.store.save()
        except OSError as exc:
            logger.warning("failed to write state file", path=str(self.store.path), error=str(exc))

    async def _run_chain(self, chain: str, validators: list[Validator], report: CycleReport) -> None:
        log = logger.bind(chain=chain)
        endpoints = await self.resolver.resolve(chain)
        if not endpoints:
            exc = EndpointUnavailable(chain)
            report.chains_skipped[chain] = "endpoint_unavailable"
            log.warning("skipping chain", error=str(exc))
            return

        try:
            proposals, endpoints = await self._fetch_proposals(chain, endpoints)
        except FetchError as exc:
            kind = "decode_error" if isinstance(exc, DecodeError) else "fetch_error"
            report.chains_skipped[chain] = kind
            log.error("failed to fetch active proposals; skipping chain", kind=kind, endpoint=exc.endpoint, error=str(exc))
            return

        report.proposals_seen += len(proposals)
        if not proposals:
            log.debug("no active proposals")
            return

        prefix = self._account_prefix(chain)
        for validator in validators:
            try:
                account = operator_to_account(validator.address, account_prefix=prefix)
            except AddressError as exc:
                report.pair_errors += len(proposals)
                log.error("invalid validator address", validator=validator.address, error=str(exc))
                continue
            for proposal in proposals:
                await self._process_pair(validator, account, proposal, endpoints, report)

    def _account_prefix(self, chain: str) -> str | None:
        configured = self.config.chain(chain).account_prefix
        if configured:
            return configured
        info = self.resolver.registry_info(chain)
        return info.bech32_prefix if info else None

    async def _fetch_proposals(self, chain: str, endpoints: list[str]) -> tuple[list[Proposal], list[str]]:
        """
        Try healthy endpoints in order. Returns the proposals and the endpoint list
        rotated so the one that answered is tried first for vote lookups.
        """
        last_exc = FetchError("no endpoint left to query for proposals", endpoint="none")
        for idx, base_url in enumerate(endpoints):
            try:
                proposals = await fetch_active_proposals(
                    self.client,
                    base_url,
                    timeout=self.config.http_timeout_seconds,
                    max_pages=self.config.max_proposal_pages,
                )
            except FetchError as exc:
                last_exc = exc
                logger.warning("proposal fetch failed; trying next endpoint", chain=chain, endpoint=exc.endpoint, error=str(exc))
                continue
            return proposals, endpoints[idx:] + endpoints[:idx]
        raise last_exc

    async def _lookup_vote(self, endpoints: list[str], proposal_id: str, account: str) -> VoteRecord | None:
        last_exc = FetchError("no endpoint left to query for votes", endpoint="none")
        for base_url in endpoints:
            try:
                return await fetch_vote(
                    self.client, base_url, proposal_id, account, timeout=self.config.http_timeout_seconds
                )
            except FetchError as exc:
                last_exc = exc
                continue
        raise last_exc

    async def _process_pair(
        self,
        validator: Validator,
        account: str,
        proposal: Proposal,
        endpoints: list[str],
        report: CycleReport,
    ) -> None:
        key = AlertKey(validator.chain_name, validator.address, proposal.id)
        log = logger.bind(chain=validator.chain_name, validator=validator.address, proposal_id=proposal.id)

        if not proposal.in_voting_period:
            return

        try:
            vote = await self._lookup_vote(endpoints, proposal.id, account)
        except FetchError as exc:
            report.pair_errors += 1
            log.error("vote lookup failed; will retry next cycle", endpoint=exc.endpoint, error=str(exc))
            return

        now = self.clock()
        decision = evaluate(
            proposal=proposal,
            voted=vote is not None,
            now=now,
            window=self.window,
            already_alerted=self.store.is_alerted(key, proposal.voting_end_time),
            inclusive=self.config.alert_window_inclusive,
        )

        if decision is AlertDecision.VOTED:
            if self.store.discard(key):
                log.info("validator voted; cleared alert record", option=vote.option if vote else None)
            return
        if decision is not AlertDecision.ALERT:
            log.debug("no alert", decision=decision.value)
            return

        if not self.store.reserve(key, proposal.voting_end_time):
            return
        try:
            message = build_alert_message(validator=validator, account_address=account, proposal=proposal, now=now)
            try:
                await self.sink.send(message)
            except SinkError as exc:
                report.delivery_failures.append(key)
                log.error("alert delivery failed; will retry next cycle", error=str(exc))
                return
            self.store.commit(key, proposal.voting_end_time, now=now)
            report.alerts_sent.append(key)
            log.info("alert sent", account=account, voting_end_time=proposal.voting_end_time.isoformat())
        finally:
            self.store.release(key)
