from __future__ import annotations

import json
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog


logger = structlog.get_logger(__name__)

STATE_VERSION = 1


# On-disk encoding (state.json):
# {"version": 1, "alerts": {"<chain>|<validator>|<proposal>": [voting_end_ts, alerted_at_ts]}}
@dataclass(frozen=True, order=True)
class AlertKey:
    chain_name: str
    validator_address: str
    proposal_id: str

    def encode(self) -> str:
        return f"{self.chain_name}|{self.validator_address}|{self.proposal_id}"

    @classmethod
    def decode(cls, raw: str) -> "AlertKey":
        parts = str(raw or "").split("|")
        if len(parts) != 3 or not all(p.strip() for p in parts):
            raise ValueError(f"invalid alert key: {raw!r}")
        return cls(chain_name=parts[0], validator_address=parts[1], proposal_id=parts[2])


@dataclass(frozen=True)
class AlertEntry:
    voting_end_ts: float
    alerted_at_ts: float


def _ts(value: datetime | float) -> float:
    if isinstance(value, datetime):
        return float(value.timestamp())
    return float(value)


def coerce_alerts(raw: Any) -> dict[AlertKey, AlertEntry]:
    """
    Best-effort decode of the alerts mapping. Invalid entries are dropped so a
    partial write never prevents the engine from starting.
    """
    if not isinstance(raw, dict):
        return {}
    out: dict[AlertKey, AlertEntry] = {}
    for k, v in raw.items():
        try:
            key = AlertKey.decode(k)
        except ValueError:
            continue
        if not isinstance(v, list) or len(v) < 2:
            continue
        try:
            out[key] = AlertEntry(voting_end_ts=float(v[0]), alerted_at_ts=float(v[1]))
        except (TypeError, ValueError):
            continue
    return out


class AlertStore:
    """
    Remembers which (chain, validator, proposal) pairs were alerted for a voting
    period. A key is only marked after the alert was delivered.

    All methods are synchronous: on a single event loop ``reserve()`` is an
    atomic check-and-set, so two chain workers can never both own the same key.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path
        self._alerts: dict[AlertKey, AlertEntry] = {}
        self._in_flight: set[AlertKey] = set()

    def __len__(self) -> int:
        return len(self._alerts)

    def __contains__(self, key: object) -> bool:
        return key in self._alerts

    def get(self, key: AlertKey) -> AlertEntry | None:
        return self._alerts.get(key)

    def is_alerted(self, key: AlertKey, voting_end: datetime | float) -> bool:
        entry = self._alerts.get(key)
        if entry is None:
            return False
        # A different deadline means a different voting period for the same id.
        return abs(entry.voting_end_ts - _ts(voting_end)) < 1.0

    def reserve(self, key: AlertKey, voting_end: datetime | float) -> bool:
        """Claim the right to send for ``key``. False if already alerted or in flight."""
        if key in self._in_flight or self.is_alerted(key, voting_end):
            return False
        self._in_flight.add(key)
        return True

    def commit(self, key: AlertKey, voting_end: datetime | float, *, now: datetime | float | None = None) -> None:
        self._in_flight.discard(key)
        alerted_at = _ts(now) if now is not None else time.time()
        self._alerts[key] = AlertEntry(voting_end_ts=_ts(voting_end), alerted_at_ts=alerted_at)

    def release(self, key: AlertKey) -> None:
        self._in_flight.discard(key)

    def discard(self, key: AlertKey) -> bool:
        return self._alerts.pop(key, None) is not None

    def evict_expired(self, now: datetime | float) -> list[AlertKey]:
        cutoff = _ts(now)
        expired = [k for k, e in self._alerts.items() if e.voting_end_ts <= cutoff]
        for k in expired:
            del self._alerts[k]
        return expired

    def to_payload(self) -> dict[str, Any]:
        return {
            "version": STATE_VERSION,
            "alerts": {
                k.encode(): [e.voting_end_ts, e.alerted_at_ts] for k, e in sorted(self._alerts.items())
            },
        }

    @classmethod
    def load(cls, path: Path | None) -> "AlertStore":
        store = cls(path)
        if path is None:
            return store
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return store
        except (OSError, ValueError) as exc:
            logger.warning("failed to read state file", path=str(path), error=str(exc))
            return store
        if isinstance(raw, dict):
            store._alerts = coerce_alerts(raw.get("alerts"))
        return store

    def save(self) -> None:
        if self.path is None:
            return
        write_state_atomic(self.path, self.to_payload())


def write_state_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, sort_keys=True), encoding="utf-8")
    tmp.replace(path)
