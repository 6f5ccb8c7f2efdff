from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from gov_alerts.config import GovAlertsConfig
from gov_alerts.errors import DataAccessError


@dataclass(frozen=True)
class Validator:
    chain_name: str
    address: str


class ValidatorProvider(Protocol):
    def get_monitored_validators(self) -> list[Validator]:
        ...


def _clean(validators: Iterable[Validator]) -> list[Validator]:
    seen: set[tuple[str, str]] = set()
    out: list[Validator] = []
    for v in validators:
        chain = (v.chain_name or "").strip()
        addr = (v.address or "").strip()
        if not chain or not addr:
            continue
        if (chain, addr) in seen:
            continue
        seen.add((chain, addr))
        out.append(Validator(chain_name=chain, address=addr))
    return out


def distinct_chains(validators: Iterable[Validator]) -> list[str]:
    """Chain names in first-seen order."""
    out: list[str] = []
    for v in validators:
        if v.chain_name not in out:
            out.append(v.chain_name)
    return out


class StaticValidatorProvider:
    def __init__(self, validators: Iterable[Validator]) -> None:
        self._validators = _clean(validators)

    def get_monitored_validators(self) -> list[Validator]:
        return list(self._validators)


class SqliteValidatorProvider:
    """
    Read-only view of the registration bot's ``validators`` table
    (columns ``chain_name`` and ``address``).
    """

    QUERY = "SELECT chain_name, address FROM validators ORDER BY chain_name, address"

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)

    def get_monitored_validators(self) -> list[Validator]:
        if not Path(self.db_path).exists():
            raise DataAccessError(f"validator database not found: {self.db_path}")
        try:
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True, timeout=10)
            try:
                rows = conn.execute(self.QUERY).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise DataAccessError(f"failed to read validators from {self.db_path}: {exc}") from exc
        return _clean(Validator(chain_name=str(r[0] or ""), address=str(r[1] or "")) for r in rows)


class CombinedValidatorProvider:
    def __init__(self, providers: list[ValidatorProvider]) -> None:
        self._providers = list(providers)

    def get_monitored_validators(self) -> list[Validator]:
        out: list[Validator] = []
        for p in self._providers:
            out.extend(p.get_monitored_validators())
        return _clean(out)


def build_provider(config: GovAlertsConfig) -> ValidatorProvider:
    providers: list[ValidatorProvider] = []
    if config.validators:
        providers.append(
            StaticValidatorProvider(Validator(chain_name=v.chain_name, address=v.address) for v in config.validators)
        )
    if config.validators_db:
        providers.append(SqliteValidatorProvider(config.validators_db))
    if len(providers) == 1:
        return providers[0]
    return CombinedValidatorProvider(providers)
