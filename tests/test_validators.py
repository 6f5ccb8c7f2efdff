from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from gov_alerts.config import GovAlertsConfig, ValidatorEntry
from gov_alerts.errors import DataAccessError
from gov_alerts.validators import (
    CombinedValidatorProvider,
    SqliteValidatorProvider,
    StaticValidatorProvider,
    Validator,
    build_provider,
    distinct_chains,
)


def _make_db(path: Path, rows: list[tuple[str, str]]) -> None:
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE validators (id INTEGER PRIMARY KEY, chain_name TEXT, address TEXT, chat_id TEXT)")
        conn.executemany("INSERT INTO validators (chain_name, address, chat_id) VALUES (?, ?, 'x')", rows)
        conn.commit()
    finally:
        conn.close()


def test_sqlite_provider_reads_validators(tmp_path: Path) -> None:
    db = tmp_path / "validators.db"
    _make_db(
        db,
        [
            ("osmosis", "osmovaloper1b"),
            ("cosmoshub", "cosmosvaloper1a"),
            ("cosmoshub", "cosmosvaloper1a"),
            ("cosmoshub", " "),
        ],
    )
    got = SqliteValidatorProvider(db).get_monitored_validators()
    assert got == [Validator("cosmoshub", "cosmosvaloper1a"), Validator("osmosis", "osmovaloper1b")]


def test_sqlite_provider_errors_are_data_access_errors(tmp_path: Path) -> None:
    with pytest.raises(DataAccessError):
        SqliteValidatorProvider(tmp_path / "missing.db").get_monitored_validators()

    empty = tmp_path / "empty.db"
    empty.write_bytes(b"")
    with pytest.raises(DataAccessError):
        SqliteValidatorProvider(empty).get_monitored_validators()


def test_distinct_chains_keeps_first_seen_order() -> None:
    vals = [Validator("osmosis", "a"), Validator("cosmoshub", "b"), Validator("osmosis", "c")]
    assert distinct_chains(vals) == ["osmosis", "cosmoshub"]


def test_build_provider_combines_static_and_sqlite(tmp_path: Path) -> None:
    db = tmp_path / "validators.db"
    _make_db(db, [("juno", "junovaloper1x"), ("cosmoshub", "cosmosvaloper1a")])
    config = GovAlertsConfig(
        validators=[ValidatorEntry(chain_name="cosmoshub", address="cosmosvaloper1a")],
        validators_db=str(db),
    )
    provider = build_provider(config)
    assert isinstance(provider, CombinedValidatorProvider)
    assert provider.get_monitored_validators() == [
        Validator("cosmoshub", "cosmosvaloper1a"),
        Validator("juno", "junovaloper1x"),
    ]

    only_static = build_provider(GovAlertsConfig(validators=[ValidatorEntry(chain_name="juno", address="j1")]))
    assert isinstance(only_static, StaticValidatorProvider)
