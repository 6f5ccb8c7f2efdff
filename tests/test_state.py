from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from gov_alerts.state import AlertKey, AlertStore, coerce_alerts


NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
END = NOW + timedelta(hours=10)
KEY = AlertKey("cosmoshub", "cosmosvaloper1abc", "42")


def test_alert_key_roundtrip_and_validation() -> None:
    assert AlertKey.decode(KEY.encode()) == KEY
    with pytest.raises(ValueError):
        AlertKey.decode("cosmoshub|42")
    with pytest.raises(ValueError):
        AlertKey.decode("cosmoshub||42")


def test_reserve_commit_release() -> None:
    store = AlertStore()
    assert store.reserve(KEY, END) is True
    # A second worker cannot claim the key while the first one is sending.
    assert store.reserve(KEY, END) is False
    store.commit(KEY, END, now=NOW)
    store.release(KEY)
    assert store.is_alerted(KEY, END) is True
    assert store.reserve(KEY, END) is False


def test_release_without_commit_leaves_key_eligible() -> None:
    store = AlertStore()
    assert store.reserve(KEY, END) is True
    store.release(KEY)
    assert store.is_alerted(KEY, END) is False
    assert store.reserve(KEY, END) is True


def test_new_voting_end_time_is_a_new_period() -> None:
    store = AlertStore()
    store.commit(KEY, END, now=NOW)
    assert store.is_alerted(KEY, END) is True
    assert store.is_alerted(KEY, END + timedelta(days=1)) is False


def test_evict_expired_bounds_memory() -> None:
    store = AlertStore()
    other = AlertKey("osmosis", "osmovaloper1xyz", "7")
    store.commit(KEY, END, now=NOW)
    store.commit(other, NOW + timedelta(hours=1), now=NOW)

    assert store.evict_expired(NOW + timedelta(hours=2)) == [other]
    assert KEY in store and other not in store
    assert store.evict_expired(END) == [KEY]
    assert len(store) == 0


def test_save_and_load(tmp_path: Path) -> None:
    path = tmp_path / "state" / "alerts.json"
    store = AlertStore(path)
    store.commit(KEY, END, now=NOW)
    store.save()

    assert not path.with_name("alerts.json.tmp").exists()
    raw = json.loads(path.read_text(encoding="utf-8"))
    assert raw["version"] == 1
    assert raw["alerts"] == {KEY.encode(): [END.timestamp(), NOW.timestamp()]}

    loaded = AlertStore.load(path)
    assert loaded.is_alerted(KEY, END) is True
    entry = loaded.get(KEY)
    assert entry is not None and entry.alerted_at_ts == NOW.timestamp()


def test_load_missing_or_corrupt_state(tmp_path: Path) -> None:
    assert len(AlertStore.load(tmp_path / "missing.json")) == 0

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    assert len(AlertStore.load(bad)) == 0


def test_coerce_alerts_drops_invalid_entries() -> None:
    got = coerce_alerts(
        {
            KEY.encode(): [END.timestamp(), NOW.timestamp()],
            "broken": [1, 2],
            "a|b|c": "nope",
            "x|y|z": ["soon", 1],
        }
    )
    assert list(got) == [KEY]
