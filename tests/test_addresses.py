from __future__ import annotations

import pytest
from bech32 import bech32_decode, bech32_encode, convertbits

from gov_alerts.addresses import decode_address, is_operator_address, operator_to_account
from gov_alerts.errors import AddressError


def test_operator_to_account_keeps_key_bytes(make_address) -> None:
    valoper = make_address("cosmosvaloper", 7)
    account = operator_to_account(valoper)

    assert account.startswith("cosmos1")
    assert not account.startswith("cosmosvaloper")
    assert decode_address(account)[1] == decode_address(valoper)[1]
    hrp, data = bech32_decode(account)
    assert hrp == "cosmos" and data is not None


def test_operator_to_account_with_explicit_prefix(make_address) -> None:
    valoper = make_address("osmovaloper", 3)
    assert operator_to_account(valoper, account_prefix="osmo") == operator_to_account(valoper)
    assert operator_to_account(valoper, account_prefix="cosmos").startswith("cosmos1")


def test_account_address_is_returned_unchanged(make_address) -> None:
    account = make_address("cosmos", 9)
    assert is_operator_address(account) is False
    assert operator_to_account(account) == account


def test_account_address_ignores_configured_prefix(make_address) -> None:
    account = make_address("cosmos", 11)
    assert operator_to_account(account, account_prefix="osmo") == account


def test_thirty_two_byte_keys_are_supported() -> None:
    valoper = bech32_encode("junovaloper", convertbits(list(range(32)), 8, 5, True))
    account = operator_to_account(valoper)
    assert account.startswith("juno1")
    assert len(decode_address(account)[1]) == 32


@pytest.mark.parametrize("bad", ["", "cosmosvaloper1notbech32", "cosmos1qqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqqq"])
def test_invalid_addresses_raise(bad: str) -> None:
    with pytest.raises(AddressError):
        operator_to_account(bad)
