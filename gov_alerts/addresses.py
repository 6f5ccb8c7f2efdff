from __future__ import annotations

from bech32 import bech32_decode, bech32_encode, convertbits

from gov_alerts.errors import AddressError


VALOPER_SUFFIX = "valoper"


def decode_address(address: str) -> tuple[str, bytes]:
    """Return ``(hrp, raw_bytes)`` for a bech32 address or raise AddressError."""
    s = (address or "").strip()
    if not s:
        raise AddressError("empty address")
    hrp, data = bech32_decode(s)
    if hrp is None or data is None:
        raise AddressError(f"invalid bech32 address: {s!r}")
    raw = convertbits(data, 5, 8, False)
    if raw is None or len(raw) not in (20, 32):
        raise AddressError(f"unexpected address payload length in {s!r}")
    return hrp, bytes(raw)


def is_operator_address(address: str) -> bool:
    try:
        hrp, _ = decode_address(address)
    except AddressError:
        return False
    return hrp.endswith(VALOPER_SUFFIX)


def operator_to_account(address: str, *, account_prefix: str | None = None) -> str:
    """
    Re-encode a validator operator address (``cosmosvaloper1...``) as the account
    address of the same key (``cosmos1...``). Governance votes are keyed by the
    account address.

    Addresses that are already account addresses are returned unchanged, even
    when ``account_prefix`` names a different hrp.
    """
    hrp, raw = decode_address(address)
    if not hrp.endswith(VALOPER_SUFFIX):
        return address.strip()

    prefix = (account_prefix or "").strip().lower() or hrp[: -len(VALOPER_SUFFIX)]
    if not prefix:
        raise AddressError(f"cannot derive account prefix from {address!r}")

    data = convertbits(list(raw), 8, 5, True)
    encoded = bech32_encode(prefix, data) if data is not None else None
    if not encoded:
        raise AddressError(f"failed to re-encode {address!r} with prefix {prefix!r}")
    return encoded
