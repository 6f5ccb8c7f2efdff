from __future__ import annotations

from typing import Callable

import pytest
from bech32 import bech32_encode, convertbits


def encode_address(hrp: str, raw: bytes) -> str:
    return bech32_encode(hrp, convertbits(list(raw), 8, 5, True))


@pytest.fixture
def make_address() -> Callable[[str, int], str]:
    """Deterministic bech32 address for ``hrp`` built from a 20-byte payload seeded by ``seed``."""

    def _make(hrp: str, seed: int = 1) -> str:
        raw = bytes((seed + i) % 256 for i in range(20))
        return encode_address(hrp, raw)

    return _make
