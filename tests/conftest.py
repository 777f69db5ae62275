# ──────────────────────────────────────────────────────────────────────────
# tests/conftest.py
# --------------------------------------------------------------------------
"""
Shared fixtures for the bidpool test-suite.

    pytest -v tests/
"""
from __future__ import annotations

from decimal import Decimal
from typing import Callable

import pytest

from bidpool.assets import Token
from bidpool.config import EngineConfig
from bidpool.engines.auction import AuctionEngine
from bidpool.state import StateStore

OWNER = "owner"
ORAIX_ADDR = "orai1lus0f0rhx8s03gdllx2n6vhkmf0536dv57wfge"
USDC = "orai15un8msx3n5zf9ahlxmfeqd2kwa5wm0nrpxer304m9nd5q6qq0g6sku5pdd"
NOW = 1_700_000_000
MIN_DEPOSIT = 100_000000


def make_config(**overrides) -> EngineConfig:
    params = dict(
        owner=OWNER,
        underlying_token=Token(contract_addr=ORAIX_ADDR),
        distribution_token=Token(contract_addr=USDC),
        max_slot=25,
        premium_rate_per_slot=Decimal("0.01"),
        min_deposit_amount=MIN_DEPOSIT,
    )
    params.update(overrides)
    return EngineConfig(**params)


@pytest.fixture
def config() -> EngineConfig:
    return make_config()


@pytest.fixture
def engine(config) -> AuctionEngine:
    return AuctionEngine(StateStore(), config)


@pytest.fixture
def open_round(engine) -> Callable[..., int]:
    """Create a round [NOW, NOW + 1000] with the given budget; returns its id."""

    def _open(budget: int) -> int:
        res = engine.create_round(OWNER, NOW, NOW + 1000, budget, NOW)
        return int(res.attr("round"))

    return _open
