# bidpool/engines/pools.py
from __future__ import annotations

from typing import List

from loguru import logger

from bidpool.config import EngineConfig
from bidpool.errors import InvalidSlotError, RoundNotFoundError
from bidpool.models import BiddingInfo, BidPool
from bidpool.state import StateStore
from bidpool.utils.fixed_point import add_amount


def validate_slot(config: EngineConfig, slot: int) -> None:
    if slot < 1 or slot > config.max_slot:
        raise InvalidSlotError(config.max_slot, slot)


class BidPoolAggregator:
    """
    Per-(round, slot) running totals.

    Only two counters move on a deposit: the slot's total and the round's
    total. Both are plain additions, so the final aggregates do not depend
    on the order deposits arrive in.
    """

    def __init__(self, state: StateStore):
        self.state = state

    def ensure_slot(self, config: EngineConfig, round_id: int, slot: int) -> BidPool:
        """Existing aggregate, or a fresh zero one stored with premium = increment × slot."""
        validate_slot(config, slot)
        pool = self.state.bid_pools.get((round_id, slot))
        if pool is None:
            self.state.touch("bid_pools", (round_id, slot))
            pool = BidPool.empty(slot, config.premium_rate_per_slot)
            self.state.bid_pools[(round_id, slot)] = pool
            logger.debug(f"[pools] round={round_id} slot={slot} created • premium={pool.premium_rate}")
        return pool

    def record_deposit(self, config: EngineConfig, round_id: int, slot: int, amount: int) -> BidPool:
        bidding_info = self._round(round_id)
        pool = self.ensure_slot(config, round_id, slot)
        self.state.touch("rounds", round_id)
        self.state.touch("bid_pools", (round_id, slot))
        bidding_info.total_bid_amount = add_amount(bidding_info.total_bid_amount, amount)
        pool.total_bid_amount = add_amount(pool.total_bid_amount, amount)
        return pool

    def get(self, config: EngineConfig, round_id: int, slot: int) -> BidPool:
        """Read-only view; a slot nobody deposited into comes back zeroed and is not stored."""
        self._round(round_id)
        validate_slot(config, slot)
        pool = self.state.bid_pools.get((round_id, slot))
        return pool if pool is not None else BidPool.empty(slot, config.premium_rate_per_slot)

    def read_all(self, config: EngineConfig, round_id: int) -> List[BidPool]:
        """All slots 1..max_slot in ascending premium order, zero slots synthesised."""
        self._round(round_id)
        out: List[BidPool] = []
        for slot in range(1, config.max_slot + 1):
            pool = self.state.bid_pools.get((round_id, slot))
            out.append(pool if pool is not None else BidPool.empty(slot, config.premium_rate_per_slot))
        return out

    def _round(self, round_id: int) -> BiddingInfo:
        info = self.state.rounds.get(round_id)
        if info is None:
            raise RoundNotFoundError(round_id)
        return info
