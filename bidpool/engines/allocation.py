# bidpool/engines/allocation.py: ordered proportional rationing of a round's budget
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

from loguru import logger

from bidpool.models import BidPool
from bidpool.utils.fixed_point import (
    ONE,
    ZERO,
    add_amount,
    add_ratio,
    mul_amount,
    ratio_from,
    sub_amount,
)


@dataclass(slots=True)
class AllocationResult:
    total_matched: int          # underlying consumed (burnt at release)
    remaining_budget: int       # distribution left over, returned to the owner
    distributed: int            # budget − remaining_budget
    boundary_slot: Optional[int] = None


def desired_amount(pool: BidPool, exchange_rate: Decimal) -> int:
    """Distribution needed to fully fund a slot: (amount × rate) × (1 + premium), floored per step."""
    return mul_amount(
        mul_amount(pool.total_bid_amount, exchange_rate),
        add_ratio(ONE, pool.premium_rate),
    )


def allocate(pools: Sequence[BidPool], budget: int, exchange_rate: Decimal) -> AllocationResult:
    """
    Serve slots in ascending premium order until the budget is gone.

    For every slot with deposits:
        desired  = (amount × rate) × (1 + premium)
        actual   = min(desired, remaining)
        fill     = actual / desired
        payout   = actual / amount
        matched += fill × amount

    Writes `index_snapshot` (fill) and `received_per_token` (payout) onto the
    pools in place. Every slot before the boundary ends at fill 1, every slot
    after it keeps 0. Stops as soon as the remaining budget hits exactly zero.
    """
    ordered: List[BidPool] = sorted(pools, key=lambda p: p.slot)
    for pool in ordered:
        pool.index_snapshot = ZERO
        pool.received_per_token = ZERO

    remaining = int(budget)
    total_matched = 0
    boundary: Optional[int] = None

    for pool in ordered:
        if pool.total_bid_amount == 0:
            continue

        desired = desired_amount(pool, exchange_rate)
        if desired == 0:
            # zero rate or dust deposit: nothing to fund
            continue

        actual = desired if desired <= remaining else remaining
        fill = ratio_from(actual, desired)
        payout = ratio_from(actual, pool.total_bid_amount)

        total_matched = add_amount(total_matched, mul_amount(pool.total_bid_amount, fill))
        remaining = sub_amount(remaining, actual)
        pool.index_snapshot = fill
        pool.received_per_token = payout

        if fill < ONE and boundary is None:
            boundary = pool.slot

        logger.debug(
            f"[allocation] slot={pool.slot} amount={pool.total_bid_amount} desired={desired} "
            f"actual={actual} fill={fill} payout={payout} remaining={remaining}"
        )

        if remaining == 0:
            break

    return AllocationResult(
        total_matched=total_matched,
        remaining_budget=remaining,
        distributed=sub_amount(int(budget), remaining),
        boundary_slot=boundary,
    )
