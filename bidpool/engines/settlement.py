# bidpool/engines/settlement.py: paged, resumable per-bid payout
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from loguru import logger

from bidpool.assets import Instruction, build_transfer
from bidpool.config import EngineConfig
from bidpool.engines.ledger import BidLedger
from bidpool.errors import RoundNotFoundError, RoundNotReleasedError
from bidpool.models import Bid, BidPool
from bidpool.state import StateStore
from bidpool.utils.fixed_point import ONE, ZERO, mul_amount, sub_ratio
from bidpool.utils.pretty_logs import pretty


@dataclass(slots=True)
class SettlementPage:
    settled: List[Bid] = field(default_factory=list)
    skipped: int = 0
    messages: List[Instruction] = field(default_factory=list)
    num_bids_distributed: int = 0      # round-wide counter after this page
    last_idx: Optional[int] = None     # next cursor for the caller


def settle_amounts(amount: int, pool: Optional[BidPool]) -> Tuple[int, int]:
    """(amount_received, residue_bid) for a bid of `amount` in a released slot."""
    fill = pool.index_snapshot if pool is not None else ZERO
    payout = pool.received_per_token if pool is not None else ZERO
    return mul_amount(amount, payout), mul_amount(amount, sub_ratio(ONE, fill))


class SettlementWalker:
    """
    Applies frozen slot ratios to the bids of a released round, one page at
    a time. No cursor is kept here: callers pass back `last_idx`. Repeating a
    page is harmless because a settled bid is skipped.
    """

    def __init__(self, state: StateStore, ledger: BidLedger):
        self.state = state
        self.ledger = ledger

    def settle_page(
        self,
        config: EngineConfig,
        round_id: int,
        start_after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> SettlementPage:
        distribution_info = self.state.distributions.get(round_id)
        if distribution_info is None:
            raise RoundNotFoundError(round_id)
        if not distribution_info.is_released:
            raise RoundNotReleasedError(round_id)

        page = SettlementPage()
        rows: List[Tuple[int, str, int, int, int]] = []

        for idx in self.ledger.list_by_round(round_id, start_after, limit):
            page.last_idx = idx
            bid = self.ledger.get(idx)
            if bid.is_distributed:
                page.skipped += 1
                continue

            pool = self.state.bid_pools.get((round_id, bid.premium_slot))
            amount_received, residue_bid = settle_amounts(bid.amount, pool)

            # reward in the distribution asset, refund in the underlying one
            if amount_received > 0:
                page.messages.append(build_transfer(config.distribution_token, bid.bidder, amount_received))
            if residue_bid > 0:
                page.messages.append(build_transfer(config.underlying_token, bid.bidder, residue_bid))

            self.state.touch("bids", idx)
            self.state.touch("distributions", round_id)
            bid.amount_received = amount_received
            bid.residue_bid = residue_bid
            bid.is_distributed = True
            distribution_info.num_bids_distributed += 1

            page.settled.append(bid)
            rows.append((idx, bid.bidder, bid.premium_slot, amount_received, residue_bid))

        page.num_bids_distributed = distribution_info.num_bids_distributed
        logger.info(
            f"[settlement] round={round_id} settled={len(page.settled)} skipped={page.skipped} "
            f"total_distributed={page.num_bids_distributed}"
        )
        pretty.show_settled_bids(rows)
        return page
