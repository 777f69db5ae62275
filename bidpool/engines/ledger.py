# bidpool/engines/ledger.py
from __future__ import annotations

from bisect import bisect_left, bisect_right
from typing import List, Optional, Union

from bidpool.config import DEFAULT_LIMIT, MAX_LIMIT
from bidpool.errors import BidNotFoundError, RoundNotFoundError
from bidpool.models import Bid
from bidpool.state import StateStore

ASCENDING = "asc"
DESCENDING = "desc"

OrderLike = Union[str, int, None]


def parse_order(order_by: OrderLike) -> str:
    """`2` or "desc" selects descending; anything else is ascending."""
    if order_by in (2, "2", DESCENDING, "descending"):
        return DESCENDING
    return ASCENDING


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        limit = DEFAULT_LIMIT
    return max(0, min(int(limit), MAX_LIMIT))


class BidLedger:
    """
    Append-only record of individual bids.

    Ids come from one global counter starting at 1 and are never reused.
    Each bid is indexed under its round (ascending id list, range-scanned with
    bisect) and under (round, bidder).
    """

    def __init__(self, state: StateStore):
        self.state = state

    # ---------- writes ----------
    def _pop_bid_idx(self) -> int:
        idx = self.state.next_bid_idx
        self.state.next_bid_idx = idx + 1
        return idx

    def append(self, *, round_id: int, premium_slot: int, bidder: str, amount: int, timestamp: int) -> Bid:
        idx = self._pop_bid_idx()
        bid = Bid(
            idx=idx,
            round=round_id,
            premium_slot=premium_slot,
            timestamp=timestamp,
            bidder=bidder,
            amount=amount,
            residue_bid=amount,
        )
        self.state.touch("bids", idx)
        self.state.bids[idx] = bid
        self.state.append_index("bids_by_round", round_id, idx)
        self.state.append_index("bids_by_user", (round_id, bidder), idx)
        return bid

    # ---------- reads ----------
    def get(self, idx: int) -> Bid:
        bid = self.state.bids.get(idx)
        if bid is None:
            raise BidNotFoundError(idx)
        return bid

    def list_by_round(
        self,
        round_id: int,
        start_after: Optional[int] = None,
        limit: Optional[int] = None,
        order_by: OrderLike = None,
    ) -> List[int]:
        """
        One page of bid ids in `round_id`, exclusive of `start_after`.

        Ascending pages return ids > start_after, descending pages ids
        < start_after. Feeding the last id of a page back as the next cursor
        (same order) walks every id exactly once.
        """
        self._require_round(round_id)
        ids = self.state.bids_by_round.get(round_id, [])
        n = clamp_limit(limit)
        if n == 0:
            return []
        if parse_order(order_by) == DESCENDING:
            end = len(ids) if start_after is None else bisect_left(ids, start_after)
            return list(reversed(ids[max(0, end - n):end]))
        start = 0 if start_after is None else bisect_right(ids, start_after)
        return ids[start:start + n]

    def ids_by_bidder(self, round_id: int, bidder: str) -> List[int]:
        self._require_round(round_id)
        return list(self.state.bids_by_user.get((round_id, bidder), []))

    def list_by_bidder(self, round_id: int, bidder: str) -> List[Bid]:
        return [self.get(idx) for idx in self.ids_by_bidder(round_id, bidder)]

    def count(self, round_id: int) -> int:
        self._require_round(round_id)
        return len(self.state.bids_by_round.get(round_id, []))

    def _require_round(self, round_id: int) -> None:
        if round_id not in self.state.rounds:
            raise RoundNotFoundError(round_id)
