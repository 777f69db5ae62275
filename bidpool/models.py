# bidpool/models.py
# --------------------------------------------------------------------------- #
# Records held by the state store. All of them round-trip through
# `to_dict`/`from_dict` so the store can persist them as plain JSON;
# amounts are written as strings and ratios as 18-decimal strings.
# --------------------------------------------------------------------------- #

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict

from bidpool.utils.fixed_point import ZERO, format_ratio, mul_ratio, to_ratio


# --------------------------------------------------------------------------- #
# Round
# --------------------------------------------------------------------------- #

@dataclass(slots=True)
class BiddingInfo:
    """
    One auction cycle.

    Attributes:
        round: Monotonic round id (starts at 1).
        start_time: Opening time, seconds; deposits accepted from here.
        end_time: Closing time, seconds; deposits accepted up to and including it.
        total_bid_amount: Underlying deposited across all slots.
        total_bid_matched: Underlying consumed by the allocation, set at release.
    """

    round: int
    start_time: int
    end_time: int
    total_bid_amount: int = 0
    total_bid_matched: int = 0

    def is_valid_duration(self, now: int) -> bool:
        return self.start_time < self.end_time and self.start_time >= now

    def opening(self, now: int) -> bool:
        return self.start_time <= now <= self.end_time

    def finished(self, now: int) -> bool:
        return self.end_time < now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_bid_amount": str(self.total_bid_amount),
            "total_bid_matched": str(self.total_bid_matched),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BiddingInfo":
        return cls(
            round=int(data["round"]),
            start_time=int(data["start_time"]),
            end_time=int(data["end_time"]),
            total_bid_amount=int(data.get("total_bid_amount", 0)),
            total_bid_matched=int(data.get("total_bid_matched", 0)),
        )


@dataclass(slots=True)
class DistributionInfo:
    """Budget side of a round; frozen once `is_released` flips, except the settled counter."""

    total_distribution: int
    exchange_rate: Decimal = ZERO
    is_released: bool = False
    actual_distributed: int = 0
    num_bids_distributed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_distribution": str(self.total_distribution),
            "exchange_rate": format_ratio(self.exchange_rate),
            "is_released": self.is_released,
            "actual_distributed": str(self.actual_distributed),
            "num_bids_distributed": self.num_bids_distributed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistributionInfo":
        return cls(
            total_distribution=int(data["total_distribution"]),
            exchange_rate=to_ratio(data.get("exchange_rate", "0")),
            is_released=bool(data.get("is_released", False)),
            actual_distributed=int(data.get("actual_distributed", 0)),
            num_bids_distributed=int(data.get("num_bids_distributed", 0)),
        )


# --------------------------------------------------------------------------- #
# Slot pool
# --------------------------------------------------------------------------- #

@dataclass(slots=True)
class BidPool:
    """
    Aggregate of one premium slot within a round.

    Attributes:
        slot: Premium slot, 1..max_slot.
        total_bid_amount: Underlying deposited into this slot.
        premium_rate: premium_rate_per_slot × slot, fixed at creation.
        index_snapshot: Fill ratio, share of the slot's full claim actually funded.
        received_per_token: Payout rate, distribution units per underlying unit.
    """

    slot: int
    total_bid_amount: int
    premium_rate: Decimal
    index_snapshot: Decimal = ZERO
    received_per_token: Decimal = ZERO

    @classmethod
    def empty(cls, slot: int, premium_rate_per_slot: Decimal) -> "BidPool":
        return cls(
            slot=slot,
            total_bid_amount=0,
            premium_rate=mul_ratio(premium_rate_per_slot, to_ratio(slot)),
        )

    def copy(self) -> "BidPool":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot": self.slot,
            "total_bid_amount": str(self.total_bid_amount),
            "premium_rate": format_ratio(self.premium_rate),
            "index_snapshot": format_ratio(self.index_snapshot),
            "received_per_token": format_ratio(self.received_per_token),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BidPool":
        return cls(
            slot=int(data["slot"]),
            total_bid_amount=int(data["total_bid_amount"]),
            premium_rate=to_ratio(data["premium_rate"]),
            index_snapshot=to_ratio(data.get("index_snapshot", "0")),
            received_per_token=to_ratio(data.get("received_per_token", "0")),
        )


# --------------------------------------------------------------------------- #
# Bid
# --------------------------------------------------------------------------- #

@dataclass(slots=True)
class Bid:
    idx: int
    round: int
    premium_slot: int
    timestamp: int
    bidder: str
    amount: int
    residue_bid: int            # refunded in underlying; the full amount until settled
    amount_received: int = 0    # reward in distribution asset
    is_distributed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "idx": self.idx,
            "round": self.round,
            "premium_slot": self.premium_slot,
            "timestamp": self.timestamp,
            "bidder": self.bidder,
            "amount": str(self.amount),
            "residue_bid": str(self.residue_bid),
            "amount_received": str(self.amount_received),
            "is_distributed": self.is_distributed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bid":
        return cls(
            idx=int(data["idx"]),
            round=int(data["round"]),
            premium_slot=int(data["premium_slot"]),
            timestamp=int(data["timestamp"]),
            bidder=str(data["bidder"]),
            amount=int(data["amount"]),
            residue_bid=int(data["residue_bid"]),
            amount_received=int(data.get("amount_received", 0)),
            is_distributed=bool(data.get("is_distributed", False)),
        )
