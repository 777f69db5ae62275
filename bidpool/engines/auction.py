# bidpool/engines/auction.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from bidpool.assets import AssetInfo, Instruction, asset_from_dict, build_burn, build_transfer
from bidpool.config import EngineConfig
from bidpool.engines.allocation import AllocationResult, allocate
from bidpool.engines.ledger import BidLedger, OrderLike
from bidpool.engines.pools import BidPoolAggregator, validate_slot
from bidpool.engines.settlement import SettlementPage, SettlementWalker, settle_amounts
from bidpool.errors import (
    BelowMinimumDepositError,
    BidNotFoundError,
    BidNotEndedError,
    BidNotOpenError,
    InvalidBiddingTimeRangeError,
    InvalidBiddingTokenError,
    InvalidConfigError,
    RoundAlreadyReleasedError,
    RoundNotFoundError,
    UnauthorizedError,
)
from bidpool.models import Bid, BiddingInfo, BidPool, DistributionInfo
from bidpool.state import StateStore
from bidpool.utils.fixed_point import add_amount, format_ratio, to_amount, to_ratio
from bidpool.utils.pretty_logs import pretty


def _received_asset(asset: Any) -> AssetInfo:
    try:
        return asset_from_dict(asset)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidBiddingTokenError(f"Invalid funds: {e}") from e


@dataclass(slots=True)
class ExecuteResponse:
    """Outcome of a committed call: event attributes and the instructions to execute."""
    attributes: List[Tuple[str, str]] = field(default_factory=list)
    messages: List[Instruction] = field(default_factory=list)

    def attr(self, key: str) -> Optional[str]:
        for k, v in self.attributes:
            if k == key:
                return v
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attributes": [{"key": k, "value": v} for k, v in self.attributes],
            "messages": [m.to_dict() for m in self.messages],
        }


@dataclass(slots=True, frozen=True)
class Estimate:
    receive: int
    residue_bid: int

    def to_dict(self) -> Dict[str, Any]:
        return {"receive": str(self.receive), "residue_bid": str(self.residue_bid)}


class AuctionEngine:
    """
    Round lifecycle over one StateStore (operator = `config.owner`).

        create_round → submit_bid* → finalize_round → distribute*

    Every mutating call runs in `state.transaction()`: it either commits all
    of its writes and returns its instructions, or raises and leaves the
    state exactly as it found it. `now` is supplied by the caller (seconds).
    """

    def __init__(self, state: StateStore, config: Optional[EngineConfig] = None):
        self.state = state
        if config is not None:
            with self.state.transaction():
                self.state.config = config
        if self.state.config is None:
            raise InvalidConfigError("engine has no configuration")
        self.pools = BidPoolAggregator(state)
        self.ledger = BidLedger(state)
        self.walker = SettlementWalker(state, self.ledger)

    @property
    def config(self) -> EngineConfig:
        return self.state.config

    # ---------- guards ----------
    def _only_owner(self, sender: str) -> None:
        if sender != self.config.owner:
            raise UnauthorizedError()

    def _round(self, round_id: int) -> BiddingInfo:
        info = self.state.rounds.get(round_id)
        if info is None:
            raise RoundNotFoundError(round_id)
        return info

    def _distribution(self, round_id: int) -> DistributionInfo:
        info = self.state.distributions.get(round_id)
        if info is None:
            raise RoundNotFoundError(round_id)
        return info

    # ───────────────────────── execute ─────────────────────────
    def update_config(self, sender: str, **changes: Any) -> ExecuteResponse:
        with self.state.transaction():
            self._only_owner(sender)
            self.state.config = self.config.updated(**changes)
            logger.info(f"[config] updated to version {self.config.version}: {sorted(k for k, v in changes.items() if v is not None)}")
            return ExecuteResponse(attributes=[("action", "update_config")])

    def create_round(
        self,
        sender: str,
        start_time: int,
        end_time: int,
        total_distribution: int,
        now: int,
    ) -> ExecuteResponse:
        with self.state.transaction():
            self._only_owner(sender)
            return self._open_round(start_time, end_time, to_amount(total_distribution), now)

    def create_round_from_treasury(self, sender: str, amount: int, asset: Any, now: int) -> ExecuteResponse:
        """The treasury funds a round with the distribution asset it sends; window = [now, now + duration]."""
        with self.state.transaction():
            cfg = self.config
            if cfg.treasury is None or sender != cfg.treasury:
                raise UnauthorizedError()
            if cfg.bidding_duration is None:
                raise InvalidConfigError("bidding_duration is not configured")
            if _received_asset(asset) != cfg.distribution_token:
                raise InvalidBiddingTokenError("Invalid funds: distribution token expected")
            return self._open_round(now, now + cfg.bidding_duration, to_amount(amount), now)

    def _open_round(self, start_time: int, end_time: int, total_distribution: int, now: int) -> ExecuteResponse:
        round_id = self.state.last_round_id + 1
        bidding_info = BiddingInfo(round=round_id, start_time=int(start_time), end_time=int(end_time))
        if not bidding_info.is_valid_duration(now):
            raise InvalidBiddingTimeRangeError()

        self.state.last_round_id = round_id
        self.state.touch("rounds", round_id)
        self.state.touch("distributions", round_id)
        self.state.rounds[round_id] = bidding_info
        self.state.distributions[round_id] = DistributionInfo(total_distribution=total_distribution)
        logger.info(f"[round] created round={round_id} window=[{start_time}, {end_time}] budget={total_distribution}")
        return ExecuteResponse(attributes=[
            ("action", "create_new_bidding_round"),
            ("round", str(round_id)),
            ("start_time", str(start_time)),
            ("end_time", str(end_time)),
        ])

    def update_round(
        self,
        sender: str,
        round_id: int,
        now: int,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        total_distribution: Optional[int] = None,
    ) -> ExecuteResponse:
        """Amend a round that has not opened yet; the new window is validated like a fresh one."""
        with self.state.transaction():
            self._only_owner(sender)
            bidding_info = self._round(round_id)
            distribution_info = self._distribution(round_id)
            if distribution_info.is_released:
                raise RoundAlreadyReleasedError(round_id)
            if now >= bidding_info.start_time:
                raise InvalidBiddingTimeRangeError("Bidding round has already started")

            self.state.touch("rounds", round_id)
            self.state.touch("distributions", round_id)
            if start_time is not None:
                bidding_info.start_time = int(start_time)
            if end_time is not None:
                bidding_info.end_time = int(end_time)
            if not bidding_info.is_valid_duration(now):
                raise InvalidBiddingTimeRangeError()
            if total_distribution is not None:
                distribution_info.total_distribution = to_amount(total_distribution)

            return ExecuteResponse(attributes=[
                ("action", "update_round"),
                ("round", str(round_id)),
                ("start_time", str(bidding_info.start_time)),
                ("end_time", str(bidding_info.end_time)),
                ("total_distribution", str(distribution_info.total_distribution)),
            ])

    def submit_bid(
        self,
        round_id: int,
        premium_slot: int,
        bidder: str,
        amount: int,
        asset: Any,
        now: int,
    ) -> ExecuteResponse:
        """`asset` is what the bidder actually sent; it must be the configured underlying token."""
        with self.state.transaction():
            cfg = self.config
            if _received_asset(asset) != cfg.underlying_token:
                raise InvalidBiddingTokenError()
            amount = to_amount(amount)
            if cfg.min_deposit_amount > amount:
                raise BelowMinimumDepositError(cfg.min_deposit_amount, amount)
            validate_slot(cfg, premium_slot)

            bidding_info = self._round(round_id)
            if not bidding_info.opening(now):
                raise BidNotOpenError()

            self.pools.record_deposit(cfg, round_id, premium_slot, amount)
            bid = self.ledger.append(
                round_id=round_id,
                premium_slot=premium_slot,
                bidder=bidder,
                amount=amount,
                timestamp=now,
            )
            logger.info(f"[bid] round={round_id} idx={bid.idx} slot={premium_slot} amount={amount}")
            return ExecuteResponse(attributes=[
                ("action", "submit_bid"),
                ("round", str(round_id)),
                ("bidder", bidder),
                ("bid_idx", str(bid.idx)),
                ("premium_slot", str(premium_slot)),
                ("amount", str(amount)),
            ])

    def finalize_round(self, sender: str, round_id: int, exchange_rate: Any, now: int) -> ExecuteResponse:
        """
        Release a closed round: fix the rate, compute every slot's fill and
        payout, burn the matched underlying and hand unspent budget back to
        the owner. Allowed exactly once per round.
        """
        with self.state.transaction():
            cfg = self.config
            self._only_owner(sender)
            bidding_info = self._round(round_id)
            if not bidding_info.finished(now):
                raise BidNotEndedError()

            distribution_info = self._distribution(round_id)
            if distribution_info.is_released:
                raise RoundAlreadyReleasedError(round_id)

            rate = to_ratio(exchange_rate)
            pools = self.pools.read_all(cfg, round_id)
            self.state.touch("rounds", round_id)
            self.state.touch("distributions", round_id)
            for pool in pools:
                if (round_id, pool.slot) in self.state.bid_pools:
                    self.state.touch("bid_pools", (round_id, pool.slot))
            result = allocate(pools, distribution_info.total_distribution, rate)

            distribution_info.exchange_rate = rate
            distribution_info.is_released = True
            distribution_info.actual_distributed = result.distributed
            bidding_info.total_bid_matched = result.total_matched

            messages: List[Instruction] = [build_burn(cfg.underlying_token, result.total_matched)]
            if result.remaining_budget > 0:
                messages.append(build_transfer(cfg.distribution_token, cfg.owner, result.remaining_budget))

            self._log_release(round_id, rate, result, pools)
            return ExecuteResponse(
                attributes=[
                    ("action", "finalize_bidding_round_result"),
                    ("round", str(round_id)),
                    ("exchange_rate", format_ratio(rate)),
                    ("total_matched", str(result.total_matched)),
                    ("actual_distributed", str(distribution_info.actual_distributed)),
                ],
                messages=messages,
            )

    def distribute(
        self,
        round_id: int,
        start_after: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> ExecuteResponse:
        with self.state.transaction():
            page: SettlementPage = self.walker.settle_page(self.config, round_id, start_after, limit)
            attributes = [
                ("action", "distribute"),
                ("total_bids_distributed", str(page.num_bids_distributed)),
            ]
            if page.last_idx is not None:
                attributes.append(("last_idx", str(page.last_idx)))
            return ExecuteResponse(attributes=attributes, messages=page.messages)

    def _log_release(self, round_id: int, rate: Decimal, result: AllocationResult, pools: List[BidPool]) -> None:
        logger.info(
            f"[finalize] round={round_id} rate={format_ratio(rate)} matched={result.total_matched} "
            f"distributed={result.distributed} leftover={result.remaining_budget} boundary={result.boundary_slot}"
        )
        pretty.show_finalize(round_id, format_ratio(rate), result.total_matched,
                             result.distributed, result.remaining_budget)
        pretty.show_slot_pools(round_id, pools)

    # ───────────────────────── queries ─────────────────────────
    def last_round_id(self) -> int:
        return self.state.last_round_id

    def bidding_info(self, round_id: int) -> Tuple[BiddingInfo, DistributionInfo]:
        return self._round(round_id), self._distribution(round_id)

    def bid_pool(self, round_id: int, slot: int) -> BidPool:
        return self.pools.get(self.config, round_id, slot)

    def all_bid_pools(self, round_id: int) -> List[BidPool]:
        return self.pools.read_all(self.config, round_id)

    def bid(self, idx: int) -> Bid:
        return self.ledger.get(idx)

    def bids_idx_by_user(self, round_id: int, user: str) -> List[int]:
        return self.ledger.ids_by_bidder(round_id, user)

    def bids_by_user(self, round_id: int, user: str) -> List[Bid]:
        return self.ledger.list_by_bidder(round_id, user)

    def all_bids_in_round(
        self,
        round_id: int,
        start_after: Optional[int] = None,
        limit: Optional[int] = None,
        order_by: OrderLike = None,
    ) -> List[int]:
        return self.ledger.list_by_round(round_id, start_after, limit, order_by)

    def count_bids_in_round(self, round_id: int) -> int:
        return self.ledger.count(round_id)

    def is_fully_settled(self, round_id: int) -> bool:
        distribution_info = self._distribution(round_id)
        return distribution_info.is_released and distribution_info.num_bids_distributed == self.ledger.count(round_id)

    # ---------- what-if ----------
    def _projected_pools(self, round_id: int, exchange_rate: Any, extra: Optional[Tuple[int, int]] = None):
        """Run the allocation on copies; `extra` = (slot, amount) is added to that slot first."""
        cfg = self.config
        distribution_info = self._distribution(round_id)
        pools = [p.copy() for p in self.pools.read_all(cfg, round_id)]
        if extra is not None:
            slot, amount = extra
            for p in pools:
                if p.slot == slot:
                    p.total_bid_amount = add_amount(p.total_bid_amount, amount)
                    break
        allocate(pools, distribution_info.total_distribution, to_ratio(exchange_rate))
        return {p.slot: p for p in pools}

    def estimate_amount_receive_of_bid(self, round_id: int, idx: int, exchange_rate: Any) -> Estimate:
        bid = self.ledger.get(idx)
        if bid.round != round_id:
            raise BidNotFoundError(idx)
        projected = self._projected_pools(round_id, exchange_rate)
        receive, residue = settle_amounts(bid.amount, projected.get(bid.premium_slot))
        return Estimate(receive=receive, residue_bid=residue)

    def estimate_amount_receive(self, round_id: int, slot: int, bid_amount: int, exchange_rate: Any) -> Estimate:
        validate_slot(self.config, slot)
        amount = to_amount(bid_amount)
        projected = self._projected_pools(round_id, exchange_rate, extra=(slot, amount))
        receive, residue = settle_amounts(amount, projected.get(slot))
        return Estimate(receive=receive, residue_bid=residue)
