# ------------------------------------------------------------------------
# tests/test_auction.py
# ------------------------------------------------------------------------
# Round lifecycle through AuctionEngine: create, bid, finalize, queries,
# what-if estimates, config updates and all-or-nothing failure handling.
# ------------------------------------------------------------------------

from decimal import Decimal

import pytest

from bidpool.assets import BankBurn, BankSend, NativeToken, Token, TokenBurn, TokenTransfer
from bidpool.engines.auction import AuctionEngine, Estimate
from bidpool.errors import (
    ArithmeticOverflowError,
    BelowMinimumDepositError,
    BidNotEndedError,
    BidNotFoundError,
    BidNotOpenError,
    InvalidBiddingTimeRangeError,
    InvalidBiddingTokenError,
    InvalidConfigError,
    InvalidSlotError,
    RoundAlreadyReleasedError,
    RoundNotFoundError,
    UnauthorizedError,
)
from bidpool.state import StateStore
from bidpool.utils.fixed_point import MAX_AMOUNT, ONE, ZERO

from conftest import MIN_DEPOSIT, NOW, ORAIX_ADDR, OWNER, USDC, make_config

UNDERLYING = Token(ORAIX_ADDR)
DEPOSIT = 4000_000000


def _fill_round(engine, round_id: int, bidder: str = "addr000"):
    for slot in range(1, 26):
        engine.submit_bid(round_id, slot, bidder, DEPOSIT, UNDERLYING, NOW)


# ───── create ─────────────────────────────────────────────────────────── #

def test_create_new_round(engine):
    with pytest.raises(UnauthorizedError):
        engine.create_round("addr0001", NOW, NOW + 1000, 20000_000000, NOW)

    res = engine.create_round(OWNER, NOW, NOW + 1000, 20000_000000, NOW)
    assert res.attributes == [
        ("action", "create_new_bidding_round"),
        ("round", "1"),
        ("start_time", str(NOW)),
        ("end_time", str(NOW + 1000)),
    ]
    bidding_info, distribution_info = engine.bidding_info(1)
    assert (bidding_info.total_bid_amount, bidding_info.total_bid_matched) == (0, 0)
    assert distribution_info.total_distribution == 20000_000000
    assert distribution_info.exchange_rate == ZERO
    assert distribution_info.is_released is False
    assert engine.last_round_id() == 1


@pytest.mark.parametrize("start,end", [(NOW - 1, NOW + 10), (NOW + 10, NOW + 10), (NOW + 10, NOW + 5)])
def test_create_round_rejects_bad_window(engine, start, end):
    with pytest.raises(InvalidBiddingTimeRangeError):
        engine.create_round(OWNER, start, end, 1, NOW)
    assert engine.last_round_id() == 0


# ───── bids ───────────────────────────────────────────────────────────── #

def test_submit_bids_and_queries(engine, open_round):
    round_id = open_round(20000_000000)

    with pytest.raises(InvalidBiddingTokenError):
        engine.submit_bid(round_id, 1, "addr000", MIN_DEPOSIT, NativeToken("orai"), NOW)
    with pytest.raises(BelowMinimumDepositError, match="Minimum deposit is 100000000, got 1"):
        engine.submit_bid(round_id, 1, "addr000", 1, UNDERLYING, NOW)
    with pytest.raises(InvalidSlotError):
        engine.submit_bid(round_id, 0, "addr000", MIN_DEPOSIT, UNDERLYING, NOW)
    with pytest.raises(InvalidSlotError):
        engine.submit_bid(round_id, 26, "addr000", MIN_DEPOSIT, UNDERLYING, NOW)
    with pytest.raises(BidNotOpenError):
        engine.submit_bid(round_id, 1, "addr000", MIN_DEPOSIT, UNDERLYING, NOW - 100)
    with pytest.raises(BidNotOpenError):
        engine.submit_bid(round_id, 1, "addr000", MIN_DEPOSIT, UNDERLYING, NOW + 1001)
    with pytest.raises(RoundNotFoundError):
        engine.submit_bid(99, 1, "addr000", MIN_DEPOSIT, UNDERLYING, NOW)

    res = engine.submit_bid(round_id, 1, "addr000", MIN_DEPOSIT, UNDERLYING, NOW)
    assert res.attributes == [
        ("action", "submit_bid"),
        ("round", "1"),
        ("bidder", "addr000"),
        ("bid_idx", "1"),
        ("premium_slot", "1"),
        ("amount", str(MIN_DEPOSIT)),
    ]
    engine.submit_bid(round_id, 1, "addr000", 2 * MIN_DEPOSIT, UNDERLYING, NOW + 500)
    engine.submit_bid(round_id, 2, "addr001", MIN_DEPOSIT, UNDERLYING, NOW + 1000)

    bid = engine.bid(1)
    assert (bid.idx, bid.round, bid.premium_slot, bid.timestamp) == (1, 1, 1, NOW)
    assert bid.residue_bid == MIN_DEPOSIT and not bid.is_distributed

    pool = engine.bid_pool(round_id, 1)
    assert pool.total_bid_amount == 3 * MIN_DEPOSIT
    assert pool.premium_rate == Decimal("0.01")
    assert engine.bidding_info(round_id)[0].total_bid_amount == 4 * MIN_DEPOSIT

    empty = engine.bid_pool(round_id, 7)
    assert empty.total_bid_amount == 0 and empty.premium_rate == Decimal("0.07")
    assert len(engine.all_bid_pools(round_id)) == 25

    assert engine.all_bids_in_round(round_id) == [1, 2, 3]
    assert engine.all_bids_in_round(round_id, order_by=2) == [3, 2, 1]
    assert engine.bids_idx_by_user(round_id, "addr000") == [1, 2]
    assert [b.idx for b in engine.bids_by_user(round_id, "addr001")] == [3]
    assert engine.count_bids_in_round(round_id) == 3


def test_rejected_bid_leaves_no_trace(engine, open_round):
    round_id = open_round(1000_000000)
    engine.submit_bid(round_id, 1, "whale", MAX_AMOUNT, UNDERLYING, NOW)

    with pytest.raises(ArithmeticOverflowError):
        engine.submit_bid(round_id, 2, "addr000", MIN_DEPOSIT, UNDERLYING, NOW)

    assert engine.count_bids_in_round(round_id) == 1
    assert engine.state.next_bid_idx == 2
    assert (round_id, 2) not in engine.state.bid_pools
    assert engine.bidding_info(round_id)[0].total_bid_amount == MAX_AMOUNT


# ───── finalize ───────────────────────────────────────────────────────── #

def test_finalize_bidding_round_result(engine, open_round):
    round_id = open_round(1080_000000)
    _fill_round(engine, round_id)

    with pytest.raises(UnauthorizedError):
        engine.finalize_round("addr000", round_id, "0.01", NOW + 1001)
    with pytest.raises(BidNotEndedError):
        engine.finalize_round(OWNER, round_id, "0.01", NOW + 1000)

    res = engine.finalize_round(OWNER, round_id, "0.01", NOW + 1001)
    assert res.attributes == [
        ("action", "finalize_bidding_round_result"),
        ("round", "1"),
        ("exchange_rate", "0.01"),
        ("total_matched", "96000000000"),
        ("actual_distributed", "1080000000"),
    ]
    assert res.messages == [TokenBurn(ORAIX_ADDR, 96000_000000)]

    bidding_info, distribution_info = engine.bidding_info(round_id)
    assert distribution_info.is_released
    assert distribution_info.exchange_rate == Decimal("0.01")
    assert bidding_info.total_bid_matched == 96000_000000
    assert engine.bid_pool(round_id, 24).index_snapshot == ONE
    assert engine.bid_pool(round_id, 25).index_snapshot == ZERO


def test_finalize_returns_leftover_to_owner(engine, open_round):
    round_id = open_round(1200_000000)
    _fill_round(engine, round_id)

    res = engine.finalize_round(OWNER, round_id, "0.01", NOW + 1001)
    assert res.attr("total_matched") == "100000000000"
    assert res.attr("actual_distributed") == "1130000000"
    assert res.messages == [
        TokenBurn(ORAIX_ADDR, 100000_000000),
        TokenTransfer(USDC, OWNER, 70_000000),
    ]


def test_finalize_twice_is_rejected(engine, open_round):
    round_id = open_round(1200_000000)
    _fill_round(engine, round_id)
    engine.finalize_round(OWNER, round_id, "0.01", NOW + 1001)
    before = engine.bidding_info(round_id)[1].to_dict()

    with pytest.raises(RoundAlreadyReleasedError, match="round 1 has been finalized"):
        engine.finalize_round(OWNER, round_id, "0.02", NOW + 2000)

    assert engine.bidding_info(round_id)[1].to_dict() == before


def test_finalize_overflow_keeps_round_unreleased(engine, open_round):
    round_id = open_round(1000_000000)
    engine.submit_bid(round_id, 25, "whale", 10**30, UNDERLYING, NOW)

    with pytest.raises(ArithmeticOverflowError):
        engine.finalize_round(OWNER, round_id, 10**20, NOW + 1001)

    _, distribution_info = engine.bidding_info(round_id)
    assert distribution_info.is_released is False
    assert engine.bid_pool(round_id, 25).index_snapshot == ZERO
    # retry with a sane rate succeeds
    engine.finalize_round(OWNER, round_id, "0.01", NOW + 1001)
    assert engine.bidding_info(round_id)[1].is_released


def test_native_assets_emit_bank_messages():
    cfg = make_config(underlying_token=NativeToken("orai"), distribution_token=NativeToken("usdc"))
    engine = AuctionEngine(StateStore(), cfg)
    engine.create_round(OWNER, NOW, NOW + 1000, 20_000000, NOW)
    engine.submit_bid(1, 10, "addr000", 1000_000000, NativeToken("orai"), NOW)
    engine.submit_bid(1, 20, "addr001", 1000_000000, NativeToken("orai"), NOW)

    res = engine.finalize_round(OWNER, 1, "0.01", NOW + 1001)
    assert res.messages == [BankBurn("orai", 1750_000000)]

    res = engine.distribute(1)
    assert res.messages == [
        BankSend("addr000", "usdc", 11_000000),
        BankSend("addr001", "usdc", 9_000000),
        BankSend("addr001", "orai", 250_000000),
    ]


# ───── what-if ────────────────────────────────────────────────────────── #

def test_estimates_do_not_mutate(engine, open_round):
    round_id = open_round(1055_200000)
    _fill_round(engine, round_id)

    est = engine.estimate_amount_receive_of_bid(round_id, 24, "0.01")
    assert est == Estimate(receive=24_800000, residue_bid=2000_000000)

    est = engine.estimate_amount_receive(round_id, 25, DEPOSIT, "0.01")
    assert est == Estimate(receive=0, residue_bid=DEPOSIT)

    assert engine.bid_pool(round_id, 24).index_snapshot == ZERO
    assert engine.bid_pool(round_id, 25).total_bid_amount == DEPOSIT
    assert engine.bidding_info(round_id)[1].is_released is False


def test_estimate_on_empty_round(engine, open_round):
    round_id = open_round(1200_000000)
    est = engine.estimate_amount_receive(round_id, 1, 1000_000000, "0.01")
    # 1000 × 0.01 × 1.01
    assert est == Estimate(receive=10_100000, residue_bid=0)
    with pytest.raises(InvalidSlotError):
        engine.estimate_amount_receive(round_id, 26, 1000_000000, "0.01")


# ───── round maintenance ─────────────────────────────────────────────── #

def test_update_round_before_it_opens(engine):
    engine.create_round(OWNER, NOW + 100, NOW + 1000, 5, NOW)

    res = engine.update_round(OWNER, 1, NOW, end_time=NOW + 2000, total_distribution=50)
    assert res.attr("end_time") == str(NOW + 2000)
    bidding_info, distribution_info = engine.bidding_info(1)
    assert bidding_info.end_time == NOW + 2000
    assert distribution_info.total_distribution == 50

    with pytest.raises(InvalidBiddingTimeRangeError):
        engine.update_round(OWNER, 1, NOW, end_time=NOW + 50)
    assert engine.bidding_info(1)[0].end_time == NOW + 2000

    with pytest.raises(InvalidBiddingTimeRangeError):
        engine.update_round(OWNER, 1, NOW + 100, total_distribution=1)
    with pytest.raises(UnauthorizedError):
        engine.update_round("addr000", 1, NOW, total_distribution=1)


def test_create_round_from_treasury():
    engine = AuctionEngine(StateStore(), make_config(treasury="treasury", bidding_duration=3600))

    with pytest.raises(UnauthorizedError):
        engine.create_round_from_treasury("mallory", 500_000000, Token(USDC), NOW)
    with pytest.raises(InvalidBiddingTokenError):
        engine.create_round_from_treasury("treasury", 500_000000, Token(ORAIX_ADDR), NOW)

    res = engine.create_round_from_treasury("treasury", 500_000000, Token(USDC), NOW)
    assert res.attr("round") == "1"
    bidding_info, distribution_info = engine.bidding_info(1)
    assert (bidding_info.start_time, bidding_info.end_time) == (NOW, NOW + 3600)
    assert distribution_info.total_distribution == 500_000000


def test_create_round_from_treasury_needs_treasury(engine):
    with pytest.raises(UnauthorizedError):
        engine.create_round_from_treasury("treasury", 1, Token(USDC), NOW)


# ───── config ─────────────────────────────────────────────────────────── #

def test_update_config_produces_new_snapshot(engine, open_round):
    first = engine.config
    with pytest.raises(UnauthorizedError):
        engine.update_config("addr000", min_deposit_amount=1)

    engine.update_config(OWNER, min_deposit_amount=1, premium_rate_per_slot="0.02")
    assert engine.config.version == first.version + 1
    assert first.min_deposit_amount == MIN_DEPOSIT
    assert engine.config.premium_rate_per_slot == Decimal("0.02")

    round_id = open_round(1)
    engine.submit_bid(round_id, 3, "addr000", 1, UNDERLYING, NOW)
    assert engine.bid_pool(round_id, 3).premium_rate == Decimal("0.06")

    with pytest.raises(InvalidConfigError):
        engine.update_config(OWNER, max_slot=0)
    with pytest.raises(InvalidConfigError):
        engine.update_config(OWNER, colour="blue")
    assert engine.config.version == first.version + 1


@pytest.mark.parametrize("changes", [
    {"max_slot": "many"},
    {"min_deposit_amount": "lots"},
    {"premium_rate_per_slot": "abc"},
    {"underlying_token": {"cw20": "x"}},
    {"distribution_token": {"native_token": {}}},
])
def test_update_config_rejects_malformed_values(engine, changes):
    with pytest.raises(InvalidConfigError):
        engine.update_config(OWNER, **changes)
    assert engine.config.version == 1


@pytest.mark.parametrize("asset", ["orai", {"native_token": {}}, {"cw20": ORAIX_ADDR}])
def test_malformed_bid_asset_is_an_invalid_token(engine, open_round, asset):
    round_id = open_round(1000_000000)
    with pytest.raises(InvalidBiddingTokenError):
        engine.submit_bid(round_id, 1, "addr000", MIN_DEPOSIT, asset, NOW)
    assert engine.count_bids_in_round(round_id) == 0


def test_estimate_of_bid_checks_its_round(engine, open_round):
    first = open_round(1200_000000)
    second = open_round(1200_000000)
    engine.submit_bid(first, 1, "addr000", 1000_000000, UNDERLYING, NOW)

    with pytest.raises(BidNotFoundError):
        engine.estimate_amount_receive_of_bid(second, 1, "0.01")
    assert engine.estimate_amount_receive_of_bid(first, 1, "0.01") == Estimate(receive=10_100000, residue_bid=0)
