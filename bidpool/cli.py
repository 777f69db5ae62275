# bidpool/cli.py
# --------------------------------------------------------------------------- #
# Command-line front end over a state directory. Each invocation is one
# engine call: it commits fully or exits non-zero with nothing written.
# --------------------------------------------------------------------------- #

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, Iterable, Optional

from loguru import logger

from bidpool.assets import NativeToken, Token
from bidpool.config import BIDPOOL_CONFIG_PATH, BIDPOOL_STATE_DIR, LOG_LEVEL, load_engine_config
from bidpool.engines.auction import AuctionEngine
from bidpool.errors import BidPoolError
from bidpool.state import StateStore
from bidpool.utils.logging import setup_logging


def _parse_asset(raw: str):
    """`token:<contract_addr>` or `native:<denom>`."""
    kind, _, value = raw.partition(":")
    if kind == "token" and value:
        return Token(contract_addr=value)
    if kind == "native" and value:
        return NativeToken(denom=value)
    raise argparse.ArgumentTypeError(f"asset must be token:<addr> or native:<denom>, got {raw!r}")


def _parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m bidpool.cli",
        description="Sealed-rate premium-slot auction: rounds, bids, release and settlement.",
    )
    parser.add_argument("--state-dir", type=Path, default=Path(BIDPOOL_STATE_DIR),
                        help="Directory holding state.json.")
    parser.add_argument("--now", type=int, default=None,
                        help="Override current time (unix seconds).")
    parser.add_argument("--log-level", default=LOG_LEVEL)
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Write the engine configuration into the state directory.")
    p.add_argument("--config", type=Path, default=Path(BIDPOOL_CONFIG_PATH))

    p = sub.add_parser("create-round", help="Open a new round (operator only).")
    p.add_argument("--sender", required=True)
    p.add_argument("--start", type=int, required=True)
    p.add_argument("--end", type=int, required=True)
    p.add_argument("--budget", type=int, required=True, help="Total distribution budget.")

    p = sub.add_parser("bid", help="Deposit into a premium slot.")
    p.add_argument("--round", type=int, required=True)
    p.add_argument("--slot", type=int, required=True)
    p.add_argument("--bidder", required=True)
    p.add_argument("--amount", type=int, required=True)
    p.add_argument("--asset", type=_parse_asset, default=None,
                   help="Asset sent (defaults to the configured underlying token).")

    p = sub.add_parser("finalize", help="Release a closed round at an exchange rate (operator only).")
    p.add_argument("--sender", required=True)
    p.add_argument("--round", type=int, required=True)
    p.add_argument("--rate", required=True, help="Exchange rate, e.g. 0.01")

    p = sub.add_parser("distribute", help="Settle one page of bids of a released round.")
    p.add_argument("--round", type=int, required=True)
    p.add_argument("--start-after", type=int, default=None)
    p.add_argument("--limit", type=int, default=None)

    p = sub.add_parser("round", help="Show round and distribution info.")
    p.add_argument("--round", type=int, default=None, help="Defaults to the last round.")

    p = sub.add_parser("pools", help="Show all slot pools of a round.")
    p.add_argument("--round", type=int, required=True)

    p = sub.add_parser("bids", help="List bids of a round (paged) or of one user.")
    p.add_argument("--round", type=int, required=True)
    p.add_argument("--user", default=None)
    p.add_argument("--start-after", type=int, default=None)
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--order", choices=["asc", "desc"], default="asc")

    p = sub.add_parser("estimate", help="What-if settlement at a hypothetical rate.")
    p.add_argument("--round", type=int, required=True)
    p.add_argument("--rate", required=True)
    p.add_argument("--bid", type=int, default=None, help="Existing bid idx.")
    p.add_argument("--slot", type=int, default=None)
    p.add_argument("--amount", type=int, default=None)

    return parser.parse_args(argv)


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


def run(args: argparse.Namespace) -> int:
    now = args.now if args.now is not None else int(time.time())
    state = StateStore(root=args.state_dir)

    if args.command == "init":
        engine = AuctionEngine(state, load_engine_config(args.config))
        _print_json(engine.config.to_dict())
        return 0

    engine = AuctionEngine(state)

    if args.command == "create-round":
        res = engine.create_round(args.sender, args.start, args.end, args.budget, now)
    elif args.command == "bid":
        asset = args.asset if args.asset is not None else engine.config.underlying_token
        res = engine.submit_bid(args.round, args.slot, args.bidder, args.amount, asset, now)
    elif args.command == "finalize":
        res = engine.finalize_round(args.sender, args.round, args.rate, now)
    elif args.command == "distribute":
        res = engine.distribute(args.round, args.start_after, args.limit)
    elif args.command == "round":
        round_id = args.round if args.round is not None else engine.last_round_id()
        bidding_info, distribution_info = engine.bidding_info(round_id)
        _print_json({
            "bid_info": bidding_info.to_dict(),
            "distribution_info": distribution_info.to_dict(),
            "num_bids": engine.count_bids_in_round(round_id),
            "fully_settled": engine.is_fully_settled(round_id),
        })
        return 0
    elif args.command == "pools":
        _print_json([p.to_dict() for p in engine.all_bid_pools(args.round)])
        return 0
    elif args.command == "bids":
        if args.user:
            _print_json([b.to_dict() for b in engine.bids_by_user(args.round, args.user)])
        else:
            ids = engine.all_bids_in_round(args.round, args.start_after, args.limit, args.order)
            _print_json([engine.bid(i).to_dict() for i in ids])
        return 0
    elif args.command == "estimate":
        if args.bid is not None:
            est = engine.estimate_amount_receive_of_bid(args.round, args.bid, args.rate)
        elif args.slot is not None and args.amount is not None:
            est = engine.estimate_amount_receive(args.round, args.slot, args.amount, args.rate)
        else:
            raise SystemExit("estimate needs --bid, or --slot and --amount")
        _print_json(est.to_dict())
        return 0
    else:  # pragma: no cover
        raise SystemExit(f"unknown command {args.command}")

    _print_json(res.to_dict())
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level)
    try:
        return run(args)
    except BidPoolError as e:
        logger.error(f"✗ {type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
