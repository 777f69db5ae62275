# ====================================================================== #
# bidpool/utils/pretty_logs.py
# Rich-based pretty logging for round lifecycle summaries.
# ====================================================================== #

from __future__ import annotations

from typing import Any, Iterable, List, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from bidpool.config import LOG_TOP_N, MASK_ADDRESSES, PRETTY_LOGS
from bidpool.models import BidPool
from bidpool.utils.fixed_point import format_ratio


def _mask(addr: str) -> str:
    if not MASK_ADDRESSES:
        return addr
    if not addr or len(addr) < 12:
        return addr
    return f"{addr[:8]}…{addr[-4:]}"


class Pretty:
    def __init__(self, enable: bool = True):
        self.enable = bool(enable)
        self.console = Console(log_path=False, highlight=False, stderr=True)

    def kv_panel(self, title: str, items: Iterable[Tuple[str, Any]], style: str = "bold"):
        if self.enable:
            body = "\n".join([f"[white]{k}[/white]: {v}" for k, v in items])
            self.console.print(Panel(body, title=title, border_style=style))

    def table(self, title: str, columns: List[str], rows: List[List[Any]], caption: str | None = None):
        if not self.enable:
            return
        rows = rows[:LOG_TOP_N]
        t = Table(title=title, box=box.MINIMAL_DOUBLE_HEAD, show_lines=False)
        for c in columns:
            t.add_column(c)
        for r in rows:
            t.add_row(*[str(x) for x in r])
        if caption:
            t.caption = caption
        self.console.print(t)

    # Convenience formatters
    def show_slot_pools(self, round_id: int, pools: Sequence[BidPool]):
        rows = [
            [p.slot, p.total_bid_amount, format_ratio(p.premium_rate),
             format_ratio(p.index_snapshot), format_ratio(p.received_per_token)]
            for p in pools
            if p.total_bid_amount > 0
        ]
        if rows:
            self.table(
                f"Slot pools (round {round_id})",
                ["Slot", "Deposited", "Premium", "Fill ratio", "Payout rate"],
                rows,
            )

    def show_finalize(self, round_id: int, exchange_rate: str, total_matched: int,
                      actual_distributed: int, leftover: int):
        self.kv_panel(
            f"Round {round_id} released",
            [
                ("exchange_rate", exchange_rate),
                ("total_matched (burn)", total_matched),
                ("actual_distributed", actual_distributed),
                ("leftover → owner", leftover),
            ],
            style="bold green",
        )

    def show_settled_bids(self, rows: List[Tuple[int, str, int, int, int]]):
        # (idx, bidder, slot, received, refund)
        if rows:
            self.table(
                "Settled bids (this page)",
                ["Bid", "Bidder", "Slot", "Received", "Refund"],
                [[idx, _mask(b), s, rcv, res] for idx, b, s, rcv, res in rows],
            )


pretty = Pretty(enable=PRETTY_LOGS)
