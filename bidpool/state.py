# bidpool/state.py
from __future__ import annotations

import copy
import json
import os
import tempfile
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from loguru import logger

from bidpool.config import EngineConfig
from bidpool.models import Bid, BiddingInfo, BidPool, DistributionInfo

_MISSING = object()


@dataclass
class StateStore:
    """
    Engine state kept in memory and persisted under `root`
    (`root=None` keeps everything in memory).

    Files (relative to `root`):
      - state.json : {config, last_round_id, next_bid_idx, rounds,
                      distributions, bid_pools, journal_size}
      - bids.jsonl : append-only bid records, the last line per idx wins;
                     only the first `journal_size` bytes are committed

    Mutations happen inside `transaction()`. Writers call `touch()` before
    changing a record and `append_index()` to extend an index list; the
    undo log holds just those records, so a call costs what it touches.
    On error the log is replayed backwards; on success the touched bids are
    appended to the journal and state.json is replaced atomically.
    """
    root: Optional[Path] = None
    _file_lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _depth: int = field(default=0, init=False)
    _undo: Optional[Dict[Tuple[str, Any], Any]] = field(default=None, init=False)
    _dirty_bids: Set[int] = field(default_factory=set, init=False)
    _journal_size: int = field(default=0, init=False)

    config: Optional[EngineConfig] = None
    last_round_id: int = 0
    next_bid_idx: int = 1
    rounds: Dict[int, BiddingInfo] = field(default_factory=dict)
    distributions: Dict[int, DistributionInfo] = field(default_factory=dict)
    bid_pools: Dict[Tuple[int, int], BidPool] = field(default_factory=dict)
    bids: Dict[int, Bid] = field(default_factory=dict)
    # round -> ascending bid ids
    bids_by_round: Dict[int, List[int]] = field(default_factory=dict)
    # (round, bidder) -> bid ids in submission order
    bids_by_user: Dict[Tuple[int, str], List[int]] = field(default_factory=dict)

    _FN_STATE = "state.json"
    _FN_BIDS = "bids.jsonl"
    _SCALARS = ("config", "last_round_id", "next_bid_idx")
    _RECORDS = ("rounds", "distributions", "bid_pools", "bids")
    _INDEXES = ("bids_by_round", "bids_by_user")

    def __post_init__(self):
        if self.root is not None:
            self.root = Path(self.root)
            self.root.mkdir(parents=True, exist_ok=True)
            self._load()

    # ---------- file ops ----------
    def _atomic_write_text(self, path: Path, text: str) -> None:
        """
        Write atomically on the same filesystem using a temp file + os.replace.
        Ensures directory exists; guarded with a process-level lock.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._file_lock:
            tmp_suffix = f".tmp.{os.getpid()}.{int(time.time() * 1000)}.{uuid.uuid4().hex[:6]}"
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=str(path.parent),
                prefix=path.name + ".",
                suffix=tmp_suffix,
                delete=False,
            ) as tmp:
                tmp.write(text)
                tmp.flush()
                os.fsync(tmp.fileno())
                tmp_path = Path(tmp.name)
            os.replace(tmp_path, path)

    def _append_bids(self, ids: List[int]) -> int:
        """Append records at the committed offset; returns the new offset (not committed yet)."""
        path = self.root / self._FN_BIDS
        lines = "".join(json.dumps(self.bids[i].to_dict(), sort_keys=True) + "\n" for i in ids)
        with self._file_lock:
            with open(path, "ab") as fh:
                # drop any tail left by a write that never got committed
                fh.truncate(self._journal_size)
                fh.seek(self._journal_size)
                fh.write(lines.encode("utf-8"))
                fh.flush()
                os.fsync(fh.fileno())
                return fh.tell()

    def _load(self) -> None:
        path = self.root / self._FN_STATE
        if not path.exists():
            return
        meta = json.loads(path.read_text(encoding="utf-8"))
        self._apply_meta(meta)

        self._journal_size = int(meta.get("journal_size", 0))
        journal = self.root / self._FN_BIDS
        if self._journal_size and journal.exists():
            with open(journal, "rb") as fh:
                committed = fh.read(self._journal_size).decode("utf-8")
            for line in committed.splitlines():
                if line.strip():
                    bid = Bid.from_dict(json.loads(line))
                    self.bids[bid.idx] = bid
        self._rebuild_indexes()
        logger.debug(f"[state] loaded {path} • rounds={len(self.rounds)} • bids={len(self.bids)}")

    def _rebuild_indexes(self) -> None:
        self.bids_by_round = {}
        self.bids_by_user = {}
        for idx in sorted(self.bids):
            bid = self.bids[idx]
            self.bids_by_round.setdefault(bid.round, []).append(idx)
            self.bids_by_user.setdefault((bid.round, bid.bidder), []).append(idx)

    # ---------- (de)serialisation ----------
    def _meta_dict(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict() if self.config else None,
            "last_round_id": self.last_round_id,
            "next_bid_idx": self.next_bid_idx,
            "rounds": {str(k): v.to_dict() for k, v in self.rounds.items()},
            "distributions": {str(k): v.to_dict() for k, v in self.distributions.items()},
            "bid_pools": {f"{r}:{s}": p.to_dict() for (r, s), p in self.bid_pools.items()},
        }

    def _apply_meta(self, data: Dict[str, Any]) -> None:
        cfg = data.get("config")
        self.config = EngineConfig.from_dict(cfg) if cfg else None
        self.last_round_id = int(data.get("last_round_id", 0))
        self.next_bid_idx = int(data.get("next_bid_idx", 1))
        self.rounds = {int(k): BiddingInfo.from_dict(v) for k, v in (data.get("rounds") or {}).items()}
        self.distributions = {
            int(k): DistributionInfo.from_dict(v) for k, v in (data.get("distributions") or {}).items()
        }
        pools: Dict[Tuple[int, int], BidPool] = {}
        for key, v in (data.get("bid_pools") or {}).items():
            r, s = key.split(":")
            pools[(int(r), int(s))] = BidPool.from_dict(v)
        self.bid_pools = pools
        self.bids = {}

    def to_dict(self) -> Dict[str, Any]:
        """Full dump, bids included (inspection and tests; not the on-disk form)."""
        data = self._meta_dict()
        data["bids"] = {str(k): v.to_dict() for k, v in self.bids.items()}
        data["bids_by_round"] = {str(k): list(v) for k, v in self.bids_by_round.items()}
        data["bids_by_user"] = [[r, u, list(v)] for (r, u), v in self.bids_by_user.items()]
        return data

    # ---------- undo log ----------
    def touch(self, table: str, key: Any) -> None:
        """Remember `table[key]` as it is now (or its absence) before a write."""
        if self._undo is None:
            raise RuntimeError("state writes must run inside transaction()")
        mark = (table, key)
        if mark not in self._undo:
            old = getattr(self, table).get(key, _MISSING)
            self._undo[mark] = old if old is _MISSING else copy.copy(old)
        if table == "bids":
            self._dirty_bids.add(key)

    def append_index(self, table: str, key: Any, idx: int) -> None:
        """Append `idx` to an index list; rollback truncates back to the old length."""
        if self._undo is None:
            raise RuntimeError("state writes must run inside transaction()")
        ids = getattr(self, table).get(key)
        mark = ("#" + table, key)
        if mark not in self._undo:
            self._undo[mark] = _MISSING if ids is None else len(ids)
        if ids is None:
            ids = getattr(self, table)[key] = []
        ids.append(idx)

    def _rollback(self, scalars: Dict[str, Any]) -> None:
        for (table, key), old in reversed(list(self._undo.items())):
            if table.startswith("#"):
                index = getattr(self, table[1:])
                if old is _MISSING:
                    index.pop(key, None)
                else:
                    del index[key][old:]
            elif old is _MISSING:
                getattr(self, table).pop(key, None)
            else:
                getattr(self, table)[key] = old
        for name, value in scalars.items():
            setattr(self, name, value)

    # ---------- transactions ----------
    @contextmanager
    def transaction(self) -> Iterator["StateStore"]:
        """All-or-nothing scope for one engine call; nested scopes join the outer one."""
        if self._depth > 0:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        # scalars are immutable values, kept by reference
        scalars = {name: getattr(self, name) for name in self._SCALARS}
        self._undo = {}
        self._dirty_bids = set()
        self._depth = 1
        try:
            yield self
            self.save()
        except BaseException as e:
            self._rollback(scalars)
            logger.warning(f"[state] rolled back: {type(e).__name__}: {e}")
            raise
        finally:
            self._undo = None
            self._dirty_bids = set()
            self._depth = 0

    # ---------- public API ----------
    def save(self) -> None:
        """Append the touched bids, then commit the new journal offset with state.json."""
        if self.root is None:
            return
        size = self._journal_size
        dirty = sorted(i for i in self._dirty_bids if i in self.bids)
        if dirty:
            size = self._append_bids(dirty)
        meta = self._meta_dict()
        meta["journal_size"] = size
        self._atomic_write_text(self.root / self._FN_STATE, json.dumps(meta, sort_keys=True))
        self._journal_size = size

    def wipe(self) -> None:
        """Delete the files under `root` and reset memory."""
        logger.warning("Wiping engine state...")
        if self.root is not None:
            for name in (self._FN_STATE, self._FN_BIDS):
                path = self.root / name
                if path.exists():
                    path.unlink()
        self._journal_size = 0
        self.config = None
        self.last_round_id = 0
        self.next_bid_idx = 1
        for name in self._RECORDS + self._INDEXES:
            setattr(self, name, {})
