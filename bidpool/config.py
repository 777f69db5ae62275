"""
bidpool/config.py: global constants and the engine configuration snapshot
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from bidpool.assets import AssetInfo, asset_from_dict
from bidpool.errors import ArithmeticOverflowError, InvalidConfigError
from bidpool.utils.fixed_point import MAX_AMOUNT, to_ratio

load_dotenv()

# ╭─────────────────────────── ENVIRONMENT ────────────────────────────╮
BIDPOOL_STATE_DIR: str = os.getenv("BIDPOOL_STATE_DIR", ".bidpool")
BIDPOOL_CONFIG_PATH: str = os.getenv("BIDPOOL_CONFIG_PATH", "bidpool.yml")
# ╰────────────────────────────────────────────────────────────────────╯


# ╭─────────────────────────── LEDGER PAGING ──────────────────────────╮
DEFAULT_LIMIT: int = int(os.getenv("BIDPOOL_DEFAULT_LIMIT", "30"))
# Hard cap, applied whatever the caller asks for.
MAX_LIMIT: int = int(os.getenv("BIDPOOL_MAX_LIMIT", "1000"))
# ╰────────────────────────────────────────────────────────────────────╯


# ╭─────────────────────────── SLOTS ──────────────────────────────────╮
MAX_SLOT_CEILING: int = 255
# ╰────────────────────────────────────────────────────────────────────╯


# ╭──────────────────────────── LOGGING (pretty) ──────────────────────╮
PRETTY_LOGS: bool = os.getenv("PRETTY_LOGS", "true").lower() == "true"
LOG_TOP_N: int = int(os.getenv("LOG_TOP_N", "25"))
MASK_ADDRESSES: bool = os.getenv("MASK_ADDRESSES", "true").lower() == "true"
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
# ╰────────────────────────────────────────────────────────────────────╯


@dataclass(frozen=True)
class EngineConfig:
    """
    Immutable configuration snapshot handed to every engine call.

    `updated()` never mutates: it returns the next snapshot with `version`
    bumped, so a finalize or settlement always runs against one consistent
    view of owner, assets, slot count and premium increment.
    """

    owner: str
    underlying_token: AssetInfo
    distribution_token: AssetInfo
    max_slot: int
    premium_rate_per_slot: Decimal
    min_deposit_amount: int
    treasury: Optional[str] = None
    bidding_duration: Optional[int] = None
    version: int = 1

    def __post_init__(self):
        try:
            object.__setattr__(self, "underlying_token", asset_from_dict(self.underlying_token))
            object.__setattr__(self, "distribution_token", asset_from_dict(self.distribution_token))
            object.__setattr__(self, "premium_rate_per_slot", to_ratio(self.premium_rate_per_slot))
            object.__setattr__(self, "max_slot", int(self.max_slot))
            object.__setattr__(self, "min_deposit_amount", int(self.min_deposit_amount))
            if self.bidding_duration is not None:
                object.__setattr__(self, "bidding_duration", int(self.bidding_duration))
        except (KeyError, TypeError, ValueError, ArithmeticOverflowError) as e:
            raise InvalidConfigError(f"invalid config value: {e}") from e
        self.validate()

    def validate(self) -> None:
        if not self.owner:
            raise InvalidConfigError("owner must be set")
        if not (1 <= self.max_slot <= MAX_SLOT_CEILING):
            raise InvalidConfigError(f"max_slot must be within 1 and {MAX_SLOT_CEILING}, got {self.max_slot}")
        if not (0 <= self.min_deposit_amount <= MAX_AMOUNT):
            raise InvalidConfigError(f"min_deposit_amount out of range: {self.min_deposit_amount}")
        if self.bidding_duration is not None and self.bidding_duration <= 0:
            raise InvalidConfigError("bidding_duration must be positive")

    def updated(self, **changes: Any) -> "EngineConfig":
        known = {f.name for f in fields(self)} - {"version"}
        unknown = set(changes) - known
        if unknown:
            raise InvalidConfigError(f"unknown config fields: {sorted(unknown)}")
        changes = {k: v for k, v in changes.items() if v is not None}
        return replace(self, version=self.version + 1, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["underlying_token"] = self.underlying_token.to_dict()
        data["distribution_token"] = self.distribution_token.to_dict()
        data["premium_rate_per_slot"] = str(self.premium_rate_per_slot)
        data["min_deposit_amount"] = str(self.min_deposit_amount)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        return cls(
            owner=str(data["owner"]),
            underlying_token=data["underlying_token"],
            distribution_token=data["distribution_token"],
            max_slot=data["max_slot"],
            premium_rate_per_slot=str(data["premium_rate_per_slot"]),
            min_deposit_amount=data["min_deposit_amount"],
            treasury=data.get("treasury"),
            bidding_duration=data.get("bidding_duration"),
            version=int(data.get("version", 1)),
        )


def load_engine_config(path: str | Path = BIDPOOL_CONFIG_PATH) -> EngineConfig:
    """
    Load an engine configuration from a YAML file shaped like:

        owner: orai1owner...
        underlying_token: {token: orai1lus0...}
        distribution_token: {native_token: usdc}
        max_slot: 25
        premium_rate_per_slot: "0.01"
        min_deposit_amount: 100000000
        treasury: orai1treasury...     # optional
        bidding_duration: 86400        # optional, seconds
    """
    p = Path(path)
    if not p.exists():
        raise InvalidConfigError(f"config file not found at {p}")
    try:
        raw = yaml.safe_load(p.read_text()) or {}
    except yaml.YAMLError as e:
        raise InvalidConfigError(f"{p}: not valid YAML: {e}") from e
    if not isinstance(raw, dict):
        raise InvalidConfigError(f"{p} must be a mapping")
    try:
        return EngineConfig.from_dict(raw)
    except KeyError as e:
        raise InvalidConfigError(f"{p}: missing field {e}") from e
    except (TypeError, ValueError) as e:
        raise InvalidConfigError(f"{p}: {e}") from e
