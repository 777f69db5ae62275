# bidpool/assets.py
# --------------------------------------------------------------------------- #
# The two asset kinds a round can deal in, and the value-movement
# instructions the engine emits for the surrounding system to execute.
# The engine never moves funds itself.
# --------------------------------------------------------------------------- #

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Union


@dataclass(frozen=True, slots=True)
class NativeToken:
    denom: str

    def to_dict(self) -> Dict[str, Any]:
        return {"native_token": {"denom": self.denom}}

    def __str__(self) -> str:
        return self.denom


@dataclass(frozen=True, slots=True)
class Token:
    contract_addr: str

    def to_dict(self) -> Dict[str, Any]:
        return {"token": {"contract_addr": self.contract_addr}}

    def __str__(self) -> str:
        return self.contract_addr


AssetInfo = Union[NativeToken, Token]


def asset_from_dict(data: Any) -> AssetInfo:
    """
    Accepts the serialised form and the short YAML form:

        {native_token: {denom: orai}}   or  {native_token: orai}
        {token: {contract_addr: orai1…}} or  {token: orai1…}
    """
    if isinstance(data, (NativeToken, Token)):
        return data
    if not isinstance(data, dict) or len(data) != 1:
        raise ValueError(f"invalid asset info: {data!r}")
    kind, body = next(iter(data.items()))
    if kind == "native_token":
        return NativeToken(denom=str(body["denom"] if isinstance(body, dict) else body))
    if kind == "token":
        return Token(contract_addr=str(body["contract_addr"] if isinstance(body, dict) else body))
    raise ValueError(f"unknown asset kind: {kind!r}")


# ───────────────────────────── instructions ──────────────────────────── #

@dataclass(frozen=True, slots=True)
class BankSend:
    to_address: str
    denom: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"bank": {"send": {"to_address": self.to_address,
                                  "amount": [{"denom": self.denom, "amount": str(self.amount)}]}}}


@dataclass(frozen=True, slots=True)
class BankBurn:
    denom: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"bank": {"burn": {"amount": [{"denom": self.denom, "amount": str(self.amount)}]}}}


@dataclass(frozen=True, slots=True)
class TokenTransfer:
    contract_addr: str
    recipient: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"wasm": {"execute": {"contract_addr": self.contract_addr,
                                     "msg": {"transfer": {"recipient": self.recipient,
                                                          "amount": str(self.amount)}}}}}


@dataclass(frozen=True, slots=True)
class TokenBurn:
    contract_addr: str
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {"wasm": {"execute": {"contract_addr": self.contract_addr,
                                     "msg": {"burn": {"amount": str(self.amount)}}}}}


Instruction = Union[BankSend, BankBurn, TokenTransfer, TokenBurn]


def build_transfer(asset: AssetInfo, recipient: str, amount: int) -> Instruction:
    if isinstance(asset, Token):
        return TokenTransfer(contract_addr=asset.contract_addr, recipient=recipient, amount=amount)
    if isinstance(asset, NativeToken):
        return BankSend(to_address=recipient, denom=asset.denom, amount=amount)
    raise TypeError(f"unsupported asset: {asset!r}")


def build_burn(asset: AssetInfo, amount: int) -> Instruction:
    if isinstance(asset, Token):
        return TokenBurn(contract_addr=asset.contract_addr, amount=amount)
    if isinstance(asset, NativeToken):
        return BankBurn(denom=asset.denom, amount=amount)
    raise TypeError(f"unsupported asset: {asset!r}")
