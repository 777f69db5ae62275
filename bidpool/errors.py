# bidpool/errors.py
from __future__ import annotations


class BidPoolError(Exception):
    """Base class; every rejected engine call raises one of these."""


# ---------- authorization ----------
class UnauthorizedError(BidPoolError):
    def __init__(self, msg: str = "Unauthorized"):
        super().__init__(msg)


# ---------- validation ----------
class ValidationError(BidPoolError):
    pass


class BelowMinimumDepositError(ValidationError):
    def __init__(self, minimum: int, got: int):
        super().__init__(f"Minimum deposit is {minimum}, got {got}")
        self.minimum = minimum
        self.got = got


class InvalidSlotError(ValidationError):
    def __init__(self, max_slot: int, got: int):
        super().__init__(f"premium slot must be within the range 1 and {max_slot}, reaching {got}")
        self.max_slot = max_slot
        self.got = got


class InvalidBiddingTimeRangeError(ValidationError):
    def __init__(self, msg: str = "Invalid bidding time range"):
        super().__init__(msg)


class BidNotOpenError(ValidationError):
    def __init__(self, msg: str = "Bidding round is not opening"):
        super().__init__(msg)


class BidNotEndedError(ValidationError):
    def __init__(self, msg: str = "Bidding round has not ended yet"):
        super().__init__(msg)


class RoundNotReleasedError(BidNotEndedError):
    def __init__(self, round_id: int):
        super().__init__(f"round {round_id} has not been finalized yet")
        self.round_id = round_id


class RoundAlreadyReleasedError(ValidationError):
    def __init__(self, round_id: int):
        super().__init__(f"round {round_id} has been finalized")
        self.round_id = round_id


class InvalidBiddingTokenError(ValidationError):
    def __init__(self, msg: str = "Invalid bidding token"):
        super().__init__(msg)


class InvalidConfigError(ValidationError):
    pass


# ---------- state consistency ----------
class NotFoundError(BidPoolError):
    pass


class RoundNotFoundError(NotFoundError):
    def __init__(self, round_id: int):
        super().__init__(f"round {round_id} not found")
        self.round_id = round_id


class BidNotFoundError(NotFoundError):
    def __init__(self, idx: int):
        super().__init__(f"bid {idx} not found")
        self.idx = idx


# ---------- arithmetic ----------
class ArithmeticOverflowError(BidPoolError):
    def __init__(self, msg: str = "OverflowError"):
        super().__init__(msg)