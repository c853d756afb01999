"""Stored state of the external staking contract."""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass, field
from decimal import Decimal
from fractions import Fraction
from itertools import takewhile
from typing import Iterator, Optional, Union

from meshstaking.errors import NotFound, RangeError
from meshstaking.points_alignment import PointsAlignment

Ratio = Union[Decimal, Fraction, int, str]


def _mul_floor(amount: int, ratio: Ratio) -> int:
    return math.floor(Fraction(amount) * Fraction(ratio))


@dataclass
class ValueRange:
    """A value whose exact size is unknown while transactions are in flight.

    ``low`` is the value if every pending change fails in the worst way,
    ``high`` the value if it goes the best way.
    """

    low: int = 0
    high: int = 0

    def __post_init__(self) -> None:
        if self.low > self.high:
            raise RangeError(f"Invalid range: {self.low} > {self.high}")

    @classmethod
    def new_val(cls, value: int) -> "ValueRange":
        """Return a range holding exactly ``value``."""
        return cls(value, value)

    def prepare_add(self, amount: int, maximum: Optional[int] = None) -> None:
        """Start adding ``amount``; the upper bound grows now."""
        if maximum is not None and self.high + amount > maximum:
            raise RangeError("Overflow maximum value")
        self.high += amount

    def prepare_sub(self, amount: int, minimum: int = 0) -> None:
        """Start subtracting ``amount``; the lower bound shrinks now."""
        if self.low - amount < minimum:
            raise RangeError("Underflow minimum value")
        self.low -= amount

    def commit_add_saturating(self, amount: int) -> None:
        """Finish an addition, never going above the upper bound."""
        self.low = min(self.low + amount, self.high)

    def rollback_add_saturating(self, amount: int) -> None:
        """Undo an addition, never going below the lower bound."""
        self.high = max(self.high - amount, self.low)

    def commit_sub(self, amount: int) -> None:
        """Finish a subtraction."""
        if self.high - amount < self.low:
            raise RangeError("Underflow minimum value")
        self.high -= amount

    def rollback_sub_saturating(self, amount: int) -> None:
        """Undo a subtraction, never going above the upper bound."""
        self.low = min(self.low + amount, self.high)


@dataclass
class PendingUnbond:
    """Tokens in their unbonding period."""

    amount: int
    release_at: int


@dataclass
class Stake:
    """Everything about one ``(user, validator)`` stake."""

    stake: ValueRange = field(default_factory=ValueRange)
    pending_unbonds: list[PendingUnbond] = field(default_factory=list)
    points_alignment: PointsAlignment = field(default_factory=PointsAlignment)
    withdrawn_funds: int = 0

    @classmethod
    def from_amount(cls, amount: int) -> "Stake":
        """Return a stake of exactly ``amount`` with nothing else recorded."""
        return cls(stake=ValueRange.new_val(amount))

    def release_pending(self, now: int) -> int:
        """Remove unbondings due at ``now`` and return the amount released.

        Unbondings are appended in release order, so only a prefix is due.
        """
        due = list(takewhile(lambda p: p.release_at <= now, self.pending_unbonds))
        del self.pending_unbonds[: len(due)]
        return sum(p.amount for p in due)

    def slash_pending(self, now: int, slash_ratio: Ratio) -> int:
        """Slash unbondings not yet released at ``now``; return the total slashed."""
        total = 0
        for pending in self.pending_unbonds:
            if pending.release_at > now:
                slash = _mul_floor(pending.amount, slash_ratio)
                pending.amount -= slash
                total += slash
        return total


@dataclass
class Distribution:
    """Reward distribution bookkeeping of one validator."""

    total_stake: int = 0
    points_per_stake: int = 0
    points_leftover: int = 0


@dataclass
class Config:
    """Contract configuration."""

    denom: str
    rewards_denom: str
    vault: str
    unbonding_period: int
    max_slashing: Decimal


@dataclass(frozen=True)
class InFlightRemoteStaking:
    id: int
    amount: int
    user: str
    validator: str


@dataclass(frozen=True)
class InFlightRemoteUnstaking:
    id: int
    amount: int
    user: str
    validator: str


@dataclass(frozen=True)
class InFlightTransferFunds:
    id: int
    amount: int
    staker: str
    validator: str


Tx = Union[InFlightRemoteStaking, InFlightRemoteUnstaking, InFlightTransferFunds]


class StakeStore:
    """Stakes keyed by ``(user, validator)``, readable per user or per validator.

    Stakes are copied in and out, so changes count only once saved.
    """

    def __init__(self) -> None:
        self._stakes: dict[tuple[str, str], Stake] = {}

    def get(self, user: str, validator: str) -> Stake:
        """Return the stake, or an empty one if none is stored."""
        stake = self._stakes.get((user, validator))
        return copy.deepcopy(stake) if stake is not None else Stake()

    def load(self, user: str, validator: str) -> Stake:
        """Return the stake, raising NotFound if none is stored."""
        try:
            return copy.deepcopy(self._stakes[(user, validator)])
        except KeyError:
            raise NotFound("Stake") from None

    def save(self, user: str, validator: str, stake: Stake) -> None:
        self._stakes[(user, validator)] = copy.deepcopy(stake)

    def by_user(
        self, user: str, start_after: Optional[str] = None
    ) -> Iterator[tuple[str, Stake]]:
        """Yield ``(validator, stake)`` of a user in ascending validator order."""
        validators = sorted(
            v
            for u, v in self._stakes
            if u == user and (start_after is None or v > start_after)
        )
        for validator in validators:
            yield validator, copy.deepcopy(self._stakes[(user, validator)])

    def by_validator(self, validator: str) -> list[tuple[str, Stake]]:
        """Return ``(user, stake)`` staking via a validator, in ascending user order."""
        users = sorted(u for u, v in self._stakes if v == validator)
        return [(user, copy.deepcopy(self._stakes[(user, validator)])) for user in users]