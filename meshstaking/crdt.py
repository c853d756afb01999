"""Validator set kept as a commutative replicated state."""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import groupby, islice
from typing import ClassVar, Optional, Union

from meshstaking.errors import NotFound


@dataclass(frozen=True)
class ValUpdate:
    """A validator key valid from a given height and time."""

    pub_key: str
    start_height: int
    start_time: int


@dataclass
class ActiveState:
    """Updates of an active validator, newest start height first, no duplicates."""

    updates: list[ValUpdate] = field(default_factory=list)
    is_active: ClassVar[bool] = True

    def insert_unique(self, update: ValUpdate) -> None:
        """Add an update, keeping the list sorted and free of duplicates."""
        self.updates.append(update)
        self.updates.sort(key=lambda u: u.start_height, reverse=True)
        self.updates = [u for u, _ in groupby(self.updates)]

    def query_at_height(self, height: int) -> Optional[ValUpdate]:
        """Return the update in force at ``height``, if any."""
        return next((u for u in self.updates if u.start_height <= height), None)


@dataclass(frozen=True)
class Tombstoned:
    """A validator removed for good."""

    is_active: ClassVar[bool] = False


ValidatorState = Union[ActiveState, Tombstoned]


class CrdtState:
    """All validator-set state and the rules for updating it."""

    def __init__(self) -> None:
        self._validators: dict[str, ValidatorState] = {}

    def add_validator(self, valoper: str, update: ValUpdate) -> None:
        """Add or update a validator; tombstoned validators are left as they are."""
        state = self._validators.setdefault(valoper, ActiveState())
        if isinstance(state, ActiveState):
            state.insert_unique(update)

    def remove_validator(self, valoper: str) -> None:
        """Tombstone a validator, whether or not it was known."""
        self._validators[valoper] = Tombstoned()

    def is_active_validator(self, valoper: str) -> bool:
        state = self._validators.get(valoper)
        return state is not None and state.is_active

    def is_active_validator_at_height(self, valoper: str, height: int) -> bool:
        return self.active_validator_at_height(valoper, height) is not None

    def list_active_validators(
        self, start_after: Optional[str] = None, limit: int = 100
    ) -> list[str]:
        """Return active validator addresses in ascending order after ``start_after``."""
        names = (
            name
            for name in sorted(self._validators)
            if (start_after is None or name > start_after)
            and self._validators[name].is_active
        )
        return list(islice(names, limit))

    def active_validator(self, valoper: str) -> Optional[ValUpdate]:
        """Return the newest update of an active validator, or None if tombstoned."""
        state = self._load(valoper)
        if isinstance(state, ActiveState) and state.updates:
            return state.updates[0]
        return None

    def active_validator_at_height(
        self, valoper: str, height: int
    ) -> Optional[ValUpdate]:
        """Return the update in force at ``height``, or None if there is none."""
        state = self._load(valoper)
        if isinstance(state, ActiveState):
            return state.query_at_height(height)
        return None

    def _load(self, valoper: str) -> ValidatorState:
        try:
            return self._validators[valoper]
        except KeyError:
            raise NotFound("ValidatorState") from None