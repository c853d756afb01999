"""Per-staker correction of distributed reward points."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class PointsAlignment:
    """How many points to add to or take from a staker's computed share.

    Changing a stake immediately changes the points a staker would be credited
    with; the alignment cancels that out so only rewards distributed while the
    stake was held count.
    """

    value: int = 0

    def align(self, points: int) -> int:
        """Return ``points`` corrected by this alignment."""
        aligned = points + self.value
        if aligned < 0:
            raise OverflowError("aligned points would be negative")
        return aligned

    def stake_increased(self, amount: int, pps: int) -> None:
        """Account for ``amount`` newly staked at ``pps`` points per stake."""
        self.value -= amount * pps

    def stake_decreased(self, amount: int, pps: int) -> None:
        """Account for ``amount`` unstaked at ``pps`` points per stake."""
        self.value += amount * pps