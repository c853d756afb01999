"""Proportional reward distribution among the stakers of a validator."""

from __future__ import annotations

from meshstaking.errors import ContractError
from meshstaking.state import Distribution, Stake

# Points credited per rewarded token, so that fractions of a token carry over.
DISTRIBUTION_POINTS_SCALE = 1_000_000_000

_UINT128_MAX = (1 << 128) - 1


def distribute(distribution: Distribution, amount: int) -> None:
    """Spread ``amount`` reward tokens over all stake on a validator.

    Points that do not divide evenly over the total stake are kept as
    leftover for the next distribution. The distribution is updated in place.
    """
    total_stake = distribution.total_stake
    if total_stake == 0:
        raise ContractError("Cannot divide by zero: validator has no stake")
    points_distributed = (
        amount * DISTRIBUTION_POINTS_SCALE + distribution.points_leftover
    )
    points_per_stake, leftover = divmod(points_distributed, total_stake)
    distribution.points_leftover = leftover
    distribution.points_per_stake += points_per_stake


def calculate_reward(stake: Stake, distribution: Distribution) -> int:
    """Return the rewards a stake may still withdraw.

    ``distribution`` must belong to the validator of ``stake``. The lower end
    of the stake range is used, which errs against the staker while unstakes
    are pending.
    """
    points = distribution.points_per_stake * stake.stake.low
    points = stake.points_alignment.align(points)
    total = points // DISTRIBUTION_POINTS_SCALE
    if total > _UINT128_MAX:
        raise ContractError(
            f"Error converting Uint256 to Uint128 for {total}"
        )
    if total < stake.withdrawn_funds:
        raise ContractError(
            f"Cannot Sub with {total} and {stake.withdrawn_funds}"
        )
    return total - stake.withdrawn_funds