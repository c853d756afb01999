"""Native staking proxy: stakes a user's vault collateral on the local chain."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from meshstaking.chain import (
    Coin,
    MessageInfo,
    Response,
    coin,
    must_pay,
    nonpayable,
    validate_address,
)
from meshstaking.errors import ContractError, InvalidDenom, NotFound, Unauthorized
from meshstaking.msg import OwnerMsg, ProxyConfig

# Body of the call that hands released tokens back to the native staking contract.
RELEASE_PROXY_STAKE_MSG = b'{"release_proxy_stake":{}}'


class VoteOption(enum.Enum):
    YES = "yes"
    NO = "no"
    ABSTAIN = "abstain"
    NO_WITH_VETO = "no_with_veto"


@dataclass(frozen=True)
class WeightedVoteOption:
    option: VoteOption
    weight: Decimal


@dataclass(frozen=True)
class Delegate:
    validator: str
    amount: Coin


@dataclass(frozen=True)
class Redelegate:
    src_validator: str
    dst_validator: str
    amount: Coin


@dataclass(frozen=True)
class Undelegate:
    validator: str
    amount: Coin


@dataclass(frozen=True)
class SetWithdrawAddress:
    address: str


@dataclass(frozen=True)
class WithdrawDelegatorReward:
    validator: str


@dataclass(frozen=True)
class Vote:
    proposal_id: int
    vote: VoteOption


@dataclass(frozen=True)
class VoteWeighted:
    proposal_id: int
    options: tuple[WeightedVoteOption, ...]


@dataclass(frozen=True)
class ReleaseProxyStake:
    """Send funds back to the parent contract via its ``release_proxy_stake`` call."""

    contract_addr: str
    funds: tuple[Coin, ...]
    msg: bytes = RELEASE_PROXY_STAKE_MSG


class NativeStakingProxyContract:
    """Holds one user's local stake; the parent contract stakes, the owner manages."""

    def __init__(self) -> None:
        self._config: Optional[ProxyConfig] = None

    def _load_config(self) -> ProxyConfig:
        if self._config is None:
            raise NotFound("Config")
        return self._config

    def _owner_config(self, info: MessageInfo) -> ProxyConfig:
        config = self._load_config()
        if config.owner != info.sender:
            raise Unauthorized()
        nonpayable(info)
        return config

    def instantiate(
        self, info: MessageInfo, denom: str, owner: str, validator: str
    ) -> Response:
        """Set up the proxy for ``owner`` and stake the sent funds on ``validator``.

        The sender becomes the parent contract.
        """
        config = ProxyConfig(denom=denom, owner=validate_address(owner), parent=info.sender)
        self._config = config
        try:
            resp = self.stake(info, validator)
        except ContractError:
            self._config = None
            raise
        return resp.add_message(SetWithdrawAddress(config.owner)).set_data(
            OwnerMsg(owner).to_json()
        )

    def stake(self, info: MessageInfo, validator: str) -> Response:
        """Delegate the sent funds; only the parent contract may call this."""
        config = self._load_config()
        if config.parent != info.sender:
            raise Unauthorized()
        amount = must_pay(info, config.denom)
        return Response().add_message(Delegate(validator, coin(amount, config.denom)))

    def restake(
        self, info: MessageInfo, src_validator: str, dst_validator: str, amount: Coin
    ) -> Response:
        """Move stake from one validator to another on the owner's behalf."""
        config = self._owner_config(info)
        if amount.denom != config.denom:
            raise InvalidDenom(amount.denom, sent=True)
        return Response().add_message(Redelegate(src_validator, dst_validator, amount))

    def vote(self, info: MessageInfo, proposal_id: int, vote: VoteOption) -> Response:
        """Vote with all of the owner's delegations."""
        self._owner_config(info)
        return Response().add_message(Vote(proposal_id, vote))

    def vote_weighted(
        self, info: MessageInfo, proposal_id: int, vote: Iterable[WeightedVoteOption]
    ) -> Response:
        """Cast a weighted vote with all of the owner's delegations."""
        self._owner_config(info)
        return Response().add_message(VoteWeighted(proposal_id, tuple(vote)))

    def withdraw_rewards(self, info: MessageInfo, delegations: Iterable[str]) -> Response:
        """Withdraw rewards of every validator delegated to, to the owner."""
        self._owner_config(info)
        return Response().add_messages(
            WithdrawDelegatorReward(validator) for validator in delegations
        )

    def unstake(self, info: MessageInfo, validator: str, amount: Coin) -> Response:
        """Undelegate ``amount`` from ``validator`` on the owner's behalf."""
        config = self._owner_config(info)
        if amount.denom != config.denom:
            raise InvalidDenom(amount.denom, sent=True)
        return Response().add_message(Undelegate(validator, amount))

    def release_unbonded(self, info: MessageInfo, balance: int) -> Response:
        """Return the proxy's liquid ``balance`` of its denom to the parent contract.

        All liquid tokens are taken to come from completed unbondings.
        """
        config = self._owner_config(info)
        return Response().add_message(
            ReleaseProxyStake(config.parent, (coin(balance, config.denom),))
        )

    def query_config(self) -> ProxyConfig:
        return self._load_config()