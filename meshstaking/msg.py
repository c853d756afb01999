"""Messages and query responses of the staking contracts."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Union

from meshstaking.chain import Coin, IbcChannel, coin
from meshstaking.errors import ContractError, InvalidEndpoint
from meshstaking.state import Config, Stake, Tx


def _dumps(value: object) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode()


def _parse_single_string(data: Union[bytes, str], type_name: str, key: str) -> str:
    try:
        raw = json.loads(data)
    except ValueError as exc:
        raise ContractError(f"Error parsing into type {type_name}: {exc}") from None
    if not isinstance(raw, dict) or set(raw) != {key} or not isinstance(raw[key], str):
        raise ContractError(f"Error parsing into type {type_name}: {raw!r}")
    return raw[key]


@dataclass(frozen=True)
class AuthorizedEndpoint:
    """The only counterparty connection and port allowed to open a channel."""

    connection_id: str
    port_id: str

    def validate(self) -> None:
        if not self.connection_id or not self.port_id:
            raise InvalidEndpoint(repr(self))


@dataclass(frozen=True)
class IbcChannelResponse:
    channel: IbcChannel


@dataclass
class ListRemoteValidatorsResponse:
    validators: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConfigResponse:
    """Contract configuration as reported by a query; unbonding period in seconds."""

    denom: str
    vault: str
    unbonding_period: int

    @classmethod
    def from_config(cls, config: Config) -> "ConfigResponse":
        return cls(config.denom, config.vault, config.unbonding_period)


@dataclass
class StakeInfo:
    """A stake together with its owner and validator."""

    owner: str
    validator: str
    stake: Stake


@dataclass
class StakesResponse:
    stakes: list[StakeInfo] = field(default_factory=list)


@dataclass(frozen=True)
class ReceiveVirtualStake:
    """Payload of a virtual stake sent by the vault."""

    validator: str

    def to_json(self) -> bytes:
        return _dumps({"validator": self.validator})

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "ReceiveVirtualStake":
        return cls(_parse_single_string(data, "ReceiveVirtualStake", "validator"))


@dataclass(frozen=True)
class UserInfo:
    addr: str


@dataclass
class UsersResponse:
    users: list[UserInfo] = field(default_factory=list)


@dataclass(frozen=True)
class PendingRewards:
    rewards: Coin


@dataclass(frozen=True)
class ValidatorPendingRewards:
    validator: str
    rewards: PendingRewards

    @classmethod
    def from_amount(
        cls, validator: str, amount: int, denom: str
    ) -> "ValidatorPendingRewards":
        return cls(validator, PendingRewards(coin(amount, denom)))


@dataclass
class AllPendingRewards:
    rewards: list[ValidatorPendingRewards] = field(default_factory=list)


@dataclass
class AllTxsResponse:
    txs: list[Tx] = field(default_factory=list)


@dataclass(frozen=True)
class RewardInfo:
    """Rewards for one validator in a batch distribution."""

    validator: str
    reward: int


@dataclass(frozen=True)
class MaxSlashResponse:
    max_slash: Decimal


@dataclass(frozen=True)
class OwnerMsg:
    """Data a staking proxy returns from instantiation, naming its owner."""

    owner: str

    def to_json(self) -> bytes:
        return _dumps({"owner": self.owner})


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration of a native staking proxy."""

    denom: str
    owner: str
    parent: str