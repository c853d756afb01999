"""Chain environment, messages and packets the staking contracts exchange."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field, fields
from typing import Any, Optional, Union

from meshstaking.errors import (
    ContractError,
    MissingDenom,
    MultipleDenoms,
    NoFunds,
    NonPayable,
)

# Abort packets not acknowledged within ten minutes; long enough for clock drift.
DEFAULT_TIMEOUT = 10 * 60

_ADDRESS_MIN_LENGTH = 3
_ADDRESS_MAX_LENGTH = 54


@dataclass(frozen=True)
class Coin:
    """An amount of one denomination."""

    amount: int
    denom: str

    def __str__(self) -> str:
        return f"{self.amount}{self.denom}"


def coin(amount: int, denom: str) -> Coin:
    """Return a coin of ``amount`` ``denom``."""
    return Coin(amount, denom)


@dataclass(frozen=True)
class BlockInfo:
    """The block a message is executed in; ``time`` is in seconds."""

    height: int = 12_345
    time: int = 1_571_797_419
    chain_id: str = "cosmos-testnet-14002"


@dataclass(frozen=True)
class Env:
    """Execution environment of a contract call."""

    block: BlockInfo = field(default_factory=BlockInfo)
    contract_address: str = "cosmos2contract"


@dataclass(frozen=True)
class MessageInfo:
    """Who sent a message and which funds came with it."""

    sender: str
    funds: tuple[Coin, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "funds", tuple(self.funds))


@dataclass
class Event:
    """A typed event with key/value attributes."""

    type: str
    attributes: list[tuple[str, str]] = field(default_factory=list)

    def add_attribute(self, key: str, value: Any) -> "Event":
        self.attributes.append((key, str(value)))
        return self


@dataclass
class Response:
    """The outcome of a contract call: messages to dispatch, attributes, events, data."""

    messages: list[Any] = field(default_factory=list)
    attributes: list[tuple[str, str]] = field(default_factory=list)
    events: list[Event] = field(default_factory=list)
    data: Optional[bytes] = None

    def add_attribute(self, key: str, value: Any) -> "Response":
        self.attributes.append((key, str(value)))
        return self

    def add_message(self, msg: Any) -> "Response":
        self.messages.append(msg)
        return self

    def add_messages(self, msgs: Any) -> "Response":
        self.messages.extend(msgs)
        return self

    def add_event(self, event: Event) -> "Response":
        self.events.append(event)
        return self

    def add_events(self, events: Any) -> "Response":
        self.events.extend(events)
        return self

    def set_data(self, data: bytes) -> "Response":
        self.data = data
        return self

    def attribute(self, key: str) -> str:
        """Return the value of the first attribute named ``key``."""
        for name, value in self.attributes:
            if name == key:
                return value
        raise KeyError(key)


class IbcOrder(enum.Enum):
    UNORDERED = "ORDER_UNORDERED"
    ORDERED = "ORDER_ORDERED"


@dataclass(frozen=True)
class IbcEndpoint:
    port_id: str
    channel_id: str


@dataclass(frozen=True)
class IbcChannel:
    endpoint: IbcEndpoint
    counterparty_endpoint: IbcEndpoint
    order: IbcOrder
    version: str
    connection_id: str


@dataclass(frozen=True)
class SendPacket:
    """Send ``data`` over an IBC channel; ``timeout`` is a timestamp in seconds."""

    channel_id: str
    data: bytes
    timeout: int


@dataclass(frozen=True)
class StakePacket:
    validator: str
    stake: Coin
    tx_id: int


@dataclass(frozen=True)
class UnstakePacket:
    validator: str
    unstake: Coin
    tx_id: int


@dataclass(frozen=True)
class TransferRewardsPacket:
    rewards: Coin
    recipient: str
    tx_id: int


ProviderPacket = Union[StakePacket, UnstakePacket, TransferRewardsPacket]


@dataclass(frozen=True)
class CommitTx:
    """Tell the vault a transaction succeeded."""

    vault: str
    tx_id: int


@dataclass(frozen=True)
class RollbackTx:
    """Tell the vault a transaction failed."""

    vault: str
    tx_id: int


@dataclass(frozen=True)
class ReleaseCrossStake:
    """Release part of an owner's lien on the vault."""

    vault: str
    owner: str
    amount: Coin


@dataclass(frozen=True)
class SlashInfo:
    user: str
    slash: int


@dataclass
class ProcessCrossSlashing:
    """Ask the vault to slash the collateral of the listed users."""

    vault: str
    slashes: list[SlashInfo] = field(default_factory=list)


def nonpayable(info: MessageInfo) -> None:
    """Raise NonPayable if any funds came with the message."""
    if info.funds:
        raise NonPayable()


def must_pay(info: MessageInfo, denom: str) -> int:
    """Return the amount paid in ``denom``, requiring exactly one non-zero coin."""
    if not info.funds:
        raise NoFunds()
    if len(info.funds) > 1:
        raise MultipleDenoms()
    (paid,) = info.funds
    if paid.amount == 0:
        raise NoFunds()
    if paid.denom != denom:
        raise MissingDenom(denom)
    return paid.amount


def validate_address(address: str) -> str:
    """Return ``address`` if it is a well-formed, normalized address."""
    if len(address) < _ADDRESS_MIN_LENGTH:
        raise ContractError("Invalid input: human address too short")
    if len(address) > _ADDRESS_MAX_LENGTH:
        raise ContractError("Invalid input: human address too long")
    if address != address.lower():
        raise ContractError("Invalid input: address not normalized")
    return address


def packet_timeout(env: Env) -> int:
    """Return the timestamp after which a packet sent now times out."""
    return env.block.time + DEFAULT_TIMEOUT


_PACKET_TAGS: dict[type, str] = {
    StakePacket: "stake",
    UnstakePacket: "unstake",
    TransferRewardsPacket: "transfer_rewards",
}
_PACKETS_BY_TAG: dict[str, type] = {tag: cls for cls, tag in _PACKET_TAGS.items()}


def _to_wire(value: Any) -> Any:
    if isinstance(value, Coin):
        return {"denom": value.denom, "amount": str(value.amount)}
    return value


def _coin_from_wire(value: Any) -> Coin:
    if not isinstance(value, dict) or set(value) != {"denom", "amount"}:
        raise ValueError(f"invalid coin: {value!r}")
    denom, amount = value["denom"], value["amount"]
    if not isinstance(denom, str) or not isinstance(amount, str) or not amount.isdigit():
        raise ValueError(f"invalid coin: {value!r}")
    return Coin(int(amount), denom)


def _field_from_wire(kind: str, value: Any) -> Any:
    if kind == "Coin":
        return _coin_from_wire(value)
    if kind == "int":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"invalid integer: {value!r}")
        return value
    if not isinstance(value, str):
        raise ValueError(f"invalid string: {value!r}")
    return value


def encode_packet(packet: ProviderPacket) -> bytes:
    """Serialize a provider packet to its JSON wire form."""
    try:
        tag = _PACKET_TAGS[type(packet)]
    except KeyError:
        raise TypeError(f"not a provider packet: {packet!r}") from None
    body = {f.name: _to_wire(getattr(packet, f.name)) for f in fields(packet)}
    return json.dumps({tag: body}, separators=(",", ":")).encode()


def decode_provider_packet(data: Union[bytes, str]) -> ProviderPacket:
    """Parse a provider packet from its JSON wire form."""
    try:
        raw = json.loads(data)
        ((tag, body),) = raw.items()
        cls = _PACKETS_BY_TAG[tag]
        names = {f.name: f.type for f in fields(cls)}
        if not isinstance(body, dict) or set(body) != set(names):
            raise ValueError(f"unexpected fields for {tag}: {body!r}")
        return cls(**{name: _field_from_wire(kind, body[name]) for name, kind in names.items()})
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise ContractError(f"Error parsing into type ProviderPacket: {exc}") from None