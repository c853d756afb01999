"""IBC channel handshake and packet handling of the external staking contract."""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass
from typing import Any, Union

from meshstaking.chain import (
    Coin,
    Env,
    IbcChannel,
    IbcOrder,
    Response,
    StakePacket,
    TransferRewardsPacket,
    UnstakePacket,
    decode_provider_packet,
)
from meshstaking.contract import ExternalStakingContract
from meshstaking.crdt import ValUpdate
from meshstaking.errors import (
    ContractError,
    IbcChannelAlreadyOpen,
    IbcOpenInitDisallowed,
    IbcVersionError,
    Unauthorized,
)
from meshstaking.msg import RewardInfo

PROTOCOL_NAME = "mesh-security"
# Highest protocol version supported.
SUPPORTED_IBC_PROTOCOL_VERSION = "0.11.0"
# Lowest protocol version still compatible.
MIN_IBC_PROTOCOL_VERSION = "0.11.0"

_VERSION_RE = re.compile(r"(\d+)\.(\d+)\.(\d+)")


def _parse_version(text: str) -> tuple[int, int, int]:
    match = _VERSION_RE.fullmatch(text)
    if match is None:
        raise IbcVersionError(f"Invalid protocol version: {text}")
    major, minor, patch = (int(part) for part in match.groups())
    return major, minor, patch


def _dumps(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode()


@dataclass(frozen=True)
class ProtocolVersion:
    """Protocol name and version announced during the channel handshake."""

    protocol: str
    version: str

    def build_response(self, supported: str, minimum: str) -> "ProtocolVersion":
        """Return the version to answer with, the highest both sides support."""
        if self.protocol != PROTOCOL_NAME:
            raise IbcVersionError(f"Unsupported protocol: {self.protocol}")
        theirs = _parse_version(self.version)
        ours = _parse_version(supported)
        lowest = _parse_version(minimum)
        if theirs < lowest:
            raise IbcVersionError(
                f"Protocol version {self.version} is older than the minimum {minimum}"
            )
        version = self.version if theirs <= ours else supported
        return ProtocolVersion(self.protocol, version)

    def to_json(self) -> bytes:
        return _dumps({"protocol": self.protocol, "version": self.version})

    @classmethod
    def from_json(cls, data: Union[bytes, str]) -> "ProtocolVersion":
        try:
            raw = json.loads(data)
        except ValueError as exc:
            raise ContractError(f"Error parsing into type ProtocolVersion: {exc}") from None
        if (
            not isinstance(raw, dict)
            or set(raw) != {"protocol", "version"}
            or not all(isinstance(v, str) for v in raw.values())
        ):
            raise ContractError(f"Error parsing into type ProtocolVersion: {raw!r}")
        return cls(raw["protocol"], raw["version"])


# -- consumer packets ------------------------------------------------------


@dataclass(frozen=True)
class AddValidator:
    valoper: str
    pub_key: str
    start_height: int
    start_time: int


@dataclass(frozen=True)
class RemoveValidator:
    valoper: str
    height: int
    time: int


@dataclass(frozen=True)
class AddValidators:
    validators: tuple[AddValidator, ...]


@dataclass(frozen=True)
class TombstoneValidators:
    validators: tuple[RemoveValidator, ...]


@dataclass(frozen=True)
class JailValidators:
    validators: tuple[RemoveValidator, ...]


@dataclass(frozen=True)
class Distribute:
    validator: str
    rewards: Coin


@dataclass(frozen=True)
class DistributeBatch:
    rewards: tuple[RewardInfo, ...]
    denom: str


ConsumerPacket = Union[
    AddValidators, TombstoneValidators, JailValidators, Distribute, DistributeBatch
]


def _obj(value: Any, keys: set[str]) -> dict:
    if not isinstance(value, dict) or set(value) != keys:
        raise ValueError(f"expected fields {sorted(keys)}: {value!r}")
    return value


def _str(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError(f"invalid string: {value!r}")
    return value


def _uint(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"invalid integer: {value!r}")
    return value


def _uint_str(value: Any) -> int:
    if not isinstance(value, str) or not value.isdigit():
        raise ValueError(f"invalid amount: {value!r}")
    return int(value)


def _list(value: Any) -> list:
    if not isinstance(value, list):
        raise ValueError(f"invalid list: {value!r}")
    return value


def _add_validator(raw: Any) -> AddValidator:
    body = _obj(raw, {"valoper", "pub_key", "start_height", "start_time"})
    return AddValidator(
        valoper=_str(body["valoper"]),
        pub_key=_str(body["pub_key"]),
        start_height=_uint(body["start_height"]),
        start_time=_uint(body["start_time"]),
    )


def _remove_validator(raw: Any) -> RemoveValidator:
    body = _obj(raw, {"valoper", "height", "time"})
    return RemoveValidator(
        valoper=_str(body["valoper"]),
        height=_uint(body["height"]),
        time=_uint(body["time"]),
    )


def _coin(raw: Any) -> Coin:
    body = _obj(raw, {"denom", "amount"})
    return Coin(_uint_str(body["amount"]), _str(body["denom"]))


def _reward_info(raw: Any) -> RewardInfo:
    body = _obj(raw, {"validator", "reward"})
    return RewardInfo(_str(body["validator"]), _uint_str(body["reward"]))


def decode_consumer_packet(data: Union[bytes, str]) -> ConsumerPacket:
    """Parse a packet sent by the consumer chain from its JSON wire form."""
    try:
        raw = json.loads(data)
        ((tag, body),) = raw.items()
        if tag == "add_validators":
            return AddValidators(tuple(_add_validator(v) for v in _list(body)))
        if tag == "tombstone_validators":
            return TombstoneValidators(tuple(_remove_validator(v) for v in _list(body)))
        if tag == "jail_validators":
            return JailValidators(tuple(_remove_validator(v) for v in _list(body)))
        if tag == "distribute":
            fields = _obj(body, {"validator", "rewards"})
            return Distribute(_str(fields["validator"]), _coin(fields["rewards"]))
        if tag == "distribute_batch":
            fields = _obj(body, {"rewards", "denom"})
            return DistributeBatch(
                tuple(_reward_info(r) for r in _list(fields["rewards"])),
                _str(fields["denom"]),
            )
        raise ValueError(f"unknown variant {tag!r}")
    except (ValueError, TypeError, AttributeError) as exc:
        raise ContractError(f"Error parsing into type ConsumerPacket: {exc}") from None


# -- acknowledgements ------------------------------------------------------


@dataclass(frozen=True)
class AckResult:
    """A successful acknowledgement carrying result data."""

    data: bytes = b"{}"


@dataclass(frozen=True)
class AckError:
    """A failed acknowledgement carrying an error message."""

    error: str


Ack = Union[AckResult, AckError]


def _ack_success() -> bytes:
    return _dumps({"result": base64.b64encode(b"{}").decode()})


def _as_ack(ack: Union[Ack, bytes, str]) -> Ack:
    if isinstance(ack, (AckResult, AckError)):
        return ack
    try:
        raw = json.loads(ack)
        ((tag, value),) = raw.items()
        if tag == "result" and isinstance(value, str):
            return AckResult(base64.b64decode(value, validate=True))
        if tag == "error" and isinstance(value, str):
            return AckError(value)
        raise ValueError(f"unknown acknowledgement {raw!r}")
    except (ValueError, TypeError, AttributeError) as exc:
        raise ContractError(f"Error parsing into type AckWrapper: {exc}") from None


# -- channel handshake -----------------------------------------------------


@dataclass(frozen=True)
class OpenInit:
    channel: IbcChannel


@dataclass(frozen=True)
class OpenTry:
    channel: IbcChannel
    counterparty_version: str


@dataclass(frozen=True)
class OpenConfirm:
    channel: IbcChannel


@dataclass(frozen=True)
class OpenAck:
    channel: IbcChannel
    counterparty_version: str


def ibc_channel_open(
    contract: ExternalStakingContract, msg: Union[OpenInit, OpenTry]
) -> str:
    """Check a channel opening and return the protocol version to answer with."""
    if contract.channel is not None:
        raise IbcChannelAlreadyOpen()
    if isinstance(msg, OpenInit):
        raise IbcOpenInitDisallowed()
    channel = msg.channel
    if channel.order != IbcOrder.UNORDERED:
        raise IbcVersionError("Only supports unordered channels")

    authorized = contract.authorized_endpoint()
    if (
        authorized.connection_id != channel.connection_id
        or authorized.port_id != channel.counterparty_endpoint.port_id
    ):
        raise Unauthorized()

    theirs = ProtocolVersion.from_json(msg.counterparty_version)
    version = theirs.build_response(
        SUPPORTED_IBC_PROTOCOL_VERSION, MIN_IBC_PROTOCOL_VERSION
    )
    return version.to_json().decode()


def ibc_channel_connect(
    contract: ExternalStakingContract, msg: Union[OpenConfirm, OpenAck]
) -> Response:
    """Store the channel once the handshake is confirmed."""
    if contract.channel is not None:
        raise IbcChannelAlreadyOpen()
    if isinstance(msg, OpenAck):
        raise IbcOpenInitDisallowed()
    contract.channel = msg.channel
    return Response()


# -- packets ---------------------------------------------------------------


def _slash_active(
    contract: ExternalStakingContract,
    env: Env,
    validators: tuple[RemoveValidator, ...],
    tombstone: bool,
) -> list:
    msgs = []
    for removed in validators:
        active = contract.val_set.is_active_validator_at_height(
            removed.valoper, removed.height
        )
        if tombstone:
            contract.val_set.remove_validator(removed.valoper)
        if active:
            msgs.append(contract.handle_slashing(env, removed.valoper))
    return msgs


def ibc_packet_receive(
    contract: ExternalStakingContract, env: Env, data: Union[bytes, str]
) -> Response:
    """Apply a packet from the consumer chain; the response data is the ack."""
    packet = decode_consumer_packet(data)
    resp = Response()
    if isinstance(packet, AddValidators):
        for added in packet.validators:
            contract.val_set.add_validator(
                added.valoper,
                ValUpdate(added.pub_key, added.start_height, added.start_time),
            )
    elif isinstance(packet, TombstoneValidators):
        resp.add_messages(_slash_active(contract, env, packet.validators, True))
    elif isinstance(packet, JailValidators):
        # Jailing keeps the validator's state; only slashing applies.
        resp.add_messages(_slash_active(contract, env, packet.validators, False))
    elif isinstance(packet, Distribute):
        resp.add_event(contract.distribute_rewards(packet.validator, packet.rewards))
    else:
        resp.add_events(contract.distribute_rewards_batch(packet.rewards, packet.denom))
    return resp.set_data(_ack_success())


def ibc_packet_ack(
    contract: ExternalStakingContract,
    env: Env,
    data: Union[bytes, str],
    ack: Union[Ack, bytes, str],
    sequence: int,
) -> Response:
    """Commit or roll back the transaction behind an acknowledged packet."""
    packet = decode_provider_packet(data)
    result = _as_ack(ack)
    ok = isinstance(result, AckResult)
    resp = Response()

    if isinstance(packet, StakePacket):
        if ok:
            resp.add_message(contract.commit_stake(packet.tx_id))
            resp.add_attribute("success", "true")
        else:
            resp.add_message(contract.rollback_stake(packet.tx_id))
            resp.add_attribute("error", result.error)
        resp.add_attribute("tx_id", packet.tx_id)
    elif isinstance(packet, UnstakePacket):
        if ok:
            contract.commit_unstake(env, packet.tx_id)
            resp.add_attribute("success", "true")
        else:
            contract.rollback_unstake(packet.tx_id)
            resp.add_attribute("error", result.error)
        resp.add_attribute("tx_id", packet.tx_id)
    elif isinstance(packet, TransferRewardsPacket):
        if ok:
            contract.commit_withdraw_rewards(packet.tx_id)
        else:
            contract.rollback_withdraw_rewards(packet.tx_id)
            resp.add_attribute("error", result.error)
            resp.add_attribute("packet", sequence)
    return resp


def ibc_packet_timeout(
    contract: ExternalStakingContract, data: Union[bytes, str]
) -> Response:
    """Roll back the transaction behind a packet that timed out."""
    packet = decode_provider_packet(data)
    resp = Response().add_attribute("action", "ibc_packet_timeout")
    if isinstance(packet, StakePacket):
        resp.add_message(contract.rollback_stake(packet.tx_id))
    elif isinstance(packet, UnstakePacket):
        contract.rollback_unstake(packet.tx_id)
    else:
        contract.rollback_withdraw_rewards(packet.tx_id)
    return resp.add_attribute("tx_id", packet.tx_id)