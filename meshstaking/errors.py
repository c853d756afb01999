"""Errors reported by the staking contracts."""

from __future__ import annotations

from typing import Any


class ContractError(Exception):
    """Base class for every error a contract reports.

    Two errors compare equal when they are of the same class and carry the
    same values.
    """

    template = "{0}"

    def __str__(self) -> str:
        try:
            return self.template.format(*self.args)
        except IndexError:
            return self.template

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContractError):
            return NotImplemented
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class NotFound(ContractError):
    """A stored item that was required does not exist."""

    template = "{0} not found"

    def __init__(self, kind: str) -> None:
        super().__init__(kind)
        self.kind = kind


class PaymentError(ContractError):
    """The funds sent with a message do not match what it accepts."""


class NonPayable(PaymentError):
    template = "This message does no accept funds"


class NoFunds(PaymentError):
    template = "No funds sent"


class MissingDenom(PaymentError):
    template = "Must send reserve token '{0}'"

    def __init__(self, denom: str) -> None:
        super().__init__(denom)
        self.denom = denom


class ExtraDenom(PaymentError):
    template = "Received unsupported denom '{0}'"

    def __init__(self, denom: str) -> None:
        super().__init__(denom)
        self.denom = denom


class MultipleDenoms(PaymentError):
    template = "Sent more than one denomination"


class RangeError(ContractError):
    """A value range operation would leave its bounds."""


class IbcVersionError(ContractError):
    """The counterparty's protocol version cannot be negotiated."""


class Unauthorized(ContractError):
    template = "Unauthorized"


class InvalidDenom(ContractError):
    """A coin of the wrong denomination was given.

    With ``sent`` set, ``denom`` is the wrong denomination that was sent;
    otherwise it is the one that was expected.
    """

    template = "Invalid denom, {0} expected"

    def __init__(self, denom: str, sent: bool = False) -> None:
        super().__init__(denom, sent)
        self.denom = denom
        self.sent = sent

    def __str__(self) -> str:
        if self.sent:
            return f"Try to send wrong denom: {self.denom}"
        return super().__str__()


class InvalidMaxSlashing(ContractError):
    template = "You cannot use a max slashing rate over 1.0 (100%)"


class NotEnoughStake(ContractError):
    template = "Not enough tokens staked, up to {0} can be unbond"

    def __init__(self, available: int) -> None:
        super().__init__(available)
        self.available = available


class NotEnoughRelease(ContractError):
    template = "Not enough tokens released, up to {0} can be claimed"

    def __init__(self, available: int) -> None:
        super().__init__(available)
        self.available = available


class InvalidValidator(ContractError):
    template = "Validator for user mismatch, {0} expected"

    def __init__(self, validator: str) -> None:
        super().__init__(validator)
        self.validator = validator


class ValidatorNotActive(ContractError):
    template = "Cannot stake to {0}, not listed as an active validator on consumer"

    def __init__(self, validator: str) -> None:
        super().__init__(validator)
        self.validator = validator


class IbcChannelAlreadyOpen(ContractError):
    template = "Contract already has an open IBC channel"


class IbcOpenInitDisallowed(ContractError):
    template = (
        "You must start the channel handshake on the other side, "
        "it doesn't support OpenInit"
    )


class InvalidEndpoint(ContractError):
    template = "Invalid authorized endpoint: {0}"

    def __init__(self, endpoint: str) -> None:
        super().__init__(endpoint)
        self.endpoint = endpoint


class WrongTypeTx(ContractError):
    template = "The tx {0} exists but is of the wrong type: {1}"

    def __init__(self, tx_id: int, tx: Any) -> None:
        super().__init__(tx_id, tx)
        self.tx_id = tx_id
        self.tx = tx


class NoRewards(ContractError):
    template = "No staking rewards to be withdrawn"


class AlreadyTombstoned(ContractError):
    template = "Validator '{0}' already tombstoned / not found at height {1}"

    def __init__(self, validator: str, height: int) -> None:
        super().__init__(validator, height)
        self.validator = validator
        self.height = height


class InsufficientDelegation(ContractError):
    template = "Validator {0} has not enough delegated funds: {1}"

    def __init__(self, validator: str, amount: int) -> None:
        super().__init__(validator, amount)
        self.validator = validator
        self.amount = amount