import pytest

from meshstaking.errors import (
    AlreadyTombstoned,
    ContractError,
    IbcChannelAlreadyOpen,
    InsufficientDelegation,
    InvalidDenom,
    InvalidEndpoint,
    InvalidMaxSlashing,
    MissingDenom,
    NoRewards,
    NonPayable,
    NotEnoughStake,
    NotFound,
    PaymentError,
    RangeError,
    Unauthorized,
    ValidatorNotActive,
    WrongTypeTx,
)


def test_not_enough_stake_message_and_value():
    err = NotEnoughStake(100)
    assert str(err) == "Not enough tokens staked, up to 100 can be unbond"
    assert err.available == 100


def test_validator_not_active_message():
    err = ValidatorNotActive("unknown")
    assert str(err) == (
        "Cannot stake to unknown, not listed as an active validator on consumer"
    )


def test_invalid_denom_expected_and_sent_forms():
    assert str(InvalidDenom("star")) == "Invalid denom, star expected"
    assert str(InvalidDenom("osmo", sent=True)) == "Try to send wrong denom: osmo"


def test_invalid_endpoint_message():
    assert str(InvalidEndpoint("conn")) == "Invalid authorized endpoint: conn"


def test_already_tombstoned_message():
    err = AlreadyTombstoned("alice", 5)
    assert str(err) == "Validator 'alice' already tombstoned / not found at height 5"
    assert (err.validator, err.height) == ("alice", 5)


def test_insufficient_delegation_message():
    err = InsufficientDelegation("validator", 10)
    assert str(err) == "Validator validator has not enough delegated funds: 10"


def test_wrong_type_tx_keeps_values():
    err = WrongTypeTx(7, "some tx")
    assert err.tx_id == 7
    assert err.tx == "some tx"
    assert str(err) == "The tx 7 exists but is of the wrong type: some tx"


def test_fixed_messages():
    assert str(Unauthorized()) == "Unauthorized"
    assert str(NoRewards()) == "No staking rewards to be withdrawn"
    assert str(InvalidMaxSlashing()) == (
        "You cannot use a max slashing rate over 1.0 (100%)"
    )
    assert str(IbcChannelAlreadyOpen()) == "Contract already has an open IBC channel"


def test_equality_by_class_and_values():
    assert NotEnoughStake(100) == NotEnoughStake(100)
    assert not NotEnoughStake(100) == NotEnoughStake(0)
    assert NoRewards() == NoRewards()
    assert not Unauthorized() == NoRewards()
    assert InvalidDenom("star") == InvalidDenom("star")
    assert not InvalidDenom("star") == InvalidDenom("star", sent=True)


def test_errors_are_caught_as_contract_errors():
    with pytest.raises(ContractError) as info:
        raise NotEnoughStake(240)
    assert info.value == NotEnoughStake(240)


def test_payment_errors_share_a_base():
    with pytest.raises(PaymentError) as info:
        raise MissingDenom("star")
    assert info.value.denom == "star"
    assert "star" in str(info.value)
    with pytest.raises(PaymentError) as info:
        raise NonPayable()
    assert info.value == NonPayable()


def test_not_found_and_range_error_messages():
    assert "Stake" in str(NotFound("Stake"))
    assert str(RangeError("out of range")) == "out of range"