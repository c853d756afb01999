import json
from decimal import Decimal

import pytest

from meshstaking.chain import coin
from meshstaking.errors import ContractError, InvalidEndpoint
from meshstaking.msg import (
    AuthorizedEndpoint,
    ConfigResponse,
    OwnerMsg,
    PendingRewards,
    ReceiveVirtualStake,
    StakeInfo,
    ValidatorPendingRewards,
)
from meshstaking.state import Config, Stake


@pytest.mark.parametrize(
    "endpoint",
    [
        AuthorizedEndpoint("", "wasm-osmo1foobarbaz"),
        AuthorizedEndpoint("connection-2", ""),
        AuthorizedEndpoint("", ""),
    ],
)
def test_invalid_endpoint_rejected(endpoint):
    with pytest.raises(InvalidEndpoint) as exc:
        endpoint.validate()
    assert exc.value.endpoint == repr(endpoint)


def test_config_response_from_config():
    config = Config(
        denom="osmo",
        rewards_denom="star",
        vault="vault",
        unbonding_period=100,
        max_slashing=Decimal("0.1"),
    )
    assert ConfigResponse.from_config(config) == ConfigResponse("osmo", "vault", 100)


def test_receive_virtual_stake_wire_format():
    assert ReceiveVirtualStake("alice").to_json() == b'{"validator":"alice"}'


def test_receive_virtual_stake_round_trip():
    msg = ReceiveVirtualStake("validator1")
    assert ReceiveVirtualStake.from_json(msg.to_json()) == msg


@pytest.mark.parametrize(
    "data",
    [b"garbage", b"[]", b"{}", b'{"validator":1}', b'{"validator":"v","extra":"x"}'],
)
def test_receive_virtual_stake_rejects_invalid(data):
    with pytest.raises(ContractError):
        ReceiveVirtualStake.from_json(data)


def test_validator_pending_rewards_from_amount():
    built = ValidatorPendingRewards.from_amount("validator1", 20, "star")
    assert built == ValidatorPendingRewards("validator1", PendingRewards(coin(20, "star")))
    assert built.rewards.rewards.amount == 20


def test_stake_info_compares_by_value():
    first = StakeInfo("user1", "validator1", Stake.from_amount(200))
    second = StakeInfo("user1", "validator1", Stake.from_amount(200))
    other = StakeInfo("user1", "validator1", Stake.from_amount(100))
    assert first == second
    assert first != other


def test_owner_msg_json():
    assert json.loads(OwnerMsg("user").to_json()) == {"owner": "user"}