import base64
import json
from decimal import Decimal

import pytest

from meshstaking.chain import (
    CommitTx,
    Env,
    IbcChannel,
    IbcEndpoint,
    IbcOrder,
    MessageInfo,
    ProcessCrossSlashing,
    RollbackTx,
    SlashInfo,
    coin,
)
from meshstaking.contract import ExternalStakingContract
from meshstaking.errors import (
    ContractError,
    IbcChannelAlreadyOpen,
    IbcOpenInitDisallowed,
    IbcVersionError,
    InvalidDenom,
    NotFound,
    Unauthorized,
)
from meshstaking.ibc import (
    AckError,
    AckResult,
    AddValidator,
    AddValidators,
    Distribute,
    OpenAck,
    OpenConfirm,
    OpenInit,
    OpenTry,
    ProtocolVersion,
    decode_consumer_packet,
    ibc_channel_connect,
    ibc_channel_open,
    ibc_packet_ack,
    ibc_packet_receive,
    ibc_packet_timeout,
)
from meshstaking.msg import AuthorizedEndpoint, ReceiveVirtualStake
from meshstaking.state import ValueRange

VAULT = "vault"
USER = "user1"
VAL = "validator1"
ENV = Env()
ENDPOINT = AuthorizedEndpoint("connection-2", "wasm-osmo1foobarbaz")


def make_channel(
    connection_id="connection-2", port="wasm-osmo1foobarbaz", order=IbcOrder.UNORDERED
):
    return IbcChannel(
        endpoint=IbcEndpoint("wasm-provider", "channel-172"),
        counterparty_endpoint=IbcEndpoint(port, "channel-9"),
        order=order,
        version="",
        connection_id=connection_id,
    )


def add_validators_packet(*names):
    return json.dumps(
        {
            "add_validators": [
                {
                    "valoper": n,
                    "pub_key": f"{n}_pubkey",
                    "start_height": 100,
                    "start_time": 1687339542,
                }
                for n in names
            ]
        }
    ).encode()


def remove_packet(kind, name):
    return json.dumps(
        {kind: [{"valoper": name, "height": ENV.block.height, "time": ENV.block.time}]}
    ).encode()


def distribute_packet(validator, amount, denom="star"):
    return json.dumps(
        {
            "distribute": {
                "validator": validator,
                "rewards": {"denom": denom, "amount": str(amount)},
            }
        }
    ).encode()


@pytest.fixture
def contract():
    c = ExternalStakingContract()
    c.instantiate(MessageInfo("owner"), "osmo", "star", VAULT, 100, ENDPOINT, Decimal("0.1"))
    return c


@pytest.fixture
def connected(contract):
    ibc_channel_connect(contract, OpenConfirm(make_channel()))
    ibc_packet_receive(contract, ENV, add_validators_packet(VAL))
    return contract


def send_stake(contract, amount, tx_id):
    resp = contract.receive_virtual_stake(
        ENV, MessageInfo(VAULT), USER, coin(amount, "osmo"), tx_id, ReceiveVirtualStake(VAL)
    )
    return resp.messages[0].data


def staked(contract, amount, tx_id=5):
    data = send_stake(contract, amount, tx_id)
    ibc_packet_ack(contract, ENV, data, AckResult(), 1)


def test_protocol_version_round_trip():
    version = ProtocolVersion("mesh-security", "0.11.0")
    assert ProtocolVersion.from_json(version.to_json()) == version


def test_build_response_caps_at_supported():
    theirs = ProtocolVersion("mesh-security", "0.12.3")
    assert theirs.build_response("0.11.0", "0.11.0").version == "0.11.0"


def test_build_response_rejects_old_and_foreign():
    with pytest.raises(IbcVersionError):
        ProtocolVersion("mesh-security", "0.10.0").build_response("0.11.0", "0.11.0")
    with pytest.raises(IbcVersionError):
        ProtocolVersion("other", "0.11.0").build_response("0.11.0", "0.11.0")
    with pytest.raises(IbcVersionError):
        ProtocolVersion("mesh-security", "latest").build_response("0.11.0", "0.11.0")


def test_decode_consumer_packet():
    packet = decode_consumer_packet(add_validators_packet(VAL))
    assert packet == AddValidators(
        (AddValidator(VAL, "validator1_pubkey", 100, 1687339542),)
    )
    assert decode_consumer_packet(distribute_packet(VAL, 50)) == Distribute(
        VAL, coin(50, "star")
    )


@pytest.mark.parametrize(
    "data",
    [b"not json", b'{"unknown": []}', b'{"distribute": {"validator": "v"}}', b"[]"],
)
def test_decode_consumer_packet_invalid(data):
    with pytest.raises(ContractError):
        decode_consumer_packet(data)


def test_channel_open_negotiates_version(contract):
    counterparty = ProtocolVersion("mesh-security", "0.11.0").to_json().decode()
    result = ibc_channel_open(contract, OpenTry(make_channel(), counterparty))
    assert ProtocolVersion.from_json(result) == ProtocolVersion("mesh-security", "0.11.0")


def test_channel_open_errors(contract):
    counterparty = ProtocolVersion("mesh-security", "0.11.0").to_json().decode()
    with pytest.raises(IbcOpenInitDisallowed):
        ibc_channel_open(contract, OpenInit(make_channel()))
    with pytest.raises(Unauthorized):
        ibc_channel_open(contract, OpenTry(make_channel(connection_id="connection-9"), counterparty))
    with pytest.raises(Unauthorized):
        ibc_channel_open(contract, OpenTry(make_channel(port="wasm-other"), counterparty))
    with pytest.raises(IbcVersionError):
        ibc_channel_open(contract, OpenTry(make_channel(order=IbcOrder.ORDERED), counterparty))


def test_channel_connect_stores_channel(contract):
    with pytest.raises(IbcOpenInitDisallowed):
        ibc_channel_connect(contract, OpenAck(make_channel(), "{}"))
    ibc_channel_connect(contract, OpenConfirm(make_channel()))
    assert contract.ibc_channel().channel == make_channel()
    with pytest.raises(IbcChannelAlreadyOpen):
        ibc_channel_connect(contract, OpenConfirm(make_channel()))
    with pytest.raises(IbcChannelAlreadyOpen):
        ibc_channel_open(contract, OpenTry(make_channel(), "{}"))


def test_receive_add_validators_acks(contract):
    resp = ibc_packet_receive(contract, ENV, add_validators_packet("alice", "bob"))
    assert contract.list_remote_validators().validators == ["alice", "bob"]
    ack = json.loads(resp.data)
    assert json.loads(base64.b64decode(ack["result"])) == {}


def test_stake_ack_success_commits(connected):
    data = send_stake(connected, 100, 5)
    assert connected.stake(USER, VAL).stake == ValueRange(0, 100)
    resp = ibc_packet_ack(connected, ENV, data, AckResult(), 1)
    assert resp.messages == [CommitTx(VAULT, 5)]
    assert resp.attribute("success") == "true"
    assert resp.attribute("tx_id") == "5"
    assert connected.stake(USER, VAL).stake == ValueRange.new_val(100)


def test_stake_ack_error_rolls_back(connected):
    data = send_stake(connected, 100, 5)
    resp = ibc_packet_ack(connected, ENV, data, b'{"error":"boom"}', 1)
    assert resp.messages == [RollbackTx(VAULT, 5)]
    assert resp.attribute("error") == "boom"
    assert connected.stake(USER, VAL).stake == ValueRange.new_val(0)
    assert connected.all_pending_txs_desc().txs == []


def test_stake_timeout_rolls_back(connected):
    data = send_stake(connected, 100, 7)
    resp = ibc_packet_timeout(connected, data)
    assert resp.attribute("action") == "ibc_packet_timeout"
    assert resp.messages == [RollbackTx(VAULT, 7)]
    assert connected.stake(USER, VAL).stake == ValueRange.new_val(0)


def test_unstake_ack_and_timeout(connected):
    staked(connected, 100)
    resp = connected.unstake(ENV, MessageInfo(USER), VAL, coin(30, "osmo"))
    ibc_packet_ack(connected, ENV, resp.messages[0].data, AckResult(), 2)
    stake = connected.stake(USER, VAL)
    assert stake.stake.low == stake.stake.high
    assert stake.stake.low + 30 == 100
    assert [p.amount for p in stake.pending_unbonds] == [30]

    resp = connected.unstake(ENV, MessageInfo(USER), VAL, coin(20, "osmo"))
    before = stake.stake
    timeout = ibc_packet_timeout(connected, resp.messages[0].data)
    assert timeout.messages == []
    assert connected.stake(USER, VAL).stake == before


def test_transfer_rewards_ack(connected):
    staked(connected, 100)
    ibc_packet_receive(connected, ENV, distribute_packet(VAL, 50))
    assert connected.pending_rewards(USER, VAL).rewards == coin(50, "star")

    resp = connected.withdraw_rewards(ENV, MessageInfo(USER), VAL, "remote1")
    data = resp.messages[0].data
    failed = ibc_packet_ack(connected, ENV, data, AckError("bad"), 42)
    assert failed.attribute("packet") == "42"
    assert connected.pending_rewards(USER, VAL).rewards == coin(50, "star")

    resp = connected.withdraw_rewards(ENV, MessageInfo(USER), VAL, "remote1")
    ibc_packet_ack(connected, ENV, resp.messages[0].data, AckResult(), 43)
    assert connected.pending_rewards(USER, VAL).rewards == coin(0, "star")
    assert connected.stake(USER, VAL).withdrawn_funds == 50


def test_distribute_wrong_denom(connected):
    staked(connected, 100)
    batch = json.dumps(
        {"distribute_batch": {"rewards": [{"validator": VAL, "reward": "30"}], "denom": "osmo"}}
    ).encode()
    with pytest.raises(InvalidDenom) as info:
        ibc_packet_receive(connected, ENV, batch)
    assert info.value == InvalidDenom("star")


def test_tombstone_slashes_and_deactivates(connected):
    staked(connected, 100)
    resp = ibc_packet_receive(connected, ENV, remove_packet("tombstone_validators", VAL))
    assert resp.messages == [ProcessCrossSlashing(VAULT, [SlashInfo(USER, 10)])]
    assert not connected.val_set.is_active_validator(VAL)
    assert connected.stake(USER, VAL).stake.high == 90


def test_jail_slashes_but_keeps_active(connected):
    staked(connected, 100)
    resp = ibc_packet_receive(connected, ENV, remove_packet("jail_validators", VAL))
    assert [type(m) for m in resp.messages] == [ProcessCrossSlashing]
    assert resp.messages[0].slashes[0].user == USER
    assert connected.val_set.is_active_validator(VAL)


def test_tombstone_unknown_validator(connected):
    with pytest.raises(NotFound):
        ibc_packet_receive(connected, ENV, remove_packet("tombstone_validators", "nobody"))