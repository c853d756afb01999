# meshstaking

In-memory state machines for the provider side of a cross-chain staking
system. They use only the standard library.

## What is in the package

- `meshstaking.contract` holds `ExternalStakingContract`. It takes virtual
  stake from a vault (`receive_virtual_stake`) and keeps each
  (user, validator) stake as a `ValueRange`. While a transaction is in flight
  the stake is a low–high span. Transactions are finished with
  `commit_stake` / `rollback_stake`, `commit_unstake` / `rollback_unstake` and
  `commit_withdraw_rewards` / `rollback_withdraw_rewards`. Unstaked tokens
  wait out the unbonding period and are released with `withdraw_unbonded`.
  `distribute_rewards` and `distribute_rewards_batch` share rewards out in
  proportion to stake. `handle_slashing` cuts stakes and pending unbondings by
  the configured maximum slashing ratio. Queries include `stake`, `stakes`,
  `pending_rewards`, `all_pending_rewards`, `pending_tx`,
  `all_pending_txs_desc`, `list_remote_validators`, `query_config` and
  `max_slash`.
- `meshstaking.rewards` does the points-per-stake arithmetic behind reward
  sharing: `distribute` and `calculate_reward`.
- `meshstaking.crdt` holds `CrdtState`, the validator set. Validators are added
  with their key-rotation history (`ValUpdate`) and tombstoned for good. The
  operations commute.
- `meshstaking.ibc` covers the channel handshake (`ibc_channel_open`,
  `ibc_channel_connect`) and protocol version negotiation
  (`ProtocolVersion`). It applies consumer packets (`ibc_packet_receive`), and
  commits or rolls back transactions on acknowledgement (`ibc_packet_ack`) or
  timeout (`ibc_packet_timeout`).
- `meshstaking.proxy` holds `NativeStakingProxyContract`, which acts for one
  owner. It returns delegate, redelegate, undelegate, vote, weighted vote,
  reward withdrawal and release messages.
- `meshstaking.chain` holds the environment and message types: `Coin`, `Env`,
  `BlockInfo`, `MessageInfo`, `Response`, `Event`, the IBC channel types and
  the provider packets with `encode_packet` / `decode_provider_packet`.
- `meshstaking.state` and `meshstaking.msg` hold the stored records and the
  query responses.

Failures raise subclasses of `meshstaking.errors.ContractError`, for example
`NotEnoughStake`, `NoRewards`, `InvalidDenom`, `Unauthorized` or `NotFound`.
Two errors compare equal when they have the same class and carry the same
values.

## Example

```python
from decimal import Decimal

from meshstaking.chain import (
    BlockInfo, Env, IbcChannel, IbcEndpoint, IbcOrder, MessageInfo, coin,
)
from meshstaking.contract import ExternalStakingContract
from meshstaking.crdt import ValUpdate
from meshstaking.ibc import OpenConfirm, ibc_channel_connect
from meshstaking.msg import AuthorizedEndpoint, ReceiveVirtualStake

contract = ExternalStakingContract()
contract.instantiate(
    MessageInfo(sender="owner"), "osmo", "star", "vault", 100,
    AuthorizedEndpoint("connection-2", "wasm-osmo1foobarbaz"),
    Decimal("0.1"),
)
channel = IbcChannel(
    endpoint=IbcEndpoint("wasm-provider", "channel-172"),
    counterparty_endpoint=IbcEndpoint("wasm-osmo1foobarbaz", "channel-0"),
    order=IbcOrder.UNORDERED,
    version='{"protocol":"mesh-security","version":"0.11.0"}',
    connection_id="connection-2",
)
ibc_channel_connect(contract, OpenConfirm(channel))
contract.val_set.add_validator("validator1", ValUpdate("pubkey", 123, 1687339542))

env = Env(block=BlockInfo(height=1, time=0))
contract.receive_virtual_stake(
    env, MessageInfo(sender="vault"), "user1", coin(100, "osmo"), 1,
    ReceiveVirtualStake("validator1").to_json(),
)
contract.commit_stake(1)

contract.distribute_rewards("validator1", coin(50, "star"))
print(contract.pending_rewards("user1", "validator1").rewards.amount)  # 50
```

## What the package does not do

- State lives in Python objects for the life of the process. Nothing is
  written to disk.
- Nothing is sent anywhere. Calls return `Response` objects whose messages
  (`SendPacket`, `CommitTx`, `ProcessCrossSlashing`, `Delegate`, ...) only
  describe what a chain would dispatch. The caller delivers them and feeds
  acknowledgements back.
- There is no vault and no native staking contract. The proxy does not query
  chain state, so `withdraw_rewards` is given the delegated validators and
  `release_unbonded` the liquid balance.
- Channel closing is not handled.
- There is no command-line program.

## Installation and tests

```
pip install .
pip install .[test]
pytest
```