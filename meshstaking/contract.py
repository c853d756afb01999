"""The external staking contract: stakes vault collateral on a remote chain."""

from __future__ import annotations

import copy
import math
from decimal import Decimal
from fractions import Fraction
from itertools import islice
from typing import Iterable, Optional, Union

from meshstaking.chain import (
    Coin,
    CommitTx,
    Env,
    Event,
    IbcChannel,
    MessageInfo,
    ProcessCrossSlashing,
    ReleaseCrossStake,
    Response,
    RollbackTx,
    SendPacket,
    SlashInfo,
    StakePacket,
    TransferRewardsPacket,
    UnstakePacket,
    coin,
    encode_packet,
    nonpayable,
    packet_timeout,
    validate_address,
)
from meshstaking.crdt import CrdtState
from meshstaking.errors import (
    InvalidDenom,
    InvalidMaxSlashing,
    MissingDenom,
    NoRewards,
    NotEnoughStake,
    NotFound,
    Unauthorized,
    ValidatorNotActive,
    WrongTypeTx,
)
from meshstaking.msg import (
    AllPendingRewards,
    AllTxsResponse,
    AuthorizedEndpoint,
    ConfigResponse,
    IbcChannelResponse,
    ListRemoteValidatorsResponse,
    MaxSlashResponse,
    PendingRewards,
    ReceiveVirtualStake,
    RewardInfo,
    StakeInfo,
    StakesResponse,
    ValidatorPendingRewards,
)
from meshstaking.rewards import calculate_reward, distribute
from meshstaking.state import (
    Config,
    Distribution,
    InFlightRemoteStaking,
    InFlightRemoteUnstaking,
    InFlightTransferFunds,
    PendingUnbond,
    Stake,
    StakeStore,
    Tx,
)

DEFAULT_PAGE_LIMIT = 10
MAX_PAGE_LIMIT = 30
DEFAULT_VALIDATOR_LIMIT = 100

# Transaction ids of this contract start in the upper half of the u64 range,
# apart from the ids the vault hands out.
_TX_ID_BASE = ((1 << 64) - 1) >> 1


def clamp_page_limit(limit: Optional[int]) -> int:
    """Align a pagination limit; it is never below MAX_PAGE_LIMIT."""
    return max(DEFAULT_PAGE_LIMIT if limit is None else limit, MAX_PAGE_LIMIT)


def _slash_amount(amount: int, ratio: Decimal) -> int:
    return math.floor(Fraction(amount) * Fraction(ratio))


class ExternalStakingContract:
    """Stakes virtual collateral from the vault on validators of a consumer chain."""

    def __init__(self) -> None:
        self._config: Optional[Config] = None
        self.stake_store = StakeStore()
        self.distributions: dict[str, Distribution] = {}
        self.tx_count: Optional[int] = None
        self.pending_txs: dict[int, Tx] = {}
        self.val_set = CrdtState()
        self.auth_endpoint: Optional[AuthorizedEndpoint] = None
        self.channel: Optional[IbcChannel] = None

    # -- storage helpers ---------------------------------------------------

    def _load_config(self) -> Config:
        if self._config is None:
            raise NotFound("Config")
        return self._config

    def _load_channel(self) -> IbcChannel:
        if self.channel is None:
            raise NotFound("IbcChannel")
        return self.channel

    def _load_tx(self, tx_id: int) -> Tx:
        try:
            return self.pending_txs[tx_id]
        except KeyError:
            raise NotFound("Tx") from None

    def _take_tx(self, tx_id: int, kind: type) -> Tx:
        tx = self._load_tx(tx_id)
        if not isinstance(tx, kind):
            raise WrongTypeTx(tx_id, tx)
        return tx

    def _distribution(self, validator: str) -> Distribution:
        stored = self.distributions.get(validator)
        return copy.deepcopy(stored) if stored is not None else Distribution()

    def next_tx_id(self) -> int:
        """Reserve and return the next transaction id."""
        tx_id = (_TX_ID_BASE if self.tx_count is None else self.tx_count) + 1
        self.tx_count = tx_id
        return tx_id

    # -- instantiation -----------------------------------------------------

    def instantiate(
        self,
        info: MessageInfo,
        denom: str,
        rewards_denom: str,
        vault: str,
        unbonding_period: int,
        remote_contact: AuthorizedEndpoint,
        max_slashing: Union[Decimal, int, str],
    ) -> Response:
        vault = validate_address(vault)
        max_slashing = Decimal(max_slashing)
        if max_slashing > 1:
            raise InvalidMaxSlashing()
        remote_contact.validate()
        self._config = Config(
            denom=denom,
            rewards_denom=rewards_denom,
            vault=vault,
            unbonding_period=unbonding_period,
            max_slashing=max_slashing,
        )
        self.auth_endpoint = remote_contact
        return Response()

    # -- staking -----------------------------------------------------------

    def receive_virtual_stake(
        self,
        env: Env,
        info: MessageInfo,
        owner: str,
        amount: Coin,
        tx_id: int,
        msg: Union[bytes, str, ReceiveVirtualStake],
    ) -> Response:
        """Accept stake sent by the vault and announce it to the consumer chain."""
        config = self._load_config()
        if info.sender != config.vault:
            raise Unauthorized()
        if amount.denom != config.denom:
            raise InvalidDenom(config.denom)
        owner = validate_address(owner)
        payload = msg if isinstance(msg, ReceiveVirtualStake) else ReceiveVirtualStake.from_json(msg)
        if not self.val_set.is_active_validator(payload.validator):
            raise ValidatorNotActive(payload.validator)
        channel = self._load_channel()

        stake = self.stake_store.get(owner, payload.validator)
        # The vault has already checked the maximum.
        stake.stake.prepare_add(amount.amount, None)
        self.stake_store.save(owner, payload.validator, stake)
        self.pending_txs[tx_id] = InFlightRemoteStaking(
            id=tx_id, amount=amount.amount, user=owner, validator=payload.validator
        )

        packet = StakePacket(validator=payload.validator, stake=amount, tx_id=tx_id)
        return (
            Response()
            .add_message(
                SendPacket(
                    channel_id=channel.endpoint.channel_id,
                    data=encode_packet(packet),
                    timeout=packet_timeout(env),
                )
            )
            .add_attribute("action", "receive_virtual_stake")
            .add_attribute("owner", owner)
            .add_attribute("amount", amount.amount)
            .add_attribute("tx_id", tx_id)
        )

    def commit_stake(self, tx_id: int) -> CommitTx:
        """Finish a stake acknowledged by the consumer chain."""
        tx = self._take_tx(tx_id, InFlightRemoteStaking)
        config = self._load_config()
        stake = self.stake_store.load(tx.user, tx.validator)
        distribution = self._distribution(tx.validator)

        stake.stake.commit_add_saturating(tx.amount)
        stake.points_alignment.stake_increased(tx.amount, distribution.points_per_stake)
        distribution.total_stake += tx.amount

        self.stake_store.save(tx.user, tx.validator, stake)
        self.distributions[tx.validator] = distribution
        del self.pending_txs[tx_id]
        return CommitTx(vault=config.vault, tx_id=tx_id)

    def rollback_stake(self, tx_id: int) -> RollbackTx:
        """Undo a stake the consumer chain refused or never acknowledged."""
        tx = self._take_tx(tx_id, InFlightRemoteStaking)
        config = self._load_config()
        stake = self.stake_store.load(tx.user, tx.validator)
        stake.stake.rollback_add_saturating(tx.amount)
        self.stake_store.save(tx.user, tx.validator, stake)
        del self.pending_txs[tx_id]
        return RollbackTx(vault=config.vault, tx_id=tx_id)

    def unstake(
        self, env: Env, info: MessageInfo, validator: str, amount: Coin
    ) -> Response:
        """Start unbonding ``amount``; it can be withdrawn after the unbonding period."""
        nonpayable(info)
        config = self._load_config()
        if amount.denom != config.denom:
            raise InvalidDenom(config.denom)

        stake = self.stake_store.get(info.sender, validator)
        if stake.stake.low < amount.amount:
            raise NotEnoughStake(stake.stake.low)
        channel = self._load_channel()

        stake.stake.prepare_sub(amount.amount, 0)
        self.stake_store.save(info.sender, validator, stake)

        tx_id = self.next_tx_id()
        self.pending_txs[tx_id] = InFlightRemoteUnstaking(
            id=tx_id, amount=amount.amount, user=info.sender, validator=validator
        )

        packet = UnstakePacket(validator=validator, unstake=amount, tx_id=tx_id)
        return (
            Response()
            .add_attribute("action", "unstake")
            .add_attribute("amount", amount.amount)
            .add_attribute("owner", info.sender)
            .add_message(
                SendPacket(
                    channel_id=channel.endpoint.channel_id,
                    data=encode_packet(packet),
                    timeout=packet_timeout(env),
                )
            )
        )

    def commit_unstake(self, env: Env, tx_id: int) -> None:
        """Finish an unstake and schedule the tokens for release."""
        tx = self._take_tx(tx_id, InFlightRemoteUnstaking)
        config = self._load_config()
        stake = self.stake_store.load(tx.user, tx.validator)
        distribution = self._distribution(tx.validator)

        # Saturate if the stake was slashed meanwhile.
        amount = min(tx.amount, stake.stake.high)
        stake.stake.commit_sub(amount)
        stake.pending_unbonds.append(
            PendingUnbond(amount=amount, release_at=env.block.time + config.unbonding_period)
        )
        stake.points_alignment.stake_decreased(amount, distribution.points_per_stake)
        distribution.total_stake -= amount

        self.stake_store.save(tx.user, tx.validator, stake)
        self.distributions[tx.validator] = distribution
        del self.pending_txs[tx_id]

    def rollback_unstake(self, tx_id: int) -> None:
        """Undo an unstake the consumer chain refused or never acknowledged."""
        tx = self._take_tx(tx_id, InFlightRemoteUnstaking)
        stake = self.stake_store.load(tx.user, tx.validator)
        stake.stake.rollback_sub_saturating(tx.amount)
        self.stake_store.save(tx.user, tx.validator, stake)
        del self.pending_txs[tx_id]

    def withdraw_unbonded(self, env: Env, info: MessageInfo) -> Response:
        """Release every unbonding of the sender whose period has passed."""
        nonpayable(info)
        config = self._load_config()

        released = 0
        for validator, stake in list(self.stake_store.by_user(info.sender)):
            amount = stake.release_pending(env.block.time)
            if amount:
                self.stake_store.save(info.sender, validator, stake)
            released += amount

        resp = (
            Response()
            .add_attribute("action", "withdraw_unbonded")
            .add_attribute("owner", info.sender)
            .add_attribute("amount", released)
        )
        if released:
            resp.add_message(
                ReleaseCrossStake(
                    vault=config.vault,
                    owner=info.sender,
                    amount=coin(released, config.denom),
                )
            )
        return resp

    # -- rewards -----------------------------------------------------------

    def distribute_rewards(self, validator: str, rewards: Coin) -> Event:
        """Share rewards among the stakers of a validator in proportion to stake."""
        config = self._load_config()
        if rewards.denom != config.rewards_denom:
            raise MissingDenom(rewards.denom)
        distribution = self._distribution(validator)
        distribute(distribution, rewards.amount)
        self.distributions[validator] = distribution
        return self._distribution_event(validator, rewards.amount)

    def distribute_rewards_batch(
        self, rewards: Iterable[RewardInfo], denom: str
    ) -> list[Event]:
        """Distribute rewards to several validators; nothing changes if one fails."""
        config = self._load_config()
        if denom != config.rewards_denom:
            raise InvalidDenom(config.rewards_denom)
        working: dict[str, Distribution] = {}
        events = []
        for info in rewards:
            if info.validator not in working:
                working[info.validator] = self._distribution(info.validator)
            distribute(working[info.validator], info.reward)
            events.append(self._distribution_event(info.validator, info.reward))
        self.distributions.update(working)
        return events

    @staticmethod
    def _distribution_event(validator: str, amount: int) -> Event:
        return (
            Event("distribute_rewards")
            .add_attribute("validator", validator)
            .add_attribute("amount", amount)
        )

    def withdraw_rewards(
        self, env: Env, info: MessageInfo, validator: str, remote_recipient: str
    ) -> Response:
        """Send the sender's rewards from a validator to an address on the consumer."""
        nonpayable(info)
        stake = self.stake_store.get(info.sender, validator)
        distribution = self._distribution(validator)
        amount = calculate_reward(stake, distribution)
        if amount == 0:
            raise NoRewards()
        config = self._load_config()
        channel = self._load_channel()

        tx_id = self.next_tx_id()
        self.pending_txs[tx_id] = InFlightTransferFunds(
            id=tx_id, amount=amount, staker=info.sender, validator=validator
        )
        packet = TransferRewardsPacket(
            rewards=coin(amount, config.rewards_denom),
            recipient=remote_recipient,
            tx_id=tx_id,
        )
        return (
            Response()
            .add_attribute("action", "withdraw_rewards")
            .add_attribute("owner", info.sender)
            .add_attribute("validator", validator)
            .add_attribute("recipient", remote_recipient)
            .add_attribute("amount", amount)
            .add_message(
                SendPacket(
                    channel_id=channel.endpoint.channel_id,
                    data=encode_packet(packet),
                    timeout=packet_timeout(env),
                )
            )
        )

    def rollback_withdraw_rewards(self, tx_id: int) -> None:
        """Drop a failed rewards transfer; the rewards stay withdrawable."""
        self._take_tx(tx_id, InFlightTransferFunds)
        del self.pending_txs[tx_id]

    def commit_withdraw_rewards(self, tx_id: int) -> None:
        """Record a rewards transfer the consumer chain acknowledged."""
        tx = self._take_tx(tx_id, InFlightTransferFunds)
        stake = self.stake_store.load(tx.staker, tx.validator)
        del self.pending_txs[tx_id]
        stake.withdrawn_funds += tx.amount
        self.stake_store.save(tx.staker, tx.validator, stake)

    # -- slashing ----------------------------------------------------------

    def handle_slashing(self, env: Env, validator: str) -> ProcessCrossSlashing:
        """Slash everyone staking via ``validator`` and route the slashes to the vault."""
        config = self._load_config()
        slash_infos = []
        for user, stake in self.stake_store.by_validator(validator):
            low, high = stake.stake.low, stake.stake.high
            # Slashing the high end goes against the user while stakes are
            # pending, which is an unlikely case.
            stake_slash = _slash_amount(high, config.max_slashing)
            stake.stake = type(stake.stake)(max(low - stake_slash, 0), high - stake_slash)

            distribution = self._distribution(validator)
            stake.points_alignment.stake_decreased(
                stake_slash, distribution.points_per_stake
            )
            distribution.total_stake -= stake_slash
            self.distributions[validator] = distribution

            pending_slashed = stake.slash_pending(env.block.time, config.max_slashing)
            self.stake_store.save(user, validator, stake)
            slash_infos.append(SlashInfo(user=user, slash=stake_slash + pending_slashed))
        return ProcessCrossSlashing(vault=config.vault, slashes=slash_infos)

    # -- queries -----------------------------------------------------------

    def max_slash(self) -> MaxSlashResponse:
        return MaxSlashResponse(max_slash=self._load_config().max_slashing)

    def query_config(self) -> ConfigResponse:
        return ConfigResponse.from_config(self._load_config())

    def authorized_endpoint(self) -> AuthorizedEndpoint:
        if self.auth_endpoint is None:
            raise NotFound("AuthorizedEndpoint")
        return self.auth_endpoint

    def ibc_channel(self) -> IbcChannelResponse:
        return IbcChannelResponse(channel=self._load_channel())

    def list_remote_validators(
        self, start_after: Optional[str] = None, limit: Optional[int] = None
    ) -> ListRemoteValidatorsResponse:
        """Return the remote validators known to be active."""
        limit = DEFAULT_VALIDATOR_LIMIT if limit is None else limit
        return ListRemoteValidatorsResponse(
            validators=self.val_set.list_active_validators(start_after, limit)
        )

    def stake(self, user: str, validator: str) -> Stake:
        """Return the stake of a pair, or an empty stake if there is none."""
        user = validate_address(user)
        return self.stake_store.get(user, validator)

    def stakes(
        self, user: str, start_after: Optional[str] = None, limit: Optional[int] = None
    ) -> StakesResponse:
        """Return a user's stakes; ``start_after`` is the last validator of the previous page."""
        limit = clamp_page_limit(limit)
        user = validate_address(user)
        items = islice(self.stake_store.by_user(user, start_after), limit)
        return StakesResponse(
            stakes=[StakeInfo(user, validator, stake) for validator, stake in items]
        )

    def pending_tx(self, tx_id: int) -> Tx:
        return self._load_tx(tx_id)

    def all_pending_txs_desc(
        self, start_after: Optional[int] = None, limit: Optional[int] = None
    ) -> AllTxsResponse:
        """Return pending txs newest first; ``start_after`` is the last id of the previous page."""
        limit = clamp_page_limit(limit)
        ids = sorted(
            (i for i in self.pending_txs if start_after is None or i < start_after),
            reverse=True,
        )
        return AllTxsResponse(txs=[self.pending_txs[i] for i in ids[:limit]])

    def pending_rewards(self, user: str, validator: str) -> PendingRewards:
        """Return the rewards a user can withdraw from one validator."""
        user = validate_address(user)
        stake = self.stake_store.get(user, validator)
        amount = calculate_reward(stake, self._distribution(validator))
        config = self._load_config()
        return PendingRewards(rewards=coin(amount, config.rewards_denom))

    def all_pending_rewards(
        self, user: str, start_after: Optional[str] = None, limit: Optional[int] = None
    ) -> AllPendingRewards:
        """Return a user's withdrawable rewards for each validator staked on."""
        limit = clamp_page_limit(limit)
        user = validate_address(user)
        config = self._load_config()
        rewards = [
            ValidatorPendingRewards.from_amount(
                validator,
                calculate_reward(stake, self._distribution(validator)),
                config.rewards_denom,
            )
            for validator, stake in islice(self.stake_store.by_user(user, start_after), limit)
        ]
        return AllPendingRewards(rewards=rewards)