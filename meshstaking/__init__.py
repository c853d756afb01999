"""In-memory provider-side staking: external staking, reward distribution, validator set CRDT, IBC handling and a native staking proxy."""

__version__ = "0.1.0"