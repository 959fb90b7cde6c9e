"""multichain-wallet - one custodial wallet across many EVM chains."""

__version__ = "0.1.0"
