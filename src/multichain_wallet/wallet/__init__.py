"""Blockchain wallet engine for multichain-wallet.

Provides the chain registry, a cached per-chain web3 client pool, wallet and
session ownership, custom ERC-20 token registration, balance reports, and the
native transfer state machine (validate, estimate, afford, broadcast, confirm).
"""
