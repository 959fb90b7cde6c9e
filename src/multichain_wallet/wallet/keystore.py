"""Key generation and scoped signers using eth-account."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3

# HD wallet helpers (mnemonics) are gated behind this flag in eth-account.
Account.enable_unaudited_hdwallet_features()


@dataclass(frozen=True)
class GeneratedKey:
    address: str
    private_key: str
    mnemonic: str


def generate_key(num_words: int = 12) -> GeneratedKey:
    """Generate a new keypair from a fresh BIP-39 recovery phrase.

    Entropy comes from ``os.urandom`` inside eth-account. The address is the
    checksummed address of the first account on the default derivation path
    (``m/44'/60'/0'/0/0``), so the phrase restores the same wallet in any
    standard EVM wallet.
    """
    acct, mnemonic = Account.create_with_mnemonic(num_words=num_words)
    return GeneratedKey(
        address=acct.address,
        private_key=Web3.to_hex(acct.key),
        mnemonic=mnemonic,
    )


@contextmanager
def scoped_signer(private_key: str) -> Iterator[LocalAccount]:
    """Yield a signing account for *private_key* for the duration of the block.

    The account object is not cached anywhere; the caller must not keep a
    reference past the ``with`` block.
    """
    signer = Account.from_key(private_key)
    try:
        yield signer
    finally:
        del signer
