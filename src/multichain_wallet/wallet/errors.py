"""Typed failures raised by the wallet engine.

Every chain I/O failure is translated into one of these at the
:class:`~multichain_wallet.wallet.provider.ChainClient` boundary, so callers
can decide between aborting and continuing by error kind alone.
"""

from __future__ import annotations

from enum import Enum


class WalletError(Exception):
    """Base class for every failure surfaced by the engine."""


# ---------------------------------------------------------------------------
# Lookup / state errors
# ---------------------------------------------------------------------------


class NotFoundError(WalletError):
    """An unknown chain, user, or wallet was referenced."""


class UnknownChainError(NotFoundError):
    def __init__(self, chain_id: int) -> None:
        super().__init__(f"Unknown chain id {chain_id}")
        self.chain_id = chain_id


class WalletNotFoundError(NotFoundError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"No wallet found for user {user_id}")
        self.user_id = user_id


class AlreadyExistsError(WalletError):
    """The user already owns a wallet."""


class DuplicateTokenError(WalletError):
    """The token contract is already registered for this user and chain."""


class InvalidInputError(WalletError):
    """A malformed address or amount was supplied."""


# ---------------------------------------------------------------------------
# Chain I/O errors
# ---------------------------------------------------------------------------


class ContractCallError(WalletError):
    """The target is not a conforming token contract, or a read reverted."""


class RpcError(WalletError):
    """Transport or node failure.

    Considered transient; the engine never retries it on its own.
    """


class ConfirmationTimeout(RpcError):
    """The bounded wait for a transaction receipt elapsed."""


class SubmissionError(WalletError):
    """The node rejected a broadcast (nonce conflict, underpriced, ...)."""


# ---------------------------------------------------------------------------
# Economic preconditions
# ---------------------------------------------------------------------------


class ShortfallCause(str, Enum):
    AMOUNT = "amount"
    FEES = "fees"


class InsufficientFundsError(WalletError):
    """Balance does not cover the transfer amount, or amount plus fees.

    ``required`` and ``available`` are in the native asset's smallest unit.
    """

    def __init__(
        self,
        cause: ShortfallCause,
        required: int,
        available: int,
        fee: int | None = None,
    ) -> None:
        what = "balance" if cause is ShortfallCause.AMOUNT else "balance for gas fees"
        super().__init__(f"Insufficient {what}: required {required}, available {available}")
        self.cause = cause
        self.required = required
        self.available = available
        self.fee = fee
