"""Native-asset transfer state machine.

A transfer moves through::

    VALIDATING -> ESTIMATING -> AFFORDING -> BROADCASTING -> PENDING
        -> CONFIRMED | FAILED

Anything that stops before the network accepted the transaction, or whose
fate cannot be determined afterwards, ends in ABORTED with an
:class:`AbortReason`. FAILED is reserved for a transaction that was mined
and reverted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import AsyncIterator

from multichain_wallet.wallet.errors import (
    ConfirmationTimeout,
    InsufficientFundsError,
    InvalidInputError,
    RpcError,
    ShortfallCause,
    SubmissionError,
    WalletError,
)
from multichain_wallet.wallet.provider import ChainClient, ProviderPool, ReceiptStatus
from multichain_wallet.wallet.store import WalletStore
from multichain_wallet.wallet.units import parse_amount, to_smallest_unit

logger = logging.getLogger("multichain_wallet.wallet.engine")


class TransferState(str, Enum):
    VALIDATING = "validating"
    ESTIMATING = "estimating"
    AFFORDING = "affording"
    BROADCASTING = "broadcasting"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({TransferState.CONFIRMED, TransferState.FAILED, TransferState.ABORTED})


class AbortReason(str, Enum):
    INVALID_INPUT = "invalid_input"
    ESTIMATION_FAILED = "estimation_failed"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SUBMISSION_FAILED = "submission_failed"
    CONFIRMATION_UNKNOWN = "confirmation_unknown"


@dataclass(frozen=True)
class TransferRequest:
    user_id: str
    chain_id: int
    recipient_address: str
    amount: str | Decimal  # native-asset units, e.g. "0.01"


@dataclass(frozen=True)
class TransferOutcome:
    status: TransferState
    tx_hash: str | None = None
    block_number: int | None = None
    reason: AbortReason | None = None
    error: WalletError | None = None

    @property
    def shortfall(self) -> InsufficientFundsError | None:
        if isinstance(self.error, InsufficientFundsError):
            return self.error
        return None

    @property
    def detail(self) -> str:
        return str(self.error) if self.error is not None else ""


@dataclass(frozen=True)
class TransferEvent:
    state: TransferState
    tx_hash: str | None = None
    outcome: TransferOutcome | None = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES


def check_affordable(balance: int, value: int, gas_limit: int, fee_rate: int) -> int:
    """Return the total cost of a transfer, or raise ``InsufficientFundsError``.

    The shortfall cause is ``AMOUNT`` when the balance does not even cover
    the value, and ``FEES`` when it covers the value but not value + gas.
    """
    fee = gas_limit * fee_rate
    total = value + fee
    if balance < value:
        raise InsufficientFundsError(ShortfallCause.AMOUNT, required=value, available=balance, fee=fee)
    if balance < total:
        raise InsufficientFundsError(ShortfallCause.FEES, required=total, available=balance, fee=fee)
    return total


def _aborted(reason: AbortReason, error: WalletError) -> TransferEvent:
    outcome = TransferOutcome(status=TransferState.ABORTED, reason=reason, error=error)
    return TransferEvent(state=TransferState.ABORTED, outcome=outcome)


class TransactionEngine:
    """Validates, prices, broadcasts, and tracks native transfers.

    Parameters
    ----------
    store:
        Source of wallets and of the scoped signer.
    pool:
        Chain clients.
    confirmation_timeout:
        Seconds to wait for a receipt before reporting an indeterminate
        outcome.
    poll_interval:
        Seconds between receipt polls.
    """

    def __init__(
        self,
        store: WalletStore,
        pool: ProviderPool,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 2.0,
    ) -> None:
        self.store = store
        self.pool = pool
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self._confirmations: dict[str, asyncio.Task[TransferOutcome]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, request: TransferRequest) -> AsyncIterator[TransferEvent]:
        """Run a transfer, yielding one event per state.

        The last event is terminal and carries the :class:`TransferOutcome`.
        Raises ``WalletNotFoundError`` / ``UnknownChainError`` before the
        first event if the user or chain does not exist.
        """
        wallet = self.store.require_wallet(request.user_id)
        chain = self.pool.registry.describe(request.chain_id)
        client = await self.pool.client_for(chain.chain_id)

        # -- validating -------------------------------------------------
        yield TransferEvent(TransferState.VALIDATING)
        recipient = request.recipient_address.strip()
        try:
            if not client.is_address(recipient):
                raise InvalidInputError(f"Invalid recipient address: {recipient!r}")
            amount = parse_amount(request.amount, chain.native_decimals)
        except InvalidInputError as e:
            yield _aborted(AbortReason.INVALID_INPUT, e)
            return
        value = to_smallest_unit(amount, chain.native_decimals)

        # -- estimating -------------------------------------------------
        yield TransferEvent(TransferState.ESTIMATING)
        try:
            gas_limit, fee_rate = await asyncio.gather(
                client.estimate_transfer_gas(wallet.address, recipient, value),
                client.get_fee_rate(),
            )
        except RpcError as e:
            # Nodes refuse to estimate a transfer larger than the balance;
            # report that as a shortfall rather than a generic failure.
            shortfall = await self._amount_shortfall(client, wallet.address, value)
            if shortfall is not None:
                yield _aborted(AbortReason.INSUFFICIENT_FUNDS, shortfall)
            else:
                logger.warning(f"Gas estimation failed on {chain.name}: {e}")
                yield _aborted(AbortReason.ESTIMATION_FAILED, e)
            return

        # -- affording --------------------------------------------------
        yield TransferEvent(TransferState.AFFORDING)
        try:
            balance = await client.get_native_balance(wallet.address)
            check_affordable(balance, value, gas_limit, fee_rate)
        except InsufficientFundsError as e:
            yield _aborted(AbortReason.INSUFFICIENT_FUNDS, e)
            return
        except RpcError as e:
            yield _aborted(AbortReason.ESTIMATION_FAILED, e)
            return

        # -- broadcasting -----------------------------------------------
        yield TransferEvent(TransferState.BROADCASTING)
        try:
            # Submission and tracking outlive a cancelled caller.
            tx_hash, task = await asyncio.shield(
                self._submit(request.user_id, client, recipient, value, gas_limit, fee_rate)
            )
        except (SubmissionError, RpcError) as e:
            logger.warning(f"Broadcast failed on {chain.name}: {e}")
            yield _aborted(AbortReason.SUBMISSION_FAILED, e)
            return

        yield TransferEvent(TransferState.PENDING, tx_hash=tx_hash)

        # -- confirming -------------------------------------------------
        try:
            outcome = await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise
            outcome = TransferOutcome(
                status=TransferState.ABORTED,
                tx_hash=tx_hash,
                reason=AbortReason.CONFIRMATION_UNKNOWN,
                error=ConfirmationTimeout(f"Tracking of {tx_hash} was stopped"),
            )
        yield TransferEvent(state=outcome.status, tx_hash=tx_hash, outcome=outcome)

    async def execute(self, request: TransferRequest) -> TransferOutcome:
        """Run :meth:`send` to completion and return the outcome."""
        last: TransferEvent | None = None
        async for event in self.send(request):
            last = event
        if last is None or last.outcome is None:
            raise RuntimeError("Transfer stream ended without a terminal event")
        return last.outcome

    def confirmation(self, tx_hash: str) -> asyncio.Task[TransferOutcome] | None:
        """Return the background confirmation task for *tx_hash*, if still running."""
        return self._confirmations.get(tx_hash)

    @property
    def pending(self) -> list[str]:
        return list(self._confirmations)

    async def shutdown(self) -> None:
        """Stop tracking every pending confirmation."""
        tasks = list(self._confirmations.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Stopped tracking {len(tasks)} pending transaction(s)")

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _amount_shortfall(
        self, client: ChainClient, address: str, value: int
    ) -> InsufficientFundsError | None:
        try:
            balance = await client.get_native_balance(address)
        except RpcError:
            return None
        if balance < value:
            return InsufficientFundsError(ShortfallCause.AMOUNT, required=value, available=balance)
        return None

    async def _submit(
        self,
        user_id: str,
        client: ChainClient,
        recipient: str,
        value: int,
        gas_limit: int,
        fee_rate: int,
    ) -> tuple[str, asyncio.Task[TransferOutcome]]:
        with self.store.signer(user_id) as signer:
            tx_hash = await client.broadcast_native_transfer(
                signer, recipient, value, gas_limit, fee_rate
            )
        logger.info(
            f"Broadcast {tx_hash} on {client.chain.name}: value={value} "
            f"gas={gas_limit} gasPrice={fee_rate}"
        )
        return tx_hash, self._track(client, tx_hash)

    def _track(self, client: ChainClient, tx_hash: str) -> asyncio.Task[TransferOutcome]:
        task = asyncio.create_task(self._confirm(client, tx_hash), name=f"confirm-{tx_hash}")
        self._confirmations[tx_hash] = task
        task.add_done_callback(lambda _: self._confirmations.pop(tx_hash, None))
        return task

    async def _confirm(self, client: ChainClient, tx_hash: str) -> TransferOutcome:
        try:
            receipt = await asyncio.wait_for(
                client.await_confirmation(tx_hash, self.confirmation_timeout, self.poll_interval),
                timeout=self.confirmation_timeout + self.poll_interval,
            )
        except asyncio.TimeoutError:
            error = ConfirmationTimeout(
                f"{tx_hash} not mined within {self.confirmation_timeout:.0f}s"
            )
            logger.warning(f"Outcome of {tx_hash} on {client.chain.name} is unknown: {error}")
            return TransferOutcome(
                status=TransferState.ABORTED,
                tx_hash=tx_hash,
                reason=AbortReason.CONFIRMATION_UNKNOWN,
                error=error,
            )
        except RpcError as e:
            logger.warning(f"Outcome of {tx_hash} on {client.chain.name} is unknown: {e}")
            return TransferOutcome(
                status=TransferState.ABORTED,
                tx_hash=tx_hash,
                reason=AbortReason.CONFIRMATION_UNKNOWN,
                error=e,
            )

        if receipt.status is ReceiptStatus.SUCCESS:
            logger.info(f"{tx_hash} confirmed on {client.chain.name} in block {receipt.block_number}")
            return TransferOutcome(
                status=TransferState.CONFIRMED,
                tx_hash=tx_hash,
                block_number=receipt.block_number,
            )
        logger.warning(f"{tx_hash} reverted on {client.chain.name} in block {receipt.block_number}")
        return TransferOutcome(
            status=TransferState.FAILED,
            tx_hash=tx_hash,
            block_number=receipt.block_number,
        )
