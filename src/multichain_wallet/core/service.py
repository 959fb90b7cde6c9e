"""WalletService - the front-end facing entry point of the engine.

Wires the chain registry, provider pool, stores, balance aggregator, and
transaction engine together, and exposes the operations a chat or CLI front
end calls. Every operation returns a structured payload or raises a typed
:class:`~multichain_wallet.wallet.errors.WalletError`; no presentation
markup is produced here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

from pydantic import BaseModel, SecretStr

from multichain_wallet.config import (
    WalletEngineConfig,
    build_registry,
    get_data_dir,
    load_config,
)
from multichain_wallet.core.conversation import ConversationStep, ConversationTracker
from multichain_wallet.storage.database import Database, get_database
from multichain_wallet.storage.models import TokenRecord
from multichain_wallet.wallet.balances import BalanceAggregator, BalanceReport
from multichain_wallet.wallet.chains import ChainDescriptor, ChainFamily
from multichain_wallet.wallet.engine import TransactionEngine, TransferEvent, TransferRequest
from multichain_wallet.wallet.errors import InvalidInputError
from multichain_wallet.wallet.provider import ClientFactory, ProviderPool
from multichain_wallet.wallet.store import WalletStore
from multichain_wallet.wallet.tokens import TokenRegistry

logger = logging.getLogger("multichain_wallet.service")


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


class ChainInfo(BaseModel):
    chain_id: int
    name: str
    native_symbol: str
    icon: str
    explorer_url: str
    current: bool = False

    @classmethod
    def of(cls, chain: ChainDescriptor, current: bool = False) -> ChainInfo:
        return cls(
            chain_id=chain.chain_id,
            name=chain.name,
            native_symbol=chain.native_symbol,
            icon=chain.icon,
            explorer_url=chain.explorer_url,
            current=current,
        )


class WalletCreated(BaseModel):
    """Returned once, at creation. The only payload carrying the phrase."""

    user_id: str
    address: str
    mnemonic: SecretStr
    chain: ChainInfo


class ReceiveInfo(BaseModel):
    address: str
    chain: ChainInfo
    explorer_address_url: str


class TokenList(BaseModel):
    chain: ChainInfo
    tokens: list[TokenRecord]


@dataclass
class InputResult:
    """What a free-text input resolved to."""

    step: ConversationStep
    chain_id: int  # chain the prompt was issued for
    token: TokenRecord | None = None
    transfer: AsyncIterator[TransferEvent] | None = None


def _uid(user_id: str | int) -> str:
    return str(user_id)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class WalletService:
    """Multi-chain custodial wallet engine.

    Parameters
    ----------
    config:
        Engine configuration (chains, home chain, timeouts).
    db:
        Connected document database.
    factories:
        Optional override of the chain-family -> client table.
    """

    def __init__(
        self,
        config: WalletEngineConfig,
        db: Database,
        factories: dict[ChainFamily, ClientFactory] | None = None,
    ) -> None:
        self.config = config
        self.db = db
        self.registry = build_registry(config)
        self.pool = ProviderPool(self.registry, factories)
        self.store = WalletStore(db, self.registry)
        self.tokens = TokenRegistry(db, self.pool)
        self.balances = BalanceAggregator(self.store, self.tokens, self.pool)
        self.engine = TransactionEngine(
            self.store,
            self.pool,
            confirmation_timeout=config.confirmation_timeout,
            poll_interval=config.confirmation_poll_interval,
        )
        self.conversations = ConversationTracker(timeout=config.conversation_timeout)

    @classmethod
    async def open(
        cls,
        base_path: Path | None = None,
        config: WalletEngineConfig | None = None,
    ) -> WalletService:
        """Load config from ``.multichain-wallet/``, connect, and load state."""
        data_dir = get_data_dir(base_path)
        if config is None:
            config = load_config(data_dir / "config.yaml")
        db = get_database(data_dir, config.database)
        await db.connect()
        service = cls(config=config, db=db)
        await service.start()
        return service

    async def start(self) -> None:
        """Read both persisted documents into memory."""
        await self.store.load()
        await self.tokens.load()
        logger.info(f"Wallet service ready with {len(self.registry)} chain(s)")

    async def shutdown(self) -> None:
        await self.engine.shutdown()
        await self.pool.close()
        await self.db.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def current_chain(self, user_id: str | int) -> ChainDescriptor:
        session = self.store.get_session(_uid(user_id))
        return self.registry.describe(session.current_chain_id)

    # ------------------------------------------------------------------
    # Wallet
    # ------------------------------------------------------------------

    async def create_wallet(self, user_id: str | int) -> WalletCreated:
        uid = _uid(user_id)
        wallet = await self.store.create_wallet(uid)
        return WalletCreated(
            user_id=uid,
            address=wallet.address,
            mnemonic=wallet.mnemonic,
            chain=ChainInfo.of(self.current_chain(uid), current=True),
        )

    def has_wallet(self, user_id: str | int) -> bool:
        return self.store.has_wallet(_uid(user_id))

    def receive_info(self, user_id: str | int) -> ReceiveInfo:
        """Address to receive funds at, with an explorer link for the current chain."""
        uid = _uid(user_id)
        wallet = self.store.require_wallet(uid)
        chain = self.current_chain(uid)
        return ReceiveInfo(
            address=wallet.address,
            chain=ChainInfo.of(chain, current=True),
            explorer_address_url=chain.address_url(wallet.address),
        )

    async def get_report(self, user_id: str | int) -> BalanceReport:
        uid = _uid(user_id)
        self.store.require_wallet(uid)
        return await self.balances.report(uid, self.current_chain(uid).chain_id)

    # ------------------------------------------------------------------
    # Chains
    # ------------------------------------------------------------------

    def list_chains(self, user_id: str | int | None = None) -> list[ChainInfo]:
        current = None if user_id is None else self.current_chain(user_id).chain_id
        return [ChainInfo.of(c, current=c.chain_id == current) for c in self.registry]

    async def switch_chain(self, user_id: str | int, chain_id: int) -> ChainInfo:
        session = await self.store.switch_chain(_uid(user_id), chain_id)
        return ChainInfo.of(self.registry.describe(session.current_chain_id), current=True)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    async def register_token(self, user_id: str | int, contract_address: str) -> TokenRecord:
        uid = _uid(user_id)
        return await self.tokens.register_token(
            uid, self.current_chain(uid).chain_id, contract_address
        )

    def list_tokens(self, user_id: str | int) -> TokenList:
        uid = _uid(user_id)
        chain = self.current_chain(uid)
        return TokenList(
            chain=ChainInfo.of(chain, current=True),
            tokens=self.tokens.list_tokens(uid, chain.chain_id),
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def send_transfer(
        self, user_id: str | int, recipient_address: str, amount: str
    ) -> AsyncIterator[TransferEvent]:
        """Start a native transfer on the current chain; iterate for progress."""
        uid = _uid(user_id)
        request = TransferRequest(
            user_id=uid,
            chain_id=self.current_chain(uid).chain_id,
            recipient_address=recipient_address,
            amount=amount,
        )
        return self.engine.send(request)

    # ------------------------------------------------------------------
    # Multi-turn input
    # ------------------------------------------------------------------

    def begin_add_token(self, user_id: str | int) -> ChainInfo:
        """Wait for the user's next input to be a token contract address."""
        uid = _uid(user_id)
        chain = self.current_chain(uid)
        self.conversations.begin(uid, ConversationStep.AWAITING_TOKEN_ADDRESS, chain.chain_id)
        return ChainInfo.of(chain, current=True)

    def begin_send(self, user_id: str | int) -> ChainInfo:
        """Wait for the user's next input to be ``"<address> <amount>"``."""
        uid = _uid(user_id)
        self.store.require_wallet(uid)
        chain = self.current_chain(uid)
        self.conversations.begin(uid, ConversationStep.AWAITING_SEND_DETAILS, chain.chain_id)
        return ChainInfo.of(chain, current=True)

    async def handle_input(self, user_id: str | int, text: str) -> InputResult:
        """Resolve free text against the user's pending step.

        The pending step is cleared whether or not *text* is usable.
        Raises ``InvalidInputError`` when nothing is pending or the text is
        malformed.
        """
        uid = _uid(user_id)
        pending = self.conversations.consume(uid)
        if pending is None:
            raise InvalidInputError("Nothing is waiting for input; pick an action first")

        if pending.step is ConversationStep.AWAITING_TOKEN_ADDRESS:
            token = await self.tokens.register_token(uid, pending.chain_id, text.strip())
            return InputResult(step=pending.step, chain_id=pending.chain_id, token=token)

        parts = text.split()
        if len(parts) != 2:
            raise InvalidInputError("Invalid format. Use: recipient_address amount")
        recipient, amount = parts
        request = TransferRequest(
            user_id=uid,
            chain_id=pending.chain_id,
            recipient_address=recipient,
            amount=amount,
        )
        return InputResult(
            step=pending.step, chain_id=pending.chain_id, transfer=self.engine.send(request)
        )
