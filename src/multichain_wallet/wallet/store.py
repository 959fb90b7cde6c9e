"""Wallet and session ownership."""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator

from eth_account.signers.local import LocalAccount

from multichain_wallet.storage.database import Database
from multichain_wallet.storage.locks import KeyedLocks
from multichain_wallet.storage.models import Session, Wallet
from multichain_wallet.wallet.chains import ChainRegistry
from multichain_wallet.wallet.errors import AlreadyExistsError, WalletNotFoundError
from multichain_wallet.wallet.keystore import generate_key, scoped_signer

logger = logging.getLogger("multichain_wallet.wallet.store")

WALLETS_DOCUMENT = "wallets"


class WalletStore:
    """Owns user -> wallet and user -> session, persisted as one document.

    The document is read once by :meth:`load` and rewritten in full after
    every mutation. Mutations for the same user are serialized.
    """

    def __init__(self, db: Database, registry: ChainRegistry) -> None:
        self.db = db
        self.registry = registry
        self._wallets: dict[str, Wallet] = {}
        self._sessions: dict[str, Session] = {}
        self._locks = KeyedLocks()
        self._save_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Replace in-memory state with the stored document."""
        doc = await self.db.load_document(WALLETS_DOCUMENT)

        wallets: dict[str, Wallet] = {}
        for user_id, data in doc.get("wallets", {}).items():
            wallets[user_id] = Wallet.model_validate({**data, "user_id": user_id})

        sessions: dict[str, Session] = {}
        for user_id, data in doc.get("settings", {}).items():
            chain_id = int(data.get("current_chain_id", self.registry.home_chain_id))
            if chain_id not in self.registry:
                logger.warning(
                    f"Session for user {user_id} points at unknown chain {chain_id}; "
                    f"resetting to {self.registry.home.name}"
                )
                chain_id = self.registry.home_chain_id
            sessions[user_id] = Session(user_id=user_id, current_chain_id=chain_id)

        self._wallets = wallets
        self._sessions = sessions
        logger.info(f"Loaded {len(wallets)} wallet(s) and {len(sessions)} session(s)")

    async def _save(self) -> None:
        async with self._save_lock:
            body = {
                "wallets": {uid: w.to_document() for uid, w in self._wallets.items()},
                "settings": {uid: s.to_document() for uid, s in self._sessions.items()},
            }
            await self.db.save_document(WALLETS_DOCUMENT, body)

    # ------------------------------------------------------------------
    # Wallet lifecycle
    # ------------------------------------------------------------------

    async def create_wallet(self, user_id: str) -> Wallet:
        """Create a wallet and a home-chain session for *user_id*.

        Raises ``AlreadyExistsError`` if the user already has a wallet; the
        existing wallet is left untouched.
        """
        async with self._locks.hold(user_id):
            if user_id in self._wallets:
                raise AlreadyExistsError(f"User {user_id} already has a wallet")

            key = generate_key()
            wallet = Wallet(
                user_id=user_id,
                address=key.address,
                private_key=key.private_key,
                mnemonic=key.mnemonic,
            )
            previous_session = self._sessions.get(user_id)
            self._wallets[user_id] = wallet
            self._sessions[user_id] = Session(
                user_id=user_id, current_chain_id=self.registry.home_chain_id
            )
            try:
                await self._save()
            except Exception:
                del self._wallets[user_id]
                if previous_session is None:
                    self._sessions.pop(user_id, None)
                else:
                    self._sessions[user_id] = previous_session
                raise

        logger.info(f"Wallet {wallet.address} created for user {user_id}")
        return wallet

    def get_wallet(self, user_id: str) -> Wallet | None:
        return self._wallets.get(user_id)

    def require_wallet(self, user_id: str) -> Wallet:
        wallet = self._wallets.get(user_id)
        if wallet is None:
            raise WalletNotFoundError(user_id)
        return wallet

    def has_wallet(self, user_id: str) -> bool:
        return user_id in self._wallets

    @contextmanager
    def signer(self, user_id: str) -> Iterator[LocalAccount]:
        """Yield a signer for the user's key, valid only inside the block."""
        wallet = self.require_wallet(user_id)
        with scoped_signer(wallet.private_key.get_secret_value()) as account:
            yield account

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def get_session(self, user_id: str) -> Session:
        """Return the user's session, or a home-chain default if none is recorded."""
        session = self._sessions.get(user_id)
        if session is None:
            return Session(user_id=user_id, current_chain_id=self.registry.home_chain_id)
        return session

    async def switch_chain(self, user_id: str, chain_id: int) -> Session:
        """Point the user's session at *chain_id*.

        Raises ``UnknownChainError`` (session unchanged) if the chain is not
        registered.
        """
        chain = self.registry.describe(chain_id)
        async with self._locks.hold(user_id):
            previous = self._sessions.get(user_id)
            session = Session(user_id=user_id, current_chain_id=chain.chain_id)
            self._sessions[user_id] = session
            try:
                await self._save()
            except Exception:
                if previous is None:
                    self._sessions.pop(user_id, None)
                else:
                    self._sessions[user_id] = previous
                raise

        logger.info(f"User {user_id} switched to {chain.name} ({chain.chain_id})")
        return session
