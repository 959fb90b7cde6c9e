"""Per-user, per-chain registry of ERC-20 tokens."""

from __future__ import annotations

import asyncio
import logging

from multichain_wallet.storage.database import Database
from multichain_wallet.storage.locks import KeyedLocks
from multichain_wallet.storage.models import TokenRecord
from multichain_wallet.wallet.errors import (
    ContractCallError,
    DuplicateTokenError,
    InvalidInputError,
)
from multichain_wallet.wallet.provider import ProviderPool

logger = logging.getLogger("multichain_wallet.wallet.tokens")

TOKENS_DOCUMENT = "tokens"

# uint8 on-chain, but anything past 10**77 cannot fit in a uint256 balance.
MAX_TOKEN_DECIMALS = 77


class TokenRegistry:
    """Owns (user, chain) -> ordered list of :class:`TokenRecord`.

    Lists are append-only and keep registration order. The whole document is
    rewritten after every registration.
    """

    def __init__(self, db: Database, pool: ProviderPool) -> None:
        self.db = db
        self.pool = pool
        self._tokens: dict[str, dict[int, list[TokenRecord]]] = {}
        self._locks = KeyedLocks()
        self._save_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> None:
        doc = await self.db.load_document(TOKENS_DOCUMENT)
        tokens: dict[str, dict[int, list[TokenRecord]]] = {}
        for user_id, chains in doc.items():
            per_chain: dict[int, list[TokenRecord]] = {}
            for chain_key, records in chains.items():
                chain_id = int(chain_key)
                per_chain[chain_id] = [
                    TokenRecord.model_validate(
                        {**rec, "owner_user_id": user_id, "chain_id": chain_id}
                    )
                    for rec in records
                ]
            tokens[user_id] = per_chain
        self._tokens = tokens
        count = sum(len(r) for chains in tokens.values() for r in chains.values())
        logger.info(f"Loaded {count} token record(s) for {len(tokens)} user(s)")

    async def _save(self) -> None:
        async with self._save_lock:
            body = {
                user_id: {
                    str(chain_id): [rec.to_document() for rec in records]
                    for chain_id, records in chains.items()
                }
                for user_id, chains in self._tokens.items()
            }
            await self.db.save_document(TOKENS_DOCUMENT, body)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_tokens(self, user_id: str, chain_id: int) -> list[TokenRecord]:
        """Return the user's tokens on *chain_id* in registration order."""
        return list(self._tokens.get(user_id, {}).get(chain_id, []))

    def _find(self, user_id: str, chain_id: int, contract_address: str) -> TokenRecord | None:
        for record in self._tokens.get(user_id, {}).get(chain_id, []):
            if record.matches(contract_address):
                return record
        return None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register_token(
        self, user_id: str, chain_id: int, contract_address: str
    ) -> TokenRecord:
        """Validate *contract_address* as an ERC-20 and append it.

        Raises
        ------
        InvalidInputError
            The address is malformed for the chain.
        ContractCallError
            The contract did not answer ``name``/``symbol``/``decimals``.
        DuplicateTokenError
            The contract is already registered (case-insensitive).
        """
        address = contract_address.strip()
        client = await self.pool.client_for(chain_id)
        if not client.is_address(address):
            raise InvalidInputError(f"Invalid contract address: {contract_address!r}")
        if self._find(user_id, chain_id, address) is not None:
            raise DuplicateTokenError(f"Token {address} already added")

        meta, decimals = await asyncio.gather(
            client.get_token_meta(address),
            client.get_token_decimals(address),
        )
        if not 0 <= decimals <= MAX_TOKEN_DECIMALS:
            raise ContractCallError(f"Contract {address} reported unusable decimals {decimals}")

        record = TokenRecord(
            owner_user_id=user_id,
            chain_id=chain_id,
            contract_address=address,
            name=meta.name,
            symbol=meta.symbol,
            decimals=decimals,
        )

        async with self._locks.hold(user_id):
            if self._find(user_id, chain_id, address) is not None:
                raise DuplicateTokenError(f"Token {address} already added")
            records = self._tokens.setdefault(user_id, {}).setdefault(chain_id, [])
            records.append(record)
            try:
                await self._save()
            except Exception:
                records.remove(record)
                raise

        logger.info(
            f"Token {record.symbol} ({address}) added for user {user_id} on chain {chain_id}"
        )
        return record
