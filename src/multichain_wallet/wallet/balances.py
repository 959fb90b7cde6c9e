"""Native + token balance report for one user on one chain."""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel, Field

from multichain_wallet.storage.models import TokenRecord
from multichain_wallet.wallet.errors import ContractCallError, RpcError
from multichain_wallet.wallet.provider import ChainClient, ProviderPool
from multichain_wallet.wallet.store import WalletStore
from multichain_wallet.wallet.tokens import TokenRegistry
from multichain_wallet.wallet.units import format_amount

logger = logging.getLogger("multichain_wallet.wallet.balances")


class TokenBalance(BaseModel):
    contract_address: str
    symbol: str
    raw: int
    formatted: str


class BalanceReport(BaseModel):
    chain_id: int
    chain_name: str
    address: str
    native_symbol: str
    native_raw: int
    native: str
    tokens: list[TokenBalance] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when there is no native balance (nothing to pay fees with)."""
        return self.native_raw == 0


class BalanceAggregator:
    """Builds a :class:`BalanceReport`.

    A failing native balance query fails the report. A failing token query
    only drops that token: one broken contract must not blank the report.
    """

    def __init__(self, store: WalletStore, tokens: TokenRegistry, pool: ProviderPool) -> None:
        self.store = store
        self.tokens = tokens
        self.pool = pool

    async def report(self, user_id: str, chain_id: int) -> BalanceReport:
        wallet = self.store.require_wallet(user_id)
        chain = self.pool.registry.describe(chain_id)
        client = await self.pool.client_for(chain_id)
        records = self.tokens.list_tokens(user_id, chain_id)

        native_raw, *token_results = await asyncio.gather(
            client.get_native_balance(wallet.address),
            *(self._token_balance(client, record, wallet.address) for record in records),
        )

        return BalanceReport(
            chain_id=chain.chain_id,
            chain_name=chain.name,
            address=wallet.address,
            native_symbol=chain.native_symbol,
            native_raw=native_raw,
            native=format_amount(native_raw, chain.native_decimals, chain.native_symbol),
            tokens=[t for t in token_results if t is not None],
        )

    async def _token_balance(
        self, client: ChainClient, record: TokenRecord, owner: str
    ) -> TokenBalance | None:
        try:
            raw = await client.get_token_balance(record.contract_address, owner)
        except (ContractCallError, RpcError) as e:
            logger.warning(
                f"Skipping token {record.symbol} ({record.contract_address}) "
                f"on chain {record.chain_id}: {e}"
            )
            return None
        if raw <= 0:
            return None
        return TokenBalance(
            contract_address=record.contract_address,
            symbol=record.symbol,
            raw=raw,
            formatted=format_amount(raw, record.decimals, record.symbol),
        )
