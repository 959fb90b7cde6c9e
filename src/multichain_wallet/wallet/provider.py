"""Web3 multi-chain provider pool for Ethereum-compatible networks."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator

from eth_abi.exceptions import InsufficientDataBytes
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TimeExhausted,
    Web3RPCError,
)
from web3.middleware import ExtraDataToPOAMiddleware

from multichain_wallet.wallet.chains import ChainDescriptor, ChainFamily, ChainRegistry
from multichain_wallet.wallet.errors import (
    ConfirmationTimeout,
    ContractCallError,
    RpcError,
    SubmissionError,
)

logger = logging.getLogger("multichain_wallet.wallet.provider")

# Minimal ERC-20 read interface.
ERC20_ABI = [
    {
        "name": "name",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "symbol",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "string"}],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

_CONTRACT_ERRORS = (BadFunctionCallOutput, ContractLogicError, InsufficientDataBytes)


class ReceiptStatus(str, Enum):
    SUCCESS = "success"
    REVERTED = "reverted"


@dataclass(frozen=True)
class Receipt:
    status: ReceiptStatus
    block_number: int


@dataclass(frozen=True)
class TokenMeta:
    name: str
    symbol: str


@contextmanager
def _rpc_errors(chain: ChainDescriptor, action: str, *, contract: bool = False) -> Iterator[None]:
    """Translate anything raised by web3 or the transport into a typed error."""
    try:
        yield
    except _CONTRACT_ERRORS as exc:
        if contract:
            raise ContractCallError(f"{action} failed on {chain.name}: {exc}") from exc
        raise RpcError(f"{action} failed on {chain.name}: {exc}") from exc
    except (ContractCallError, RpcError, SubmissionError):
        raise
    except Exception as exc:
        raise RpcError(f"{action} failed on {chain.name}: {exc}") from exc


# ---------------------------------------------------------------------------
# Client interface
# ---------------------------------------------------------------------------


class ChainClient(ABC):
    """Read/write capabilities the engine needs from one chain.

    Every method raises only the typed errors from
    :mod:`multichain_wallet.wallet.errors`.
    """

    def __init__(self, chain: ChainDescriptor) -> None:
        self.chain = chain

    @abstractmethod
    def is_address(self, value: str) -> bool:
        """Return True if *value* is a well-formed address on this chain."""

    @abstractmethod
    async def get_native_balance(self, address: str) -> int: ...

    @abstractmethod
    async def get_token_balance(self, contract_address: str, owner_address: str) -> int: ...

    @abstractmethod
    async def get_token_decimals(self, contract_address: str) -> int: ...

    @abstractmethod
    async def get_token_meta(self, contract_address: str) -> TokenMeta: ...

    @abstractmethod
    async def estimate_transfer_gas(self, sender: str, to: str, value: int) -> int: ...

    @abstractmethod
    async def get_fee_rate(self) -> int:
        """Node-suggested price per gas unit, in the smallest native unit."""

    @abstractmethod
    async def broadcast_native_transfer(
        self,
        signer: LocalAccount,
        to: str,
        value: int,
        gas_limit: int,
        fee_rate: int,
    ) -> str:
        """Sign and submit a native transfer. Returns the ``0x`` tx hash."""

    @abstractmethod
    async def await_confirmation(
        self, tx_hash: str, timeout: float, poll_interval: float = 2.0
    ) -> Receipt:
        """Wait for inclusion.

        Raises ``ConfirmationTimeout`` once *timeout* elapses; a reverted
        transaction is returned as ``ReceiptStatus.REVERTED``.
        """

    async def close(self) -> None:
        """Release any transport resources."""


# ---------------------------------------------------------------------------
# EVM implementation
# ---------------------------------------------------------------------------


class EvmChainClient(ChainClient):
    """``AsyncWeb3`` client bound to one chain's RPC endpoint.

    Injects POA middleware for non-mainnet chains.
    """

    def __init__(self, chain: ChainDescriptor, request_timeout: float = 30.0) -> None:
        super().__init__(chain)
        self._w3 = AsyncWeb3(
            AsyncWeb3.AsyncHTTPProvider(
                chain.rpc_url, request_kwargs={"timeout": request_timeout}
            )
        )
        if chain.chain_id != 1:
            self._w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

    def is_address(self, value: str) -> bool:
        return isinstance(value, str) and Web3.is_address(value)

    def _token(self, contract_address: str):
        return self._w3.eth.contract(
            address=Web3.to_checksum_address(contract_address), abi=ERC20_ABI
        )

    async def get_native_balance(self, address: str) -> int:
        with _rpc_errors(self.chain, "get_balance"):
            return await self._w3.eth.get_balance(Web3.to_checksum_address(address))

    async def get_token_balance(self, contract_address: str, owner_address: str) -> int:
        with _rpc_errors(self.chain, f"balanceOf({contract_address})", contract=True):
            owner = Web3.to_checksum_address(owner_address)
            return int(await self._token(contract_address).functions.balanceOf(owner).call())

    async def get_token_decimals(self, contract_address: str) -> int:
        with _rpc_errors(self.chain, f"decimals({contract_address})", contract=True):
            return int(await self._token(contract_address).functions.decimals().call())

    async def get_token_meta(self, contract_address: str) -> TokenMeta:
        token = self._token(contract_address)
        with _rpc_errors(self.chain, f"name/symbol({contract_address})", contract=True):
            name, symbol = await asyncio.gather(
                token.functions.name().call(),
                token.functions.symbol().call(),
            )
        return TokenMeta(name=name, symbol=symbol)

    async def estimate_transfer_gas(self, sender: str, to: str, value: int) -> int:
        with _rpc_errors(self.chain, "estimate_gas"):
            return await self._w3.eth.estimate_gas(
                {
                    "from": Web3.to_checksum_address(sender),
                    "to": Web3.to_checksum_address(to),
                    "value": value,
                }
            )

    async def get_fee_rate(self) -> int:
        with _rpc_errors(self.chain, "gas_price"):
            return await self._w3.eth.gas_price

    async def broadcast_native_transfer(
        self,
        signer: LocalAccount,
        to: str,
        value: int,
        gas_limit: int,
        fee_rate: int,
    ) -> str:
        with _rpc_errors(self.chain, "get_transaction_count"):
            nonce = await self._w3.eth.get_transaction_count(signer.address, "pending")

        tx = {
            "to": Web3.to_checksum_address(to),
            "value": value,
            "gas": gas_limit,
            "gasPrice": fee_rate,
            "nonce": nonce,
            "chainId": self.chain.chain_id,
        }
        signed = signer.sign_transaction(tx)

        try:
            with _rpc_errors(self.chain, "send_raw_transaction"):
                tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except RpcError as exc:
            if isinstance(exc.__cause__, Web3RPCError):
                raise SubmissionError(
                    f"{self.chain.name} node rejected transaction: {exc.__cause__}"
                ) from exc.__cause__
            raise
        return Web3.to_hex(tx_hash)

    async def await_confirmation(
        self, tx_hash: str, timeout: float, poll_interval: float = 2.0
    ) -> Receipt:
        try:
            with _rpc_errors(self.chain, "wait_for_transaction_receipt"):
                receipt = await self._w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=timeout, poll_latency=poll_interval
                )
        except RpcError as exc:
            if isinstance(exc.__cause__, TimeExhausted):
                raise ConfirmationTimeout(
                    f"{tx_hash} not mined on {self.chain.name} within {timeout:.0f}s"
                ) from exc.__cause__
            raise
        status = ReceiptStatus.SUCCESS if receipt["status"] == 1 else ReceiptStatus.REVERTED
        return Receipt(status=status, block_number=receipt["blockNumber"])

    async def close(self) -> None:
        await self._w3.provider.disconnect()


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

ClientFactory = Callable[[ChainDescriptor], ChainClient]

CLIENT_FACTORIES: dict[ChainFamily, ClientFactory] = {
    ChainFamily.EVM: EvmChainClient,
}


class ProviderPool:
    """Lazily builds and caches one :class:`ChainClient` per chain id.

    Clients are shared across all users. Concurrent first access for the
    same chain builds exactly one client.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        factories: dict[ChainFamily, ClientFactory] | None = None,
    ) -> None:
        self.registry = registry
        self._factories = factories if factories is not None else CLIENT_FACTORIES
        self._clients: dict[int, ChainClient] = {}
        self._lock = asyncio.Lock()

    async def client_for(self, chain_id: int) -> ChainClient:
        """Return a (cached) client for *chain_id*.

        Raises ``UnknownChainError`` if the chain is not registered.
        """
        client = self._clients.get(chain_id)
        if client is not None:
            return client

        chain = self.registry.describe(chain_id)
        async with self._lock:
            client = self._clients.get(chain_id)
            if client is None:
                factory = self._factories.get(chain.family)
                if factory is None:
                    raise ValueError(f"No client implementation for chain family {chain.family.value}")
                client = factory(chain)
                self._clients[chain_id] = client
                logger.info(f"Connected client for {chain.name} ({chain.chain_id}) at {chain.rpc_url}")
        return client

    async def close(self) -> None:
        """Close every cached client."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Failed to close client for {client.chain.name}: {e}")
