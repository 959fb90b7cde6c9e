import asyncio

import pytest
from web3 import Web3

from multichain_wallet.config import WalletEngineConfig
from multichain_wallet.core.service import WalletService
from multichain_wallet.storage.database import Database
from multichain_wallet.wallet.chains import ChainFamily, ChainRegistry
from multichain_wallet.wallet.errors import ContractCallError
from multichain_wallet.wallet.provider import ChainClient, ProviderPool, Receipt, ReceiptStatus, TokenMeta
from multichain_wallet.wallet.store import WalletStore
from multichain_wallet.wallet.tokens import TokenRegistry

RECIPIENT = "0x" + "22" * 20
TOKEN_A = "0x" + "aa" * 20
TOKEN_B = "0x" + "bb" * 20
NOT_A_TOKEN = "0x" + "cc" * 20

ETHER = 10**18
GWEI = 10**9


class FakeChainClient(ChainClient):
    """In-memory chain: balances, ERC-20 contracts, and a receipt to hand back."""

    def __init__(self, chain):
        super().__init__(chain)
        self.native_balances: dict[str, int] = {}
        self.contracts: dict[str, dict] = {}
        self.token_errors: dict[str, Exception] = {}
        # (method name, lowercase contract address) -> error for that call only
        self.call_errors: dict[tuple[str, str], Exception] = {}
        self.native_error: Exception | None = None
        self.gas_limit = 21_000
        self.fee_rate = 10 * GWEI
        self.estimate_error: Exception | None = None
        self.broadcast_error: Exception | None = None
        self.broadcasts: list[dict] = []
        self.receipt = Receipt(status=ReceiptStatus.SUCCESS, block_number=1234)
        self.confirmation_error: Exception | None = None
        self.confirmation_delay = 0.0
        self.closed = False

    def add_token(self, address, name, symbol, decimals, balances=None):
        self.contracts[address.lower()] = {
            "name": name,
            "symbol": symbol,
            "decimals": decimals,
            "balances": balances or {},
        }

    def _contract(self, address, method):
        key = address.lower()
        if (method, key) in self.call_errors:
            raise self.call_errors[(method, key)]
        if key in self.token_errors:
            raise self.token_errors[key]
        if key not in self.contracts:
            raise ContractCallError(f"{address} is not a token contract")
        return self.contracts[key]

    def is_address(self, value):
        return isinstance(value, str) and Web3.is_address(value)

    async def get_native_balance(self, address):
        if self.native_error is not None:
            raise self.native_error
        return self.native_balances.get(address, 0)

    async def get_token_balance(self, contract_address, owner_address):
        await asyncio.sleep(0)
        contract = self._contract(contract_address, "get_token_balance")
        return contract["balances"].get(owner_address, 0)

    async def get_token_decimals(self, contract_address):
        return self._contract(contract_address, "get_token_decimals")["decimals"]

    async def get_token_meta(self, contract_address):
        contract = self._contract(contract_address, "get_token_meta")
        return TokenMeta(name=contract["name"], symbol=contract["symbol"])

    async def estimate_transfer_gas(self, sender, to, value):
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.gas_limit

    async def get_fee_rate(self):
        return self.fee_rate

    async def broadcast_native_transfer(self, signer, to, value, gas_limit, fee_rate):
        if self.broadcast_error is not None:
            raise self.broadcast_error
        self.broadcasts.append(
            {"sender": signer.address, "to": to, "value": value, "gas": gas_limit, "gasPrice": fee_rate}
        )
        return "0x" + f"{len(self.broadcasts):064x}"

    async def await_confirmation(self, tx_hash, timeout, poll_interval=2.0):
        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)
        if self.confirmation_error is not None:
            raise self.confirmation_error
        return self.receipt

    async def close(self):
        self.closed = True


@pytest.fixture
def clients():
    """Chain id -> FakeChainClient, filled as the pool builds clients."""
    return {}


@pytest.fixture
def factories(clients):
    def build(chain):
        client = FakeChainClient(chain)
        clients[chain.chain_id] = client
        return client

    return {ChainFamily.EVM: build}


@pytest.fixture
def registry():
    return ChainRegistry()


@pytest.fixture
async def db(tmp_path):
    database = Database(tmp_path / "wallet.db")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def pool(registry, factories):
    return ProviderPool(registry, factories)


@pytest.fixture
async def store(db, registry):
    wallet_store = WalletStore(db, registry)
    await wallet_store.load()
    return wallet_store


@pytest.fixture
async def tokens(db, pool):
    registry = TokenRegistry(db, pool)
    await registry.load()
    return registry


@pytest.fixture
async def service(db, factories):
    config = WalletEngineConfig(confirmation_timeout=1.0, confirmation_poll_interval=0.01)
    svc = WalletService(config=config, db=db, factories=factories)
    await svc.start()
    yield svc
    await svc.shutdown()
