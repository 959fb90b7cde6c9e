"""Chain definitions for supported EVM networks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator

from multichain_wallet.wallet.errors import UnknownChainError


class ChainFamily(str, Enum):
    """Closed set of client implementations a chain can be served by."""

    EVM = "evm"


@dataclass(frozen=True)
class ChainDescriptor:
    """A blockchain network the wallet can operate on."""

    chain_id: int
    name: str
    native_symbol: str
    rpc_url: str
    explorer_url: str
    icon: str = ""
    native_decimals: int = 18
    family: ChainFamily = ChainFamily.EVM

    @property
    def label(self) -> str:
        return f"{self.icon} {self.name}".strip()

    def address_url(self, address: str) -> str:
        return f"{self.explorer_url}/address/{address}"

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


HOME_CHAIN_ID = 1

DEFAULT_CHAINS: tuple[ChainDescriptor, ...] = (
    ChainDescriptor(
        chain_id=1,
        name="Ethereum",
        native_symbol="ETH",
        rpc_url="https://eth.llamarpc.com",
        explorer_url="https://etherscan.io",
        icon="🔷",
    ),
    ChainDescriptor(
        chain_id=137,
        name="Polygon",
        native_symbol="POL",
        rpc_url="https://polygon-rpc.com",
        explorer_url="https://polygonscan.com",
        icon="🟣",
    ),
    ChainDescriptor(
        chain_id=56,
        name="BNB Chain",
        native_symbol="BNB",
        rpc_url="https://bsc-dataseed1.binance.org",
        explorer_url="https://bscscan.com",
        icon="🟡",
    ),
    ChainDescriptor(
        chain_id=43114,
        name="Avalanche",
        native_symbol="AVAX",
        rpc_url="https://api.avax.network/ext/bc/C/rpc",
        explorer_url="https://snowtrace.io",
        icon="🔺",
    ),
    ChainDescriptor(
        chain_id=250,
        name="Fantom",
        native_symbol="FTM",
        rpc_url="https://rpc.ftm.tools",
        explorer_url="https://ftmscan.com",
        icon="👻",
    ),
    ChainDescriptor(
        chain_id=42161,
        name="Arbitrum One",
        native_symbol="ETH",
        rpc_url="https://arb1.arbitrum.io/rpc",
        explorer_url="https://arbiscan.io",
        icon="🔵",
    ),
    ChainDescriptor(
        chain_id=10,
        name="Optimism",
        native_symbol="ETH",
        rpc_url="https://mainnet.optimism.io",
        explorer_url="https://optimistic.etherscan.io",
        icon="🔴",
    ),
    ChainDescriptor(
        chain_id=25,
        name="Cronos",
        native_symbol="CRO",
        rpc_url="https://evm.cronos.org",
        explorer_url="https://cronoscan.com",
        icon="💎",
    ),
    ChainDescriptor(
        chain_id=1285,
        name="Moonriver",
        native_symbol="MOVR",
        rpc_url="https://rpc.api.moonriver.moonbeam.network",
        explorer_url="https://moonriver.moonscan.io",
        icon="🌙",
    ),
    ChainDescriptor(
        chain_id=100,
        name="Gnosis Chain",
        native_symbol="xDAI",
        rpc_url="https://rpc.gnosischain.com",
        explorer_url="https://gnosisscan.io",
        icon="🟢",
    ),
)


class ChainRegistry:
    """Immutable chain id -> :class:`ChainDescriptor` lookup.

    Parameters
    ----------
    chains:
        Descriptors in display order. Chain ids must be unique.
    home_chain_id:
        Chain a fresh session starts on. Must be one of *chains*.
    """

    def __init__(
        self,
        chains: Iterable[ChainDescriptor] = DEFAULT_CHAINS,
        home_chain_id: int = HOME_CHAIN_ID,
    ) -> None:
        self._chains: dict[int, ChainDescriptor] = {}
        for chain in chains:
            if chain.chain_id in self._chains:
                raise ValueError(f"Duplicate chain id {chain.chain_id} in chain table")
            self._chains[chain.chain_id] = chain
        if home_chain_id not in self._chains:
            raise ValueError(f"Home chain {home_chain_id} is not in the chain table")
        self.home_chain_id = home_chain_id

    def describe(self, chain_id: int) -> ChainDescriptor:
        """Get a chain by id. Raises ``UnknownChainError`` if not found."""
        try:
            return self._chains[chain_id]
        except KeyError:
            raise UnknownChainError(chain_id) from None

    @property
    def home(self) -> ChainDescriptor:
        return self._chains[self.home_chain_id]

    def all(self) -> list[ChainDescriptor]:
        """Return every registered chain in table order."""
        return list(self._chains.values())

    def __contains__(self, chain_id: object) -> bool:
        return chain_id in self._chains

    def __iter__(self) -> Iterator[ChainDescriptor]:
        return iter(self._chains.values())

    def __len__(self) -> int:
        return len(self._chains)
