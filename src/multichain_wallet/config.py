"""Configuration system for multichain-wallet.

Loads engine settings from ``.multichain-wallet/config.yaml``, supports
environment variable expansion (so RPC keys can stay out of the file), and
builds the :class:`~multichain_wallet.wallet.chains.ChainRegistry` from the
built-in chain table plus any configured chain entries.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from multichain_wallet.wallet.chains import (
    DEFAULT_CHAINS,
    HOME_CHAIN_ID,
    ChainDescriptor,
    ChainFamily,
    ChainRegistry,
)


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class ChainConfig(BaseModel):
    """A chain table entry. Overrides the built-in entry with the same id."""

    chain_id: int
    name: str
    native_symbol: str
    rpc_url: str
    explorer_url: str
    icon: str = ""
    native_decimals: int = Field(default=18, ge=0, le=36)
    family: ChainFamily = ChainFamily.EVM

    def to_descriptor(self) -> ChainDescriptor:
        return ChainDescriptor(**self.model_dump())


class WalletEngineConfig(BaseModel):
    """Root configuration object for the wallet engine."""

    home_chain_id: int = HOME_CHAIN_ID
    database: str = "wallet.db"
    confirmation_timeout: float = 120.0     # seconds to wait for a receipt
    confirmation_poll_interval: float = 2.0
    conversation_timeout: float = 300.0     # idle after this many seconds
    chains: list[ChainConfig] = Field(default_factory=list)
    rpc_overrides: dict[int, str] = Field(default_factory=dict)  # chain id -> RPC URL


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def get_data_dir(base: Path | None = None, *, create: bool = True) -> Path:
    """Return the ``.multichain-wallet/`` directory.

    Parameters
    ----------
    base:
        Parent directory that contains (or will contain) the data folder.
        Defaults to the current working directory.
    create:
        If *True* (default), create the directory if it doesn't exist.
    """
    if base is None:
        base = Path.cwd()
    data_dir = base / ".multichain-wallet"
    if create:
        data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def build_registry(config: WalletEngineConfig) -> ChainRegistry:
    """Merge configured chains into the built-in table and build a registry.

    Configured entries replace built-in ones with the same chain id and are
    appended otherwise; ``rpc_overrides`` swaps only the endpoint.
    """
    chains: dict[int, ChainDescriptor] = {c.chain_id: c for c in DEFAULT_CHAINS}
    for entry in config.chains:
        chains[entry.chain_id] = entry.to_descriptor()
    for chain_id, rpc_url in config.rpc_overrides.items():
        if chain_id in chains:
            current = chains[chain_id]
            chains[chain_id] = ChainDescriptor(
                chain_id=current.chain_id,
                name=current.name,
                native_symbol=current.native_symbol,
                rpc_url=rpc_url,
                explorer_url=current.explorer_url,
                icon=current.icon,
                native_decimals=current.native_decimals,
                family=current.family,
            )
    return ChainRegistry(chains.values(), home_chain_id=config.home_chain_id)


def load_config(path: Path) -> WalletEngineConfig:
    """Load and validate engine configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation. A missing file yields the defaults.
    """
    if not path.exists():
        return WalletEngineConfig()
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return WalletEngineConfig.model_validate(expanded)


def save_config(config: WalletEngineConfig, path: Path) -> None:
    """Serialize a :class:`WalletEngineConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False, allow_unicode=True)


def find_config(base: Optional[Path] = None) -> Path:
    """Return the default config file location."""
    return get_data_dir(base, create=False) / "config.yaml"
