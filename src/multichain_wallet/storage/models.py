"""Pydantic models for the persisted wallet, session, and token records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, SecretStr


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Wallet / session
# ---------------------------------------------------------------------------


class Wallet(BaseModel):
    """A user's custodial key pair.

    Key material is held as ``SecretStr`` so it is masked in ``repr`` and in
    ``model_dump(mode="json")``. Only :meth:`to_document` reveals it, for the
    persistence writer.
    """

    user_id: str
    address: str
    private_key: SecretStr
    mnemonic: SecretStr
    created_at: datetime = Field(default_factory=_utcnow)

    def to_document(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"private_key", "mnemonic"})
        data["private_key"] = self.private_key.get_secret_value()
        data["mnemonic"] = self.mnemonic.get_secret_value()
        return data


class Session(BaseModel):
    """Per-user selection of the chain operations run against."""

    user_id: str
    current_chain_id: int

    def to_document(self) -> dict[str, Any]:
        return {"current_chain_id": self.current_chain_id}


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TokenRecord(BaseModel):
    """Snapshot of an ERC-20 contract's metadata taken at registration."""

    owner_user_id: str
    chain_id: int
    contract_address: str
    name: str
    symbol: str
    decimals: int
    added_at: datetime = Field(default_factory=_utcnow)

    def matches(self, contract_address: str) -> bool:
        return self.contract_address.lower() == contract_address.lower()

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
