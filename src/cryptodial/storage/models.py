"""Pydantic models mapping to the Cryptodial database tables."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from cryptodial.chains.registry import ChainId


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _new_id() -> str:
    """Generate a short hex ID (12 characters)."""
    return uuid.uuid4().hex[:12]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Wallets
# ---------------------------------------------------------------------------

class WalletRecord(BaseModel):
    """Maps to the ``wallets`` table.

    ``encrypted_private_key`` is a :class:`~cryptodial.vault.KeyVault` blob;
    the plaintext key is never stored.
    """

    wallet_id: str
    chain_id: ChainId
    address: str
    encrypted_private_key: str
    pin_hash: str
    phone_number: str
    created_at: datetime = Field(default_factory=_utcnow)

    def __repr__(self) -> str:
        return (
            f"WalletRecord(wallet_id={self.wallet_id!r}, chain_id={self.chain_id.value!r}, "
            f"address={self.address!r})"
        )


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------

class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionRecord(BaseModel):
    """Maps to the ``transactions`` table. Rows are never updated."""

    id: str = Field(default_factory=_new_id)
    sender_wallet_id: str
    recipient_wallet_id: str
    amount: str  # stored as string to preserve decimal precision
    chain_id: ChainId
    status: TransactionStatus
    tx_hash: Optional[str] = None
    network_fee: Optional[int] = None  # smallest on-chain unit
    block_number: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def new_id(cls) -> str:
        return _new_id()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

# Model field -> ``sessions`` column.
SESSION_COLUMNS: dict[str, str] = {
    "session_id": "sessionId",
    "phone_number": "phoneNumber",
    "state": "state",
    "wallet_id": "walletId",
    "temp_pin": "tempPin",
    "temp_encrypted_key": "tempEncryptedKey",
    "temp_chain_id": "tempBlockchain",
    "temp_data": "tempData",
    "created_at": "createdAt",
    "expires_at": "expiresAt",
}

TEMP_FIELDS = ("temp_pin", "temp_encrypted_key", "temp_chain_id", "temp_data")


class SessionRecord(BaseModel):
    """Maps to the ``sessions`` table. Timestamps are epoch seconds."""

    session_id: str
    phone_number: str
    state: str
    wallet_id: Optional[str] = None
    temp_pin: Optional[str] = None
    temp_encrypted_key: Optional[str] = None
    temp_chain_id: Optional[ChainId] = None
    temp_data: Optional[dict[str, Any]] = None
    created_at: int
    expires_at: int

    def __repr__(self) -> str:
        return (
            f"SessionRecord(session_id={self.session_id!r}, state={self.state!r}, "
            f"wallet_id={self.wallet_id!r}, expires_at={self.expires_at})"
        )

    @classmethod
    def from_row(cls, row: dict) -> SessionRecord:
        data = {field: row.get(column) for field, column in SESSION_COLUMNS.items()}
        if data["temp_data"]:
            data["temp_data"] = json.loads(data["temp_data"])
        return cls.model_validate(data)


def session_column_value(field: str, value: Any) -> Any:
    """Convert a model value to what the ``sessions`` column stores."""
    if value is None:
        return None
    if field == "temp_data":
        return json.dumps(value)
    if isinstance(value, Enum):
        return value.value
    return value
