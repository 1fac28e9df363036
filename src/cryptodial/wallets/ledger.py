"""Append-only record of every attempted transfer."""

from __future__ import annotations

import logging

from cryptodial.storage.database import Database
from cryptodial.storage.models import TransactionRecord

logger = logging.getLogger("cryptodial.wallets.ledger")


class TransactionLedger:
    """Writes and reads :class:`TransactionRecord` rows.

    There is no update or delete: a correction is a new record.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def record(self, entry: TransactionRecord) -> TransactionRecord:
        await self.db.execute(
            "INSERT INTO transactions "
            "(id, sender_wallet_id, recipient_wallet_id, amount, chain_id, status, "
            "tx_hash, network_fee, block_number, error, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                entry.id,
                entry.sender_wallet_id,
                entry.recipient_wallet_id,
                entry.amount,
                entry.chain_id.value,
                entry.status.value,
                entry.tx_hash,
                str(entry.network_fee) if entry.network_fee is not None else None,
                entry.block_number,
                entry.error,
                entry.created_at.isoformat(),
            ),
        )
        logger.info(
            f"Ledger {entry.status.value}: {entry.amount} {entry.sender_wallet_id} -> "
            f"{entry.recipient_wallet_id} (id={entry.id}, tx={entry.tx_hash})"
        )
        return entry

    async def get(self, record_id: str) -> TransactionRecord | None:
        row = await self.db.fetch_one("SELECT * FROM transactions WHERE id = ?", (record_id,))
        return TransactionRecord.model_validate(row) if row else None

    async def list_for_wallet(self, wallet_id: str, limit: int = 20) -> list[TransactionRecord]:
        """Transfers sent or received by *wallet_id*, newest first."""
        rows = await self.db.fetch_all(
            "SELECT * FROM transactions "
            "WHERE sender_wallet_id = ? OR recipient_wallet_id = ? "
            "ORDER BY created_at DESC LIMIT ?",
            (wallet_id, wallet_id, limit),
        )
        return [TransactionRecord.model_validate(r) for r in rows]
