"""Wallet identifier allocation and wallet record persistence."""

from __future__ import annotations

import logging
import re
import secrets
from typing import Callable

from cryptodial.errors import IdGenerationExhaustedError, PersistenceError, ValidationError
from cryptodial.storage.database import Database
from cryptodial.storage.models import WalletRecord

logger = logging.getLogger("cryptodial.wallets.directory")

WALLET_ID_RE = re.compile(r"[A-Z]{3}[0-9]{3}#[0-9]{10}")
_PREFIX_RE = re.compile(r"^[A-Z]{3}$")
_COUNTRY_RE = re.compile(r"^[0-9]{3}$")

DEFAULT_MAX_ATTEMPTS = 10

_COLUMNS = (
    "wallet_id",
    "chain_id",
    "address",
    "encrypted_private_key",
    "pin_hash",
    "phone_number",
    "created_at",
)


def is_valid_wallet_id(value: str | None) -> bool:
    """``ETN254#1234567890``: chain prefix, country code, ``#``, ten digits."""
    return bool(value) and WALLET_ID_RE.fullmatch(value) is not None


def _random_digits() -> str:
    return str(1_000_000_000 + secrets.randbelow(9_000_000_000))


class WalletDirectory:
    """Durable mapping from wallet id to :class:`WalletRecord`.

    Parameters
    ----------
    db:
        Connected :class:`Database`.
    max_attempts:
        How many fresh ids to try before giving up.
    digits:
        Source of the ten random digits; injectable for tests.
    """

    def __init__(
        self,
        db: Database,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        digits: Callable[[], str] = _random_digits,
    ) -> None:
        self.db = db
        self.max_attempts = max_attempts
        self._digits = digits

    async def generate_wallet_id(self, chain_prefix: str, country_code: str) -> str:
        """Return an unused ``<prefix><country>#<10 digits>`` identifier."""
        if not chain_prefix or not _PREFIX_RE.match(chain_prefix):
            raise ValidationError(f"Chain prefix must be three uppercase letters: {chain_prefix!r}")
        if not country_code or not _COUNTRY_RE.match(country_code):
            raise ValidationError(f"Country code must be three digits: {country_code!r}")

        for attempt in range(1, self.max_attempts + 1):
            wallet_id = f"{chain_prefix}{country_code}#{self._digits()}"
            if not await self.exists(wallet_id):
                return wallet_id
            logger.debug(f"Wallet id collision on attempt {attempt}")

        raise IdGenerationExhaustedError(
            f"Could not generate unique wallet ID after {self.max_attempts} attempts"
        )

    async def exists(self, wallet_id: str) -> bool:
        row = await self.db.fetch_one(
            "SELECT COUNT(*) AS n FROM wallets WHERE wallet_id = ?", (wallet_id,)
        )
        return bool(row and row["n"])

    async def save(self, record: WalletRecord) -> None:
        """Insert a new wallet. Existing ids are rejected, never overwritten."""
        try:
            await self.db.execute(
                f"INSERT INTO wallets ({', '.join(_COLUMNS)}) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    record.wallet_id,
                    record.chain_id.value,
                    record.address,
                    record.encrypted_private_key,
                    record.pin_hash,
                    record.phone_number,
                    record.created_at.isoformat(),
                ),
            )
        except PersistenceError:
            logger.error(f"Failed to save wallet {record.wallet_id}")
            raise
        logger.info(f"Wallet {record.wallet_id} saved ({record.chain_id.value})")

    async def find_by_wallet_id(self, wallet_id: str) -> WalletRecord | None:
        row = await self.db.fetch_one("SELECT * FROM wallets WHERE wallet_id = ?", (wallet_id,))
        return WalletRecord.model_validate(row) if row else None

    async def find_by_query(self, **filters: str) -> list[WalletRecord]:
        """Find wallets whose columns equal the given values, oldest first."""
        unknown = set(filters) - set(_COLUMNS)
        if unknown:
            raise ValidationError(f"Unknown wallet fields: {sorted(unknown)}")
        where = " AND ".join(f"{name} = ?" for name in filters) or "1 = 1"
        params = tuple(getattr(v, "value", v) for v in filters.values())
        rows = await self.db.fetch_all(
            f"SELECT * FROM wallets WHERE {where} ORDER BY created_at", params
        )
        return [WalletRecord.model_validate(r) for r in rows]

    async def find_by_phone_number(self, phone_number: str) -> list[WalletRecord]:
        return await self.find_by_query(phone_number=phone_number)
