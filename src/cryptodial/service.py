"""Wires configuration into the running wallet service."""

from __future__ import annotations

import logging

from cryptodial.chains import ChainRegistry
from cryptodial.config import CryptodialConfig, is_unresolved
from cryptodial.notify import Notifier, build_notifier
from cryptodial.orchestrator import TransactionOrchestrator
from cryptodial.sessions import SessionStore
from cryptodial.storage import Database, get_database
from cryptodial.ussd.menu import MenuRequest, Prompt
from cryptodial.vault import KeyVault
from cryptodial.wallets import TransactionLedger, WalletDirectory

logger = logging.getLogger("cryptodial.service")


def build_vault(config: CryptodialConfig) -> KeyVault:
    salt = config.vault.salt
    if is_unresolved(salt) or not salt:
        raise ValueError(
            "No encryption salt configured. Set vault.salt or ENCRYPTION_SALT in the environment."
        )
    return KeyVault(
        salt,
        n=config.vault.scrypt_n,
        r=config.vault.scrypt_r,
        p=config.vault.scrypt_p,
    )


class WalletService:
    """Owns the databases, chain adapters and USSD flows for one deployment."""

    def __init__(
        self,
        config: CryptodialConfig,
        db: Database,
        session_db: Database,
        *,
        registry: ChainRegistry | None = None,
        notifier: Notifier | None = None,
        vault: KeyVault | None = None,
    ) -> None:
        self.config = config
        self.db = db
        self.session_db = session_db
        self.registry = registry or ChainRegistry(config.chains)
        self.notifier = notifier or build_notifier(config.sms)
        self.vault = vault or build_vault(config)
        self.sessions = SessionStore(session_db, ttl_seconds=config.sessions.ttl_seconds)
        self.directory = WalletDirectory(db)
        self.ledger = TransactionLedger(db)
        self.orchestrator = TransactionOrchestrator(
            self.sessions,
            self.directory,
            self.ledger,
            self.registry,
            self.vault,
            self.notifier,
            country_code=config.country_code,
            service_name=config.name,
        )

    @classmethod
    async def open(cls, config: CryptodialConfig, **overrides) -> WalletService:
        """Connect the databases and build the service."""
        db = get_database(config.storage.db_path)
        await db.connect()
        if config.sessions.db_path == config.storage.db_path:
            session_db = db
        else:
            session_db = get_database(config.sessions.db_path)
            await session_db.connect()
        try:
            return cls(config, db, session_db, **overrides)
        except Exception:
            await db.close()
            if session_db is not db:
                await session_db.close()
            raise

    async def handle(self, request: MenuRequest) -> Prompt:
        return await self.orchestrator.menu.handle(request)

    async def shutdown(self) -> None:
        """Clean shutdown."""
        await self.registry.aclose()
        await self.notifier.aclose()
        if self.session_db is not self.db:
            await self.session_db.close()
        await self.db.close()
        logger.info("Wallet service stopped")
