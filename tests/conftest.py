"""Shared fixtures: in-memory databases, fake chain adapters and SMS sinks."""

import itertools

import pytest
import pytest_asyncio

from cryptodial.chains import (
    ChainAdapter,
    ChainId,
    ChainRegistry,
    TransferReceipt,
    WalletKeys,
    validate_amount,
)
from cryptodial.errors import NotificationError, UnsupportedOperationError
from cryptodial.notify import Notifier
from cryptodial.orchestrator import TransactionOrchestrator
from cryptodial.sessions import SessionStore
from cryptodial.storage import Database, WalletRecord
from cryptodial.ussd import MenuRequest
from cryptodial.vault import KeyVault
from cryptodial.wallets import TransactionLedger, WalletDirectory

PHONE = "+254700000001"


class FakeAdapter(ChainAdapter):
    """Records transfers and hands out predictable keys."""

    def __init__(self):
        super().__init__("fake://node")
        self.sent = []
        self.fail_with = None
        self.confirmed = True
        self.balance = 0
        self.balance_error = None
        self._counter = itertools.count(1)

    async def send_value(self, credentials, recipient_address, amount):
        self.sent.append((credentials, recipient_address, validate_amount(amount)))
        if self.fail_with is not None:
            raise self.fail_with
        return TransferReceipt(
            tx_hash="0xabc",
            network_fee=21000,
            block_number=7,
            confirmed=self.confirmed,
        )

    async def get_balance(self, address):
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    async def get_history(self, selector):
        return {}

    def create_wallet(self, seed_words=None):
        n = next(self._counter)
        return WalletKeys(address=f"0xaddr{n}", private_key=f"0xkey{n}")

    def recover_wallet(self, seed_words):
        raise UnsupportedOperationError("not supported")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages = []
        self.fail = False

    async def send_sms(self, phone_number, message):
        if self.fail:
            raise NotificationError("gateway down")
        self.messages.append((phone_number, message))


class FakeClock:
    def __init__(self, now=1_700_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class Dialer:
    """Replays a caller's key presses the way the carrier sends them."""

    def __init__(self, menu, session_id="sess-1", phone=PHONE):
        self.menu = menu
        self.session_id = session_id
        self.phone = phone
        self.inputs = []

    async def dial(self):
        self.inputs = []
        return await self._send()

    async def press(self, value):
        self.inputs.append(value)
        return await self._send()

    async def _send(self):
        return await self.menu.handle(
            MenuRequest(
                session_id=self.session_id,
                phone_number=self.phone,
                text="*".join(self.inputs),
            )
        )


@pytest_asyncio.fixture
async def db():
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def vault():
    # Low scrypt cost keeps the suite fast.
    return KeyVault("test-salt", n=2**8)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def registry(adapter):
    reg = ChainRegistry()
    for chain_id in ChainId:
        reg.register(chain_id, adapter)
    return reg


@pytest.fixture
def sessions(db, clock):
    return SessionStore(db, ttl_seconds=300, clock=clock)


@pytest.fixture
def directory(db):
    return WalletDirectory(db)


@pytest.fixture
def ledger(db):
    return TransactionLedger(db)


@pytest.fixture
def orchestrator(sessions, directory, ledger, registry, vault, notifier):
    return TransactionOrchestrator(
        sessions, directory, ledger, registry, vault, notifier, country_code="254"
    )


@pytest.fixture
def dialer(orchestrator):
    return Dialer(orchestrator.menu)


@pytest.fixture
def make_wallet(directory, vault):
    async def _make(wallet_id, pin="135790", chain_id=ChainId.EVM, key=None,
                    address=None, phone=PHONE):
        record = WalletRecord(
            wallet_id=wallet_id,
            chain_id=chain_id,
            address=address or f"0x{wallet_id[-10:]}",
            encrypted_private_key=vault.encrypt(key or f"key-{wallet_id}", pin),
            pin_hash=vault.hash_pin(pin),
            phone_number=phone,
        )
        await directory.save(record)
        return record

    return _make
