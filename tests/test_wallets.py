"""Tests for wallet id allocation, the wallet directory and the ledger."""

from datetime import datetime, timedelta, timezone

import pytest

from cryptodial.chains import ChainId
from cryptodial.errors import IdGenerationExhaustedError, PersistenceError, ValidationError
from cryptodial.storage import TransactionRecord, TransactionStatus
from cryptodial.wallets import TransactionLedger, WalletDirectory, is_valid_wallet_id


@pytest.mark.parametrize(
    "value, ok",
    [
        ("ETN254#1234567890", True),
        ("SOL001#0000000001", True),
        ("etn254#1234567890", False),
        ("ETN254#123456789", False),
        ("ETN2541234567890", False),
        ("ETN254#1234567890\n", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_wallet_id(value, ok):
    assert is_valid_wallet_id(value) is ok


@pytest.mark.asyncio
class TestWalletIdGeneration:
    async def test_format(self, directory):
        wallet_id = await directory.generate_wallet_id("ETN", "254")
        assert is_valid_wallet_id(wallet_id)
        assert wallet_id.startswith("ETN254#")
        assert wallet_id[7] != "0"

    async def test_many_ids_are_distinct(self, directory):
        ids = {await directory.generate_wallet_id("SOL", "254") for _ in range(50)}
        assert len(ids) == 50

    async def test_skips_taken_ids(self, db, make_wallet):
        await make_wallet("ETN254#1111111111")
        digits = iter(["1111111111", "2222222222"])
        directory = WalletDirectory(db, digits=lambda: next(digits))
        assert await directory.generate_wallet_id("ETN", "254") == "ETN254#2222222222"

    async def test_exhaustion(self, db, make_wallet):
        await make_wallet("ETN254#1111111111")
        directory = WalletDirectory(db, max_attempts=3, digits=lambda: "1111111111")
        with pytest.raises(IdGenerationExhaustedError, match="after 3 attempts"):
            await directory.generate_wallet_id("ETN", "254")

    @pytest.mark.parametrize("prefix, country", [("ET", "254"), ("etn", "254"), ("ETN", "25"), ("ETN", "")])
    async def test_rejects_bad_components(self, directory, prefix, country):
        with pytest.raises(ValidationError):
            await directory.generate_wallet_id(prefix, country)


@pytest.mark.asyncio
class TestWalletDirectory:
    async def test_save_and_find(self, directory, make_wallet):
        saved = await make_wallet("ETN254#1234567890", chain_id=ChainId.POLYGON)
        found = await directory.find_by_wallet_id("ETN254#1234567890")
        assert found is not None
        assert found.chain_id is ChainId.POLYGON
        assert found.address == saved.address
        assert found.encrypted_private_key == saved.encrypted_private_key

    async def test_missing_wallet(self, directory):
        assert await directory.find_by_wallet_id("ETN254#1234567890") is None
        assert not await directory.exists("ETN254#1234567890")

    async def test_duplicate_id_is_rejected(self, make_wallet):
        await make_wallet("ETN254#1234567890")
        with pytest.raises(PersistenceError):
            await make_wallet("ETN254#1234567890")

    async def test_find_by_phone_and_query(self, directory, make_wallet):
        await make_wallet("ETN254#1000000001", phone="+254711111111")
        await make_wallet("SOL254#1000000002", phone="+254711111111", chain_id=ChainId.SOLANA)
        await make_wallet("ETN254#1000000003", phone="+254722222222")

        mine = await directory.find_by_phone_number("+254711111111")
        assert [w.wallet_id for w in mine] == ["ETN254#1000000001", "SOL254#1000000002"]

        sol = await directory.find_by_query(chain_id=ChainId.SOLANA)
        assert [w.wallet_id for w in sol] == ["SOL254#1000000002"]

    async def test_query_rejects_unknown_columns(self, directory):
        with pytest.raises(ValidationError):
            await directory.find_by_query(pin="135790")

    async def test_repr_hides_secrets(self, make_wallet):
        record = await make_wallet("ETN254#1234567890")
        assert record.encrypted_private_key not in repr(record)
        assert record.pin_hash not in repr(record)


@pytest.mark.asyncio
class TestTransactionLedger:
    async def test_record_and_get(self, ledger):
        entry = await ledger.record(TransactionRecord(
            sender_wallet_id="ETN254#1000000001",
            recipient_wallet_id="ETN254#1000000002",
            amount="0.25",
            chain_id=ChainId.EVM,
            status=TransactionStatus.COMPLETED,
            tx_hash="0xabc",
            network_fee=21000 * 10**9,
            block_number=12,
        ))
        loaded = await ledger.get(entry.id)
        assert loaded.amount == "0.25"
        assert loaded.status is TransactionStatus.COMPLETED
        assert loaded.network_fee == 21000 * 10**9
        assert loaded.block_number == 12

    async def test_failed_entry_keeps_error(self, ledger):
        entry = await ledger.record(TransactionRecord(
            sender_wallet_id="ETN254#1000000001",
            recipient_wallet_id="ETN254#1000000002",
            amount="1",
            chain_id=ChainId.EVM,
            status=TransactionStatus.FAILED,
            error="insufficient funds",
        ))
        loaded = await ledger.get(entry.id)
        assert loaded.tx_hash is None
        assert loaded.error == "insufficient funds"

    async def test_list_for_wallet_newest_first(self, db):
        ledger = TransactionLedger(db)
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for i, (sender, recipient) in enumerate([
            ("ETN254#1000000001", "ETN254#1000000002"),
            ("ETN254#1000000002", "ETN254#1000000001"),
            ("ETN254#1000000003", "ETN254#1000000004"),
        ]):
            await ledger.record(TransactionRecord(
                sender_wallet_id=sender,
                recipient_wallet_id=recipient,
                amount=str(i + 1),
                chain_id=ChainId.EVM,
                status=TransactionStatus.COMPLETED,
                created_at=base + timedelta(minutes=i),
            ))

        entries = await ledger.list_for_wallet("ETN254#1000000001")
        assert [e.amount for e in entries] == ["2", "1"]
        assert len(await ledger.list_for_wallet("ETN254#1000000001", limit=1)) == 1
