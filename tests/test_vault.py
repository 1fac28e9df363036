"""Tests for PIN-based key encryption and PIN hashing."""

import asyncio
import re
import time

import pytest

from cryptodial.errors import DecryptionError
from cryptodial.vault import KeyVault, is_valid_pin


class TestEncryption:
    def test_round_trip(self, vault):
        blob = vault.encrypt("0xdeadbeef", "135790")
        assert vault.decrypt(blob, "135790") == "0xdeadbeef"

    def test_blob_format(self, vault):
        blob = vault.encrypt("secret", "135790")
        assert re.fullmatch(r"[0-9a-f]{32}:[0-9a-f]+", blob)
        assert "secret" not in blob

    def test_fresh_iv_each_call(self, vault):
        assert vault.encrypt("secret", "135790") != vault.encrypt("secret", "135790")

    def test_wrong_pin_fails(self, vault):
        blob = vault.encrypt("secret", "135790")
        with pytest.raises(DecryptionError):
            vault.decrypt(blob, "000000")

    @pytest.mark.parametrize("blob", ["", "nocolon", "zz:zz", "00:00", "a:b:c"])
    def test_malformed_blob_fails_like_wrong_pin(self, vault, blob):
        with pytest.raises(DecryptionError, match="Decryption failed"):
            vault.decrypt(blob, "135790")

    def test_tampered_ciphertext_fails(self, vault):
        iv, ct = vault.encrypt("secret", "135790").split(":")
        flipped = ct[:-2] + ("00" if ct[-2:] != "00" else "11")
        with pytest.raises(DecryptionError):
            vault.decrypt(f"{iv}:{flipped}", "135790")

    def test_salt_is_part_of_the_key(self, vault):
        other = KeyVault("other-salt", n=2**8)
        blob = vault.encrypt("secret", "135790")
        with pytest.raises(DecryptionError):
            other.decrypt(blob, "135790")

    def test_empty_salt_rejected(self):
        with pytest.raises(ValueError):
            KeyVault("")


@pytest.mark.asyncio
class TestAsyncEncryption:
    async def test_round_trip(self, vault):
        blob = await vault.encrypt_async("0xdeadbeef", "135790")
        assert await vault.decrypt_async(blob, "135790") == "0xdeadbeef"

    async def test_wrong_pin_fails(self, vault):
        blob = await vault.encrypt_async("secret", "135790")
        with pytest.raises(DecryptionError):
            await vault.decrypt_async(blob, "000000")

    async def test_key_derivation_leaves_event_loop_free(self):
        vault = KeyVault("test-salt")
        ticks = 0
        stop = asyncio.Event()

        async def heartbeat():
            nonlocal ticks
            while not stop.is_set():
                ticks += 1
                await asyncio.sleep(0.001)

        task = asyncio.create_task(heartbeat())
        try:
            blob = await vault.encrypt_async("secret", "135790")
            await vault.decrypt_async(blob, "135790")
            during = ticks
        finally:
            stop.set()
            await task
        assert during >= 2


class TestPinHashing:
    def test_hash_is_deterministic_and_hides_pin(self, vault):
        digest = vault.hash_pin("135790")
        assert digest == vault.hash_pin("135790")
        assert "135790" not in digest
        assert len(digest) == 64

    def test_compare(self, vault):
        digest = vault.hash_pin("135790")
        assert vault.compare_pin("135790", digest)
        assert not vault.compare_pin("135791", digest)

    def test_compare_rejects_garbage_digest(self, vault):
        assert not vault.compare_pin("135790", "")
        assert not vault.compare_pin("135790", "é" * 64)

    def test_compare_time_does_not_depend_on_mismatch_position(self, vault):
        digest = vault.hash_pin("135790")
        early = ("0" if digest[0] != "0" else "1") + digest[1:]
        late = digest[:-1] + ("0" if digest[-1] != "0" else "1")

        def best_of(candidate, rounds=5, calls=2000):
            timings = []
            for _ in range(rounds):
                start = time.perf_counter()
                for _ in range(calls):
                    vault.compare_pin("135790", candidate)
                timings.append(time.perf_counter() - start)
            return min(timings)

        ratio = best_of(early) / best_of(late)
        assert 0.5 < ratio < 2.0


@pytest.mark.parametrize(
    "pin, ok",
    [("135790", True), ("000000", True), ("12345", False), ("1234567", False),
     ("12a456", False), ("", False), (None, False)],
)
def test_is_valid_pin(pin, ok):
    assert is_valid_pin(pin) is ok
