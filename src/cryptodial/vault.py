"""PIN-derived envelope encryption for custodial private keys."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from cryptodial.errors import DecryptionError

IV_BYTES = 16
KEY_BYTES = 32

_PIN_RE = re.compile(r"[0-9]{6}")


def is_valid_pin(pin: str | None) -> bool:
    """Return True if *pin* is exactly six ASCII digits."""
    return bool(pin) and _PIN_RE.fullmatch(pin) is not None


class KeyVault:
    """Encrypts private keys under a key derived from a 6-digit PIN.

    Parameters
    ----------
    salt:
        Service-wide secret salt. Mixed into the scrypt derivation and used
        as the HMAC key for PIN hashes.
    n, r, p:
        scrypt cost parameters. The defaults match what the stored blobs
        were written with; changing them makes existing blobs unreadable.

    Blob format is ``<iv hex>:<ciphertext+tag hex>`` with a 16-byte IV.
    """

    def __init__(self, salt: str, *, n: int = 2**14, r: int = 8, p: int = 1) -> None:
        if not salt:
            raise ValueError("KeyVault requires a non-empty salt")
        self._salt = salt.encode("utf-8")
        self._n = n
        self._r = r
        self._p = p

    def _derive_key(self, pin: str) -> bytes:
        kdf = Scrypt(salt=self._salt, length=KEY_BYTES, n=self._n, r=self._r, p=self._p)
        return kdf.derive(pin.encode("utf-8"))

    # ------------------------------------------------------------------
    # Encryption
    # ------------------------------------------------------------------

    def encrypt(self, plaintext_key: str, pin: str) -> str:
        """Encrypt *plaintext_key* under *pin*. A fresh IV is used every call."""
        key = self._derive_key(pin)
        iv = os.urandom(IV_BYTES)
        ciphertext = AESGCM(key).encrypt(iv, plaintext_key.encode("utf-8"), None)
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, blob: str, pin: str) -> str:
        """Decrypt a blob produced by :meth:`encrypt`.

        Raises
        ------
        DecryptionError
            Wrong PIN or malformed blob; the two are indistinguishable.
        """
        # Derive first so a malformed blob costs the same as a wrong PIN.
        key = self._derive_key(pin)
        try:
            iv_hex, content_hex = blob.split(":")
            iv = bytes.fromhex(iv_hex)
            if len(iv) != IV_BYTES:
                raise ValueError("bad iv length")
            plaintext = AESGCM(key).decrypt(iv, bytes.fromhex(content_hex), None)
            return plaintext.decode("utf-8")
        except (ValueError, InvalidTag, AttributeError, UnicodeDecodeError):
            raise DecryptionError("Decryption failed") from None

    async def encrypt_async(self, plaintext_key: str, pin: str) -> str:
        """:meth:`encrypt` on a worker thread; scrypt would otherwise hold the event loop."""
        return await asyncio.to_thread(self.encrypt, plaintext_key, pin)

    async def decrypt_async(self, blob: str, pin: str) -> str:
        return await asyncio.to_thread(self.decrypt, blob, pin)

    # ------------------------------------------------------------------
    # PIN hashing
    # ------------------------------------------------------------------

    def hash_pin(self, pin: str) -> str:
        """One-way, deterministic PIN digest (hex)."""
        return hmac.new(self._salt, pin.encode("utf-8"), hashlib.sha256).hexdigest()

    def compare_pin(self, pin: str, digest: str) -> bool:
        """Constant-time check of *pin* against a stored digest."""
        expected = self.hash_pin(pin).encode("ascii")
        try:
            candidate = digest.encode("ascii")
        except (AttributeError, UnicodeEncodeError):
            return False
        return hmac.compare_digest(expected, candidate)
