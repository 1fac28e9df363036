"""Error taxonomy shared by the chain adapters, vault, stores and flows.

Validation and crypto errors are turned into prompts at the menu step that
raised them. Chain and persistence errors are logged in full server-side and
reduced to a generic message before anything goes back over the phone
channel.
"""

from __future__ import annotations


class CryptodialError(Exception):
    """Base class for every error raised by this package."""


# ---------------------------------------------------------------------------
# User input
# ---------------------------------------------------------------------------


class ValidationError(CryptodialError):
    """Malformed wallet id, PIN, amount, address or selector."""


class InvalidAmountError(ValidationError):
    """Transfer amount is not a positive, finite number."""


class InvalidSeedError(ValidationError):
    """Seed words failed the mnemonic checksum."""


class AddressInvalidError(ValidationError):
    """On-chain address is malformed for the chain being queried."""


# ---------------------------------------------------------------------------
# Sessions and crypto
# ---------------------------------------------------------------------------


class SessionExpiredError(CryptodialError):
    """Session is gone or lost the fields the current step needs."""


class CryptoError(CryptodialError):
    """PIN or key material did not check out."""


class DecryptionError(CryptoError):
    """Wrong PIN or malformed key blob. Deliberately says no more."""


# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------


class ChainError(CryptodialError):
    """RPC, submission or lookup failure on a chain."""


class ChainSubmissionError(ChainError):
    """Signing failed, the node rejected the transfer, or the call errored."""


class NotFoundError(ChainError):
    """Block or transaction could not be resolved."""


class UnsupportedOperationError(ChainError):
    """The chain variant does not offer this capability."""


class UnsupportedChainError(ChainError):
    """No adapter is configured for the requested chain identifier."""


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class PersistenceError(CryptodialError):
    """The backing store is unreachable or rejected a write."""


class IdGenerationExhaustedError(CryptodialError):
    """Every wallet id attempt collided with an existing record."""


class NotificationError(CryptodialError):
    """The SMS gateway did not accept a message."""
