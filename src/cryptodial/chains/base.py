"""The contract every chain adapter implements."""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Iterable, Union

from cryptodial.errors import InvalidAmountError, ValidationError

HistorySelector = Union[int, str, list[str]]


async def gather_or_cancel(aws: Iterable[Awaitable[Any]]) -> list[Any]:
    """Like ``asyncio.gather`` but cancels the remaining lookups once one fails."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


@dataclass(frozen=True)
class WalletKeys:
    """A freshly created or recovered keypair."""

    address: str
    private_key: str
    seed_words: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SenderCredentials:
    """What an adapter needs to sign a transfer. Lives only for one send."""

    address: str
    private_key: str

    def __repr__(self) -> str:
        return f"SenderCredentials(address={self.address!r}, private_key=<redacted>)"


@dataclass(frozen=True)
class TransferReceipt:
    """Normalised result of a submitted transfer.

    ``network_fee`` is in the chain's smallest unit. ``confirmed`` is False
    when the transfer was accepted by the node but inclusion was not seen
    before the adapter's receipt timeout.
    """

    tx_hash: str
    network_fee: int | None = None
    block_number: int | None = None
    confirmed: bool = True
    raw: dict[str, Any] = field(default_factory=dict)


def validate_amount(amount: Any) -> Decimal:
    """Coerce *amount* to a positive, finite ``Decimal`` or raise."""
    if isinstance(amount, bool):
        raise InvalidAmountError(f"Invalid amount: {amount!r}")
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise InvalidAmountError(f"Invalid amount: {amount!r}") from None
    if not value.is_finite() or value <= 0:
        raise InvalidAmountError(f"Amount must be positive and finite, got {amount!r}")
    return value


def check_selector(selector: Any) -> HistorySelector:
    """Reject selectors that are neither a height, an identifier nor a list of ids."""
    if isinstance(selector, bool):
        raise ValidationError("History selector must be a block height, identifier or list")
    if isinstance(selector, int):
        if selector < 0:
            raise ValidationError("Invalid block number: must be a non-negative integer")
        return selector
    if isinstance(selector, str):
        if not selector.strip():
            raise ValidationError("History selector must not be empty")
        return selector.strip()
    if isinstance(selector, (list, tuple)):
        if not all(isinstance(s, str) and s for s in selector):
            raise ValidationError("Transaction id list must contain non-empty strings")
        return list(selector)
    raise ValidationError(f"Unsupported history selector type: {type(selector).__name__}")


class ChainAdapter(abc.ABC):
    """Normalises one blockchain family behind balance/transfer/history/keys.

    Network methods are coroutines; key creation is local and synchronous.
    Balances and fees are always integers in the chain's smallest unit.
    """

    #: Whether the variant can derive keys from seed words.
    supports_seed_words: bool = True

    def __init__(self, rpc_url: str, *, timeout: float = 30.0, receipt_timeout: float = 120.0) -> None:
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout

    @abc.abstractmethod
    async def send_value(
        self,
        credentials: SenderCredentials,
        recipient_address: str,
        amount: Decimal | int | float | str,
    ) -> TransferReceipt:
        """Sign and submit a native-unit transfer."""

    @abc.abstractmethod
    async def get_balance(self, address: str) -> int:
        """Return the balance of *address* in the smallest unit."""

    @abc.abstractmethod
    async def get_history(self, selector: HistorySelector) -> dict[str, Any]:
        """Resolve a block height, identifier or list of tx ids to ``{tx_hash: tx}``."""

    @abc.abstractmethod
    def create_wallet(self, seed_words: list[str] | None = None) -> WalletKeys:
        """Derive keys from *seed_words*, or generate fresh ones."""

    @abc.abstractmethod
    def recover_wallet(self, seed_words: list[str]) -> WalletKeys:
        """Deterministically re-derive keys from *seed_words*."""

    async def aclose(self) -> None:
        """Release network resources held by the adapter."""
