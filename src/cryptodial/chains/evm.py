"""Adapters for Ethereum-compatible networks (Electroneum, Polygon, BSC)."""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Any, Awaitable, TypeVar

from eth_account import Account
from mnemonic import Mnemonic
from web3 import AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TimeExhausted, TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from cryptodial.chains.base import (
    ChainAdapter,
    HistorySelector,
    SenderCredentials,
    TransferReceipt,
    WalletKeys,
    check_selector,
    gather_or_cancel,
    validate_amount,
)
from cryptodial.errors import (
    AddressInvalidError,
    ChainError,
    ChainSubmissionError,
    CryptodialError,
    InvalidAmountError,
    InvalidSeedError,
    NotFoundError,
    UnsupportedOperationError,
)

logger = logging.getLogger("cryptodial.chains.evm")

# HD derivation is off by default in eth-account and has to be allowed explicitly.
Account.enable_unaudited_hdwallet_features()

EVM_DERIVATION_PATH = "m/44'/60'/0'/0/0"
TRANSFER_GAS_LIMIT = 21000

_MNEMONIC = Mnemonic("english")

T = TypeVar("T")


def _to_plain(value: Any) -> Any:
    """Turn web3 AttributeDicts / HexBytes into JSON-friendly values."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    if isinstance(value, dict) or hasattr(value, "items"):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


class EvmChainAdapter(ChainAdapter):
    """Transfers, balances and history on an EVM chain via ``AsyncWeb3``.

    Parameters
    ----------
    rpc_url:
        HTTPS JSON-RPC endpoint.
    network_id:
        EIP-155 chain id used when signing. Fetched from the node when
        ``None``.
    poa:
        Inject the proof-of-authority extra-data middleware (Polygon and
        other non-mainnet chains).
    web3:
        Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        network_id: int | None = None,
        poa: bool = False,
        timeout: float = 30.0,
        receipt_timeout: float = 120.0,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        super().__init__(rpc_url, timeout=timeout, receipt_timeout=receipt_timeout)
        self.network_id = network_id
        if web3 is None:
            web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
            if poa:
                web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.w3 = web3

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.timeout)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def send_value(
        self,
        credentials: SenderCredentials,
        recipient_address: str,
        amount: Decimal | int | float | str,
    ) -> TransferReceipt:
        """Build, sign, and send a native-token transfer.

        Waits up to ``receipt_timeout`` for the receipt. A transfer the node
        accepted but that was not mined in time comes back unconfirmed.
        """
        value_ether = validate_amount(amount)
        if not Web3.is_address(recipient_address):
            raise AddressInvalidError(f"Invalid recipient address: {recipient_address}")
        value = Web3.to_wei(value_ether, "ether")
        if value <= 0:
            raise InvalidAmountError(f"Amount {amount} is below the smallest unit")

        try:
            account = Account.from_key(credentials.private_key)
            nonce = await self._call(self.w3.eth.get_transaction_count(account.address, "pending"))
            network_id = self.network_id
            if network_id is None:
                network_id = await self._call(self.w3.eth.chain_id)

            tx: dict[str, Any] = {
                "from": account.address,
                "to": Web3.to_checksum_address(recipient_address),
                "value": value,
                "nonce": nonce,
                "chainId": network_id,
            }
            await self._apply_fees(tx)

            signed = Account.sign_transaction(tx, credentials.private_key)
            tx_hash = await self._call(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        except CryptodialError:
            raise
        except Exception as exc:
            raise ChainSubmissionError(f"Transaction submission failed: {exc}") from exc

        tx_hash_hex = Web3.to_hex(tx_hash)
        logger.info(f"Submitted transfer {tx_hash_hex} to {recipient_address}")
        return await self._await_receipt(tx_hash_hex, tx)

    async def _apply_fees(self, tx: dict[str, Any]) -> None:
        """Try EIP-1559 first, fall back to legacy gas price."""
        try:
            latest = await self._call(self.w3.eth.get_block("latest"))
            base_fee = latest.get("baseFeePerGas")
            if base_fee is None:
                raise ValueError("No baseFeePerGas")
            max_priority = Web3.to_wei(Decimal("1.5"), "gwei")
            tx["maxFeePerGas"] = base_fee * 2 + max_priority
            tx["maxPriorityFeePerGas"] = max_priority
            tx["gas"] = await self._call(self.w3.eth.estimate_gas(tx))
        except Exception:
            tx.pop("maxFeePerGas", None)
            tx.pop("maxPriorityFeePerGas", None)
            tx["gasPrice"] = await self._call(self.w3.eth.gas_price)
            tx["gas"] = await self._call(self.w3.eth.estimate_gas(tx))

    async def _await_receipt(self, tx_hash: str, tx: dict[str, Any]) -> TransferReceipt:
        try:
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except (TimeExhausted, asyncio.TimeoutError):
            logger.warning(f"No receipt for {tx_hash} after {self.receipt_timeout}s")
            return TransferReceipt(tx_hash=tx_hash, confirmed=False)
        except Exception as exc:
            raise ChainSubmissionError(f"Receipt lookup failed for {tx_hash}: {exc}") from exc

        if receipt.get("status") == 0:
            raise ChainSubmissionError(f"Transaction {tx_hash} reverted")

        gas_price = receipt.get("effectiveGasPrice") or tx.get("gasPrice") or 0
        return TransferReceipt(
            tx_hash=tx_hash,
            network_fee=int(receipt.get("gasUsed", 0)) * int(gas_price),
            block_number=receipt.get("blockNumber"),
            confirmed=True,
            raw=_to_plain(receipt),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> int:
        if not Web3.is_address(address):
            raise AddressInvalidError(f"Invalid address: {address}")
        try:
            balance = await self._call(self.w3.eth.get_balance(Web3.to_checksum_address(address)))
        except Exception as exc:
            raise ChainError(f"Balance lookup failed: {exc}") from exc
        return int(balance)

    async def get_history(self, selector: HistorySelector) -> dict[str, Any]:
        selector = check_selector(selector)
        if isinstance(selector, int):
            block = await self._get_block(selector)
            if block is None:
                raise NotFoundError(f"Block not found: {selector}")
            return self._index_block(block)

        if isinstance(selector, str):
            identifier: int | str = int(selector) if selector.isdigit() else selector
            try:
                block = await self._get_block(identifier)
            except ChainError:
                block = None
            if block is not None:
                return self._index_block(block)
            return await self._get_transaction(selector)

        results = await gather_or_cancel(self._get_transaction(h) for h in selector)
        merged: dict[str, Any] = {}
        for entry in results:
            merged.update(entry)
        return merged

    async def _get_block(self, identifier: int | str) -> Any | None:
        try:
            return await self._call(self.w3.eth.get_block(identifier, full_transactions=True))
        except BlockNotFound:
            return None
        except Exception as exc:
            raise ChainError(f"Block lookup failed for {identifier}: {exc}") from exc

    async def _get_transaction(self, tx_hash: str) -> dict[str, Any]:
        try:
            tx = await self._call(self.w3.eth.get_transaction(tx_hash))
        except TransactionNotFound:
            tx = None
        except Exception as exc:
            logger.debug(f"Transaction lookup for {tx_hash} errored: {exc}")
            tx = None
        if tx is None:
            raise NotFoundError(f"Transaction not found: {tx_hash}")
        return {Web3.to_hex(tx["hash"]): _to_plain(tx)}

    @staticmethod
    def _index_block(block: Any) -> dict[str, Any]:
        return {Web3.to_hex(tx["hash"]): _to_plain(tx) for tx in block["transactions"]}

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def create_wallet(self, seed_words: list[str] | None = None) -> WalletKeys:
        if seed_words is not None:
            return self.recover_wallet(seed_words)
        acct, phrase = Account.create_with_mnemonic(num_words=12, account_path=EVM_DERIVATION_PATH)
        return WalletKeys(
            address=acct.address,
            private_key=Web3.to_hex(acct.key),
            seed_words=phrase.split(),
        )

    def recover_wallet(self, seed_words: list[str]) -> WalletKeys:
        phrase = " ".join(seed_words)
        if not seed_words or not _MNEMONIC.check(phrase):
            raise InvalidSeedError("Invalid mnemonic phrase")
        acct = Account.from_mnemonic(phrase, account_path=EVM_DERIVATION_PATH)
        return WalletKeys(
            address=acct.address,
            private_key=Web3.to_hex(acct.key),
            seed_words=list(seed_words),
        )

    async def aclose(self) -> None:
        provider = getattr(self.w3, "provider", None)
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()


class BinanceSmartChainAdapter(EvmChainAdapter):
    """BSC: legacy gas pricing with a fixed transfer gas limit.

    Keys are generated opaquely; seed words are not supported.
    """

    supports_seed_words = False

    async def _apply_fees(self, tx: dict[str, Any]) -> None:
        tx["gasPrice"] = await self._call(self.w3.eth.gas_price)
        tx["gas"] = TRANSFER_GAS_LIMIT

    def create_wallet(self, seed_words: list[str] | None = None) -> WalletKeys:
        if seed_words:
            raise UnsupportedOperationError("Seed-word derivation is not supported on BSC")
        acct = Account.create()
        return WalletKeys(address=acct.address, private_key=Web3.to_hex(acct.key), seed_words=[])

    def recover_wallet(self, seed_words: list[str]) -> WalletKeys:
        raise UnsupportedOperationError("RecoverWallet is not supported on BSC")
