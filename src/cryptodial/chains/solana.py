"""Solana adapter: JSON-RPC over httpx, transactions built with solders."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import itertools
import logging
import struct
from decimal import ROUND_DOWN, Decimal
from typing import Any

import httpx
from mnemonic import Mnemonic
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

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
    InvalidAmountError,
    InvalidSeedError,
    NotFoundError,
)

logger = logging.getLogger("cryptodial.chains.solana")

LAMPORTS_PER_SOL = 1_000_000_000

# m/44'/501'/0'/0' -- every SLIP-0010 ed25519 level is hardened.
SOLANA_DERIVATION_PATH = (44, 501, 0, 0)

# Slot skipped, not yet available, or pruned from long-term storage.
_MISSING_BLOCK_CODES = {-32004, -32007, -32009}

_MNEMONIC = Mnemonic("english")


class SolanaRpcError(ChainError):
    """JSON-RPC ``error`` object returned by the node."""

    def __init__(self, method: str, code: int | None, message: str) -> None:
        super().__init__(f"{method} failed ({code}): {message}")
        self.code = code


def _slip10_ed25519_derive(seed: bytes, path: tuple[int, ...]) -> bytes:
    """Derive an ed25519 secret seed from a BIP-39 seed along *path*."""
    digest = hmac.new(b"ed25519 seed", seed, hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]
    for index in path:
        data = b"\x00" + key + struct.pack(">L", index | 0x80000000)
        digest = hmac.new(chain_code, data, hashlib.sha512).digest()
        key, chain_code = digest[:32], digest[32:]
    return key


def _parse_pubkey(address: str) -> Pubkey:
    try:
        return Pubkey.from_string(address)
    except (ValueError, TypeError):
        raise AddressInvalidError(f"Invalid Solana address: {address}") from None


class SolanaChainAdapter(ChainAdapter):
    """Transfers, balances and history on Solana.

    Private keys are the base58 encoding of the 64-byte secret key, the
    format Phantom and the Solana CLI import.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 30.0,
        receipt_timeout: float = 120.0,
        poll_interval: float = 0.5,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(rpc_url, timeout=timeout, receipt_timeout=receipt_timeout)
        self.poll_interval = poll_interval
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def _rpc(self, method: str, params: list[Any] | None = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            resp = await self.client.post(self.rpc_url, json=payload, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise ChainError(f"{method} request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise ChainError(f"{method} HTTP error ({resp.status_code}): {resp.text}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise ChainError(f"{method} returned a non-JSON body: {resp.text[:200]}") from exc
        if not isinstance(data, dict):
            raise ChainError(f"{method} returned an unexpected payload: {data!r}")
        error = data.get("error")
        if error:
            if isinstance(error, dict):
                raise SolanaRpcError(method, error.get("code"), error.get("message", str(error)))
            raise SolanaRpcError(method, None, str(error))
        return data.get("result")

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def send_value(
        self,
        credentials: SenderCredentials,
        recipient_address: str,
        amount: Decimal | int | float | str,
    ) -> TransferReceipt:
        value_sol = validate_amount(amount)
        to_pubkey = _parse_pubkey(recipient_address)
        lamports = int((value_sol * LAMPORTS_PER_SOL).to_integral_value(rounding=ROUND_DOWN))
        if lamports <= 0:
            raise InvalidAmountError(f"Amount {amount} is below one lamport")

        try:
            sender = Keypair.from_base58_string(credentials.private_key)
            latest = await self._rpc("getLatestBlockhash", [{"commitment": "finalized"}])
            blockhash = Hash.from_string(latest["value"]["blockhash"])
            ix = transfer(
                TransferParams(from_pubkey=sender.pubkey(), to_pubkey=to_pubkey, lamports=lamports)
            )
            message = Message.new_with_blockhash([ix], sender.pubkey(), blockhash)
            fee = await self._fee_for_message(message)
            tx = Transaction.new_unsigned(message)
            tx.sign([sender], blockhash)
            encoded = base64.b64encode(bytes(tx)).decode("ascii")
            signature = await self._rpc(
                "sendTransaction",
                [encoded, {"encoding": "base64", "preflightCommitment": "confirmed"}],
            )
        except ChainSubmissionError:
            raise
        except Exception as exc:
            raise ChainSubmissionError(f"Transaction submission failed: {exc}") from exc

        if not signature:
            raise ChainSubmissionError("Node returned an empty signature")
        logger.info(f"Submitted transfer {signature} to {recipient_address}")
        return await self._await_confirmation(signature, fee)

    async def _fee_for_message(self, message: Message) -> int | None:
        encoded = base64.b64encode(bytes(message)).decode("ascii")
        try:
            result = await self._rpc("getFeeForMessage", [encoded, {"commitment": "processed"}])
        except ChainError as exc:
            logger.debug(f"Fee estimate unavailable: {exc}")
            return None
        value = (result or {}).get("value")
        return int(value) if value is not None else None

    async def _await_confirmation(self, signature: str, fee: int | None) -> TransferReceipt:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.receipt_timeout
        while True:
            try:
                result = await self._rpc("getSignatureStatuses", [[signature]])
            except ChainError as exc:
                logger.warning(f"Status poll for {signature} failed: {exc}")
                result = None
            status = ((result or {}).get("value") or [None])[0]
            if status is not None:
                if status.get("err"):
                    raise ChainSubmissionError(f"Transaction {signature} failed: {status['err']}")
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return TransferReceipt(
                        tx_hash=signature,
                        network_fee=fee,
                        block_number=status.get("slot"),
                        confirmed=True,
                        raw=status,
                    )
            if loop.time() >= deadline:
                logger.warning(f"{signature} unconfirmed after {self.receipt_timeout}s")
                return TransferReceipt(tx_hash=signature, network_fee=fee, confirmed=False)
            await asyncio.sleep(self.poll_interval)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_balance(self, address: str) -> int:
        pubkey = _parse_pubkey(address)
        result = await self._rpc("getBalance", [str(pubkey)])
        value = result.get("value") if isinstance(result, dict) else None
        if value is None:
            raise ChainError(f"getBalance returned no value for {address}")
        return int(value)

    async def get_history(self, selector: HistorySelector) -> dict[str, Any]:
        selector = check_selector(selector)
        if isinstance(selector, int):
            block = await self._get_block(selector)
            if block is None:
                raise NotFoundError(f"Block not found: {selector}")
            return self._index_block(block)

        if isinstance(selector, str):
            # Solana blocks are addressed by slot number.
            if selector.isdigit():
                try:
                    block = await self._get_block(int(selector))
                except ChainError:
                    block = None
                if block is not None:
                    return self._index_block(block)
            return await self._get_transaction(selector)

        results = await gather_or_cancel(self._get_transaction(sig) for sig in selector)
        merged: dict[str, Any] = {}
        for entry in results:
            merged.update(entry)
        return merged

    async def _get_block(self, slot: int) -> dict[str, Any] | None:
        options = {
            "encoding": "json",
            "transactionDetails": "full",
            "rewards": False,
            "maxSupportedTransactionVersion": 0,
        }
        try:
            return await self._rpc("getBlock", [slot, options])
        except SolanaRpcError as exc:
            if exc.code in _MISSING_BLOCK_CODES:
                return None
            raise

    async def _get_transaction(self, signature: str) -> dict[str, Any]:
        try:
            tx = await self._rpc(
                "getTransaction",
                [signature, {"encoding": "json", "maxSupportedTransactionVersion": 0}],
            )
        except ChainError as exc:
            logger.debug(f"Transaction lookup for {signature} errored: {exc}")
            tx = None
        if tx is None:
            raise NotFoundError(f"Transaction not found: {signature}")
        return {signature: tx}

    @staticmethod
    def _index_block(block: dict[str, Any]) -> dict[str, Any]:
        indexed: dict[str, Any] = {}
        for entry in block.get("transactions") or []:
            signatures = entry.get("transaction", {}).get("signatures") or []
            if signatures:
                indexed[signatures[0]] = entry
        return indexed

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def create_wallet(self, seed_words: list[str] | None = None) -> WalletKeys:
        if seed_words is not None:
            return self.recover_wallet(seed_words)
        phrase = _MNEMONIC.generate(strength=128)
        return self._keys_from_phrase(phrase)

    def recover_wallet(self, seed_words: list[str]) -> WalletKeys:
        phrase = " ".join(seed_words)
        if not seed_words or not _MNEMONIC.check(phrase):
            raise InvalidSeedError("Invalid mnemonic phrase")
        return self._keys_from_phrase(phrase)

    @staticmethod
    def _keys_from_phrase(phrase: str) -> WalletKeys:
        seed = _MNEMONIC.to_seed(phrase)
        keypair = Keypair.from_seed(_slip10_ed25519_derive(seed, SOLANA_DERIVATION_PATH))
        return WalletKeys(
            address=str(keypair.pubkey()),
            private_key=str(keypair),
            seed_words=phrase.split(),
        )

    async def aclose(self) -> None:
        await self.client.aclose()
