"""USSD flows: wallet creation, wallet access, and value transfer.

Every handler receives a :class:`~cryptodial.ussd.menu.StepContext` and
returns a :class:`~cryptodial.ussd.menu.Prompt`. Handlers hold no state of
their own; anything carried between steps lives on the session record.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from cryptodial.chains import (
    ChainId,
    ChainRegistry,
    SenderCredentials,
    explorer_link,
    format_amount,
    get_chain,
    validate_amount,
)
from cryptodial.errors import (
    ChainError,
    DecryptionError,
    IdGenerationExhaustedError,
    InvalidAmountError,
    NotificationError,
    PersistenceError,
    SessionExpiredError,
    ValidationError,
)
from cryptodial.notify import Notifier, send_key_disclosure, send_transfer_confirmation
from cryptodial.sessions import START_STATE, SessionStore
from cryptodial.storage.models import (
    SessionRecord,
    TransactionRecord,
    TransactionStatus,
    WalletRecord,
)
from cryptodial.ussd.menu import Prompt, StepContext, UssdMenu, con, end
from cryptodial.vault import KeyVault, is_valid_pin
from cryptodial.wallets import TransactionLedger, WalletDirectory, is_valid_wallet_id

logger = logging.getLogger("cryptodial.orchestrator")

# Staging PIN for a freshly generated key until the user picks a real one.
PLACEHOLDER_PIN = "000000"

CHAIN_CHOICES: dict[str, ChainId] = {
    "1": ChainId.EVM,
    "2": ChainId.BINANCE,
    "3": ChainId.POLYGON,
    "4": ChainId.SOLANA,
}

RECENT_TRANSACTIONS = 3

MAIN_MENU = (
    "Welcome to {name}\n"
    "1. Create Wallet\n"
    "2. Access Wallet\n"
    "3. Send Crypto\n"
    "4. Help\n"
    "0. Exit"
)
WALLET_MENU = "1. Check Balance\n2. Transactions\n3. Send Crypto\n0. Back"
PIN_PROMPT = "Enter 6-digit PIN:"
WALLET_ID_PROMPT = "Enter Wallet ID:"
RECIPIENT_PROMPT = "Enter recipient Wallet ID:"
AMOUNT_PROMPT = "Enter amount:"
WALLET_ID_EXAMPLE = "Example: ETN254#1234567890"


def _chain_menu() -> str:
    lines = ["Select network:"]
    lines += [f"{choice}. {get_chain(cid).display_name}" for choice, cid in CHAIN_CHOICES.items()]
    lines.append("0. Back")
    return "\n".join(lines)


class TransactionOrchestrator:
    """Registers the wallet flows on a :class:`UssdMenu`.

    Parameters
    ----------
    sessions:
        Session store shared with the menu router.
    directory, ledger:
        Wallet and transaction persistence.
    registry:
        Resolves chain ids to adapters.
    vault:
        Encrypts keys and hashes PINs.
    notifier:
        SMS sink for the key disclosure and transfer confirmations.
    country_code:
        Three-digit code embedded in new wallet ids.
    """

    def __init__(
        self,
        sessions: SessionStore,
        directory: WalletDirectory,
        ledger: TransactionLedger,
        registry: ChainRegistry,
        vault: KeyVault,
        notifier: Notifier,
        *,
        country_code: str = "254",
        service_name: str = "Cryptodial",
    ) -> None:
        self.sessions = sessions
        self.directory = directory
        self.ledger = ledger
        self.registry = registry
        self.vault = vault
        self.notifier = notifier
        self.country_code = country_code
        self.service_name = service_name
        self.menu = UssdMenu(sessions)
        self._register()

    def _register(self) -> None:
        m = self.menu
        m.start_state(self.start, next={
            "1": "createWallet",
            "2": "accessWallet",
            "3": "sendCrypto",
            "4": "helpSupport",
            "0": "endSession",
        })

        # Create
        m.state("createWallet", self.create_wallet, next={
            "*^[1-4]$": "provisionWallet",
            "0": START_STATE,
        })
        m.state("provisionWallet", self.provision_wallet, next={"*": "confirmPin"})
        m.state("confirmPin", self.confirm_pin)
        m.state("walletCreated", self.wallet_created, next={"1": START_STATE, "0": START_STATE})

        # Access
        m.state("accessWallet", self.access_wallet, next={"*": "validateWalletId"})
        m.state("validateWalletId", self.validate_wallet_id, next={"*": "verifyWalletAccess"})
        m.state("verifyWalletAccess", self.verify_wallet_access, next={})
        m.state("walletMenu", self.wallet_menu, next={
            "1": "viewBalance",
            "2": "viewTransactions",
            "3": "sendCrypto",
            "0": START_STATE,
        })
        m.state("viewBalance", self.view_balance, next={"0": "walletMenu"})
        m.state("viewTransactions", self.view_transactions, next={"0": "walletMenu"})

        # Send
        m.state("sendCrypto", self.send_crypto, next={"*": "validateRecipient"})
        m.state("validateRecipient", self.validate_recipient, next={"*": "validateAmount"})
        m.state("validateAmount", self.validate_amount)
        m.state("confirmSend", self.confirm_send, next={
            "1": "executeSend",
            "2": START_STATE,
        })
        m.state("executeSend", self.execute_send)

        m.state("helpSupport", self.help_support)
        m.state("endSession", self.end_session)

    # ------------------------------------------------------------------
    # Menus
    # ------------------------------------------------------------------

    async def start(self, ctx: StepContext) -> Prompt:
        session = ctx.session
        # Abandoned flows leave scratch data behind; an accessed wallet survives.
        if session.temp_data or session.temp_encrypted_key:
            await self.sessions.upsert(
                ctx.session_id, temp_data=None, temp_encrypted_key=None
            )
        return con(MAIN_MENU.format(name=self.service_name))

    async def wallet_menu(self, ctx: StepContext) -> Prompt:
        return con(WALLET_MENU)

    async def help_support(self, ctx: StepContext) -> Prompt:
        return end(
            f"{self.service_name} help:\n"
            "Create a wallet, then access it with your Wallet ID and PIN "
            "to check balances and send crypto."
        )

    async def end_session(self, ctx: StepContext) -> Prompt:
        return end(f"Thank you for using {self.service_name}.")

    # ------------------------------------------------------------------
    # Wallet creation
    # ------------------------------------------------------------------

    async def create_wallet(self, ctx: StepContext) -> Prompt:
        return con(_chain_menu())

    async def provision_wallet(self, ctx: StepContext) -> Prompt:
        chain_id = CHAIN_CHOICES[ctx.value]
        spec = get_chain(chain_id)
        try:
            wallet_id = await self.directory.generate_wallet_id(
                spec.wallet_prefix, self.country_code
            )
        except IdGenerationExhaustedError as exc:
            logger.error(f"Wallet id allocation failed for {chain_id.value}: {exc}")
            return end("Could not create a wallet right now. Please try again.")

        adapter = self.registry.resolve(chain_id)
        keys = adapter.create_wallet()
        await self.sessions.upsert(
            ctx.session_id,
            wallet_id=wallet_id,
            temp_pin=None,
            temp_encrypted_key=await self.vault.encrypt_async(keys.private_key, PLACEHOLDER_PIN),
            temp_chain_id=chain_id,
            temp_data={"address": keys.address},
        )
        logger.info(f"Provisioned {wallet_id} for session {ctx.session_id}")
        return con(f"Wallet ID: {wallet_id}\n{PIN_PROMPT}")

    async def confirm_pin(self, ctx: StepContext) -> Prompt:
        pin = ctx.value
        if not is_valid_pin(pin):
            return con(f"Invalid PIN. Must be 6 digits.\n{PIN_PROMPT}", goto="provisionWallet")

        session = await self.sessions.require(ctx.session_id)
        address = (session.temp_data or {}).get("address")
        if not (session.wallet_id and session.temp_encrypted_key and session.temp_chain_id and address):
            raise SessionExpiredError(f"Session {ctx.session_id} has no staged wallet")

        private_key = await self.vault.decrypt_async(session.temp_encrypted_key, PLACEHOLDER_PIN)
        record = WalletRecord(
            wallet_id=session.wallet_id,
            chain_id=session.temp_chain_id,
            address=address,
            encrypted_private_key=await self.vault.encrypt_async(private_key, pin),
            pin_hash=self.vault.hash_pin(pin),
            phone_number=session.phone_number,
        )
        await self.directory.save(record)
        await self.sessions.clear_temp(ctx.session_id)

        try:
            await send_key_disclosure(
                self.notifier,
                session.phone_number,
                record.wallet_id,
                private_key,
                service_name=self.service_name,
            )
        except NotificationError as exc:
            logger.error(f"Key disclosure for {record.wallet_id} failed: {exc}")
            return end(
                f"Wallet {record.wallet_id} created, but the SMS with your key "
                "could not be sent. Please contact support."
            )
        return con(
            f"Wallet created! ID: {record.wallet_id}\n"
            "Your key has been sent by SMS.\n"
            "1. Continue\n0. Back",
            goto="walletCreated",
        )

    async def wallet_created(self, ctx: StepContext) -> Prompt:
        return con("1. Continue\n0. Back")

    # ------------------------------------------------------------------
    # Wallet access
    # ------------------------------------------------------------------

    async def access_wallet(self, ctx: StepContext) -> Prompt:
        return con(WALLET_ID_PROMPT)

    async def validate_wallet_id(self, ctx: StepContext) -> Prompt:
        wallet_id = ctx.value.upper()
        if not is_valid_wallet_id(wallet_id):
            logger.info(f"Malformed wallet id entered (session {ctx.session_id})")
            return con(f"Invalid credentials.\n{WALLET_ID_PROMPT}", goto="accessWallet")
        await self.sessions.upsert(ctx.session_id, temp_data={"wallet_id": wallet_id})
        return con(PIN_PROMPT)

    async def verify_wallet_access(self, ctx: StepContext) -> Prompt:
        session = await self.sessions.require(ctx.session_id)
        wallet_id = (session.temp_data or {}).get("wallet_id")
        if not wallet_id:
            raise SessionExpiredError(f"Session {ctx.session_id} has no wallet id to verify")

        pin = ctx.value
        record = await self.directory.find_by_wallet_id(wallet_id) if is_valid_pin(pin) else None
        if record is None or not self.vault.compare_pin(pin, record.pin_hash):
            logger.info(f"Access denied for {wallet_id} (session {ctx.session_id})")
            await self.sessions.upsert(ctx.session_id, temp_data=None)
            return con(f"Invalid credentials.\n{WALLET_ID_PROMPT}", goto="accessWallet")

        await self.sessions.upsert(
            ctx.session_id,
            wallet_id=wallet_id,
            temp_pin=pin,
            temp_chain_id=record.chain_id,
            temp_data=None,
        )
        return con(f"Wallet {wallet_id}\n{WALLET_MENU}", goto="walletMenu")

    async def _accessed_wallet(self, session: SessionRecord) -> WalletRecord | None:
        if not (session.wallet_id and session.temp_pin):
            return None
        return await self.directory.find_by_wallet_id(session.wallet_id)

    async def view_balance(self, ctx: StepContext) -> Prompt:
        record = await self._accessed_wallet(ctx.session)
        if record is None:
            return con(f"Please access your wallet first.\n{WALLET_ID_PROMPT}", goto="accessWallet")

        adapter = self.registry.resolve(record.chain_id)
        try:
            balance = await adapter.get_balance(record.address)
        except (ChainError, ValidationError) as exc:
            logger.error(f"Balance lookup for {record.wallet_id} failed: {exc}")
            return con("Could not fetch balance. Please try later.\n0. Back")
        return con(f"Balance: {format_amount(balance, record.chain_id)}\n0. Back")

    async def view_transactions(self, ctx: StepContext) -> Prompt:
        record = await self._accessed_wallet(ctx.session)
        if record is None:
            return con(f"Please access your wallet first.\n{WALLET_ID_PROMPT}", goto="accessWallet")

        entries = await self.ledger.list_for_wallet(record.wallet_id, limit=RECENT_TRANSACTIONS)
        if not entries:
            return con("No transactions yet.\n0. Back")
        symbol = get_chain(record.chain_id).native_symbol
        lines = []
        for entry in entries:
            if entry.sender_wallet_id == record.wallet_id:
                lines.append(f"-{entry.amount} {symbol} to {entry.recipient_wallet_id} ({entry.status.value})")
            else:
                lines.append(f"+{entry.amount} {symbol} from {entry.sender_wallet_id} ({entry.status.value})")
        return con("\n".join(lines) + "\n0. Back")

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_crypto(self, ctx: StepContext) -> Prompt:
        session = ctx.session
        if not (session.wallet_id and session.temp_pin):
            return con(f"Please access your wallet first.\n{WALLET_ID_PROMPT}", goto="accessWallet")
        return con(RECIPIENT_PROMPT)

    async def validate_recipient(self, ctx: StepContext) -> Prompt:
        recipient = ctx.value.upper()
        if not is_valid_wallet_id(recipient):
            return con(
                f"Invalid Wallet ID format. {WALLET_ID_EXAMPLE}\n{RECIPIENT_PROMPT}",
                goto="sendCrypto",
            )
        if recipient == ctx.session.wallet_id:
            return con(f"You cannot send to your own wallet.\n{RECIPIENT_PROMPT}", goto="sendCrypto")
        await self.sessions.upsert(ctx.session_id, temp_data={"recipient": recipient})
        return con(AMOUNT_PROMPT)

    async def validate_amount(self, ctx: StepContext) -> Prompt:
        try:
            amount = validate_amount(ctx.value)
        except InvalidAmountError:
            return con(
                f"Invalid amount. Enter a positive number.\n{AMOUNT_PROMPT}",
                goto="validateRecipient",
            )

        recipient = (ctx.session.temp_data or {}).get("recipient")
        if not recipient:
            raise SessionExpiredError(f"Session {ctx.session_id} has no recipient")

        session = await self.sessions.upsert(
            ctx.session_id,
            temp_data={"recipient": recipient, "amount": _plain_decimal(amount)},
        )
        prompt = await self.confirm_send(ctx, session)
        prompt.goto = "confirmSend"
        return prompt

    async def confirm_send(self, ctx: StepContext, session: SessionRecord | None = None) -> Prompt:
        session = session or ctx.session
        data = session.temp_data or {}
        if not (data.get("recipient") and data.get("amount") and session.temp_chain_id):
            raise SessionExpiredError(f"Session {ctx.session_id} has no pending transfer")
        symbol = get_chain(session.temp_chain_id).native_symbol
        return con(
            f"Send {data['amount']} {symbol} to {data['recipient']}?\n"
            "1. Confirm\n2. Cancel"
        )

    async def execute_send(self, ctx: StepContext) -> Prompt:
        session = await self.sessions.get(ctx.session_id)
        data = (session.temp_data or {}) if session else {}
        if (
            session is None
            or not session.wallet_id
            or not session.temp_pin
            or not data.get("recipient")
            or not data.get("amount")
        ):
            if session is not None:
                await self.sessions.clear_temp(ctx.session_id)
            return end("Session expired. Please start again.")

        sender = await self.directory.find_by_wallet_id(session.wallet_id)
        if sender is None:
            await self.sessions.clear_temp(ctx.session_id)
            return end("Wallet not found.")
        recipient = await self.directory.find_by_wallet_id(data["recipient"])
        if recipient is None:
            await self.sessions.clear_temp(ctx.session_id)
            return end("Recipient wallet not found.")
        if recipient.chain_id != sender.chain_id:
            await self.sessions.clear_temp(ctx.session_id)
            return end("Recipient wallet is on a different network.")

        try:
            private_key = await self.vault.decrypt_async(sender.encrypted_private_key, session.temp_pin)
        except DecryptionError:
            logger.warning(f"Key decryption failed for {sender.wallet_id} (session {ctx.session_id})")
            await self.sessions.clear_temp(ctx.session_id)
            return end("Security check failed. Please access your wallet again.")

        amount = data["amount"]
        chain = get_chain(sender.chain_id)
        adapter = self.registry.resolve(sender.chain_id)
        credentials = SenderCredentials(address=sender.address, private_key=private_key)

        try:
            receipt = await adapter.send_value(credentials, recipient.address, Decimal(amount))
        except Exception as exc:
            logger.error(
                f"Transfer {sender.wallet_id} -> {recipient.wallet_id} failed: {exc}"
            )
            await self.ledger.record(TransactionRecord(
                sender_wallet_id=sender.wallet_id,
                recipient_wallet_id=recipient.wallet_id,
                amount=amount,
                chain_id=sender.chain_id,
                status=TransactionStatus.FAILED,
                error=str(exc) or type(exc).__name__,
            ))
            await self.sessions.clear_temp(ctx.session_id)
            return end("Transaction failed. Please try again later.")

        status = TransactionStatus.COMPLETED if receipt.confirmed else TransactionStatus.PENDING
        try:
            await self.ledger.record(TransactionRecord(
                sender_wallet_id=sender.wallet_id,
                recipient_wallet_id=recipient.wallet_id,
                amount=amount,
                chain_id=sender.chain_id,
                status=status,
                tx_hash=receipt.tx_hash,
                network_fee=receipt.network_fee,
                block_number=receipt.block_number,
            ))
        except PersistenceError:
            logger.critical(
                f"Transfer {receipt.tx_hash} on {chain.chain_id.value} was submitted "
                f"but could not be recorded"
            )
            raise
        await self.sessions.clear_temp(ctx.session_id)

        await send_transfer_confirmation(
            self.notifier,
            sender.phone_number,
            amount,
            chain.native_symbol,
            recipient.wallet_id,
            explorer_link(sender.chain_id, receipt.tx_hash),
            service_name=self.service_name,
        )
        outcome = "Sent" if receipt.confirmed else "Submitted"
        return end(
            f"{outcome} {amount} {chain.native_symbol} to {recipient.wallet_id}.\n"
            f"Tx: {receipt.tx_hash}"
        )


def _plain_decimal(value: Decimal) -> str:
    """``Decimal('1.50')`` -> ``'1.5'`` without switching to exponent notation."""
    return format(value.normalize(), "f")
