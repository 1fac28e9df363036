"""Wallet directory and transaction ledger."""

from cryptodial.wallets.directory import WalletDirectory, is_valid_wallet_id
from cryptodial.wallets.ledger import TransactionLedger

__all__ = ["TransactionLedger", "WalletDirectory", "is_valid_wallet_id"]
