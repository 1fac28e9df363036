"""Chain adapters for the supported networks.

Each network family implements :class:`~cryptodial.chains.base.ChainAdapter`;
:class:`~cryptodial.chains.registry.ChainRegistry` hands out one configured
instance per :class:`~cryptodial.chains.registry.ChainId`.
"""

from cryptodial.chains.base import (
    ChainAdapter,
    SenderCredentials,
    TransferReceipt,
    WalletKeys,
    check_selector,
    validate_amount,
)
from cryptodial.chains.registry import (
    CHAINS,
    ChainId,
    ChainRegistry,
    ChainSpec,
    explorer_link,
    format_amount,
    get_chain,
    parse_chain_id,
)

__all__ = [
    "CHAINS",
    "ChainAdapter",
    "ChainId",
    "ChainRegistry",
    "ChainSpec",
    "SenderCredentials",
    "TransferReceipt",
    "WalletKeys",
    "check_selector",
    "explorer_link",
    "format_amount",
    "get_chain",
    "parse_chain_id",
    "validate_amount",
]
