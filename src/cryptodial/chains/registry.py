"""Chain definitions and the adapter registry."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from cryptodial.chains.base import ChainAdapter
from cryptodial.config import ChainEndpointConfig, ChainsConfig
from cryptodial.errors import UnsupportedChainError

logger = logging.getLogger("cryptodial.chains.registry")


class ChainId(str, Enum):
    EVM = "evm"
    BINANCE = "binance"
    POLYGON = "polygon"
    SOLANA = "solana"


@dataclass(frozen=True)
class ChainSpec:
    """Static facts about a supported network."""

    chain_id: ChainId
    display_name: str
    wallet_prefix: str
    native_symbol: str
    decimals: int
    explorer_url: str
    network_id: int | None = None


CHAINS: dict[ChainId, ChainSpec] = {
    ChainId.EVM: ChainSpec(
        chain_id=ChainId.EVM,
        display_name="Electroneum",
        wallet_prefix="ETN",
        native_symbol="ETN",
        decimals=18,
        explorer_url="https://blockexplorer.electroneum.com/tx/",
        network_id=52014,
    ),
    ChainId.BINANCE: ChainSpec(
        chain_id=ChainId.BINANCE,
        display_name="Binance Smart Chain",
        wallet_prefix="BSC",
        native_symbol="BNB",
        decimals=18,
        explorer_url="https://bscscan.com/tx/",
        network_id=56,
    ),
    ChainId.POLYGON: ChainSpec(
        chain_id=ChainId.POLYGON,
        display_name="Polygon",
        wallet_prefix="POL",
        native_symbol="POL",
        decimals=18,
        explorer_url="https://polygonscan.com/tx/",
        network_id=137,
    ),
    ChainId.SOLANA: ChainSpec(
        chain_id=ChainId.SOLANA,
        display_name="Solana",
        wallet_prefix="SOL",
        native_symbol="SOL",
        decimals=9,
        explorer_url="https://solscan.io/tx/",
    ),
}

FALLBACK_EXPLORER_URL = "https://blockscan.com/tx/"


def parse_chain_id(value: ChainId | str) -> ChainId:
    """Turn a string into a :class:`ChainId`. Raises ``UnsupportedChainError``."""
    if isinstance(value, ChainId):
        return value
    try:
        return ChainId(value)
    except ValueError:
        raise UnsupportedChainError(
            f"Unknown chain '{value}'. Available: {list_chain_names()}"
        ) from None


def get_chain(chain_id: ChainId | str) -> ChainSpec:
    """Get a chain spec by id. Raises ``UnsupportedChainError`` if not found."""
    return CHAINS[parse_chain_id(chain_id)]


def list_chain_names() -> list[str]:
    """Return the identifiers of all supported chains."""
    return [c.value for c in CHAINS]


def explorer_link(chain_id: ChainId | str, tx_hash: str) -> str:
    """Block-explorer URL for *tx_hash*; unknown chains get a generic explorer."""
    try:
        base = get_chain(chain_id).explorer_url
    except UnsupportedChainError:
        base = FALLBACK_EXPLORER_URL
    return f"{base}{tx_hash}"


def format_amount(value: int, chain_id: ChainId | str) -> str:
    """Render a smallest-unit integer in whole native units, e.g. ``1.5 ETN``."""
    spec = get_chain(chain_id)
    whole = Decimal(value).scaleb(-spec.decimals).normalize()
    text = format(whole, "f")
    return f"{text} {spec.native_symbol}"


def _build_adapter(chain_id: ChainId, endpoint: ChainEndpointConfig) -> ChainAdapter:
    # Imported lazily so a deployment without one chain's libraries can still
    # serve the others.
    spec = CHAINS[chain_id]
    kwargs = {"timeout": endpoint.timeout, "receipt_timeout": endpoint.receipt_timeout}
    if chain_id is ChainId.SOLANA:
        from cryptodial.chains.solana import SolanaChainAdapter

        return SolanaChainAdapter(endpoint.rpc_url, **kwargs)
    if chain_id is ChainId.BINANCE:
        from cryptodial.chains.evm import BinanceSmartChainAdapter

        return BinanceSmartChainAdapter(endpoint.rpc_url, network_id=spec.network_id, **kwargs)

    from cryptodial.chains.evm import EvmChainAdapter

    return EvmChainAdapter(
        endpoint.rpc_url,
        network_id=spec.network_id,
        poa=chain_id is ChainId.POLYGON,
        **kwargs,
    )


class ChainRegistry:
    """Maps a chain identifier to one lazily constructed adapter."""

    def __init__(self, config: ChainsConfig | None = None) -> None:
        self.config = config or ChainsConfig()
        self._instances: dict[ChainId, ChainAdapter] = {}

    def resolve(self, chain_id: ChainId | str) -> ChainAdapter:
        """Return the (cached) adapter for *chain_id*."""
        key = parse_chain_id(chain_id)
        if key in self._instances:
            return self._instances[key]

        endpoint: ChainEndpointConfig = getattr(self.config, key.value)
        adapter = _build_adapter(key, endpoint)
        logger.info(f"Initialised {key.value} adapter for {endpoint.rpc_url}")
        self._instances[key] = adapter
        return adapter

    def register(self, chain_id: ChainId | str, adapter: ChainAdapter) -> None:
        """Install a pre-built adapter, replacing any cached instance."""
        self._instances[parse_chain_id(chain_id)] = adapter

    async def aclose(self) -> None:
        for adapter in self._instances.values():
            await adapter.aclose()
        self._instances.clear()
