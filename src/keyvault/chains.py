"""
Chain configurations.

A closed set of supported chains. Each ChainConfig names its curve family,
derivation path template and address-encoding rule; the derivation engine
matches on these exhaustively, so adding a chain means adding a Chain member
and a CHAINS entry.

Chains that happen to share a path (the EVM family) are still configured
independently.
"""

from dataclasses import dataclass
from enum import Enum

from .exceptions import UnsupportedChain


class Chain(str, Enum):
    ETHEREUM = "ethereum"
    BSC = "bsc"
    POLYGON = "polygon"
    BITCOIN = "bitcoin"
    SOLANA = "solana"
    TON = "ton"


class Curve(str, Enum):
    SECP256K1 = "secp256k1"
    ED25519 = "ed25519"


class AddressEncoding(str, Enum):
    EVM_KECCAK = "evm-keccak"          # 0x + EIP-55 checksummed Keccak-256 tail
    BECH32_P2WPKH = "bech32-p2wpkh"    # Native segwit v0
    BASE58 = "base58"                  # Raw public key, Base58
    TON_BASE64URL = "ton-base64url"    # User-friendly TON form


# ============================================
# Chain Configurations
# ============================================

@dataclass(frozen=True)
class ChainConfig:
    """Static descriptor for a supported chain."""
    chain: Chain
    display_name: str
    symbol: str
    curve: Curve
    path_template: str               # "{account}" is replaced by the account index
    address_encoding: AddressEncoding
    hrp: str = ""                    # Bech32 human-readable part
    compressed_public_key: bool = True

    def path(self, account_index: int) -> str:
        """Concrete derivation path for an account index."""
        return self.path_template.format(account=account_index)

    @property
    def id(self) -> str:
        return self.chain.value


CHAINS: dict[Chain, ChainConfig] = {
    Chain.ETHEREUM: ChainConfig(
        chain=Chain.ETHEREUM,
        display_name="Ethereum",
        symbol="ETH",
        curve=Curve.SECP256K1,
        path_template="m/44'/60'/{account}'/0/0",
        address_encoding=AddressEncoding.EVM_KECCAK,
        compressed_public_key=False,
    ),
    Chain.BSC: ChainConfig(
        chain=Chain.BSC,
        display_name="BNB Smart Chain",
        symbol="BNB",
        curve=Curve.SECP256K1,
        path_template="m/44'/60'/{account}'/0/0",
        address_encoding=AddressEncoding.EVM_KECCAK,
        compressed_public_key=False,
    ),
    Chain.POLYGON: ChainConfig(
        chain=Chain.POLYGON,
        display_name="Polygon",
        symbol="POL",
        curve=Curve.SECP256K1,
        path_template="m/44'/60'/{account}'/0/0",
        address_encoding=AddressEncoding.EVM_KECCAK,
        compressed_public_key=False,
    ),
    Chain.BITCOIN: ChainConfig(
        chain=Chain.BITCOIN,
        display_name="Bitcoin",
        symbol="BTC",
        curve=Curve.SECP256K1,
        path_template="m/84'/0'/{account}'/0/0",
        address_encoding=AddressEncoding.BECH32_P2WPKH,
        hrp="bc",
    ),
    Chain.SOLANA: ChainConfig(
        chain=Chain.SOLANA,
        display_name="Solana",
        symbol="SOL",
        curve=Curve.ED25519,
        path_template="m/44'/501'/{account}'/0'",
        address_encoding=AddressEncoding.BASE58,
    ),
    Chain.TON: ChainConfig(
        chain=Chain.TON,
        display_name="TON",
        symbol="TON",
        curve=Curve.ED25519,
        path_template="m/44'/607'/0'/0'/0'/{account}'",
        address_encoding=AddressEncoding.TON_BASE64URL,
    ),
}

DEFAULT_CHAINS = (Chain.ETHEREUM, Chain.BITCOIN, Chain.SOLANA, Chain.TON)


def get_chain(chain: "Chain | str | ChainConfig") -> ChainConfig:
    """Resolve a chain identifier (enum, name or config) to its ChainConfig."""
    if isinstance(chain, ChainConfig):
        return chain
    try:
        key = chain if isinstance(chain, Chain) else Chain(str(chain).strip().lower())
    except ValueError:
        raise UnsupportedChain(f"Unsupported chain: {chain}", data={"chain": str(chain)}) from None
    return CHAINS[key]


def resolve_chains(chains) -> list[ChainConfig]:
    """Resolve a selection to configs, dropping duplicates but keeping order."""
    resolved = []
    seen = set()
    for chain in chains:
        config = get_chain(chain)
        if config.chain not in seen:
            seen.add(config.chain)
            resolved.append(config)
    return resolved
