"""
keyvault - Non-custodial multi-chain key management.

Generates and protects BIP39 seed material, derives per-chain accounts
(secp256k1 via BIP32/44, ed25519 via SLIP-0010), encrypts the mnemonic at
rest (Argon2id + AES-256-GCM) and serves derivation/signing through
time-bounded sessions.

Usage:
    from keyvault import WalletManager, VaultConfig

    manager = WalletManager(VaultConfig.from_env())
    created = await manager.create_wallet("Main", "password")
"""

__version__ = "0.3.0"

from .exceptions import *  # noqa: F401,F403
from .config import VaultConfig, KdfSettings
from .chains import Chain, ChainConfig, CHAINS, get_chain
from .wallet.manager import WalletManager, CreatedWallet, ImportedWallet
from .services.session import SessionState

__all__ = [
    "__version__",
    "VaultConfig",
    "KdfSettings",
    "Chain",
    "ChainConfig",
    "CHAINS",
    "get_chain",
    "WalletManager",
    "CreatedWallet",
    "ImportedWallet",
    "SessionState",
]
