"""
Wallet package - Key material, derivation and persistence.

Contains:
- SecretBytes: zero-on-drop container for secrets
- MnemonicService, Mnemonic, Seed: BIP39 lifecycle
- ChainDerivationEngine: per-chain accounts (BIP32/44, SLIP-0010)
- EncryptionService: password-based envelope encryption
- SecureStorage: per-wallet encrypted records
- Address encoders and validate_address

The WalletManager facade lives in keyvault.wallet.manager; it depends on
the services package, which in turn builds on the modules here.
"""

from .secure import SecretBytes
from .mnemonic import Mnemonic, MnemonicService, Seed
from .derivation import ChainDerivationEngine, parse_path, slip10_ed25519
from .crypto import EncryptionService
from .storage import SecureStorage
from .addresses import encode_address, validate_address

__all__ = [
    "SecretBytes",
    "Mnemonic",
    "MnemonicService",
    "Seed",
    "ChainDerivationEngine",
    "parse_path",
    "slip10_ed25519",
    "EncryptionService",
    "SecureStorage",
    "encode_address",
    "validate_address",
]
