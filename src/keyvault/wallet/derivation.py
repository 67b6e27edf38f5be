"""
Chain Derivation Engine - per-chain keys and addresses from a seed.

secp256k1 chains use BIP32/44 derivation (via eth_account's HD implementation),
ed25519 chains use SLIP-0010, which only defines hardened children.

The engine is pure and stateless: it never touches storage, and the only
private material it returns is wrapped in SecretBytes for a signing call.
"""

import hashlib
import hmac
import logging
import re
import struct

import coincurve
from eth_account.hdaccount import key_from_seed
from nacl.signing import SigningKey

from ..chains import ChainConfig, Curve, get_chain
from ..exceptions import DerivationFailed, UnsupportedCurve
from ..models import DerivedAccount
from .addresses import encode_address
from .secure import SecretBytes

logger = logging.getLogger(__name__)

HARDENED_OFFSET = 0x80000000
MAX_ACCOUNT_INDEX = HARDENED_OFFSET - 1

# SLIP-0010 master key HMAC key for ed25519
ED25519_SEED_KEY = b"ed25519 seed"

_PATH_COMPONENT = re.compile(r"^(\d+)(['hH]?)$")


def parse_path(path: str) -> list[int]:
    """
    Parse a BIP32 path like m/44'/60'/0'/0/0 into child indices.

    Hardened components ("'" or "h") carry the 0x80000000 offset.

    Raises:
        DerivationFailed: on any malformed component
    """
    if not isinstance(path, str) or not path:
        raise DerivationFailed("Derivation path is empty")

    parts = path.strip().split("/")
    if parts[0] not in ("m", "M"):
        raise DerivationFailed(f"Derivation path must start with 'm': {path}")

    indices = []
    for component in parts[1:]:
        match = _PATH_COMPONENT.match(component)
        if not match:
            raise DerivationFailed(f"Malformed path component {component!r} in {path}")
        index = int(match.group(1))
        if index > MAX_ACCOUNT_INDEX:
            raise DerivationFailed(f"Path component out of range in {path}")
        if match.group(2):
            index += HARDENED_OFFSET
        indices.append(index)
    return indices


def slip10_ed25519(seed: bytes, path: str) -> tuple[bytes, bytes]:
    """
    SLIP-0010 ed25519 derivation.

    Returns (private_key, chain_code), 32 bytes each. Every component must be
    hardened; ed25519 has no public-key-only child derivation.
    """
    indices = parse_path(path)
    for index in indices:
        if index < HARDENED_OFFSET:
            raise DerivationFailed(f"ed25519 paths must be fully hardened: {path}")

    # Master key and chain code from seed
    digest = hmac.new(ED25519_SEED_KEY, seed, hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]
    for index in indices:
        data = b"\x00" + key + struct.pack(">L", index)
        digest = hmac.new(chain_code, data, hashlib.sha512).digest()
        key, chain_code = digest[:32], digest[32:]
    return key, chain_code


def _seed_bytes(seed) -> bytes:
    if isinstance(seed, SecretBytes):
        return seed.reveal()
    if isinstance(seed, (bytes, bytearray)):
        return bytes(seed)
    raise TypeError("seed must be a Seed or bytes")


class ChainDerivationEngine:
    """
    Derive accounts and signing keys for configured chains.

    Usage:
        engine = ChainDerivationEngine()
        account = engine.derive_account(seed, "ethereum", 0)
        account.address  # 0x...
    """

    def derive_account(self, seed, chain, account_index: int = 0) -> DerivedAccount:
        """
        Derive the public account for (seed, chain, account_index).

        Deterministic: the same inputs always yield the same address and key.

        Raises:
            UnsupportedCurve: chain names a curve the engine can't derive
            DerivationFailed: bad index, malformed path or invalid key
        """
        config = get_chain(chain)
        path = self._path_for(config, account_index)

        with self.derive_private_key(seed, config, account_index) as private_key:
            public_key = self._public_key(config, private_key)

        address = encode_address(config, public_key)
        return DerivedAccount(
            chain=config.id,
            derivation_path=path,
            address=address,
            public_key=public_key,
            account_index=account_index,
        )

    def derive_accounts(self, seed, chains, account_index: int = 0) -> list[DerivedAccount]:
        """Derive one account per chain, in the given order."""
        return [self.derive_account(seed, chain, account_index) for chain in chains]

    def derive_private_key(self, seed, chain, account_index: int = 0) -> SecretBytes:
        """
        Derive the raw 32-byte private key for a chain account.

        WARNING: signing use only. The caller must wipe the result.
        """
        config = get_chain(chain)
        path = self._path_for(config, account_index)
        raw_seed = _seed_bytes(seed)

        if config.curve is Curve.SECP256K1:
            try:
                key = key_from_seed(raw_seed, path)
            except ValueError as e:
                raise DerivationFailed(f"BIP32 derivation failed for {path}") from e
            return SecretBytes(key)

        if config.curve is Curve.ED25519:
            key, _ = slip10_ed25519(raw_seed, path)
            return SecretBytes(key)

        raise UnsupportedCurve(f"Unsupported curve: {config.curve}", data={"chain": config.id})

    def public_key_from_private(self, chain, private_key: SecretBytes) -> bytes:
        """Public key bytes in the chain's persisted format."""
        return self._public_key(get_chain(chain), private_key)

    # ============================================
    # Internals
    # ============================================

    def _path_for(self, config: ChainConfig, account_index: int) -> str:
        if not isinstance(account_index, int) or isinstance(account_index, bool):
            raise DerivationFailed("account_index must be an integer")
        if account_index < 0 or account_index > MAX_ACCOUNT_INDEX:
            raise DerivationFailed(f"account_index out of range: {account_index}")
        path = config.path(account_index)
        # Fail on malformed templates before any key material is computed
        parse_path(path)
        return path

    def _public_key(self, config: ChainConfig, private_key: SecretBytes) -> bytes:
        if config.curve is Curve.SECP256K1:
            try:
                key = coincurve.PrivateKey(private_key.reveal())
            except ValueError as e:
                raise DerivationFailed("Derived secp256k1 key is invalid") from e
            return key.public_key.format(compressed=config.compressed_public_key)

        if config.curve is Curve.ED25519:
            return bytes(SigningKey(private_key.reveal()).verify_key)

        raise UnsupportedCurve(f"Unsupported curve: {config.curve}", data={"chain": config.id})
