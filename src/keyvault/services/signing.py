"""
Signing Service - Message signing with session-derived keys.

Each curve family signs with its chain's message convention:
- EVM chains: EIP-191 personal_sign (65 bytes, r || s || v)
- Bitcoin: "Bitcoin Signed Message" compact recoverable signature
  (65 bytes, header || r || s) over the double-SHA-256 digest
- ed25519 chains: detached ed25519 signature (64 bytes)

Private keys arrive as SecretBytes and are only revealed for the
duration of the library call.
"""

import hashlib
import logging

import coincurve
from eth_account import Account
from eth_account.messages import encode_defunct
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from ..chains import AddressEncoding, ChainConfig, Curve, get_chain
from ..exceptions import DerivationFailed, UnsupportedCurve
from ..wallet.addresses import evm_address
from ..wallet.secure import SecretBytes

logger = logging.getLogger(__name__)

# Bitcoin message magic
BITCOIN_MESSAGE_MAGIC = b"\x18Bitcoin Signed Message:\n"
# Compact signature header (BIP137): 27 + recovery id, +4 for compressed
# P2PKH keys, +12 for native segwit (P2WPKH) keys
COMPACT_HEADER_BASE = 27
COMPACT_HEADER_COMPRESSED = 4
COMPACT_HEADER_P2WPKH = 12


def _to_bytes(payload: str | bytes) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    raise TypeError("payload must be str or bytes")


def _encode_varint(n: int) -> bytes:
    if n < 0xfd:
        return bytes([n])
    if n <= 0xffff:
        return b"\xfd" + n.to_bytes(2, "little")
    if n <= 0xffffffff:
        return b"\xfe" + n.to_bytes(4, "little")
    return b"\xff" + n.to_bytes(8, "little")


def bitcoin_message_hash(message: bytes) -> bytes:
    """SHA256(SHA256(magic + varint(len) + message))"""
    data = BITCOIN_MESSAGE_MAGIC + _encode_varint(len(message)) + message
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


# ============================================
# Signing
# ============================================

def sign_message(chain, private_key: SecretBytes, payload: str | bytes) -> bytes:
    """
    Sign a message with the chain's convention.

    Args:
        chain: Chain, chain name or ChainConfig
        private_key: 32-byte private key from ChainDerivationEngine.derive_private_key
        payload: Message bytes (str is UTF-8 encoded)

    Returns:
        Raw signature bytes (65 for secp256k1 chains, 64 for ed25519)
    """
    config = get_chain(chain)
    message = _to_bytes(payload)

    if config.curve is Curve.SECP256K1:
        if config.address_encoding is AddressEncoding.EVM_KECCAK:
            return _sign_evm(private_key, message)
        return _sign_bitcoin(config, private_key, message)

    if config.curve is Curve.ED25519:
        signed = SigningKey(private_key.reveal()).sign(message)
        return bytes(signed.signature)

    raise UnsupportedCurve(f"Unsupported curve: {config.curve}", data={"chain": config.id})


def _sign_evm(private_key: SecretBytes, message: bytes) -> bytes:
    signable = encode_defunct(primitive=message)
    signed = Account.sign_message(signable, private_key=private_key.reveal())
    return bytes(signed.signature)


def _sign_bitcoin(config: ChainConfig, private_key: SecretBytes, message: bytes) -> bytes:
    try:
        key = coincurve.PrivateKey(private_key.reveal())
    except ValueError as e:
        raise DerivationFailed("Derived secp256k1 key is invalid") from e

    # coincurve returns r || s || recovery_id
    recoverable = key.sign_recoverable(bitcoin_message_hash(message), hasher=None)
    header = COMPACT_HEADER_BASE + recoverable[64]
    if config.address_encoding is AddressEncoding.BECH32_P2WPKH:
        header += COMPACT_HEADER_P2WPKH
    elif config.compressed_public_key:
        header += COMPACT_HEADER_COMPRESSED
    return bytes([header]) + recoverable[:64]


# ============================================
# Verification
# ============================================

def verify_message(chain, public_key: bytes, payload: str | bytes, signature: bytes) -> bool:
    """
    Check a signature produced by sign_message against a stored public key.

    Returns False for any malformed or non-matching signature.
    """
    config = get_chain(chain)
    message = _to_bytes(payload)

    if config.curve is Curve.SECP256K1:
        if len(signature) != 65:
            return False
        if config.address_encoding is AddressEncoding.EVM_KECCAK:
            try:
                recovered = Account.recover_message(encode_defunct(primitive=message),
                                                    signature=signature)
            except ValueError:
                return False
            return recovered == evm_address(public_key)

        recovery_id = (signature[0] - COMPACT_HEADER_BASE) & 3
        recoverable = signature[1:] + bytes([recovery_id])
        try:
            recovered = coincurve.PublicKey.from_signature_and_message(
                recoverable, bitcoin_message_hash(message), hasher=None
            )
        except ValueError:
            return False
        return recovered.format(compressed=config.compressed_public_key) == public_key

    if config.curve is Curve.ED25519:
        try:
            VerifyKey(public_key).verify(message, signature)
        except (BadSignatureError, ValueError):
            return False
        return True

    raise UnsupportedCurve(f"Unsupported curve: {config.curve}", data={"chain": config.id})
