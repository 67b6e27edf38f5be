"""Address encoding rules for each supported chain."""

import base64
import binascii
import hashlib
import logging

import base58
import bech32
from Crypto.Hash import RIPEMD160
from eth_utils import keccak, to_checksum_address, is_checksum_address, is_hex_address

from ..chains import AddressEncoding, ChainConfig, get_chain
from ..exceptions import DerivationFailed, UnsupportedCurve

logger = logging.getLogger(__name__)

# TON user-friendly address layout: flag | workchain | account id (32) | crc16
# Flags: 0x11 bounceable, 0x51 non-bounceable; testnet sets 0x80 on top
TON_FLAG_BOUNCEABLE = 0x11
TON_FLAG_NON_BOUNCEABLE = 0x51
TON_FLAG_TESTNET = 0x80
TON_WORKCHAIN = 0


def hash160(data: bytes) -> bytes:
    """Perform RIPEMD160(SHA256(data))."""
    sha256_hash = hashlib.sha256(data).digest()
    return RIPEMD160.new(sha256_hash).digest()


def crc16_xmodem(data: bytes) -> int:
    """CRC16-XMODEM (poly 0x1021, init 0) as used by TON addresses."""
    return binascii.crc_hqx(data, 0)


# ============================================
# Encoders
# ============================================

def evm_address(public_key: bytes) -> str:
    """EIP-55 address from a 65-byte uncompressed (or 64-byte raw) public key."""
    if len(public_key) == 65 and public_key[0] == 0x04:
        public_key = public_key[1:]
    if len(public_key) != 64:
        raise DerivationFailed("EVM address needs an uncompressed secp256k1 public key")
    return to_checksum_address(keccak(public_key)[-20:])


def p2wpkh_address(public_key: bytes, hrp: str = "bc") -> str:
    """Native segwit v0 address from a 33-byte compressed public key."""
    if len(public_key) != 33:
        raise DerivationFailed("P2WPKH address needs a compressed secp256k1 public key")
    address = bech32.encode(hrp, 0, hash160(public_key))
    if address is None:
        raise DerivationFailed("Bech32 encoding failed")
    return address


def base58_address(public_key: bytes) -> str:
    """Solana-style address: the raw 32-byte ed25519 public key in Base58."""
    if len(public_key) != 32:
        raise DerivationFailed("Base58 address needs a 32-byte ed25519 public key")
    return base58.b58encode(public_key).decode("ascii")


def ton_address(public_key: bytes, flag: int = TON_FLAG_NON_BOUNCEABLE,
                workchain: int = TON_WORKCHAIN) -> str:
    """
    TON user-friendly address (36 bytes, Base64url).

    The account id is SHA-256 of the ed25519 public key; layout is
    flag(1) | workchain(1) | account_id(32) | crc16(2).
    """
    if len(public_key) != 32:
        raise DerivationFailed("TON address needs a 32-byte ed25519 public key")
    account_id = hashlib.sha256(public_key).digest()
    body = bytes([flag, workchain & 0xFF]) + account_id
    crc = crc16_xmodem(body)
    return base64.urlsafe_b64encode(body + crc.to_bytes(2, "big")).decode("ascii")


def encode_address(config: ChainConfig, public_key: bytes) -> str:
    """Encode a public key with the chain's address rule."""
    encoding = config.address_encoding
    if encoding is AddressEncoding.EVM_KECCAK:
        return evm_address(public_key)
    if encoding is AddressEncoding.BECH32_P2WPKH:
        return p2wpkh_address(public_key, config.hrp)
    if encoding is AddressEncoding.BASE58:
        return base58_address(public_key)
    if encoding is AddressEncoding.TON_BASE64URL:
        return ton_address(public_key)
    raise UnsupportedCurve(f"No address encoder for {encoding}")


# ============================================
# Validation
# ============================================

def validate_address(chain, address: str) -> bool:
    """
    Check that an address is well formed for the given chain.

    Format and checksum only; says nothing about whether the account exists.
    """
    config = get_chain(chain)
    if not isinstance(address, str) or not address or len(address) > 200:
        return False

    encoding = config.address_encoding
    if encoding is AddressEncoding.EVM_KECCAK:
        # is_hex_address also accepts bare hex without the prefix
        if not address.startswith("0x") or not is_hex_address(address):
            return False
        # Mixed case means the sender claims an EIP-55 checksum
        body = address[2:]
        if body.lower() == body or body.upper() == body:
            return True
        return is_checksum_address(address)

    if encoding is AddressEncoding.BECH32_P2WPKH:
        witver, witprog = bech32.decode(config.hrp, address)
        return witver == 0 and witprog is not None and len(witprog) == 20

    if encoding is AddressEncoding.BASE58:
        try:
            return len(base58.b58decode(address)) == 32
        except ValueError:
            return False

    if encoding is AddressEncoding.TON_BASE64URL:
        if len(address) != 48:
            return False
        try:
            raw = base64.urlsafe_b64decode(address)
        except (binascii.Error, ValueError):
            return False
        if len(raw) != 36:
            return False
        return crc16_xmodem(raw[:34]) == int.from_bytes(raw[34:], "big")

    return False
