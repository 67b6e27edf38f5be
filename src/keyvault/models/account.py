"""
Derived account model.

Public output of key derivation: chain, path, address and public key.
Persisted in plaintext alongside the encrypted mnemonic; never carries
private material.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class DerivedAccount:
    """A per-chain account derived from the wallet seed."""
    chain: str              # Chain identifier (e.g., "ethereum")
    derivation_path: str    # Full path (e.g., "m/44'/60'/0'/0/0")
    address: str            # Chain-encoded address
    public_key: bytes       # Raw public key bytes
    account_index: int = 0

    def to_dict(self) -> dict:
        return {
            "chain": self.chain,
            "derivation_path": self.derivation_path,
            "address": self.address,
            "public_key": self.public_key.hex(),
            "account_index": self.account_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DerivedAccount":
        return cls(
            chain=data["chain"],
            derivation_path=data["derivation_path"],
            address=data["address"],
            public_key=bytes.fromhex(data["public_key"]),
            account_index=int(data.get("account_index", 0)),
        )
