"""
Wallet record model.

One persisted record per wallet: {wallet_id, name, encrypted mnemonic,
derived accounts, created_at}. This is the on-disk layout owned by
SecureStorage.
"""

from dataclasses import dataclass, field
from typing import Optional

from .account import DerivedAccount
from .envelope import EncryptedMnemonic

RECORD_FORMAT = 1


@dataclass
class WalletRecord:
    """Persisted wallet: ciphertext plus public metadata only."""
    wallet_id: str
    name: str
    encrypted_mnemonic: EncryptedMnemonic
    accounts: list[DerivedAccount] = field(default_factory=list)
    created_at: str = ""
    updated_at: Optional[str] = None

    @property
    def chains(self) -> list[str]:
        return [a.chain for a in self.accounts]

    @property
    def addresses(self) -> dict[str, str]:
        """chain -> address"""
        return {a.chain: a.address for a in self.accounts}

    def account_for(self, chain: str, account_index: int = 0) -> Optional[DerivedAccount]:
        for account in self.accounts:
            if account.chain == chain and account.account_index == account_index:
                return account
        return None

    def to_dict(self) -> dict:
        data = {
            "format": RECORD_FORMAT,
            "wallet_id": self.wallet_id,
            "name": self.name,
            "created_at": self.created_at,
            "encrypted_mnemonic": self.encrypted_mnemonic.to_dict(),
            "accounts": [a.to_dict() for a in self.accounts],
        }
        if self.updated_at:
            data["updated_at"] = self.updated_at
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "WalletRecord":
        return cls(
            wallet_id=data["wallet_id"],
            name=data.get("name", ""),
            encrypted_mnemonic=EncryptedMnemonic.from_dict(data["encrypted_mnemonic"]),
            accounts=[DerivedAccount.from_dict(a) for a in data.get("accounts", [])],
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class WalletSummary:
    """Public listing entry (no envelope)."""
    wallet_id: str
    name: str
    addresses: dict
    created_at: str

    def display_label(self) -> str:
        """Format for display: <id> - Name"""
        return f"{self.wallet_id} - {self.name}"
