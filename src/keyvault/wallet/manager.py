"""
Wallet Manager - The vault's external interface.

Wires the services together and exposes the wallet operations the UI/API
layer calls: create, import, unlock, lock, derive/sign, export, delete,
plus password change and read-only listing. Callers receive addresses,
signatures and (once, for backup) the mnemonic; never seeds or keys.

Every operation is audited. Operations that run the password KDF are
coroutines so the KDF can run off the event loop.
"""

import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..chains import ChainConfig, get_chain, resolve_chains
from ..config import VaultConfig
from ..exceptions import KeyVaultError, WalletExists
from ..models import (
    AuditEvent,
    DerivedAccount,
    WalletSummary,
    OUTCOME_FAILURE,
    OUTCOME_SUCCESS,
)
from ..models.audit import (
    OP_CHANGE_PASSWORD,
    OP_CREATE,
    OP_DELETE,
    OP_DERIVE,
    OP_EXPORT,
    OP_IMPORT,
    OP_SIGN,
)
from ..models.envelope import describe
from ..services.audit import AuditLog
from ..services.session import SessionManager, SessionState
from ..services.signing import sign_message
from .crypto import EncryptionService
from .derivation import ChainDerivationEngine
from .mnemonic import Mnemonic, MnemonicService
from .storage import SecureStorage

logger = logging.getLogger(__name__)

WALLET_ID_LENGTH = 16


def compute_wallet_id(accounts: list[DerivedAccount]) -> str:
    """First 16 hex chars of SHA-256 over "chain:address" pairs sorted by chain."""
    hasher = hashlib.sha256()
    for account in sorted(accounts, key=lambda a: (a.chain, a.account_index)):
        hasher.update(f"{account.chain}:{account.address}".encode("utf-8"))
    return hasher.hexdigest()[:WALLET_ID_LENGTH]


@dataclass(frozen=True)
class CreatedWallet:
    """
    Result of create_wallet.

    mnemonic is handed out exactly once for the user's backup; wipe it
    once it has been shown.
    """
    wallet_id: str
    mnemonic: Mnemonic
    addresses: dict[str, str]
    expires_at: float


@dataclass(frozen=True)
class ImportedWallet:
    """Result of import_wallet."""
    wallet_id: str
    addresses: dict[str, str]
    expires_at: float


class WalletManager:
    """
    Multi-wallet key vault.

    Usage:
        manager = WalletManager(VaultConfig.from_env())
        created = await manager.create_wallet("Main", "password", 12, ["ethereum", "bitcoin"])
        show_backup(created.mnemonic.phrase()); created.mnemonic.wipe()

        manager.lock_wallet(created.wallet_id)
        await manager.unlock_wallet(created.wallet_id, "password")
        signature = manager.derive_or_sign(created.wallet_id, "ethereum", b"hello")
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        clock: Callable[[], float] = time.time,
        mnemonic_service: Optional[MnemonicService] = None,
    ):
        self.config = config or VaultConfig()
        self.storage = SecureStorage(self.config.wallet_dir)
        self.encryption = EncryptionService(self.config.kdf, allow_weak_kdf=self.config.allow_weak_kdf)
        self.mnemonics = mnemonic_service or MnemonicService()
        self.engine = ChainDerivationEngine()
        self.audit = AuditLog(self.config.audit_path)
        self.sessions = SessionManager(
            storage=self.storage,
            encryption=self.encryption,
            mnemonic_service=self.mnemonics,
            audit=self.audit,
            config=self.config,
            clock=clock,
        )

    def _resolve_chains(self, chains) -> list[ChainConfig]:
        selected = resolve_chains(self.config.default_chains if chains is None else chains)
        if not selected:
            raise ValueError("At least one chain must be selected")
        return selected

    def _audit_failure(self, operation: str, wallet_id: Optional[str],
                       error: Exception, metadata: Optional[dict] = None) -> None:
        reason = error.kind if isinstance(error, KeyVaultError) else type(error).__name__
        self.audit.record(operation, wallet_id, OUTCOME_FAILURE, metadata=metadata, reason=reason)

    # ============================================
    # Create / Import
    # ============================================

    async def create_wallet(self, name: str, password: str, word_count: int = 12,
                            chains=None) -> CreatedWallet:
        """
        Generate a new wallet, persist it encrypted and open a session.

        Raises:
            ValueError: bad word count, empty password or no chains
            UnsupportedChain: unknown chain in the selection
            EntropyError: OS random source unavailable
            StorageError: the record could not be written
        """
        try:
            if not password:
                raise ValueError("Password must not be empty")
            selected = self._resolve_chains(chains)
            mnemonic = self.mnemonics.generate(word_count)
        except (KeyVaultError, ValueError) as e:
            self._audit_failure(OP_CREATE, None, e)
            raise

        try:
            wallet_id, addresses, expires_at = await self._store_new_wallet(
                name, mnemonic, password, selected
            )
        except (KeyVaultError, ValueError) as e:
            mnemonic.wipe()
            self._audit_failure(OP_CREATE, None, e)
            raise

        self.audit.record(OP_CREATE, wallet_id, OUTCOME_SUCCESS, metadata={
            "chains": list(addresses), "word_count": word_count,
        })
        logger.info(f"Created wallet {wallet_id} ({', '.join(addresses)})")
        return CreatedWallet(wallet_id=wallet_id, mnemonic=mnemonic,
                             addresses=addresses, expires_at=expires_at)

    async def import_wallet(self, name: str, phrase: str | Mnemonic, password: str,
                            chains=None) -> ImportedWallet:
        """
        Restore a wallet from an existing mnemonic.

        The phrase is fully validated before anything is written.

        Raises:
            WrongWordCount / UnknownWord / ChecksumMismatch: invalid phrase
            WalletExists: this phrase (with these chains) is already stored
            ValueError: empty password or no chains
        """
        try:
            if not password:
                raise ValueError("Password must not be empty")
            selected = self._resolve_chains(chains)
            if isinstance(phrase, Mnemonic):
                phrase = phrase.phrase()
            mnemonic = self.mnemonics.validate(phrase)
        except (KeyVaultError, ValueError, TypeError) as e:
            self._audit_failure(OP_IMPORT, None, e)
            raise

        try:
            with mnemonic:
                wallet_id, addresses, expires_at = await self._store_new_wallet(
                    name, mnemonic, password, selected
                )
        except WalletExists as e:
            self._audit_failure(OP_IMPORT, e.wallet_id, e)
            raise
        except (KeyVaultError, ValueError) as e:
            self._audit_failure(OP_IMPORT, None, e)
            raise

        self.audit.record(OP_IMPORT, wallet_id, OUTCOME_SUCCESS, metadata={
            "chains": list(addresses), "word_count": len(phrase.split()),
        })
        logger.info(f"Imported wallet {wallet_id} ({', '.join(addresses)})")
        return ImportedWallet(wallet_id=wallet_id, addresses=addresses, expires_at=expires_at)

    async def _store_new_wallet(self, name: str, mnemonic: Mnemonic, password: str,
                                chains: list[ChainConfig]) -> tuple[str, dict, float]:
        with self.mnemonics.to_seed(mnemonic) as seed:
            accounts = self.engine.derive_accounts(seed, chains)
            wallet_id = compute_wallet_id(accounts)
            async with self.sessions.wallet_lock(wallet_id):
                if self.storage.exists(wallet_id):
                    raise WalletExists(wallet_id)

                encrypted = await self.encryption.encrypt_async(mnemonic, password)
                self.storage.save(wallet_id, encrypted, accounts, name=name or wallet_id,
                                  overwrite=False)
                expires_at = self.sessions.open_session(wallet_id, seed)

        return wallet_id, {a.chain: a.address for a in accounts}, expires_at

    # ============================================
    # Sessions
    # ============================================

    async def unlock_wallet(self, wallet_id: str, password: str) -> float:
        """Open a session; returns its expiry timestamp."""
        return await self.sessions.unlock(wallet_id, password)

    def lock_wallet(self, wallet_id: str) -> bool:
        """Close a wallet's session and wipe its key."""
        return self.sessions.lock(wallet_id)

    def session_state(self, wallet_id: str) -> SessionState:
        return self.sessions.state(wallet_id)

    def close(self) -> int:
        """Lock every wallet (process teardown)."""
        count = self.sessions.lock_all()
        if count:
            logger.info(f"Locked {count} wallet session(s) on close")
        return count

    # ============================================
    # Derive / Sign
    # ============================================

    def derive_or_sign(self, wallet_id: str, chain, payload: Optional[str | bytes] = None,
                       account_index: int = 0) -> str:
        """
        Derive an address, or sign a payload, through the wallet's session.

        Args:
            wallet_id: An unlocked wallet
            chain: Chain to derive for
            payload: None to return the address; message bytes/str to sign
            account_index: BIP44 account

        Returns:
            The address, or the signature as lowercase hex

        Raises:
            SessionExpired: the wallet is locked or its session has expired
        """
        operation = OP_DERIVE if payload is None else OP_SIGN
        metadata = {"chain": str(getattr(chain, "value", chain)), "account_index": account_index}
        try:
            config = get_chain(chain)
            metadata["chain"] = config.id
            if payload is None:
                result = self.sessions.use_seed(
                    wallet_id,
                    lambda seed: self.engine.derive_account(seed, config, account_index).address,
                )
            else:
                result = self.sessions.use_seed(
                    wallet_id, lambda seed: self._sign(seed, config, account_index, payload)
                )
        except (KeyVaultError, TypeError) as e:
            self._audit_failure(operation, wallet_id, e, metadata)
            raise

        self.audit.record(operation, wallet_id, OUTCOME_SUCCESS, metadata=metadata)
        return result

    def _sign(self, seed, config: ChainConfig, account_index: int, payload) -> str:
        with self.engine.derive_private_key(seed, config, account_index) as private_key:
            return sign_message(config, private_key, payload).hex()

    def add_account(self, wallet_id: str, chain, account_index: int) -> DerivedAccount:
        """
        Derive another account for an unlocked wallet and persist it.

        Returns the stored account (existing one if already derived).
        """
        metadata = {"chain": str(getattr(chain, "value", chain)), "account_index": account_index}
        try:
            config = get_chain(chain)
            metadata["chain"] = config.id
            record = self.storage.load_record(wallet_id)
            existing = record.account_for(config.id, account_index)
            if existing is not None:
                return existing
            account = self.sessions.use_seed(
                wallet_id, lambda seed: self.engine.derive_account(seed, config, account_index)
            )
            self.storage.save(wallet_id, record.encrypted_mnemonic, record.accounts + [account])
        except KeyVaultError as e:
            self._audit_failure(OP_DERIVE, wallet_id, e, metadata)
            raise

        self.audit.record(OP_DERIVE, wallet_id, OUTCOME_SUCCESS,
                          metadata={**metadata, "persisted": True})
        return account

    # ============================================
    # Export / Password / Delete
    # ============================================

    async def export_mnemonic(self, wallet_id: str, password: str) -> Mnemonic:
        """
        Re-authenticate and reveal the mnemonic. Always audited as elevated.

        The caller must wipe the returned Mnemonic.
        """
        try:
            async with self.sessions.wallet_lock(wallet_id):
                mnemonic = await self.sessions.reauthenticate(wallet_id, password)
        except KeyVaultError as e:
            self._audit_failure(OP_EXPORT, wallet_id, e)
            raise

        self.audit.record(OP_EXPORT, wallet_id, OUTCOME_SUCCESS,
                          metadata={"word_count": mnemonic.word_count})
        logger.warning(f"Mnemonic exported for wallet {wallet_id}")
        return mnemonic

    async def change_password(self, wallet_id: str, old_password: str, new_password: str) -> None:
        """
        Re-encrypt the mnemonic under a new password with current parameters.

        The old-password check and the save happen under the wallet lock, so
        of two concurrent changes the second is checked against the first's
        new password.
        """
        try:
            if not new_password:
                raise ValueError("Password must not be empty")
            async with self.sessions.wallet_lock(wallet_id):
                mnemonic = await self.sessions.reauthenticate(wallet_id, old_password, upgrade=False)
                with mnemonic:
                    encrypted = await self.encryption.encrypt_async(mnemonic, new_password)
                record = self.storage.load_record(wallet_id)
                self.storage.save(wallet_id, encrypted, record.accounts)
        except (KeyVaultError, ValueError) as e:
            self._audit_failure(OP_CHANGE_PASSWORD, wallet_id, e)
            raise

        self.audit.record(OP_CHANGE_PASSWORD, wallet_id, OUTCOME_SUCCESS, metadata=describe(encrypted))
        logger.info(f"Password changed for wallet {wallet_id}")

    async def delete_wallet(self, wallet_id: str, purge_audit: bool = False) -> None:
        """
        Irreversibly delete a wallet and wipe its session.

        Waits for any unlock, export or password change in flight for the
        wallet, so none of them can reopen a session or rewrite the record
        afterwards.

        Args:
            purge_audit: Also remove the wallet's audit trail (delete-account
                flow). The deletion itself is still recorded.
        """
        try:
            async with self.sessions.wallet_lock(wallet_id):
                self.sessions.forget(wallet_id)
                self.storage.delete(wallet_id)
        except KeyVaultError as e:
            self._audit_failure(OP_DELETE, wallet_id, e)
            raise

        purged = self.audit.purge(wallet_id) if purge_audit else 0
        self.audit.record(OP_DELETE, wallet_id, OUTCOME_SUCCESS, metadata={"audit_purged": purged})
        logger.warning(f"Deleted wallet {wallet_id}")

    # ============================================
    # Read-only
    # ============================================

    def list_wallets(self) -> list[WalletSummary]:
        return self.storage.list_wallets()

    def get_accounts(self, wallet_id: str) -> list[DerivedAccount]:
        return self.storage.load_record(wallet_id).accounts

    def audit_events(self, wallet_id: Optional[str] = None) -> list[AuditEvent]:
        return self.audit.events(wallet_id)
