"""
Session Manager - Bounded-lifetime unlocked sessions.

State machine per wallet:

    LOCKED -> UNLOCKING -> UNLOCKED -> EXPIRED -> LOCKED

An unlocked session holds a SessionKey: a random 32-byte key that seals the
wallet seed with AES-256-GCM in memory. The seed is opened only inside a
single use_seed() call and wiped when that call returns. Nothing outside this
module ever gets a reference to the key or the sealed seed.

Expiry is a timestamp comparison on every access, against an injectable
clock. Access refreshes last_access but never moves expires_at.
"""

import asyncio
import functools
import logging
import os
import threading
import time
from enum import Enum
from typing import Callable, Optional, TypeVar

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import VaultConfig
from ..exceptions import (
    InvalidPasswordOrCorrupted,
    KeyVaultError,
    SessionExpired,
    StorageError,
    TooManyAttempts,
    WalletNotFound,
)
from ..models import EncryptedMnemonic, OUTCOME_FAILURE, OUTCOME_SUCCESS
from ..models.audit import OP_LOCK, OP_UNLOCK
from ..utils import timestamp_to_iso
from ..wallet.crypto import EncryptionService
from ..wallet.mnemonic import Mnemonic, MnemonicService, Seed
from ..wallet.secure import SecretBytes
from ..wallet.storage import SecureStorage
from .audit import AuditLog

logger = logging.getLogger(__name__)

T = TypeVar("T")

SESSION_KEY_SIZE = 32
SESSION_NONCE_SIZE = 12


class SessionState(str, Enum):
    LOCKED = "locked"
    UNLOCKING = "unlocking"
    UNLOCKED = "unlocked"
    EXPIRED = "expired"


# ============================================
# Session Key
# ============================================

class SessionKey:
    """
    In-memory session for one wallet.

    Never serialisable; repr is redacted. wipe() zeroes the key, after which
    the sealed seed is unrecoverable.
    """

    __slots__ = ("wallet_id", "created_at", "expires_at", "last_access",
                 "_key", "_nonce", "_sealed")

    def __init__(self, wallet_id: str, seed: Seed, created_at: float, ttl: float):
        self.wallet_id = wallet_id
        self.created_at = created_at
        self.expires_at = created_at + ttl
        self.last_access = created_at

        self._key = SecretBytes(os.urandom(SESSION_KEY_SIZE))
        self._nonce = os.urandom(SESSION_NONCE_SIZE)
        self._sealed = AESGCM(self._key.reveal()).encrypt(
            self._nonce, seed.reveal(), wallet_id.encode("utf-8")
        )

    @property
    def wiped(self) -> bool:
        return self._key.wiped

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def touch(self, now: float) -> None:
        """Record an access. Does not extend expiry."""
        self.last_access = now

    def open_seed(self) -> Seed:
        """Unseal the seed. Caller must wipe it (use as a context manager)."""
        if self._key.wiped:
            raise SessionExpired(self.wallet_id)
        try:
            plaintext = AESGCM(self._key.reveal()).decrypt(
                self._nonce, self._sealed, self.wallet_id.encode("utf-8")
            )
        except InvalidTag:
            raise SessionExpired(self.wallet_id) from None
        return Seed(bytearray(plaintext))

    def wipe(self) -> None:
        self._key.wipe()
        self._sealed = b""

    def __repr__(self) -> str:
        state = "wiped" if self.wiped else f"expires_at={self.expires_at:.0f}"
        return f"<SessionKey {self.wallet_id} redacted ({state})>"

    def __reduce__(self):
        raise TypeError("SessionKey cannot be serialized")


# ============================================
# Session Manager
# ============================================

class SessionManager:
    """
    Owns every SessionKey; callers get results, never the key.

    Usage:
        sessions = SessionManager(storage, encryption, mnemonics, audit, config)
        expires_at = await sessions.unlock(wallet_id, password)
        address = sessions.use_seed(wallet_id, lambda seed: engine.derive_account(seed, "ethereum").address)
        sessions.lock(wallet_id)
    """

    def __init__(
        self,
        storage: SecureStorage,
        encryption: EncryptionService,
        mnemonic_service: Optional[MnemonicService] = None,
        audit: Optional[AuditLog] = None,
        config: Optional[VaultConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.encryption = encryption
        self.mnemonic_service = mnemonic_service if mnemonic_service is not None else MnemonicService()
        self.audit = audit if audit is not None else AuditLog()
        self.config = config if config is not None else VaultConfig()
        self.clock = clock

        self._sessions: dict[str, SessionKey] = {}
        self._expired: set[str] = set()
        self._unlocking: dict[str, int] = {}
        self._failures: dict[str, int] = {}
        self._locked_until: dict[str, float] = {}
        self._unlock_locks: dict[str, tuple] = {}
        self._mutex = threading.RLock()

    @property
    def ttl(self) -> float:
        return self.config.session_ttl

    # ============================================
    # Unlock
    # ============================================

    async def unlock(self, wallet_id: str, password: str) -> float:
        """
        Decrypt a wallet's mnemonic and open a session.

        Unlocks for the same wallet are serialised; a successful unlock
        replaces (and wipes) any previous session. If the caller cancels,
        the decryption still runs to completion in the executor and its
        result is wiped without opening a session.

        Returns:
            expires_at (clock timestamp)

        Raises:
            TooManyAttempts: wallet is throttled after repeated failures
            InvalidPasswordOrCorrupted: wrong password or tampered envelope
            WalletNotFound / StorageError: no readable record
        """
        async with self.wallet_lock(wallet_id):
            try:
                self.check_attempts(wallet_id)
                record = self.storage.load_record(wallet_id)
            except KeyVaultError as e:
                self._audit_unlock_failure(wallet_id, e.kind)
                raise

            self._begin_unlocking(wallet_id)
            try:
                loop = asyncio.get_running_loop()
                work = loop.run_in_executor(
                    None, functools.partial(self._open_envelope, record.encrypted_mnemonic, password)
                )
                try:
                    seed, upgraded = await asyncio.shield(work)
                except asyncio.CancelledError:
                    work.add_done_callback(_discard_unlock_result)
                    self._audit_unlock_failure(wallet_id, "cancelled")
                    logger.info(f"Unlock of wallet {wallet_id} abandoned by caller")
                    raise
            except InvalidPasswordOrCorrupted as e:
                self.record_failure(wallet_id)
                self._audit_unlock_failure(wallet_id, e.kind)
                raise
            except KeyVaultError as e:
                self._audit_unlock_failure(wallet_id, e.kind)
                raise
            finally:
                self._end_unlocking(wallet_id)

            with seed:
                if not self.storage.exists(wallet_id):
                    # Deleted outside wallet_lock while decrypting
                    self._audit_unlock_failure(wallet_id, WalletNotFound.kind)
                    raise WalletNotFound(wallet_id)
                self.record_success(wallet_id)
                expires_at = self.open_session(wallet_id, seed)

            if upgraded is not None:
                self._persist_upgrade(wallet_id, upgraded, record.accounts)

            self.audit.record(OP_UNLOCK, wallet_id, OUTCOME_SUCCESS, metadata={
                "expires_at": timestamp_to_iso(expires_at),
                "envelope_upgraded": upgraded is not None,
            })
            logger.info(f"Unlocked wallet {wallet_id} (ttl {self.ttl:.0f}s)")
            return expires_at

    def _open_envelope(self, payload: EncryptedMnemonic,
                       password: str) -> tuple[Seed, Optional[EncryptedMnemonic]]:
        """Executor body: decrypt, stretch to seed, re-encrypt legacy envelopes."""
        mnemonic = self.encryption.decrypt(payload, password)
        with mnemonic:
            seed = self.mnemonic_service.to_seed(mnemonic)
            upgraded = None
            if self.encryption.needs_upgrade(payload):
                upgraded = self.encryption.encrypt(mnemonic, password)
        return seed, upgraded

    async def reauthenticate(self, wallet_id: str, password: str,
                             upgrade: bool = True) -> Mnemonic:
        """
        Verify a password against the stored envelope and return the mnemonic.

        Used by export and password change; the caller must hold
        wallet_lock(wallet_id) so the check and whatever follows it see the
        same record. Shares the unlock throttle and (with upgrade) re-encrypts
        legacy envelopes like unlock does. Does not open a session.
        The caller must wipe the returned mnemonic.
        """
        self.check_attempts(wallet_id)
        record = self.storage.load_record(wallet_id)
        payload = record.encrypted_mnemonic
        try:
            mnemonic = await self.encryption.decrypt_async(payload, password)
        except InvalidPasswordOrCorrupted:
            self.record_failure(wallet_id)
            raise
        self.record_success(wallet_id)

        if upgrade and self.encryption.needs_upgrade(payload):
            upgraded = await self.encryption.encrypt_async(mnemonic, password)
            self._persist_upgrade(wallet_id, upgraded, record.accounts)
        return mnemonic

    def _persist_upgrade(self, wallet_id: str, upgraded: EncryptedMnemonic, accounts) -> None:
        if not self.storage.exists(wallet_id):
            logger.warning(f"Wallet {wallet_id} no longer stored, dropping upgraded envelope")
            return
        try:
            self.storage.save(wallet_id, upgraded, accounts)
        except StorageError as e:
            # The old envelope still decrypts; retry on next unlock
            logger.warning(f"Could not persist upgraded envelope for {wallet_id}: {e}")
            return
        logger.info(f"Upgraded envelope for wallet {wallet_id} to v{upgraded.version}")

    def _audit_unlock_failure(self, wallet_id: str, reason: str) -> None:
        self.audit.record(OP_UNLOCK, wallet_id, OUTCOME_FAILURE, reason=reason)

    def wallet_lock(self, wallet_id: str) -> asyncio.Lock:
        """
        Lock serialising every password-checking or record-replacing
        operation on one wallet (unlock, export, password change, delete).
        """
        # asyncio locks are bound to a loop; keep one per (wallet, loop)
        loop = asyncio.get_running_loop()
        with self._mutex:
            entry = self._unlock_locks.get(wallet_id)
            if entry is None or entry[0] is not loop:
                entry = (loop, asyncio.Lock())
                self._unlock_locks[wallet_id] = entry
            return entry[1]

    def _begin_unlocking(self, wallet_id: str) -> None:
        with self._mutex:
            self._unlocking[wallet_id] = self._unlocking.get(wallet_id, 0) + 1

    def _end_unlocking(self, wallet_id: str) -> None:
        with self._mutex:
            remaining = self._unlocking.get(wallet_id, 0) - 1
            if remaining > 0:
                self._unlocking[wallet_id] = remaining
            else:
                self._unlocking.pop(wallet_id, None)

    # ============================================
    # Sessions
    # ============================================

    def open_session(self, wallet_id: str, seed: Seed) -> float:
        """
        Install a session for a seed the caller already holds.

        Any previous session for the wallet is wiped first. The seed is
        copied into the sealed session; the caller still owns (and wipes) it.

        Returns:
            expires_at
        """
        now = self.clock()
        session = SessionKey(wallet_id, seed, created_at=now, ttl=self.ttl)
        with self._mutex:
            previous = self._sessions.pop(wallet_id, None)
            if previous is not None:
                previous.wipe()
            self._sessions[wallet_id] = session
            self._expired.discard(wallet_id)
        return session.expires_at

    def use_seed(self, wallet_id: str, fn: Callable[[Seed], T]) -> T:
        """
        Run fn with the unsealed seed and wipe it afterwards.

        Raises:
            SessionExpired: no session, or its TTL has elapsed
        """
        with self._mutex:
            session = self._active_session(wallet_id)
            session.touch(self.clock())
            with session.open_seed() as seed:
                return fn(seed)

    def _active_session(self, wallet_id: str) -> SessionKey:
        session = self._sessions.get(wallet_id)
        if session is None:
            raise SessionExpired(wallet_id)
        if session.is_expired(self.clock()):
            self._expire(wallet_id)
            raise SessionExpired(wallet_id)
        return session

    def _expire(self, wallet_id: str) -> None:
        session = self._sessions.pop(wallet_id, None)
        if session is not None:
            session.wipe()
            self._expired.add(wallet_id)
            logger.info(f"Session for wallet {wallet_id} expired")

    def lock(self, wallet_id: str) -> bool:
        """
        Wipe a wallet's session.

        Returns:
            True if a live session was closed
        """
        with self._mutex:
            session = self._sessions.pop(wallet_id, None)
            was_live = session is not None and not session.is_expired(self.clock())
            if session is not None:
                session.wipe()
            self._expired.discard(wallet_id)

        self.audit.record(OP_LOCK, wallet_id, OUTCOME_SUCCESS, metadata={"was_unlocked": was_live})
        if was_live:
            logger.info(f"Locked wallet {wallet_id}")
        return was_live

    def lock_all(self) -> int:
        """Wipe every session (process teardown). Returns how many were live."""
        with self._mutex:
            wallet_ids = list(self._sessions)
        return sum(1 for wallet_id in wallet_ids if self.lock(wallet_id))

    def forget(self, wallet_id: str) -> None:
        """Drop all session and throttle state for a deleted wallet."""
        with self._mutex:
            session = self._sessions.pop(wallet_id, None)
            if session is not None:
                session.wipe()
            self._expired.discard(wallet_id)
            self._failures.pop(wallet_id, None)
            self._locked_until.pop(wallet_id, None)

    # ============================================
    # Queries
    # ============================================

    def state(self, wallet_id: str) -> SessionState:
        with self._mutex:
            if wallet_id in self._unlocking:
                return SessionState.UNLOCKING
            session = self._sessions.get(wallet_id)
            if session is not None and session.is_expired(self.clock()):
                self._expire(wallet_id)
                session = None
            if session is not None:
                return SessionState.UNLOCKED
            if wallet_id in self._expired:
                return SessionState.EXPIRED
            return SessionState.LOCKED

    def is_unlocked(self, wallet_id: str) -> bool:
        return self.state(wallet_id) is SessionState.UNLOCKED

    def expires_at(self, wallet_id: str) -> Optional[float]:
        """Expiry timestamp of the live session, or None."""
        if not self.is_unlocked(wallet_id):
            return None
        return self._sessions[wallet_id].expires_at

    def remaining_seconds(self, wallet_id: str) -> float:
        """Seconds until the session expires (0 when locked)."""
        expires_at = self.expires_at(wallet_id)
        if expires_at is None:
            return 0.0
        return max(0.0, expires_at - self.clock())

    # ============================================
    # Throttling
    # ============================================

    def check_attempts(self, wallet_id: str) -> None:
        """Raise TooManyAttempts while a wallet is in its lockout window."""
        with self._mutex:
            locked_until = self._locked_until.get(wallet_id)
            if locked_until is None:
                return
            now = self.clock()
            if now < locked_until:
                raise TooManyAttempts(locked_until - now)
            # Window over, start counting afresh
            del self._locked_until[wallet_id]
            self._failures.pop(wallet_id, None)

    def record_failure(self, wallet_id: str) -> None:
        with self._mutex:
            count = self._failures.get(wallet_id, 0) + 1
            self._failures[wallet_id] = count
            if count >= self.config.max_failed_attempts:
                self._locked_until[wallet_id] = self.clock() + self.config.lockout_seconds
                logger.warning(f"Wallet {wallet_id} throttled after {count} failed attempts")

    def record_success(self, wallet_id: str) -> None:
        with self._mutex:
            self._failures.pop(wallet_id, None)
            self._locked_until.pop(wallet_id, None)

    def failed_attempts(self, wallet_id: str) -> int:
        return self._failures.get(wallet_id, 0)


def _discard_unlock_result(future) -> None:
    """Wipe the seed from an unlock nobody is waiting for any more."""
    if future.cancelled() or future.exception() is not None:
        return
    seed, _ = future.result()
    seed.wipe()
