"""
Audit Log - Append-only record of security-relevant operations.

Events are kept in memory and appended to a JSON-lines file. Writing is
best-effort: a failed write never blocks the operation being audited, it
puts the log in degraded mode and logs a warning instead.

Metadata is sanitised before it is stored; anything keyed like a secret
is dropped.
"""

import json
import logging
import os
import re
import threading
from pathlib import Path
from typing import Optional

from ..models import AuditEvent, OUTCOME_SUCCESS, SEVERITY_INFO, SEVERITY_ELEVATED
from ..models.audit import OPERATIONS, OP_EXPORT, OP_DELETE
from ..utils import set_secure_permissions
from ..wallet.secure import SecretBytes

logger = logging.getLogger(__name__)

# Operations that are always recorded as elevated
ELEVATED_OPERATIONS = frozenset({OP_EXPORT, OP_DELETE})

_SECRET_KEY_RE = re.compile(
    r"pass(word|phrase)?|mnemonic|phrase|seed|private|secret|key_?material|entropy",
    re.IGNORECASE,
)
_SAFE_VALUE_TYPES = (str, int, float, bool, type(None))


def sanitize_metadata(metadata: Optional[dict]) -> dict:
    """
    Strip anything that could carry secret material.

    Drops keys that name a secret and values that aren't plain scalars
    (bytes, SecretBytes, nested containers of those).
    """
    clean = {}
    for key, value in (metadata or {}).items():
        key = str(key)
        if _SECRET_KEY_RE.search(key):
            continue
        if isinstance(value, (SecretBytes, bytes, bytearray)):
            continue
        if isinstance(value, (list, tuple)):
            value = [v for v in value if isinstance(v, _SAFE_VALUE_TYPES)]
        elif isinstance(value, dict):
            value = sanitize_metadata(value)
        elif not isinstance(value, _SAFE_VALUE_TYPES):
            value = str(value)
        clean[key] = value
    return clean


class AuditLog:
    """
    Append-only audit trail.

    Usage:
        audit = AuditLog(config.audit_path)
        audit.record("unlock", wallet_id, "failure", reason="invalid_password_or_corrupted")
        audit.query(wallet_id=wallet_id, outcome="failure")
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self.degraded = False
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        """Load previously written events from disk."""
        if self.path is None or not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        self._events.append(AuditEvent.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, KeyError, TypeError) as e:
                        logger.warning(f"Skipping malformed audit entry at line {line_no}: {e}")
        except OSError as e:
            self._degrade(f"Failed to read audit log: {e}")

    # ============================================
    # Recording
    # ============================================

    def record(
        self,
        operation: str,
        wallet_id: Optional[str],
        outcome: str = OUTCOME_SUCCESS,
        metadata: Optional[dict] = None,
        severity: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AuditEvent:
        """
        Record an operation. Never raises for I/O problems.

        Args:
            operation: One of the OP_* tags
            wallet_id: Wallet the operation touched (None for global ops)
            outcome: success | failure
            metadata: Non-sensitive details; sanitised before storing
            severity: Defaults to elevated for export/delete, info otherwise
            reason: Failure category (an error kind)
        """
        if operation not in OPERATIONS:
            logger.warning(f"Recording unknown audit operation: {operation}")
        if severity is None:
            severity = SEVERITY_ELEVATED if operation in ELEVATED_OPERATIONS else SEVERITY_INFO

        event = AuditEvent.create(
            operation=operation,
            wallet_id=wallet_id,
            outcome=outcome,
            severity=severity,
            reason=reason,
            metadata=sanitize_metadata(metadata),
        )

        with self._lock:
            self._events.append(event)
            self._append(event)

        if event.severity == SEVERITY_ELEVATED:
            logger.info(f"Audit [{severity}] {operation} {wallet_id or '-'}: {outcome}")
        else:
            logger.debug(f"Audit {operation} {wallet_id or '-'}: {outcome}")
        return event

    def _append(self, event: AuditEvent) -> None:
        if self.path is None:
            return
        try:
            line = json.dumps(event.to_dict(), sort_keys=True)
            is_new = not self.path.exists()
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
            if is_new:
                set_secure_permissions(self.path)
        except (OSError, TypeError, ValueError) as e:
            self._degrade(f"Failed to write audit entry {event.id}: {e}")

    def _degrade(self, message: str) -> None:
        if not self.degraded:
            logger.warning("Audit log entering degraded mode (entries kept in memory only)")
        self.degraded = True
        logger.warning(message)

    # ============================================
    # Queries
    # ============================================

    def events(self, wallet_id: Optional[str] = None) -> list[AuditEvent]:
        """All events, oldest first, optionally for one wallet."""
        return self.query(wallet_id=wallet_id)

    def query(
        self,
        wallet_id: Optional[str] = None,
        operation: Optional[str] = None,
        outcome: Optional[str] = None,
        severity: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEvent]:
        """Filter events; limit keeps the most recent N."""
        with self._lock:
            results = [
                e for e in self._events
                if (wallet_id is None or e.wallet_id == wallet_id)
                and (operation is None or e.operation == operation)
                and (outcome is None or e.outcome == outcome)
                and (severity is None or e.severity == severity)
            ]
        if limit is not None:
            results = results[-limit:] if limit > 0 else []
        return results

    def export(self, wallet_id: str) -> list[dict]:
        """Serialisable copy of one wallet's trail (data-export flow)."""
        return [e.to_dict() for e in self.query(wallet_id=wallet_id)]

    def purge(self, wallet_id: str) -> int:
        """
        Remove every event for a wallet (delete-account flow).

        Returns:
            Number of events removed
        """
        with self._lock:
            kept = [e for e in self._events if e.wallet_id != wallet_id]
            removed = len(self._events) - len(kept)
            if removed == 0:
                return 0
            self._events = kept
            self._rewrite()

        logger.info(f"Purged {removed} audit event(s) for wallet {wallet_id}")
        return removed

    def _rewrite(self) -> None:
        """Rewrite the file from memory (temp file + replace)."""
        if self.path is None:
            return
        temp_path = self.path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                for event in self._events:
                    f.write(json.dumps(event.to_dict(), sort_keys=True) + "\n")
                f.flush()
                os.fsync(f.fileno())
            set_secure_permissions(temp_path)
            temp_path.replace(self.path)
        except OSError as e:
            self._degrade(f"Failed to rewrite audit log: {e}")

    def __len__(self) -> int:
        return len(self._events)
