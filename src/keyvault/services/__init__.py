"""
Services package - Stateful services around the wallet core.

Contains:
- SessionManager, SessionState: time-bounded unlocked sessions
- AuditLog: append-only security event log
- sign_message / verify_message: per-chain message signing
- configure_logging: console/file logging with secret redaction
"""

from .audit import AuditLog, sanitize_metadata
from .session import SessionManager, SessionState
from .signing import sign_message, verify_message
from .logging import configure_logging, cleanup_old_logs, RedactingFilter

__all__ = [
    "AuditLog",
    "sanitize_metadata",
    "SessionManager",
    "SessionState",
    "sign_message",
    "verify_message",
    "configure_logging",
    "cleanup_old_logs",
    "RedactingFilter",
]
