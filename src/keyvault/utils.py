"""
Shared utility functions for the key vault.

Contains path helpers, file permission helpers and timestamp formatting
used across packages.
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Environment variable that relocates all vault data
APP_DIR_ENV = "KEYVAULT_HOME"

# Secure file permissions (Unix only)
SECURE_FILE_MODE = 0o600  # Owner read/write only
SECURE_DIR_MODE = 0o700


def get_app_dir(base: Optional[Path] = None) -> Path:
    """Get the application data directory."""
    if base is not None:
        app_dir = Path(base)
    elif os.environ.get(APP_DIR_ENV):
        app_dir = Path(os.environ[APP_DIR_ENV]).expanduser()
    elif getattr(sys, 'frozen', False):
        # Running as compiled
        app_dir = Path(sys.executable).parent / "data"
    else:
        app_dir = Path.home() / ".keyvault"

    app_dir.mkdir(parents=True, exist_ok=True)
    return app_dir


def get_wallet_dir(base: Optional[Path] = None) -> Path:
    """Get the wallet storage directory."""
    wallet_dir = get_app_dir(base) / "wallets"
    wallet_dir.mkdir(parents=True, exist_ok=True)
    set_secure_permissions(wallet_dir, SECURE_DIR_MODE)
    return wallet_dir


def get_logs_dir(base: Optional[Path] = None) -> Path:
    """Get the logs directory."""
    logs_dir = get_app_dir(base) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir


def set_secure_permissions(filepath: Path, mode: int = SECURE_FILE_MODE) -> None:
    """
    Set restrictive permissions on Unix systems.

    Sets files to mode 0600 (owner read/write only) to protect wallet data.
    No-op on Windows (NTFS uses ACLs, not Unix permissions).
    """
    if os.name == 'posix':
        try:
            os.chmod(filepath, mode)
        except OSError:
            # Best effort - don't fail save operation if chmod fails
            pass


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string with a Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def timestamp_to_iso(ts: float) -> str:
    """Convert a POSIX timestamp to the same ISO format as utc_now_iso()."""
    return datetime.fromtimestamp(ts, timezone.utc).isoformat().replace("+00:00", "Z")
