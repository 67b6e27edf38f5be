"""
Logging - Vault logging configuration and disk persistence.

Provides:
- Python logging configuration with console and optional file output
- Redaction of anything resembling a mnemonic phrase or raw key material
- Daily log files: keyvault-YYYY-MM-DD.log
- Automatic cleanup of old log files
"""

from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
import logging
import re

from ..utils import get_logs_dir, set_secure_permissions

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_FILE_PREFIX = "keyvault-"

REDACTED = "<redacted>"

# 12 or 24 lowercase words in a row (BIP39 words are 3-8 letters)
_PHRASE_RE = re.compile(r"\b(?:[a-z]{3,8}\s+){11}(?:(?:[a-z]{3,8}\s+){12})?[a-z]{3,8}\b")
# 64+ hex chars: private keys, seeds, derived keys
_HEX_RE = re.compile(r"(?:0x)?[0-9a-fA-F]{64,}")


class RedactingFilter(logging.Filter):
    """
    Mask secret-looking content in log records.

    Applied to the fully formatted message, so secrets passed as %-args
    are caught too. Records are never dropped.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True

        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def redact(text: str) -> str:
    """Replace mnemonic-like phrases and long hex runs with a marker."""
    text = _PHRASE_RE.sub(REDACTED, text)
    return _HEX_RE.sub(REDACTED, text)


def configure_logging(level: int | str = logging.INFO,
                      log_file: Optional[Path] = None) -> None:
    """
    Configure Python logging for the vault.

    Sets up a root logger with console output and, if log_file is given,
    a file handler. Every handler gets a RedactingFilter.

    Args:
        level: Logging level (default: INFO)
        log_file: Optional path for file output (see get_log_file_path)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root_logger = logging.getLogger()

    # Only configure if not already configured
    if root_logger.handlers:
        return

    root_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt='%H:%M:%S')

    # Console handler with simple format
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(RedactingFilter())
    root_logger.addHandler(console_handler)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)
        set_secure_permissions(log_file)


def get_log_file_path(date: Optional[datetime] = None,
                      logs_dir: Optional[Path] = None) -> Path:
    """Get the log file path for a specific date (defaults to today)."""
    if date is None:
        date = datetime.now()
    if logs_dir is None:
        logs_dir = get_logs_dir()
    filename = f"{LOG_FILE_PREFIX}{date.strftime('%Y-%m-%d')}.log"
    return Path(logs_dir) / filename


def cleanup_old_logs(retention_days: int, logs_dir: Optional[Path] = None) -> int:
    """
    Delete log files older than retention_days.

    Args:
        retention_days: Delete files older than this (0 = delete all)
        logs_dir: Directory to prune (defaults to the vault logs directory)

    Returns:
        Number of files deleted
    """
    if retention_days < 0:
        return 0

    if logs_dir is None:
        logs_dir = get_logs_dir()
    cutoff_date = datetime.now() - timedelta(days=retention_days)
    deleted_count = 0

    for file_path in Path(logs_dir).glob(f"{LOG_FILE_PREFIX}*.log"):
        # Parse date from filename
        try:
            date_str = file_path.stem.replace(LOG_FILE_PREFIX, "")
            file_date = datetime.strptime(date_str, "%Y-%m-%d")

            if file_date < cutoff_date:
                file_path.unlink()
                deleted_count += 1
        except (ValueError, OSError):
            # Skip files that don't match expected format
            continue

    return deleted_count
