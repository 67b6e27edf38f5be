"""
Vault configuration.

Security constants live here with their production values; a VaultConfig
instance carries them (plus paths and session policy) into every service.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from .exceptions import ConfigError
from .utils import get_app_dir

logger = logging.getLogger(__name__)


# ============================================
# Security Constants
# ============================================

# Argon2id parameters (OWASP recommendations for high-security)
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 65536  # 64 MB (KiB units)
ARGON2_PARALLELISM = 4
ARGON2_HASH_LEN = 32  # 256 bits for AES-256

# Floors that production parameters may never go below
MIN_ARGON2_TIME_COST = 3
MIN_ARGON2_MEMORY_COST = 65536

# Session policy
DEFAULT_SESSION_TTL = 15 * 60  # 15 minutes
DEFAULT_MAX_FAILED_ATTEMPTS = 5
DEFAULT_LOCKOUT_SECONDS = 30

AUDIT_LOG_FILENAME = "audit.jsonl"


@dataclass(frozen=True)
class KdfSettings:
    """Argon2id cost parameters used for new envelopes."""
    time_cost: int = ARGON2_TIME_COST
    memory_cost: int = ARGON2_MEMORY_COST
    parallelism: int = ARGON2_PARALLELISM
    hash_len: int = ARGON2_HASH_LEN

    @property
    def is_production_strength(self) -> bool:
        return (self.time_cost >= MIN_ARGON2_TIME_COST
                and self.memory_cost >= MIN_ARGON2_MEMORY_COST)


@dataclass
class VaultConfig:
    """Runtime configuration for the key vault."""
    data_dir: Path = field(default_factory=get_app_dir)
    session_ttl: float = DEFAULT_SESSION_TTL
    kdf: KdfSettings = field(default_factory=KdfSettings)
    allow_weak_kdf: bool = False          # Test profiles only
    max_failed_attempts: int = DEFAULT_MAX_FAILED_ATTEMPTS
    lockout_seconds: float = DEFAULT_LOCKOUT_SECONDS
    default_chains: tuple = ("ethereum", "bitcoin", "solana", "ton")
    audit_filename: str = AUDIT_LOG_FILENAME
    log_level: str = "INFO"

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.validate()

    def validate(self) -> None:
        """Raise ConfigError if any value is out of range."""
        if self.session_ttl <= 0:
            raise ConfigError(f"session_ttl must be positive, got {self.session_ttl}")
        if self.max_failed_attempts < 1:
            raise ConfigError("max_failed_attempts must be at least 1")
        if self.lockout_seconds < 0:
            raise ConfigError("lockout_seconds cannot be negative")
        if self.kdf.hash_len != 32:
            raise ConfigError("AES-256 requires a 32-byte derived key")
        if not self.kdf.is_production_strength and not self.allow_weak_kdf:
            raise ConfigError(
                f"Argon2id parameters below production floor "
                f"(t>={MIN_ARGON2_TIME_COST}, m>={MIN_ARGON2_MEMORY_COST} KiB)"
            )
        if logging.getLevelName(self.log_level.upper()) == f"Level {self.log_level.upper()}":
            raise ConfigError(f"Unknown log level: {self.log_level}")

    @property
    def wallet_dir(self) -> Path:
        return self.data_dir / "wallets"

    @property
    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def audit_path(self) -> Path:
        return self.data_dir / self.audit_filename

    def with_overrides(self, **changes) -> "VaultConfig":
        """Return a copy with the given fields replaced (re-validated)."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None) -> "VaultConfig":
        """
        Build a config from KEYVAULT_* environment variables.

        Recognised: KEYVAULT_HOME, KEYVAULT_SESSION_TTL,
        KEYVAULT_MAX_FAILED_ATTEMPTS, KEYVAULT_LOCKOUT_SECONDS,
        KEYVAULT_LOG_LEVEL. Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        kwargs = {}

        if env.get("KEYVAULT_HOME"):
            kwargs["data_dir"] = get_app_dir(Path(env["KEYVAULT_HOME"]).expanduser())

        numeric = {
            "KEYVAULT_SESSION_TTL": ("session_ttl", float),
            "KEYVAULT_MAX_FAILED_ATTEMPTS": ("max_failed_attempts", int),
            "KEYVAULT_LOCKOUT_SECONDS": ("lockout_seconds", float),
        }
        for var, (name, cast) in numeric.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                kwargs[name] = cast(raw)
            except ValueError:
                raise ConfigError(f"{var} must be a number, got {raw!r}") from None

        if env.get("KEYVAULT_LOG_LEVEL"):
            kwargs["log_level"] = env["KEYVAULT_LOG_LEVEL"]

        config = cls(**kwargs)
        logger.debug(f"Loaded vault config (data_dir={config.data_dir}, ttl={config.session_ttl}s)")
        return config
