"""
Audit event model.

Records security-relevant operations and their outcome.

Operations:
- create / import: wallet created from a new or existing mnemonic
- unlock / lock: session opened or closed
- derive / sign: key material used through an active session
- export: mnemonic revealed to the user (elevated)
- change_password: envelope re-encrypted
- delete: wallet removed (elevated)
"""

import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Optional

# Operation tags
OP_CREATE = "create"
OP_IMPORT = "import"
OP_UNLOCK = "unlock"
OP_LOCK = "lock"
OP_DERIVE = "derive"
OP_SIGN = "sign"
OP_EXPORT = "export"
OP_CHANGE_PASSWORD = "change_password"
OP_DELETE = "delete"

OPERATIONS = (
    OP_CREATE, OP_IMPORT, OP_UNLOCK, OP_LOCK, OP_DERIVE,
    OP_SIGN, OP_EXPORT, OP_CHANGE_PASSWORD, OP_DELETE,
)

# Outcomes
OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"

# Severities
SEVERITY_INFO = "info"
SEVERITY_ELEVATED = "elevated"


@dataclass(frozen=True)
class AuditEvent:
    """One append-only audit entry."""
    id: str
    timestamp: str                  # ISO format, UTC
    operation: str                  # One of OPERATIONS
    wallet_id: Optional[str]
    outcome: str                    # success | failure
    severity: str = SEVERITY_INFO
    reason: Optional[str] = None    # Failure category (error kind), never a secret
    metadata: dict = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        operation: str,
        wallet_id: Optional[str],
        outcome: str,
        severity: str = SEVERITY_INFO,
        reason: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> "AuditEvent":
        """Create a new event stamped with a fresh id and the current time."""
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            operation=operation,
            wallet_id=wallet_id,
            outcome=outcome,
            severity=severity,
            reason=reason,
            metadata=dict(metadata or {}),
        )

    @property
    def succeeded(self) -> bool:
        return self.outcome == OUTCOME_SUCCESS

    def to_dict(self) -> dict:
        d = asdict(self)
        # Remove None values for cleaner JSON
        return {k: v for k, v in d.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict) -> "AuditEvent":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            operation=data["operation"],
            wallet_id=data.get("wallet_id"),
            outcome=data["outcome"],
            severity=data.get("severity", SEVERITY_INFO),
            reason=data.get("reason"),
            metadata=data.get("metadata", {}),
        )
