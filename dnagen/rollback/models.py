"""Bookkeeping records for transactional file-system changes.

These are plain dataclasses owned and mutated by the
:class:`~dnagen.rollback.manager.RollbackManager`; callers only ever see
copies through :class:`TransactionStatus` and :class:`RollbackReport`.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class OperationType(str, Enum):
    CREATE_FILE = "create-file"
    CREATE_DIR = "create-dir"
    MODIFY_FILE = "modify-file"
    COPY_FILE = "copy-file"
    MOVE_FILE = "move-file"


class TransactionState(str, Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


@dataclass
class Operation:
    """One tracked file-system mutation."""

    type: OperationType | str
    target: Path
    source: Optional[Path] = None
    backup_path: Optional[Path] = None
    completed: bool = False
    undone: bool = False
    id: str = field(default_factory=lambda: f"op_{uuid.uuid4().hex[:12]}")
    timestamp: str = field(default_factory=_now)

    def describe(self) -> str:
        kind = self.type.value if isinstance(self.type, OperationType) else str(self.type)
        return f"{kind} {self.target}"


@dataclass
class Transaction:
    """An ordered log of operations that commits or rolls back as a unit."""

    description: str
    project_path: Path
    id: str = field(default_factory=lambda: f"tx_{uuid.uuid4().hex}")
    operations: list[Operation] = field(default_factory=list)
    state: TransactionState = TransactionState.OPEN
    created_at: str = field(default_factory=_now)

    def operation(self, operation_id: str) -> Optional[Operation]:
        for op in self.operations:
            if op.id == operation_id:
                return op
        return None


@dataclass
class Snapshot:
    """A frozen copy of a transaction's operation list at a point in time."""

    transaction_id: str
    description: str
    project_path: Path
    operations: list[Operation]
    id: str = field(default_factory=lambda: f"snap_{uuid.uuid4().hex}")
    created_at: str = field(default_factory=_now)

    @classmethod
    def of(cls, transaction: Transaction, description: str, project_path: Path) -> "Snapshot":
        return cls(
            transaction_id=transaction.id,
            description=description,
            project_path=project_path,
            operations=[replace(op) for op in transaction.operations],
        )


@dataclass
class TransactionStatus:
    """Read-only summary of a transaction."""

    id: str
    description: str
    project_path: Path
    state: TransactionState
    operation_count: int
    completed_count: int
    undone_count: int
    created_at: str


@dataclass
class RollbackReport:
    """What a rollback sweep did, by operation id."""

    transaction_id: str
    undone: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed
