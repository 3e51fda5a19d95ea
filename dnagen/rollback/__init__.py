"""Transactional rollback of generated project files.

Usage::

    from dnagen.rollback import RollbackManager

    manager = RollbackManager(temp_dir=".dnagen-temp")
    tx = manager.start_transaction("Generate my-app", "/tmp/my-app")
    await manager.record_file_creation(tx, "/tmp/my-app/README.md", "# my-app\\n")
    await manager.rollback_transaction(tx)
"""

from dnagen.rollback.manager import RollbackManager
from dnagen.rollback.models import (
    Operation,
    OperationType,
    RollbackReport,
    Snapshot,
    Transaction,
    TransactionState,
    TransactionStatus,
)

__all__ = [
    "Operation",
    "OperationType",
    "RollbackManager",
    "RollbackReport",
    "Snapshot",
    "Transaction",
    "TransactionState",
    "TransactionStatus",
]
