"""Transactional tracking and undo of file-system changes.

Every mutation a generation run makes to a project directory goes through a
:class:`RollbackManager` transaction.  The manager records the operation
*before* touching the disk, keeps backups of anything it overwrites under its
temp directory, and can undo a whole transaction (or the part of it captured
by a snapshot) in reverse chronological order.

Life cycle of a transaction::

    open --record*--> open --commit--> committed
                           \\--rollback--> rolled-back

A committed or rolled-back transaction never changes state again.
"""

from __future__ import annotations

import asyncio
import shutil
import threading
from pathlib import Path
from typing import Callable, Iterable, Optional, TypeVar

from rich.console import Console

from dnagen.errors import RollbackError, RollbackFailedError

from .models import (
    Operation,
    OperationType,
    RollbackReport,
    Snapshot,
    Transaction,
    TransactionState,
    TransactionStatus,
)

Content = str | bytes
T = TypeVar("T")


class RollbackManager:
    """Records file-system operations per transaction and undoes them on demand.

    Parameters
    ----------
    temp_dir:
        Directory holding backups of overwritten files, one subdirectory per
        transaction.
    console:
        Where warnings and (with ``verbose``) debug lines are printed.
    history_limit:
        How many closed transactions are remembered so that a repeated
        commit or rollback is recognised.  The oldest are forgotten first.
    """

    def __init__(
        self,
        temp_dir: str | Path = Path(".dnagen-temp"),
        console: Console | None = None,
        verbose: bool = False,
        history_limit: int = 1024,
    ) -> None:
        self.temp_dir = Path(temp_dir)
        self.console = console or Console()
        self.verbose = verbose
        self.history_limit = history_limit
        self._lock = threading.Lock()
        self._transactions: dict[str, Transaction] = {}
        self._finalized: dict[str, TransactionState] = {}
        self._snapshots: dict[str, Snapshot] = {}

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def start_transaction(self, description: str, project_path: str | Path) -> str:
        """Open a new transaction and return its id (``tx_<hex>``)."""
        tx = Transaction(description=description, project_path=Path(project_path))
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self._transactions[tx.id] = tx
        self._debug(f"Started transaction {tx.id}: {description}")
        return tx.id

    async def commit_transaction(self, transaction_id: str) -> None:
        """Make the transaction permanent and delete its backups.

        Committing an already-committed transaction does nothing.

        Raises:
            RollbackError: If the id is unknown or the transaction was rolled back.
        """
        with self._lock:
            tx = self._transactions.get(transaction_id)
            if tx is None:
                state = self._finalized.get(transaction_id)
                if state is TransactionState.COMMITTED:
                    return
                if state is TransactionState.ROLLED_BACK:
                    raise RollbackError(
                        f"Cannot commit rolled-back transaction {transaction_id}",
                        "TRANSACTION_CLOSED",
                        context={"transaction_id": transaction_id},
                    )
                raise _not_found(transaction_id)
            self._finalize(tx, TransactionState.COMMITTED)

        for warning in await asyncio.to_thread(self._delete_backups, tx):
            self._warn(warning)
        self._debug(f"Committed transaction {transaction_id} ({len(tx.operations)} operation(s))")

    async def rollback_transaction(self, transaction_id: str) -> RollbackReport:
        """Undo every completed operation of the transaction, newest first.

        Rolling back an already rolled-back transaction returns an empty report.

        Raises:
            RollbackError: If the id is unknown or the transaction was committed.
            RollbackFailedError: If one or more undo steps failed.  Steps that
                succeeded stay undone and backups are kept for manual recovery.
        """
        with self._lock:
            tx = self._transactions.get(transaction_id)
            if tx is None:
                state = self._finalized.get(transaction_id)
                if state is TransactionState.ROLLED_BACK:
                    return RollbackReport(transaction_id=transaction_id)
                if state is TransactionState.COMMITTED:
                    raise RollbackError(
                        f"Cannot roll back committed transaction {transaction_id}",
                        "TRANSACTION_CLOSED",
                        context={"transaction_id": transaction_id},
                    )
                raise _not_found(transaction_id)
            operations = list(reversed(tx.operations))

        report = RollbackReport(transaction_id=transaction_id)
        await self._undo_all(operations, report)

        with self._lock:
            self._finalize(tx, TransactionState.ROLLED_BACK)

        if report.failed:
            raise RollbackFailedError(
                f"{len(report.failed)} operation(s) could not be undone in {transaction_id}",
                report.failed,
                report.undone,
            )

        for warning in await asyncio.to_thread(self._delete_backups, tx):
            self._warn(warning)
        self._debug(f"Rolled back transaction {transaction_id}: {len(report.undone)} operation(s) undone")
        return report

    # ------------------------------------------------------------------
    # Recording operations
    # ------------------------------------------------------------------

    async def record_file_creation(
        self, transaction_id: str, path: str | Path, content: Optional[Content] = None
    ) -> Operation:
        """Create a file; an existing file is treated as a modification."""
        tx = self._open(transaction_id)
        target = Path(path)
        if await asyncio.to_thread(target.exists):
            return await self.record_file_modification(transaction_id, target, content or "")

        await self._create_dirs(tx, target.parent)
        op = self._append(tx, Operation(type=OperationType.CREATE_FILE, target=target))
        await self._perform(op, _write_content, target, content or "")
        return op

    async def record_directory_creation(self, transaction_id: str, path: str | Path) -> list[Operation]:
        """Create a directory and any missing parents, one operation per directory."""
        tx = self._open(transaction_id)
        return await self._create_dirs(tx, Path(path))

    async def record_file_modification(
        self, transaction_id: str, path: str | Path, content: Content
    ) -> Operation:
        """Overwrite a file, backing up the previous content when it exists."""
        tx = self._open(transaction_id)
        target = Path(path)
        await self._create_dirs(tx, target.parent)
        op = self._append(tx, Operation(type=OperationType.MODIFY_FILE, target=target))

        def _apply() -> None:
            if target.exists():
                op.backup_path = self._backup(tx, op, target)
            _write_content(target, content)

        await self._perform(op, _apply)
        return op

    async def record_file_copy(
        self, transaction_id: str, source: str | Path, target: str | Path
    ) -> Operation:
        """Copy *source* to *target*, backing up an existing target."""
        tx = self._open(transaction_id)
        src, dst = Path(source), Path(target)
        await self._create_dirs(tx, dst.parent)
        op = self._append(tx, Operation(type=OperationType.COPY_FILE, target=dst, source=src))

        def _apply() -> None:
            if dst.exists():
                op.backup_path = self._backup(tx, op, dst)
            shutil.copy2(src, dst)

        await self._perform(op, _apply)
        return op

    async def record_file_move(
        self, transaction_id: str, source: str | Path, target: str | Path
    ) -> Operation:
        """Move *source* to *target*.  Refuses to move onto an existing path."""
        tx = self._open(transaction_id)
        src, dst = Path(source), Path(target)
        if await asyncio.to_thread(dst.exists):
            raise RollbackError(
                f"Refusing to move {src} onto existing path {dst}",
                "MOVE_TARGET_EXISTS",
                context={"source": str(src), "target": str(dst)},
            )
        await self._create_dirs(tx, dst.parent)
        op = self._append(tx, Operation(type=OperationType.MOVE_FILE, target=dst, source=src))

        def _apply() -> None:
            op.backup_path = self._backup(tx, op, src)
            shutil.move(str(src), str(dst))

        await self._perform(op, _apply)
        return op

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def create_snapshot(self, transaction_id: str, description: str, project_path: str | Path) -> str:
        """Capture the transaction's current operation list; return the snapshot id."""
        tx = self._open(transaction_id)
        with self._lock:
            snapshot = Snapshot.of(tx, description, Path(project_path))
            self._snapshots[snapshot.id] = snapshot
        self._debug(f"Snapshot {snapshot.id} of {transaction_id}: {len(snapshot.operations)} operation(s)")
        return snapshot.id

    async def rollback_to_snapshot(self, snapshot_id: str) -> RollbackReport:
        """Undo only the operations captured by the snapshot, newest first.

        The undone operations are marked on the live transaction, so a later
        full rollback skips them.  The transaction itself stays open.
        """
        with self._lock:
            snapshot = self._snapshots.get(snapshot_id)
            if snapshot is None:
                raise RollbackError(
                    f"Snapshot not found: {snapshot_id}",
                    "SNAPSHOT_NOT_FOUND",
                    context={"snapshot_id": snapshot_id},
                )
            tx = self._transactions.get(snapshot.transaction_id)
            if tx is None:
                raise _not_found(snapshot.transaction_id)
            live = [tx.operation(op.id) for op in reversed(snapshot.operations)]

        report = RollbackReport(transaction_id=tx.id)
        await self._undo_all([op for op in live if op is not None], report)
        if report.failed:
            raise RollbackFailedError(
                f"{len(report.failed)} operation(s) could not be undone for snapshot {snapshot_id}",
                report.failed,
                report.undone,
            )
        return report

    def snapshots(self, transaction_id: Optional[str] = None) -> list[Snapshot]:
        with self._lock:
            return [
                s for s in self._snapshots.values()
                if transaction_id is None or s.transaction_id == transaction_id
            ]

    # ------------------------------------------------------------------
    # Inspection and housekeeping
    # ------------------------------------------------------------------

    def transaction_status(self, transaction_id: str) -> Optional[TransactionStatus]:
        with self._lock:
            tx = self._transactions.get(transaction_id)
            if tx is None:
                return None
            return TransactionStatus(
                id=tx.id,
                description=tx.description,
                project_path=tx.project_path,
                state=tx.state,
                operation_count=len(tx.operations),
                completed_count=sum(1 for op in tx.operations if op.completed),
                undone_count=sum(1 for op in tx.operations if op.undone),
                created_at=tx.created_at,
            )

    def active_transactions(self) -> list[str]:
        with self._lock:
            return list(self._transactions)

    async def emergency_cleanup(self, project_path: str | Path) -> None:
        """Remove the whole project directory.  A missing directory is a no-op."""
        path = Path(project_path)
        if not await asyncio.to_thread(path.exists):
            return
        try:
            await asyncio.to_thread(shutil.rmtree, path)
        except OSError as exc:
            raise RollbackError(
                f"Emergency cleanup of {path} failed: {exc}",
                "EMERGENCY_CLEANUP_FAILED",
                suggestion="Remove the directory manually",
                context={"path": str(path)},
            ) from exc
        self._warn(f"Emergency cleanup removed {path}")

    async def cleanup_temp_directory(self) -> int:
        """Delete backup folders of transactions that are no longer open.

        Returns:
            Number of folders removed.
        """
        active = set(self.active_transactions())

        def _sweep() -> int:
            if not self.temp_dir.is_dir():
                return 0
            removed = 0
            for child in self.temp_dir.iterdir():
                if child.is_dir() and child.name not in active:
                    shutil.rmtree(child, ignore_errors=True)
                    removed += 1
            if not any(self.temp_dir.iterdir()):
                self.temp_dir.rmdir()
            return removed

        return await asyncio.to_thread(_sweep)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _open(self, transaction_id: str) -> Transaction:
        with self._lock:
            tx = self._transactions.get(transaction_id)
            state = self._finalized.get(transaction_id)
        if tx is not None:
            return tx
        if state is not None:
            raise RollbackError(
                f"Transaction {transaction_id} is already {state.value}",
                "TRANSACTION_CLOSED",
                context={"transaction_id": transaction_id},
            )
        raise _not_found(transaction_id)

    def _append(self, tx: Transaction, op: Operation) -> Operation:
        with self._lock:
            tx.operations.append(op)
        return op

    def _finalize(self, tx: Transaction, state: TransactionState) -> None:
        # Caller holds the lock.
        tx.state = state
        self._transactions.pop(tx.id, None)
        self._finalized[tx.id] = state
        while len(self._finalized) > self.history_limit:
            del self._finalized[next(iter(self._finalized))]
        for snapshot_id in [s.id for s in self._snapshots.values() if s.transaction_id == tx.id]:
            del self._snapshots[snapshot_id]

    async def _perform(self, op: Operation, func: Callable[..., object], *args: object) -> None:
        def _apply() -> None:
            func(*args)
            op.completed = True

        try:
            await _run_to_completion(_apply)
        except OSError as exc:
            raise RollbackError(
                f"Failed to {op.describe()}: {exc}",
                "OPERATION_FAILED",
                context={"operation_id": op.id, "target": str(op.target)},
            ) from exc
        self._debug(f"  {op.describe()}")

    async def _create_dirs(self, tx: Transaction, directory: Path) -> list[Operation]:
        created: list[Operation] = []
        for missing in await asyncio.to_thread(_missing_dirs, directory):
            op = self._append(tx, Operation(type=OperationType.CREATE_DIR, target=missing))
            await self._perform(op, _make_dir, missing)
            created.append(op)
        return created

    def _backup(self, tx: Transaction, op: Operation, path: Path) -> Path:
        backup = self.temp_dir / tx.id / f"{op.id}-{path.name}.backup"
        backup.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, backup)
        return backup

    async def _undo_all(self, operations: Iterable[Operation], report: RollbackReport) -> None:
        for op in operations:
            if not op.completed or op.undone:
                report.skipped.append(op.id)
                continue
            try:
                warning = await _run_to_completion(_undo_and_mark, op)
            except (OSError, RollbackError) as exc:
                report.failed.append(op.id)
                self._warn(f"Failed to undo {op.describe()}: {exc}")
                continue
            report.undone.append(op.id)
            if warning:
                report.warnings.append(warning)
                self._warn(warning)

    def _delete_backups(self, tx: Transaction) -> list[str]:
        warnings: list[str] = []
        for op in tx.operations:
            if op.backup_path is None:
                continue
            try:
                op.backup_path.unlink(missing_ok=True)
            except OSError as exc:
                warnings.append(f"Could not delete backup {op.backup_path}: {exc}")
        tx_dir = self.temp_dir / tx.id
        try:
            if tx_dir.is_dir() and not any(tx_dir.iterdir()):
                tx_dir.rmdir()
        except OSError as exc:
            warnings.append(f"Could not delete backup directory {tx_dir}: {exc}")
        return warnings

    def _warn(self, message: str) -> None:
        self.console.print(f"[yellow]{message}[/yellow]")

    def _debug(self, message: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]{message}[/dim]")


# ---------------------------------------------------------------------------
# Undo steps (run in worker threads)
# ---------------------------------------------------------------------------


def _undo_create_file(op: Operation) -> Optional[str]:
    op.target.unlink(missing_ok=True)
    return None


def _undo_create_dir(op: Operation) -> Optional[str]:
    if not op.target.exists():
        return None
    if any(op.target.iterdir()):
        return f"Directory {op.target} is not empty and was left in place"
    op.target.rmdir()
    return None


def _undo_overwrite(op: Operation) -> Optional[str]:
    if op.backup_path is not None and op.backup_path.exists():
        shutil.copy2(op.backup_path, op.target)
    else:
        op.target.unlink(missing_ok=True)
    return None


def _undo_move(op: Operation) -> Optional[str]:
    if op.source is None:
        raise RollbackError(f"Move operation {op.id} has no source path", "OPERATION_INVALID")
    op.source.parent.mkdir(parents=True, exist_ok=True)
    if op.backup_path is not None and op.backup_path.exists():
        shutil.copy2(op.backup_path, op.source)
        op.target.unlink(missing_ok=True)
    elif op.target.exists():
        shutil.move(str(op.target), str(op.source))
    return None


_UNDO_HANDLERS: dict[str, Callable[[Operation], Optional[str]]] = {
    OperationType.CREATE_FILE.value: _undo_create_file,
    OperationType.CREATE_DIR.value: _undo_create_dir,
    OperationType.MODIFY_FILE.value: _undo_overwrite,
    OperationType.COPY_FILE.value: _undo_overwrite,
    OperationType.MOVE_FILE.value: _undo_move,
}


def _undo(op: Operation) -> Optional[str]:
    kind = op.type.value if isinstance(op.type, OperationType) else str(op.type)
    handler = _UNDO_HANDLERS.get(kind)
    if handler is None:
        raise RollbackError(
            f"Unknown operation type '{kind}' for {op.id}",
            "UNKNOWN_OPERATION",
            context={"operation_id": op.id},
        )
    return handler(op)


def _undo_and_mark(op: Operation) -> Optional[str]:
    warning = _undo(op)
    op.undone = True
    return warning


# ---------------------------------------------------------------------------
# File-system helpers
# ---------------------------------------------------------------------------


def _missing_dirs(directory: Path) -> list[Path]:
    """Ancestors of *directory* (inclusive) that do not exist yet, outermost first."""
    missing: list[Path] = []
    current = directory
    while not current.exists():
        missing.append(current)
        if current.parent == current:
            break
        current = current.parent
    return list(reversed(missing))


def _make_dir(path: Path) -> None:
    path.mkdir(exist_ok=True)


def _write_content(path: Path, content: Content) -> None:
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")


def _not_found(transaction_id: str) -> RollbackError:
    return RollbackError(
        f"Transaction not found: {transaction_id}",
        "TRANSACTION_NOT_FOUND",
        context={"transaction_id": transaction_id},
    )


async def _run_to_completion(func: Callable[..., T], *args: object) -> T:
    """Run *func* in a worker thread and wait for it even if the caller is cancelled.

    A thread cannot be interrupted, so a cancelled caller still waits for the
    mutation to land before the cancellation propagates.  The operation log
    then always matches the disk.
    """
    work = asyncio.ensure_future(asyncio.to_thread(func, *args))
    try:
        return await asyncio.shield(work)
    except asyncio.CancelledError:
        if not work.done():
            await asyncio.wait([work])
        raise
