"""
SQLite-based state store implementation.

Tables:
- batches: One entry per saved batch (name, columns)
- batch_rows: Rows with their data and cell statuses (JSON)
- history_entries: Forward history ledger, in order, with the status each
  entry replaced (restored on undo)
- redo_entries: Redo stack, in order
- outbound_requests: Reconciliation requests
- transaction_history: Committed transactions for duplicate detection
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from ..matching.duplicates import TransactionRecord
from ..review.grid import BatchGrid
from ..rules.types import RuleSet
from ..schemas.batch import HistoryAction, HistoryEntry, OutboundRequest, Row
from ..schemas.cell_status import CellStatus, status_from_dict, status_to_dict


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_from_db(row: sqlite3.Row) -> Row:
    return Row(
        id=row["row_id"],
        row_index=row["row_index"],
        data=json.loads(row["data"]),
        status={key: status_from_dict(s) for key, s in json.loads(row["status"]).items()},
        locked=bool(row["locked"]),
        phone_number=row["phone_number"],
        outbound_thread_id=row["outbound_thread_id"],
    )


def _entry_from_db(row: sqlite3.Row) -> HistoryEntry:
    return HistoryEntry(
        id=row["id"],
        row_id=row["row_id"],
        column_key=row["column_key"],
        previous_value=row["previous_value"],
        new_value=row["new_value"],
        action=HistoryAction(row["action"]),
        timestamp=datetime.fromisoformat(row["timestamp"]),
        reason=row["reason"],
    )


def _request_from_db(row: sqlite3.Row) -> OutboundRequest:
    data = dict(row)
    data["target_fields"] = json.loads(data["target_fields"])
    data["replied_data"] = json.loads(data["replied_data"]) if data["replied_data"] else {}
    return OutboundRequest.from_dict(data)


def _transaction_from_db(row: sqlite3.Row) -> TransactionRecord:
    return TransactionRecord(
        id=row["id"],
        name=row["name"],
        amount=row["amount"],
        account_number=row["account_number"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


@dataclass
class StoredBatch:
    """A batch as persisted: rows, history and outbound requests."""

    name: str
    columns: list[str]
    rows: list[Row] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    redo: list[HistoryEntry] = field(default_factory=list)
    requests: list[OutboundRequest] = field(default_factory=list)
    prior_statuses: dict[str, CellStatus] = field(default_factory=dict)
    saved_at: str | None = None

    def to_grid(self, rule_set: RuleSet) -> BatchGrid:
        """Rebuild a BatchGrid (rows plus history ledger)."""
        grid = BatchGrid(rule_set, columns=self.columns, name=self.name)
        grid.load_rows(self.rows)
        grid.load_history(self.history, self.redo, self.prior_statuses)
        return grid


class StateStore:
    """
    SQLite-based state store for review batches.

    Provides persistent tracking of:
    - Batch rows and cell statuses
    - History ledger and redo stack
    - Outbound reconciliation requests
    - Transaction history (duplicate detection)

    Thread-safe for single-writer scenarios.
    """

    SCHEMA_VERSION = 2

    def __init__(self, db_path: Path | str):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS batches (
                    name TEXT PRIMARY KEY,
                    columns TEXT NOT NULL,  -- JSON array
                    saved_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS batch_rows (
                    batch_name TEXT NOT NULL REFERENCES batches(name) ON DELETE CASCADE,
                    row_id TEXT NOT NULL,
                    row_index INTEGER NOT NULL,
                    data TEXT NOT NULL,  -- JSON object
                    status TEXT NOT NULL,  -- JSON object of serialized cell statuses
                    locked INTEGER NOT NULL DEFAULT 0,
                    phone_number TEXT,
                    outbound_thread_id TEXT,
                    PRIMARY KEY (batch_name, row_id)
                )
            """
            )

            for table in ("history_entries", "redo_entries"):
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        batch_name TEXT NOT NULL REFERENCES batches(name) ON DELETE CASCADE,
                        seq INTEGER NOT NULL,
                        id TEXT NOT NULL,
                        row_id TEXT NOT NULL,
                        column_key TEXT NOT NULL,
                        previous_value TEXT NOT NULL,
                        new_value TEXT NOT NULL,
                        action TEXT NOT NULL,
                        timestamp TEXT NOT NULL,
                        reason TEXT,
                        prior_status TEXT,  -- JSON cell status before the entry
                        PRIMARY KEY (batch_name, seq)
                    )
                """
                )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS outbound_requests (
                    id TEXT PRIMARY KEY,
                    batch_name TEXT NOT NULL REFERENCES batches(name) ON DELETE CASCADE,
                    row_id TEXT NOT NULL,
                    target_fields TEXT NOT NULL,  -- JSON array
                    sent_at TEXT NOT NULL,
                    recipient_phone TEXT NOT NULL,
                    recipient_name TEXT,
                    status TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    form_link TEXT,
                    message_sid TEXT,
                    replied_at TEXT,
                    replied_data TEXT  -- JSON object
                )
            """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_requests_batch ON outbound_requests(batch_name)"
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS transaction_history (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    amount TEXT NOT NULL,
                    account_number TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """
            )

            # Databases created by version 1 lack the prior status column
            for table in ("history_entries", "redo_entries"):
                columns = [row[1] for row in conn.execute(f"PRAGMA table_info({table})")]
                if "prior_status" not in columns:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN prior_status TEXT")

            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,),
            )

    # === Batches ===

    def save_batch(self, grid: BatchGrid, requests: Iterable[OutboundRequest] = ()) -> None:
        """
        Persist a batch, replacing any previous save under the same name.

        Args:
            grid: Batch to save (rows and history ledger)
            requests: Outbound requests of the batch
        """
        with self._transaction() as conn:
            conn.execute("DELETE FROM batches WHERE name = ?", (grid.name,))
            conn.execute(
                "INSERT INTO batches (name, columns, saved_at) VALUES (?, ?, ?)",
                (grid.name, json.dumps(grid.columns), _now()),
            )

            conn.executemany(
                """
                INSERT INTO batch_rows (
                    batch_name, row_id, row_index, data, status, locked,
                    phone_number, outbound_thread_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        grid.name,
                        row.id,
                        row.row_index,
                        json.dumps(row.data),
                        json.dumps({k: status_to_dict(s) for k, s in row.status.items()}),
                        int(row.locked),
                        row.phone_number,
                        row.outbound_thread_id,
                    )
                    for row in grid.rows
                ],
            )

            priors = grid.prior_statuses()
            for table, entries in (
                ("history_entries", grid.ledger.entries),
                ("redo_entries", grid.ledger.redo_stack),
            ):
                conn.executemany(
                    f"""
                    INSERT INTO {table} (
                        batch_name, seq, id, row_id, column_key, previous_value,
                        new_value, action, timestamp, reason, prior_status
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    [
                        (
                            grid.name,
                            seq,
                            e.id,
                            e.row_id,
                            e.column_key,
                            e.previous_value,
                            e.new_value,
                            e.action.value,
                            e.timestamp.isoformat(),
                            e.reason,
                            json.dumps(status_to_dict(priors[e.id])) if e.id in priors else None,
                        )
                        for seq, e in enumerate(entries)
                    ],
                )

            for request in requests:
                self._upsert_request(conn, grid.name, request)

    def _upsert_request(
        self, conn: sqlite3.Connection, batch_name: str, request: OutboundRequest
    ) -> None:
        conn.execute(
            """
            INSERT OR REPLACE INTO outbound_requests (
                id, batch_name, row_id, target_fields, sent_at, recipient_phone,
                recipient_name, status, kind, form_link, message_sid, replied_at, replied_data
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
            (
                request.id,
                batch_name,
                request.row_id,
                json.dumps(list(request.target_fields)),
                request.sent_at.isoformat(),
                request.recipient_phone,
                request.recipient_name,
                request.status.value,
                request.kind.value,
                request.form_link,
                request.message_sid,
                request.replied_at.isoformat() if request.replied_at else None,
                json.dumps(request.replied_data),
            ),
        )

    def save_request(self, batch_name: str, request: OutboundRequest) -> None:
        """Insert or update one outbound request of a saved batch."""
        with self._transaction() as conn:
            self._upsert_request(conn, batch_name, request)

    def load_batch(self, name: str) -> StoredBatch | None:
        """Load a saved batch by name."""
        with self._transaction() as conn:
            batch = conn.execute("SELECT * FROM batches WHERE name = ?", (name,)).fetchone()
            if not batch:
                return None

            rows = conn.execute(
                "SELECT * FROM batch_rows WHERE batch_name = ? ORDER BY row_index", (name,)
            ).fetchall()
            history = conn.execute(
                "SELECT * FROM history_entries WHERE batch_name = ? ORDER BY seq", (name,)
            ).fetchall()
            redo = conn.execute(
                "SELECT * FROM redo_entries WHERE batch_name = ? ORDER BY seq", (name,)
            ).fetchall()
            requests = conn.execute(
                """
                SELECT id, row_id, target_fields, sent_at, recipient_phone, recipient_name,
                       status, kind, form_link, message_sid, replied_at, replied_data
                FROM outbound_requests WHERE batch_name = ? ORDER BY sent_at
            """,
                (name,),
            ).fetchall()

            return StoredBatch(
                name=batch["name"],
                columns=json.loads(batch["columns"]),
                rows=[_row_from_db(r) for r in rows],
                history=[_entry_from_db(r) for r in history],
                redo=[_entry_from_db(r) for r in redo],
                requests=[_request_from_db(r) for r in requests],
                prior_statuses={
                    r["id"]: status_from_dict(json.loads(r["prior_status"]))
                    for r in history
                    if r["prior_status"]
                },
                saved_at=batch["saved_at"],
            )

    def list_batches(self) -> list[str]:
        with self._transaction() as conn:
            rows = conn.execute("SELECT name FROM batches ORDER BY saved_at DESC").fetchall()
            return [r["name"] for r in rows]

    def delete_batch(self, name: str) -> bool:
        """Delete a batch with its rows, history and requests."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM batches WHERE name = ?", (name,))
            return cursor.rowcount > 0

    # === Transaction history ===

    def add_transaction(self, record: TransactionRecord) -> bool:
        """
        Store a committed transaction.

        Returns:
            False if a transaction with the same id already exists
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO transaction_history (
                    id, name, amount, account_number, created_at
                ) VALUES (?, ?, ?, ?, ?)
            """,
                (
                    record.id,
                    record.name,
                    record.amount,
                    record.account_number,
                    record.created_at.isoformat(),
                ),
            )
            return cursor.rowcount > 0

    def get_transactions(self) -> list[TransactionRecord]:
        """All stored transactions, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM transaction_history ORDER BY created_at"
            ).fetchall()
            return [_transaction_from_db(r) for r in rows]

    # === Statistics ===

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        with self._transaction() as conn:
            batches = conn.execute("SELECT COUNT(*) as count FROM batches").fetchone()
            rows = conn.execute("SELECT COUNT(*) as count FROM batch_rows").fetchone()
            history = conn.execute("SELECT COUNT(*) as count FROM history_entries").fetchone()
            pending = conn.execute(
                "SELECT COUNT(*) as count FROM outbound_requests WHERE status = 'pending'"
            ).fetchone()
            transactions = conn.execute(
                "SELECT COUNT(*) as count FROM transaction_history"
            ).fetchone()

            return {
                "batches": batches["count"] if batches else 0,
                "rows": rows["count"] if rows else 0,
                "history_entries": history["count"] if history else 0,
                "pending_requests": pending["count"] if pending else 0,
                "transactions": transactions["count"] if transactions else 0,
            }
