"""SQLite storage backend implementation.

This implementation uses aiosqlite for async SQLite operations.
It's suitable for development and small-scale deployments.
"""

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import UUID

import aiosqlite

from ..core.models import RESUMABLE_STATUSES, ExecutionRecord, LogEntry, utcnow
from .base import (
    FINISHED_STATUSES,
    JSON_FIELDS,
    StorageBackend,
    normalize_update,
    serialize_documents,
)

logger = logging.getLogger(__name__)

IN_MEMORY = ":memory:"


def _to_column(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class SQLiteStorage(StorageBackend):
    """SQLite storage backend implementation."""

    def __init__(self, db_path: str = "data/workflow_executions.db"):
        """Initialize SQLite storage.

        Args:
            db_path: Path to the SQLite database file, or ``:memory:``
        """
        self.db_path = db_path
        if db_path != IN_MEMORY:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._connection: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        """Initialize database and create tables."""
        if self._connection is not None:
            return
        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row
        await self._create_tables()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    async def _create_tables(self) -> None:
        """Create database tables."""
        await self._connection.executescript("""
            CREATE TABLE IF NOT EXISTS workflow_executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                current_node TEXT NOT NULL,
                context TEXT NOT NULL,
                node_states TEXT NOT NULL,
                conversation_history TEXT NOT NULL,
                last_error TEXT,
                retry_count INTEGER DEFAULT 0,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_workflow_id ON workflow_executions(workflow_id);
            CREATE INDEX IF NOT EXISTS idx_status ON workflow_executions(status);
            CREATE INDEX IF NOT EXISTS idx_started_at ON workflow_executions(started_at);

            CREATE TABLE IF NOT EXISTS execution_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                execution_id TEXT NOT NULL,
                node_id TEXT,
                level TEXT NOT NULL,
                message TEXT NOT NULL,
                metadata TEXT,
                timestamp TEXT NOT NULL,
                FOREIGN KEY (execution_id) REFERENCES workflow_executions(execution_id)
            );

            CREATE INDEX IF NOT EXISTS idx_logs_execution ON execution_logs(execution_id);
        """)
        await self._connection.commit()

    # Execution Methods

    async def create_execution(self, record: ExecutionRecord) -> ExecutionRecord:
        """Create a new execution checkpoint."""
        data = serialize_documents(record)
        async with self._connection.execute(
            """
            INSERT INTO workflow_executions (
                execution_id, workflow_id, status, current_node, context,
                node_states, conversation_history, last_error, retry_count,
                started_at, completed_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(record.execution_id),
                record.workflow_id,
                record.status.value,
                record.current_node,
                json.dumps(data["context"]),
                json.dumps(data["node_states"]),
                json.dumps(data["conversation_history"]),
                record.last_error,
                record.retry_count,
                record.started_at.isoformat(),
                record.completed_at.isoformat() if record.completed_at else None,
                record.updated_at.isoformat(),
            )
        ):
            pass
        await self._connection.commit()
        return record

    async def get_execution(self, execution_id: UUID) -> Optional[ExecutionRecord]:
        """Get an execution checkpoint by ID."""
        async with self._connection.execute(
            "SELECT * FROM workflow_executions WHERE execution_id = ?",
            (str(execution_id),)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_record(row)
        return None

    async def update_execution(self, execution_id: UUID, fields: Dict[str, Any]) -> bool:
        """Apply a partial update to an execution checkpoint."""
        normalized = normalize_update(fields)

        assignments = []
        params = []
        for name, value in normalized.items():
            assignments.append(f"{name} = ?")
            params.append(json.dumps(value) if name in JSON_FIELDS else _to_column(value))
        params.append(str(execution_id))

        async with self._connection.execute(
            f"UPDATE workflow_executions SET {', '.join(assignments)} WHERE execution_id = ?",
            params
        ) as cursor:
            updated = cursor.rowcount > 0
        await self._connection.commit()
        return updated

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[ExecutionRecord]:
        """List executions with optional filters."""
        query = "SELECT * FROM workflow_executions WHERE 1=1"
        params: List[Any] = []

        if workflow_id:
            query += " AND workflow_id = ?"
            params.append(workflow_id)

        if status:
            query += " AND status = ?"
            params.append(status)

        query += " ORDER BY started_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        return await self._fetch_records(query, params)

    async def delete_execution(self, execution_id: UUID) -> bool:
        """Delete an execution and its logs."""
        async with self._connection.execute(
            "DELETE FROM workflow_executions WHERE execution_id = ?",
            (str(execution_id),)
        ) as cursor:
            deleted = cursor.rowcount > 0

        if deleted:
            async with self._connection.execute(
                "DELETE FROM execution_logs WHERE execution_id = ?",
                (str(execution_id),)
            ):
                pass

        await self._connection.commit()
        return deleted

    # Log Methods

    async def add_log(self, entry: LogEntry) -> None:
        """Append an execution log entry."""
        async with self._connection.execute(
            """
            INSERT INTO execution_logs (
                execution_id, node_id, level, message, metadata, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                str(entry.execution_id),
                entry.node_id,
                entry.level,
                entry.message,
                json.dumps(entry.metadata, default=str) if entry.metadata else None,
                entry.timestamp.isoformat(),
            )
        ):
            pass
        await self._connection.commit()

    async def get_logs(
        self,
        execution_id: UUID,
        node_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[LogEntry]:
        """Get log entries for an execution."""
        query = "SELECT * FROM execution_logs WHERE execution_id = ?"
        params: List[Any] = [str(execution_id)]

        if node_id:
            query += " AND node_id = ?"
            params.append(node_id)

        query += " ORDER BY id ASC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        logs = []
        async with self._connection.execute(query, params) as cursor:
            async for row in cursor:
                logs.append(
                    LogEntry(
                        execution_id=UUID(row["execution_id"]),
                        node_id=row["node_id"],
                        level=row["level"],
                        message=row["message"],
                        metadata=json.loads(row["metadata"]) if row["metadata"] else None,
                        timestamp=datetime.fromisoformat(row["timestamp"]),
                    )
                )
        return logs

    # Utility Methods

    async def get_resumable_executions(
        self,
        workflow_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[ExecutionRecord]:
        """Get executions that have not completed."""
        statuses = [status.value for status in RESUMABLE_STATUSES]
        placeholders = ",".join("?" * len(statuses))
        query = f"SELECT * FROM workflow_executions WHERE status IN ({placeholders})"
        params: List[Any] = list(statuses)

        if workflow_id:
            query += " AND workflow_id = ?"
            params.append(workflow_id)

        query += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)

        return await self._fetch_records(query, params)

    async def cleanup_old_executions(self, days: int = 30) -> int:
        """Clean up finished executions older than specified days."""
        cutoff_date = utcnow() - timedelta(days=days)
        placeholders = ",".join("?" * len(FINISHED_STATUSES))
        where = f"updated_at < ? AND status IN ({placeholders})"
        params = [cutoff_date.isoformat(), *FINISHED_STATUSES]

        # Get execution IDs to delete
        execution_ids = []
        async with self._connection.execute(
            f"SELECT execution_id FROM workflow_executions WHERE {where}",
            params
        ) as cursor:
            async for row in cursor:
                execution_ids.append(row[0])

        if not execution_ids:
            return 0

        id_placeholders = ",".join("?" * len(execution_ids))
        async with self._connection.execute(
            f"DELETE FROM execution_logs WHERE execution_id IN ({id_placeholders})",
            execution_ids
        ):
            pass

        async with self._connection.execute(
            f"DELETE FROM workflow_executions WHERE execution_id IN ({id_placeholders})",
            execution_ids
        ) as cursor:
            deleted_count = cursor.rowcount

        await self._connection.commit()
        return deleted_count

    # Helper methods

    async def _fetch_records(self, query: str, params: List[Any]) -> List[ExecutionRecord]:
        records = []
        async with self._connection.execute(query, params) as cursor:
            async for row in cursor:
                record = self._row_to_record(row)
                if record:
                    records.append(record)
        return records

    def _row_to_record(self, row: aiosqlite.Row) -> Optional[ExecutionRecord]:
        """Convert database row to ExecutionRecord."""
        try:
            return ExecutionRecord(
                execution_id=UUID(row["execution_id"]),
                workflow_id=row["workflow_id"],
                status=row["status"],
                current_node=row["current_node"],
                context=json.loads(row["context"]) if row["context"] else {},
                node_states=json.loads(row["node_states"]) if row["node_states"] else {},
                conversation_history=(
                    json.loads(row["conversation_history"]) if row["conversation_history"] else []
                ),
                last_error=row["last_error"],
                retry_count=row["retry_count"] or 0,
                started_at=datetime.fromisoformat(row["started_at"]),
                completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
        except Exception as e:
            logger.warning(f"Skipping unreadable execution row: {e}")
            return None
