from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Any

from .models import BackupRunRecord

SUCCESS_STATUS = "Completed"


class BackupMetadataStore:
    """Run history for backups executed from this console."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def initialize(self) -> None:
        with sqlite3.connect(self.db_path) as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS backup_runs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    backup_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    finished_at TEXT NOT NULL,
                    items_backed_up INTEGER NOT NULL DEFAULT 0,
                    error_count INTEGER NOT NULL DEFAULT 0,
                    archive_path TEXT,
                    log_path TEXT,
                    checksum_sha256 TEXT,
                    message TEXT
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_backup_runs_lookup
                ON backup_runs(backup_name, status, finished_at)
                """
            )
            connection.commit()

    def record_run(self, record: BackupRunRecord) -> None:
        with sqlite3.connect(self.db_path) as connection:
            connection.execute(
                """
                INSERT INTO backup_runs (
                    backup_name,
                    status,
                    started_at,
                    finished_at,
                    items_backed_up,
                    error_count,
                    archive_path,
                    log_path,
                    checksum_sha256,
                    message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.backup_name,
                    record.status,
                    record.started_at,
                    record.finished_at,
                    record.items_backed_up,
                    record.error_count,
                    record.archive_path,
                    record.log_path,
                    record.checksum_sha256,
                    record.message,
                ),
            )
            connection.commit()

    def get_last_success_map(self) -> dict[str, str]:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(
                """
                SELECT backup_name, MAX(finished_at)
                FROM backup_runs
                WHERE status = ?
                GROUP BY backup_name
                """,
                (SUCCESS_STATUS,),
            )
            rows = cursor.fetchall()

        return {backup_name: last_success for backup_name, last_success in rows}

    def get_recent_runs(self, limit: int = 50) -> list[dict[str, Any]]:
        if limit <= 0:
            return []

        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(
                """
                SELECT backup_name, status, started_at, finished_at, items_backed_up,
                       error_count, archive_path, log_path, checksum_sha256, message
                FROM backup_runs
                ORDER BY finished_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()

        return [
            {
                "backup_name": row[0],
                "status": row[1],
                "started_at": row[2],
                "finished_at": row[3],
                "items_backed_up": row[4],
                "error_count": row[5],
                "archive_path": row[6],
                "log_path": row[7],
                "checksum_sha256": row[8],
                "message": row[9],
            }
            for row in rows
        ]

    def count_runs(self) -> int:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute("SELECT COUNT(*) FROM backup_runs")
            row = cursor.fetchone()

        return int(row[0]) if row else 0

