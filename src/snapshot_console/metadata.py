from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
import sqlite3

from .errors import NotFoundError
from .models import App, PastVersion

DEPLOYED_STATUS = "deployed"


class AppMetadataStore:
    """SQLite record of applications, their deployed versions and snapshot schedules."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS app (
                    id TEXT PRIMARY KEY,
                    slug TEXT NOT NULL UNIQUE,
                    name TEXT NOT NULL,
                    current_sequence INTEGER,
                    restore_in_progress_name TEXT,
                    snapshot_schedule TEXT,
                    snapshot_ttl TEXT
                )
                """
            )
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS app_version (
                    app_id TEXT NOT NULL,
                    cluster_id TEXT NOT NULL,
                    sequence INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (app_id, cluster_id, sequence)
                )
                """
            )
            connection.commit()

    def add_app(self, app: App) -> None:
        with sqlite3.connect(self.db_path) as connection:
            connection.execute(
                """
                INSERT INTO app (id, slug, name, current_sequence, restore_in_progress_name)
                VALUES (?, ?, ?, ?, ?)
                """,
                (app.id, app.slug, app.name, app.current_sequence, app.restore_in_progress_name),
            )
            connection.commit()

    def record_version(self, app_id: str, cluster_id: str, sequence: int, status: str) -> None:
        with sqlite3.connect(self.db_path) as connection:
            _upsert_version(connection, app_id, cluster_id, sequence, status)
            connection.commit()

    def get_app(self, app_id: str) -> App:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(
                """
                SELECT id, slug, name, current_sequence, restore_in_progress_name
                FROM app
                WHERE id = ?
                """,
                (app_id,),
            )
            row = cursor.fetchone()

        if row is None:
            raise NotFoundError(f"Application {app_id} not found")
        return App(
            id=row[0],
            slug=row[1],
            name=row[2],
            current_sequence=row[3],
            restore_in_progress_name=row[4] or None,
        )

    def list_past_versions(self, app_id: str, cluster_id: str) -> list[PastVersion]:
        """Versions recorded for the cluster other than the application's current sequence, newest first."""
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(
                """
                SELECT version.cluster_id, version.sequence, version.status
                FROM app_version AS version
                JOIN app ON app.id = version.app_id
                WHERE version.app_id = ?
                  AND version.cluster_id = ?
                  AND (app.current_sequence IS NULL OR version.sequence != app.current_sequence)
                ORDER BY version.sequence DESC
                """,
                (app_id, cluster_id),
            )
            rows = cursor.fetchall()

        return [PastVersion(cluster_id=row[0], sequence=int(row[1]), status=row[2]) for row in rows]

    def update_restore_in_progress_marker(self, app_id: str, restore_name: str) -> None:
        self._update_app(app_id, "restore_in_progress_name", restore_name)

    def reset_restore(self, app_id: str) -> None:
        self._update_app(app_id, "restore_in_progress_name", None)

    def mark_version_deployed(self, app_id: str, sequence: int, cluster_id: str) -> None:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute("UPDATE app SET current_sequence = ? WHERE id = ?", (sequence, app_id))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Application {app_id} not found")
            _upsert_version(connection, app_id, cluster_id, sequence, DEPLOYED_STATUS)
            connection.commit()

    def read_schedule(self, app_id: str) -> str | None:
        return self._read_app_column(app_id, "snapshot_schedule")

    def write_schedule(self, app_id: str, schedule: str) -> None:
        self._update_app(app_id, "snapshot_schedule", schedule)

    def delete_schedule(self, app_id: str) -> None:
        self._update_app(app_id, "snapshot_schedule", None)

    def read_ttl(self, app_id: str) -> str | None:
        return self._read_app_column(app_id, "snapshot_ttl")

    def write_ttl(self, app_id: str, ttl: str) -> None:
        self._update_app(app_id, "snapshot_ttl", ttl)

    def _read_app_column(self, app_id: str, column: str) -> str | None:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(f"SELECT {column} FROM app WHERE id = ?", (app_id,))
            row = cursor.fetchone()

        if row is None:
            raise NotFoundError(f"Application {app_id} not found")
        return row[0] or None

    def _update_app(self, app_id: str, column: str, value: str | None) -> None:
        with sqlite3.connect(self.db_path) as connection:
            cursor = connection.execute(f"UPDATE app SET {column} = ? WHERE id = ?", (value, app_id))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Application {app_id} not found")
            connection.commit()


def _upsert_version(connection: sqlite3.Connection, app_id: str, cluster_id: str, sequence: int, status: str) -> None:
    connection.execute(
        """
        INSERT INTO app_version (app_id, cluster_id, sequence, status, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (app_id, cluster_id, sequence)
        DO UPDATE SET status = excluded.status, updated_at = excluded.updated_at
        """,
        (app_id, cluster_id, sequence, status, datetime.now(tz=UTC).isoformat()),
    )
