"""
SQLite session store for transcode queues.

A session is a named snapshot of the job list. Saving replaces the session's
jobs; loading reconstructs complete Job values from their JSON columns.
"""

import sqlite3
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from vtq.domain.errors import PersistenceError
from vtq.domain.models import EncodingSettings, Job, JobStatus, Session, VideoInfo


class SessionStore:
    """Persists sessions and their jobs in a single SQLite file."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self.logger = logging.getLogger(__name__)
        self._ensure_schema()

    @contextmanager
    def _connect(self):
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to open database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            if isinstance(e, PersistenceError):
                raise
            raise PersistenceError(f"Database operation failed: {e}") from e
        finally:
            conn.close()

    def _ensure_schema(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT NOT NULL,
                    session_id INTEGER NOT NULL,
                    position INTEGER NOT NULL,
                    input_path TEXT NOT NULL,
                    output_path TEXT NOT NULL,
                    video_info TEXT NOT NULL,
                    settings TEXT NOT NULL,
                    status TEXT NOT NULL,
                    progress REAL NOT NULL DEFAULT 0,
                    error_message TEXT,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    PRIMARY KEY (session_id, id),
                    FOREIGN KEY (session_id) REFERENCES sessions (id) ON DELETE CASCADE
                )
            """)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_session(row) -> Session:
        return Session(
            id=row["id"],
            name=row["name"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_job(row) -> Job:
        return Job(
            id=row["id"],
            input_path=Path(row["input_path"]),
            output_path=Path(row["output_path"]),
            video_info=VideoInfo.model_validate_json(row["video_info"]),
            settings=EncodingSettings.model_validate_json(row["settings"]),
            status=JobStatus(row["status"]),
            progress=row["progress"],
            error_message=row["error_message"],
            created_at=datetime.fromisoformat(row["created_at"]),
            started_at=datetime.fromisoformat(row["started_at"]) if row["started_at"] else None,
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
        )

    def create_session(self, name: str) -> Session:
        now = self._now()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO sessions (name, created_at, updated_at) VALUES (?, ?, ?)",
                (name, now, now),
            )
            session_id = cursor.lastrowid
        self.logger.info(f"SESSION_CREATE: id={session_id} name={name}")
        return Session(
            id=session_id,
            name=name,
            created_at=datetime.fromisoformat(now),
            updated_at=datetime.fromisoformat(now),
        )

    def list_sessions(self) -> List[Session]:
        """All sessions, most recently updated first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, created_at, updated_at FROM sessions ORDER BY updated_at DESC, id DESC"
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def get_session(self, session_id: int) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, name, created_at, updated_at FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        return self._row_to_session(row) if row else None

    def latest_session(self) -> Optional[Session]:
        sessions = self.list_sessions()
        return sessions[0] if sessions else None

    def rename_session(self, session_id: int, name: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE sessions SET name = ?, updated_at = ? WHERE id = ?",
                (name, self._now(), session_id),
            )

    def delete_session(self, session_id: int) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        self.logger.info(f"SESSION_DELETE: id={session_id}")

    def save_jobs(self, session_id: int, jobs: List[Job]) -> None:
        """Replaces the jobs stored for ``session_id``."""
        with self._connect() as conn:
            if conn.execute("SELECT 1 FROM sessions WHERE id = ?", (session_id,)).fetchone() is None:
                raise PersistenceError(f"Session {session_id} does not exist")
            conn.execute("DELETE FROM jobs WHERE session_id = ?", (session_id,))
            for position, job in enumerate(jobs):
                conn.execute(
                    """
                    INSERT INTO jobs (
                        id, session_id, position, input_path, output_path, video_info, settings,
                        status, progress, error_message, created_at, started_at, completed_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        job.id,
                        session_id,
                        position,
                        str(job.input_path),
                        str(job.output_path),
                        job.video_info.model_dump_json(),
                        job.settings.model_dump_json(),
                        job.status.value,
                        job.progress,
                        job.error_message,
                        job.created_at.isoformat(),
                        job.started_at.isoformat() if job.started_at else None,
                        job.completed_at.isoformat() if job.completed_at else None,
                    ),
                )
            conn.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?",
                (self._now(), session_id),
            )
        self.logger.info(f"SESSION_SAVE: id={session_id} jobs={len(jobs)}")

    def load_jobs(self, session_id: int) -> List[Job]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE session_id = ? ORDER BY position",
                (session_id,),
            ).fetchall()
        try:
            return [self._row_to_job(row) for row in rows]
        except ValueError as e:
            raise PersistenceError(f"Corrupt job row in session {session_id}: {e}") from e
