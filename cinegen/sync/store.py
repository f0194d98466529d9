import json
import os
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from .models import ProjectRecord


def _repo_root() -> Path:
    # cinegen/sync/store.py -> cinegen/sync -> cinegen -> repo root
    return Path(__file__).resolve().parents[2]


def default_db_path() -> Path:
    return _repo_root() / "projects" / "cinegen.db"


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS projects (
  project_id TEXT PRIMARY KEY,
  title TEXT NOT NULL DEFAULT '',
  last_modified INTEGER NOT NULL DEFAULT 0,  -- epoch ms, set by the editor
  payload_json TEXT,                         -- rest of the project snapshot
  saved_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_projects_modified ON projects(last_modified);
"""


@dataclass
class LocalProjectStore:
    """
    Local project store. SQLite is the source of truth; the ``meta`` table
    doubles as the key-value storage for small settings blobs.
    """

    db_path: Path
    conn: sqlite3.Connection

    @classmethod
    def open(cls, db_path: Optional[os.PathLike] = None) -> "LocalProjectStore":
        path = Path(db_path) if db_path is not None else default_db_path()
        if not path.is_absolute():
            path = _repo_root() / path
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")

        store = cls(db_path=path, conn=conn)
        store.conn.executescript(SCHEMA_SQL)
        store.conn.execute("INSERT OR IGNORE INTO meta(key, value) VALUES(?, ?)", ("schema_version", "1"))
        return store

    def close(self) -> None:
        self.conn.close()

    def _row_to_project(self, row: sqlite3.Row) -> ProjectRecord:
        payload = json.loads(row["payload_json"]) if row["payload_json"] else {}
        return ProjectRecord(
            id=row["project_id"],
            title=row["title"],
            last_modified=int(row["last_modified"]),
            payload=payload,
        )

    # --- projects ---
    def list_projects(self) -> List[ProjectRecord]:
        cur = self.conn.execute("SELECT * FROM projects ORDER BY last_modified DESC")
        return [self._row_to_project(r) for r in cur.fetchall()]

    def get_project(self, project_id: str) -> Optional[ProjectRecord]:
        cur = self.conn.execute("SELECT * FROM projects WHERE project_id=?", (project_id,))
        row = cur.fetchone()
        return self._row_to_project(row) if row else None

    def save_project(self, project: ProjectRecord) -> None:
        payload = json.dumps(project.payload, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
        self.conn.execute(
            """
            INSERT INTO projects(project_id, title, last_modified, payload_json, saved_at)
            VALUES(?, ?, ?, ?, ?)
            ON CONFLICT(project_id)
            DO UPDATE SET title=excluded.title, last_modified=excluded.last_modified,
                          payload_json=excluded.payload_json, saved_at=excluded.saved_at
            """,
            (project.id, project.title, int(project.last_modified), payload, time.time()),
        )

    def delete_project(self, project_id: str) -> bool:
        cur = self.conn.execute("DELETE FROM projects WHERE project_id=?", (project_id,))
        return cur.rowcount > 0

    # --- key-value ---
    def get_meta(self, key: str, default: Any = None) -> Any:
        cur = self.conn.execute("SELECT value FROM meta WHERE key=?", (key,))
        row = cur.fetchone()
        if not row:
            return default
        try:
            return json.loads(row["value"])
        except ValueError:
            return row["value"]

    def set_meta(self, key: str, value: Any) -> None:
        self.conn.execute(
            "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, json.dumps(value, ensure_ascii=False)),
        )
