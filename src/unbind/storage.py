"""SQLite storage for favorite ports and kill history."""

import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import structlog

log = structlog.get_logger()

SCHEMA_VERSION = 1

SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT,
    updated_at REAL
);

CREATE TABLE IF NOT EXISTS favorites (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    port INTEGER UNIQUE NOT NULL,
    label TEXT NOT NULL,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS kill_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    port INTEGER NOT NULL,
    pid INTEGER NOT NULL,
    process_name TEXT NOT NULL,
    killed_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_kill_history_killed_at
    ON kill_history(killed_at DESC);
"""


def init_database(db_path: Path) -> None:
    """Initialize database with WAL mode and schema.

    If the database exists with a different schema version, it is deleted
    and recreated. Favorites and history are cheap to lose.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if db_path.exists():
        conn = sqlite3.connect(db_path)
        try:
            existing_version = _get_schema_version_raw(conn)
            if existing_version == SCHEMA_VERSION:
                conn.close()
                return
            log.info(
                "schema_mismatch",
                existing=existing_version,
                expected=SCHEMA_VERSION,
                action="recreate",
            )
        except sqlite3.DatabaseError:
            # Corrupted or foreign DB
            log.info("schema_unreadable", path=str(db_path), action="recreate")
        conn.close()
        db_path.unlink()
        for suffix in (".db-wal", ".db-shm"):
            sidecar = db_path.with_suffix(suffix)
            if sidecar.exists():
                sidecar.unlink()

    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.executescript(SCHEMA)
        conn.execute(
            "INSERT OR REPLACE INTO meta (key, value, updated_at) VALUES (?, ?, ?)",
            ("schema_version", str(SCHEMA_VERSION), time.time()),
        )
        conn.commit()
        log.info("database_initialized", path=str(db_path), version=SCHEMA_VERSION)
    finally:
        conn.close()


def _get_schema_version_raw(conn: sqlite3.Connection) -> int:
    """Get schema version without error handling (for init_database use)."""
    row = conn.execute("SELECT value FROM meta WHERE key = 'schema_version'").fetchone()
    return int(row[0]) if row else 0


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get current schema version from database."""
    try:
        return _get_schema_version_raw(conn)
    except sqlite3.OperationalError:
        return 0


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a database connection."""
    return sqlite3.connect(db_path)


class DatabaseNotAvailable(Exception):
    """Raised when database doesn't exist and command should exit gracefully."""

    pass


@contextmanager
def require_database(
    db_path: Path, *, exit_on_missing: bool = False
) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for commands that only read stored data.

    Args:
        db_path: Path to the database file
        exit_on_missing: If True, raise SystemExit(1) on missing database.
                        If False, raise DatabaseNotAvailable.

    Raises:
        DatabaseNotAvailable: If database doesn't exist and exit_on_missing is False
        SystemExit: If database doesn't exist and exit_on_missing is True
    """
    import click

    if not db_path.exists():
        if exit_on_missing:
            click.echo("Error: Database not found", err=True)
            raise SystemExit(1)
        click.echo("Nothing stored yet.")
        raise DatabaseNotAvailable()

    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def open_database(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """Initialize if needed and yield a connection (for commands that write)."""
    init_database(db_path)
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


# --- Favorites ---


def add_favorite(conn: sqlite3.Connection, port: int, label: str) -> None:
    """Add a favorite, replacing any existing label for the port."""
    conn.execute(
        "INSERT OR REPLACE INTO favorites (port, label, created_at) VALUES (?, ?, ?)",
        (port, label, time.time()),
    )
    conn.commit()


def remove_favorite(conn: sqlite3.Connection, port: int) -> bool:
    """Remove a favorite. Returns True if one existed."""
    cursor = conn.execute("DELETE FROM favorites WHERE port = ?", (port,))
    conn.commit()
    return cursor.rowcount > 0


def update_favorite_label(conn: sqlite3.Connection, port: int, label: str) -> bool:
    """Rename a favorite. Returns True if one existed."""
    cursor = conn.execute("UPDATE favorites SET label = ? WHERE port = ?", (label, port))
    conn.commit()
    return cursor.rowcount > 0


def get_favorites(conn: sqlite3.Connection) -> list[dict]:
    """Get all favorites ordered by port."""
    cursor = conn.execute("SELECT id, port, label, created_at FROM favorites ORDER BY port")
    return [
        {"id": r[0], "port": r[1], "label": r[2], "created_at": r[3]} for r in cursor.fetchall()
    ]


def get_favorite_labels(conn: sqlite3.Connection) -> dict[int, str]:
    """Get port→label for all favorites."""
    return {fav["port"]: fav["label"] for fav in get_favorites(conn)}


# --- Kill history ---


def add_kill_history(
    conn: sqlite3.Connection,
    port: int,
    pid: int,
    process_name: str,
    max_entries: int = 50,
    killed_at: float | None = None,
) -> int:
    """Record a kill and trim history to the newest ``max_entries``. Returns entry ID."""
    cursor = conn.execute(
        "INSERT INTO kill_history (port, pid, process_name, killed_at) VALUES (?, ?, ?, ?)",
        (port, pid, process_name, killed_at if killed_at is not None else time.time()),
    )
    conn.execute(
        """DELETE FROM kill_history
           WHERE id NOT IN (
               SELECT id FROM kill_history ORDER BY killed_at DESC, id DESC LIMIT ?
           )""",
        (max_entries,),
    )
    conn.commit()
    result = cursor.lastrowid
    assert result is not None
    return result


def get_kill_history(conn: sqlite3.Connection, limit: int = 50) -> list[dict]:
    """Get kill history, newest first."""
    cursor = conn.execute(
        """SELECT id, port, pid, process_name, killed_at
           FROM kill_history
           ORDER BY killed_at DESC, id DESC
           LIMIT ?""",
        (limit,),
    )
    return [
        {
            "id": r[0],
            "port": r[1],
            "pid": r[2],
            "process_name": r[3],
            "killed_at": r[4],
        }
        for r in cursor.fetchall()
    ]


def clear_kill_history(conn: sqlite3.Connection) -> int:
    """Delete all kill history. Returns number of entries removed."""
    cursor = conn.execute("DELETE FROM kill_history")
    conn.commit()
    return cursor.rowcount
