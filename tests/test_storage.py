"""Tests for SQLite storage layer."""

import sqlite3
from pathlib import Path

import pytest

from unbind.storage import (
    SCHEMA_VERSION,
    DatabaseNotAvailable,
    add_favorite,
    add_kill_history,
    clear_kill_history,
    get_favorite_labels,
    get_favorites,
    get_kill_history,
    get_schema_version,
    init_database,
    open_database,
    remove_favorite,
    require_database,
    update_favorite_label,
)


def test_init_database_creates_file(tmp_path: Path):
    """init_database creates SQLite file and parent directories."""
    db_path = tmp_path / "data" / "unbind.db"
    init_database(db_path)
    assert db_path.exists()


def test_init_database_enables_wal(tmp_path: Path):
    """init_database enables WAL journal mode."""
    db_path = tmp_path / "test.db"
    init_database(db_path)

    conn = sqlite3.connect(db_path)
    result = conn.execute("PRAGMA journal_mode").fetchone()
    conn.close()
    assert result[0] == "wal"


def test_init_database_creates_tables(tmp_path: Path):
    """init_database creates required tables."""
    db_path = tmp_path / "test.db"
    init_database(db_path)

    conn = sqlite3.connect(db_path)
    tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    conn.close()

    table_names = {t[0] for t in tables}
    assert {"meta", "favorites", "kill_history"} <= table_names


def test_init_database_sets_version(tmp_path: Path):
    """init_database records the schema version."""
    db_path = tmp_path / "test.db"
    init_database(db_path)

    conn = sqlite3.connect(db_path)
    assert get_schema_version(conn) == SCHEMA_VERSION
    conn.close()


def test_init_database_keeps_data_on_same_version(tmp_path: Path):
    """Re-initializing an up-to-date database keeps its rows."""
    db_path = tmp_path / "test.db"
    with open_database(db_path) as conn:
        add_favorite(conn, 3000, "web")

    init_database(db_path)
    with open_database(db_path) as conn:
        assert get_favorite_labels(conn) == {3000: "web"}


def test_init_database_recreates_on_version_mismatch(tmp_path: Path):
    """An old schema is dropped and recreated."""
    db_path = tmp_path / "test.db"
    with open_database(db_path) as conn:
        add_favorite(conn, 3000, "web")
        conn.execute("UPDATE meta SET value = '0' WHERE key = 'schema_version'")
        conn.commit()

    init_database(db_path)
    with open_database(db_path) as conn:
        assert get_favorites(conn) == []
        assert get_schema_version(conn) == SCHEMA_VERSION


def test_init_database_recreates_foreign_file(tmp_path: Path):
    """A file that is not our database is replaced."""
    db_path = tmp_path / "test.db"
    db_path.write_bytes(b"definitely not sqlite" * 100)

    init_database(db_path)
    with open_database(db_path) as conn:
        assert get_schema_version(conn) == SCHEMA_VERSION


def test_get_schema_version_empty_db(tmp_path: Path):
    """A database without the meta table reports version 0."""
    conn = sqlite3.connect(tmp_path / "empty.db")
    assert get_schema_version(conn) == 0
    conn.close()


def test_require_database_missing(tmp_path: Path, capsys):
    """Missing database raises DatabaseNotAvailable after a friendly message."""
    with pytest.raises(DatabaseNotAvailable):
        with require_database(tmp_path / "missing.db"):
            pass
    assert "Nothing stored yet." in capsys.readouterr().out


def test_require_database_missing_exit(tmp_path: Path):
    """With exit_on_missing, a missing database exits 1."""
    with pytest.raises(SystemExit) as exc_info:
        with require_database(tmp_path / "missing.db", exit_on_missing=True):
            pass
    assert exc_info.value.code == 1


def test_require_database_existing(tmp_path: Path):
    """An existing database yields a usable connection."""
    db_path = tmp_path / "test.db"
    init_database(db_path)
    with require_database(db_path) as conn:
        assert get_favorites(conn) == []


# --- Favorites ---


def test_add_and_get_favorites(tmp_path: Path):
    """Favorites are returned ordered by port."""
    with open_database(tmp_path / "test.db") as conn:
        add_favorite(conn, 8080, "api")
        add_favorite(conn, 3000, "web")
        favs = get_favorites(conn)

    assert [(f["port"], f["label"]) for f in favs] == [(3000, "web"), (8080, "api")]
    assert all(f["created_at"] > 0 for f in favs)


def test_add_favorite_replaces_label(tmp_path: Path):
    """Adding an existing port replaces its label instead of duplicating."""
    with open_database(tmp_path / "test.db") as conn:
        add_favorite(conn, 3000, "web")
        add_favorite(conn, 3000, "frontend")
        assert get_favorite_labels(conn) == {3000: "frontend"}


def test_update_favorite_label(tmp_path: Path):
    """Rename reports whether the favorite existed."""
    with open_database(tmp_path / "test.db") as conn:
        add_favorite(conn, 5432, "db")
        assert update_favorite_label(conn, 5432, "postgres") is True
        assert update_favorite_label(conn, 6379, "redis") is False
        assert get_favorite_labels(conn) == {5432: "postgres"}


def test_remove_favorite(tmp_path: Path):
    """Remove reports whether the favorite existed."""
    with open_database(tmp_path / "test.db") as conn:
        add_favorite(conn, 5432, "db")
        assert remove_favorite(conn, 5432) is True
        assert remove_favorite(conn, 5432) is False
        assert get_favorites(conn) == []


# --- Kill history ---


def test_kill_history_newest_first(tmp_path: Path):
    """History comes back newest first."""
    with open_database(tmp_path / "test.db") as conn:
        add_kill_history(conn, 3000, 1, "node", killed_at=100.0)
        add_kill_history(conn, 8080, 2, "python", killed_at=300.0)
        add_kill_history(conn, 5432, 3, "postgres", killed_at=200.0)
        entries = get_kill_history(conn)

    assert [e["port"] for e in entries] == [8080, 5432, 3000]
    assert entries[0] == {
        "id": entries[0]["id"],
        "port": 8080,
        "pid": 2,
        "process_name": "python",
        "killed_at": 300.0,
    }


def test_kill_history_trimmed_to_max_entries(tmp_path: Path):
    """Oldest entries beyond max_entries are dropped on insert."""
    with open_database(tmp_path / "test.db") as conn:
        for i in range(55):
            add_kill_history(conn, 1000 + i, i + 1, "proc", max_entries=50, killed_at=float(i))
        entries = get_kill_history(conn, limit=100)

    assert len(entries) == 50
    assert entries[0]["port"] == 1054
    assert entries[-1]["port"] == 1005


def test_kill_history_same_timestamp_keeps_latest(tmp_path: Path):
    """Entries with equal timestamps are ordered by insertion."""
    with open_database(tmp_path / "test.db") as conn:
        add_kill_history(conn, 1, 1, "a", max_entries=2, killed_at=5.0)
        add_kill_history(conn, 2, 2, "b", max_entries=2, killed_at=5.0)
        add_kill_history(conn, 3, 3, "c", max_entries=2, killed_at=5.0)
        assert [e["port"] for e in get_kill_history(conn)] == [3, 2]


def test_kill_history_limit(tmp_path: Path):
    """limit caps the number of rows returned."""
    with open_database(tmp_path / "test.db") as conn:
        for i in range(5):
            add_kill_history(conn, i, i, "p", killed_at=float(i))
        assert len(get_kill_history(conn, limit=3)) == 3


def test_clear_kill_history(tmp_path: Path):
    """Clearing returns the number of rows removed."""
    with open_database(tmp_path / "test.db") as conn:
        add_kill_history(conn, 1, 1, "a")
        add_kill_history(conn, 2, 2, "b")
        assert clear_kill_history(conn) == 2
        assert get_kill_history(conn) == []
