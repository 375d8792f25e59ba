# db.py
"""
SQLite store for (id, text, embedding) rows. Embeddings are kept as JSON
arrays in a TEXT column, the format the bundled corpora ship with.

The search path only reads from here; ``add_entry`` exists for ingestion.
"""
from pathlib import Path
import json
import sqlite3
import numpy as np

from pocket_embed.ranking import StoredEntry

DEFAULT_DB = "search.db"


def _vec_to_text(vec) -> str:
    return json.dumps([float(x) for x in np.asarray(vec, dtype=np.float32).ravel()])


def init_db(path: str | Path = DEFAULT_DB) -> sqlite3.Connection:
    con = sqlite3.connect(str(path), check_same_thread=False)
    con.execute("PRAGMA journal_mode=WAL")
    con.execute(
        """
        CREATE TABLE IF NOT EXISTS docs(
            id      INTEGER PRIMARY KEY,
            source  TEXT UNIQUE,
            text    TEXT,
            embed   TEXT
        )
        """
    )
    return con


def count_rows(con: sqlite3.Connection) -> int:
    (count,) = con.execute("SELECT COUNT(*) FROM docs").fetchone()
    return int(count)


def select_all_with_embeddings(con: sqlite3.Connection) -> list[StoredEntry]:
    rows = con.execute(
        "SELECT id, text, embed FROM docs "
        "WHERE embed IS NOT NULL AND embed != '' ORDER BY id"
    ).fetchall()
    return [StoredEntry(id=int(i), text=t or "", embedding=e) for i, t, e in rows]


def get_entry(con: sqlite3.Connection, entry_id: int) -> StoredEntry | None:
    row = con.execute(
        "SELECT id, text, embed FROM docs WHERE id = ?", (entry_id,)
    ).fetchone()
    if row is None:
        return None
    return StoredEntry(id=int(row[0]), text=row[1] or "", embedding=row[2] or "")


def add_entry(
    con: sqlite3.Connection,
    text: str,
    vec,
    entry_id: int | None = None,
    source: str | None = None,
) -> int:
    """Insert (or replace, keyed on id / source) one row, return its id."""
    cur = con.execute(
        "INSERT OR REPLACE INTO docs(id, source, text, embed) VALUES (?, ?, ?, ?)",
        (entry_id, source, text, _vec_to_text(vec)),
    )
    con.commit()
    return int(cur.lastrowid)


class VectorStore:
    """Read side handed to the search engine."""

    def __init__(self, path: str | Path = DEFAULT_DB) -> None:
        self.path = Path(path)
        self.con = init_db(self.path)

    def count_rows(self) -> int:
        return count_rows(self.con)

    def select_all_with_embeddings(self) -> list[StoredEntry]:
        return select_all_with_embeddings(self.con)

    def get_entry(self, entry_id: int) -> StoredEntry | None:
        return get_entry(self.con, entry_id)

    def close(self) -> None:
        self.con.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()
