# db.py
import os
import sqlite3
from pathlib import Path

DEFAULT_DB = Path(__file__).resolve().with_name("rollup.db")
DB_PATH = Path(os.getenv("ROLLUP_DB_PATH", str(DEFAULT_DB))).expanduser()


def init_db(db_path: Path | str | None = None) -> None:
    """Create required tables if they don't exist."""
    path = Path(db_path) if db_path is not None else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(path) as conn:
        # One row per forum thread; the cursor is the newest summarized message
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS project_thread_memory (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                thread_id INTEGER NOT NULL UNIQUE,
                thread_name TEXT NOT NULL,
                last_seen_message_id INTEGER,
                last_summary_at TEXT,
                memory TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        conn.commit()
