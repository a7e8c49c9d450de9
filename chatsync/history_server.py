"""Reference history store: ``GET/POST /history`` over a SQLite blob store."""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .actions import messages_from_json
from .config import Config
from .errors import DecodeError

logger = logging.getLogger(__name__)

BLOB_SCHEMA = """
CREATE TABLE IF NOT EXISTS blobs (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class BlobStore:
    """Durable key-value store of JSON documents."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.executescript(BLOB_SCHEMA)
        self._conn.commit()
        logger.info(f"BlobStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def get_json(self, key: str) -> Any:
        """Return the stored document, or None if the key is absent."""
        conn = self._ensure_connected()
        row = conn.execute("SELECT value FROM blobs WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return json.loads(row[0])

    def set_json(self, key: str, value: Any) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO blobs (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                           updated_at = excluded.updated_at
            """,
            (key, json.dumps(value, ensure_ascii=False), datetime.now().isoformat()),
        )
        conn.commit()


def create_app(config: Config | None = None, store: BlobStore | None = None) -> FastAPI:
    """Create the history store application.

    Args:
        config: Application configuration.
        store: Optional BlobStore; one is opened at ``config.server.db_path`` if None.

    Returns:
        Configured FastAPI application.
    """
    config = config or Config()
    if store is None:
        store = BlobStore(config.server.db_path)
        store.connect()

    history_key = config.server.history_key

    app = FastAPI(
        title="chatsync history store",
        description="Last-write-wins storage for chat history snapshots",
        version="0.1.0",
    )
    app.state.config = config
    app.state.store = store

    @app.get("/history")
    async def get_history():
        """Return the stored history, or an empty list."""
        try:
            history = store.get_json(history_key)
        except (sqlite3.Error, ValueError) as e:
            logger.error(f"Error retrieving chat history: {e}")
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to retrieve chat history."},
            )
        return history or []

    @app.post("/history")
    async def save_history(request: Request):
        """Replace the stored history with the posted message list."""
        body = await request.body()
        if not body.strip():
            return JSONResponse(
                status_code=400, content={"error": "Bad Request: No body provided."}
            )

        try:
            messages = messages_from_json(json.loads(body))
        except (ValueError, DecodeError) as e:
            return JSONResponse(status_code=400, content={"error": f"Bad Request: {e}"})

        try:
            store.set_json(history_key, [m.to_dict() for m in messages])
        except sqlite3.Error as e:
            logger.error(f"Error saving chat history: {e}")
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to save chat history."},
            )

        logger.info(f"Saved chat history with {len(messages)} messages")
        return {"success": True}

    return app
