"""SQLite storage for per-browser checkout state.

One aiosqlite connection is opened by the app lifespan; the
``client_state`` table is created on first startup via ``init_db()``.
"""

from __future__ import annotations

import aiosqlite

from storefront.config import get_settings

# Module-level connection (set during lifespan startup).
_db: aiosqlite.Connection | None = None

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS client_state (
    scope       TEXT    NOT NULL,              -- browser scope from the session cookie
    key         TEXT    NOT NULL
                    CHECK(key IN ('checkoutCart', 'selectedAddOns', 'pendingOrder',
                                  'completedOrder', 'selectedTracks', 'lastSessionId')),
    value       TEXT    NOT NULL DEFAULT 'null', -- JSON
    updated_at  TEXT    NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (scope, key)
);

CREATE INDEX IF NOT EXISTS idx_client_state_scope
    ON client_state(scope);
"""


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------

async def init_db() -> aiosqlite.Connection:
    """Open (or create) the SQLite database and ensure schema exists."""
    global _db  # noqa: PLW0603
    settings = get_settings()
    db_path = settings.db_abs_path

    _db = await aiosqlite.connect(str(db_path))
    await _db.executescript(_SCHEMA_SQL)
    await _db.commit()
    return _db


async def close_db() -> None:
    """Close the database connection."""
    global _db  # noqa: PLW0603
    if _db is not None:
        await _db.close()
        _db = None


def get_db() -> aiosqlite.Connection:
    """Return the current database connection (call after init)."""
    if _db is None:
        raise RuntimeError("Database not initialised, call init_db() first.")
    return _db
