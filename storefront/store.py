"""Durable client-side checkout state, scoped per browser.

Keys mirror what the storefront pages keep between page loads:
``checkoutCart``, ``selectedAddOns``, ``pendingOrder``, ``completedOrder``,
``selectedTracks`` (plus ``lastSessionId`` to detect a session switch).
Values are JSON-serialized.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from storefront.db import get_db

logger = logging.getLogger(__name__)

CHECKOUT_CART = "checkoutCart"
SELECTED_ADD_ONS = "selectedAddOns"
PENDING_ORDER = "pendingOrder"
COMPLETED_ORDER = "completedOrder"
SELECTED_TRACKS = "selectedTracks"
LAST_SESSION_ID = "lastSessionId"


class ClientStore:
    """Key/value view of ``client_state`` for one browser scope."""

    def __init__(self, scope: str):
        self.scope = scope

    async def get_json(self, key: str, default: Any = None) -> Any:
        db = get_db()
        cursor = await db.execute(
            "SELECT value FROM client_state WHERE scope = ? AND key = ?",
            (self.scope, key),
        )
        row = await cursor.fetchone()
        if not row:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Dropping unreadable %s for scope %s", key, self.scope)
            await self.remove(key)
            return default

    async def set_json(self, key: str, value: Any) -> None:
        db = get_db()
        await db.execute(
            """
            INSERT INTO client_state (scope, key, value)
            VALUES (?, ?, ?)
            ON CONFLICT(scope, key)
            DO UPDATE SET value      = excluded.value,
                          updated_at = datetime('now')
            """,
            (self.scope, key, json.dumps(value)),
        )
        await db.commit()

    async def remove(self, *keys: str) -> None:
        db = get_db()
        for key in keys:
            await db.execute(
                "DELETE FROM client_state WHERE scope = ? AND key = ?",
                (self.scope, key),
            )
        await db.commit()

    async def clear_scope(self) -> None:
        """Forget everything for this browser (logout)."""
        db = get_db()
        await db.execute("DELETE FROM client_state WHERE scope = ?", (self.scope,))
        await db.commit()
