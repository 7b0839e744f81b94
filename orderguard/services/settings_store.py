"""Persisted guard settings.

Settings live as JSON values in the `settings` table. They are read once per
request into an immutable GuardSettings and passed to the detectors; nothing
inside the detectors reads the table directly.
"""
import json
import logging
import sqlite3
from typing import Optional

from pydantic import ValidationError

from orderguard.database import get_connection
from orderguard.models.settings import GuardSettings, SettingsUpdate

logger = logging.getLogger(__name__)


def load_settings(conn: Optional[sqlite3.Connection] = None) -> GuardSettings:
    conn = conn or get_connection()
    rows = conn.execute("SELECT key, value FROM settings").fetchall()
    known = GuardSettings.model_fields
    values = {}
    for row in rows:
        if row["key"] not in known:
            continue
        values[row["key"]] = json.loads(row["value"])

    try:
        return GuardSettings(**values)
    except ValidationError as exc:
        # A hand-edited row should not take checkout down with it.
        logger.warning("Stored settings are invalid, falling back to defaults: %s", exc)
        return GuardSettings()


def update_settings(
    update: SettingsUpdate, conn: Optional[sqlite3.Connection] = None
) -> GuardSettings:
    conn = conn or get_connection()
    changes = update.model_dump(exclude_none=True)
    for key, value in changes.items():
        conn.execute(
            """INSERT INTO settings (key, value) VALUES (?, ?)
               ON CONFLICT (key) DO UPDATE SET value = excluded.value""",
            (key, json.dumps(value)),
        )
    conn.commit()
    logger.info("Settings updated: %s", ", ".join(sorted(changes)) or "(no changes)")
    return load_settings(conn)
