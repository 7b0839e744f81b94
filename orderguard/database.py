import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

DEFAULT_DB_PATH = Path(__file__).parent.parent / "orderguard.db"

_connection: Optional[sqlite3.Connection] = None


def _db_path() -> str:
    return os.environ.get("DATABASE_PATH", str(DEFAULT_DB_PATH))


def get_connection() -> sqlite3.Connection:
    global _connection
    if _connection is None:
        _connection = sqlite3.connect(_db_path(), check_same_thread=False)
        _connection.row_factory = sqlite3.Row
        _connection.execute("PRAGMA journal_mode=WAL")
        _connection.execute("PRAGMA foreign_keys=ON")
    return _connection


def close_connection() -> None:
    global _connection
    if _connection is not None:
        _connection.close()
        _connection = None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Render a datetime as a UTC ISO-8601 string. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def init_schema() -> None:
    conn = get_connection()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phone TEXT NOT NULL,
            ip TEXT NOT NULL DEFAULT '',
            device_id TEXT NOT NULL DEFAULT '',
            customer_name TEXT NOT NULL DEFAULT '',
            name_key TEXT NOT NULL DEFAULT '',
            address_1 TEXT NOT NULL DEFAULT '',
            city TEXT NOT NULL DEFAULT '',
            postcode TEXT NOT NULL DEFAULT '',
            address_key TEXT NOT NULL DEFAULT '',
            status TEXT NOT NULL DEFAULT 'processing',
            created_at TEXT NOT NULL,
            fraud_score INTEGER,
            risk_tier TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_orders_created_at ON orders (created_at);
        CREATE INDEX IF NOT EXISTS idx_orders_phone ON orders (phone);
        CREATE INDEX IF NOT EXISTS idx_orders_address_key ON orders (address_key);

        CREATE TABLE IF NOT EXISTS cooldowns (
            identifier_type TEXT NOT NULL,
            identifier_value TEXT NOT NULL,
            last_order_at TEXT NOT NULL,
            PRIMARY KEY (identifier_type, identifier_value)
        );

        CREATE TABLE IF NOT EXISTS blocklist (
            identifier_type TEXT NOT NULL,
            identifier_value TEXT NOT NULL,
            reason TEXT,
            added_at TEXT NOT NULL,
            PRIMARY KEY (identifier_type, identifier_value)
        );

        CREATE TABLE IF NOT EXISTS fraud_scores (
            phone TEXT PRIMARY KEY,
            score INTEGER NOT NULL,
            risk_tier TEXT NOT NULL,
            computed_at TEXT NOT NULL,
            signals TEXT NOT NULL DEFAULT '{}'
        );

        CREATE TABLE IF NOT EXISTS blocked_attempts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            action TEXT NOT NULL,
            reasons TEXT NOT NULL,
            phone TEXT NOT NULL DEFAULT '',
            ip TEXT NOT NULL DEFAULT '',
            customer_name TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        );
    """)
    conn.commit()


def seed_default_settings() -> None:
    """Seed default guard settings if none exist."""
    from orderguard.models.settings import GuardSettings

    conn = get_connection()
    row = conn.execute("SELECT COUNT(*) as cnt FROM settings").fetchone()
    if row["cnt"] > 0:
        return

    for key, value in GuardSettings().model_dump().items():
        conn.execute(
            "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
            (key, json.dumps(value)),
        )
    conn.commit()


def init_db() -> None:
    """Initialize database: create schema and seed default settings."""
    init_schema()
    seed_default_settings()
