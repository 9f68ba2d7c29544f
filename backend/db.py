import json
import os
import sqlite3
from datetime import datetime, timezone

import config

DB_PATH = config.DB_PATH


def get_db():
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    directory = os.path.dirname(DB_PATH)
    if directory:
        os.makedirs(directory, exist_ok=True)
    conn = get_db()
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS settings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(namespace, key)
            );
        """)
        conn.commit()
    finally:
        conn.close()


def get_value(namespace, key, default=None):
    """Return the JSON-decoded value stored under namespace/key, or default."""
    db = get_db()
    try:
        row = db.execute(
            "SELECT value FROM settings WHERE namespace = ? AND key = ?",
            (namespace, key),
        ).fetchone()
        return json.loads(row["value"]) if row else default
    finally:
        db.close()


def get_namespace(namespace):
    """Return every key in a namespace as a dict."""
    db = get_db()
    try:
        rows = db.execute(
            "SELECT key, value FROM settings WHERE namespace = ?",
            (namespace,),
        ).fetchall()
        return {r["key"]: json.loads(r["value"]) for r in rows}
    finally:
        db.close()


def set_values(namespace, values):
    """Upsert a dict of key -> JSON-serializable value into a namespace."""
    now = datetime.now(timezone.utc).isoformat()
    db = get_db()
    try:
        for key, value in values.items():
            db.execute(
                """INSERT INTO settings (namespace, key, value, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(namespace, key)
                   DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at""",
                (namespace, key, json.dumps(value), now),
            )
        db.commit()
    finally:
        db.close()


def set_value(namespace, key, value):
    set_values(namespace, {key: value})


def delete_namespace(namespace):
    db = get_db()
    try:
        db.execute("DELETE FROM settings WHERE namespace = ?", (namespace,))
        db.commit()
    finally:
        db.close()
