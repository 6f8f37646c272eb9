"""SQLite database — connection + schema."""

import os
import sqlite3
from typing import Optional

from server.config import DB_PATH


def get_db(db_path: Optional[str] = None):
    conn = sqlite3.connect(db_path or DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: Optional[str] = None):
    path = db_path or DB_PATH
    if os.path.dirname(path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
    conn = get_db(path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS roadmaps (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            subject TEXT NOT NULL,
            description TEXT DEFAULT '',
            difficulty TEXT DEFAULT 'intermediate' CHECK(difficulty IN ('beginner', 'intermediate', 'advanced')),
            deadline TEXT,
            tags TEXT DEFAULT '[]',
            created_at TEXT DEFAULT (datetime('now')),
            updated_at TEXT DEFAULT (datetime('now'))
        );

        CREATE TABLE IF NOT EXISTS subtasks (
            id TEXT NOT NULL,
            roadmap_id TEXT NOT NULL,
            sort_order INTEGER DEFAULT 0,
            title TEXT NOT NULL,
            description TEXT DEFAULT '',
            estimated_hours REAL DEFAULT 0,
            prerequisites TEXT DEFAULT '[]',
            status TEXT DEFAULT 'not_started' CHECK(status IN ('not_started', 'in_progress', 'completed')),
            completed INTEGER DEFAULT 0,
            deadline TEXT,
            PRIMARY KEY (roadmap_id, id),
            FOREIGN KEY (roadmap_id) REFERENCES roadmaps(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS study_plans (
            id TEXT PRIMARY KEY,
            roadmap_id TEXT NOT NULL UNIQUE,
            plan_type TEXT NOT NULL CHECK(plan_type IN ('weekly', 'monthly')),
            hours_per_week INTEGER NOT NULL,
            starting_date TEXT NOT NULL,
            source TEXT DEFAULT 'local',
            deferred_hours REAL DEFAULT 0,
            weekly_hours TEXT DEFAULT '[]',
            sessions TEXT NOT NULL DEFAULT '[]',
            created_at TEXT DEFAULT (datetime('now')),
            FOREIGN KEY (roadmap_id) REFERENCES roadmaps(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_subtasks_roadmap ON subtasks(roadmap_id, sort_order);
    """)

    conn.commit()
    conn.close()
