"""History database for walk sessions and moments."""

import json
import sqlite3
import threading
from datetime import datetime
from typing import Optional

from .models import Location, WalkMoment, WalkSession


def _iso(ts: Optional[float]) -> Optional[str]:
    return datetime.fromtimestamp(ts).isoformat() if ts is not None else None


def _points_json(points) -> str:
    return json.dumps([{"lat": p.lat, "lng": p.lng} for p in points])


class HistoryDB:
    """SQLite database of walk sessions and the moments pinned on them"""

    def __init__(self, db_path: str = "wanderer_history.db"):
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.Lock()  # engine writes from dispatch threads
        self._init_schema()

    def _init_schema(self):
        """Create database tables"""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS walks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                title TEXT,
                start_time TEXT NOT NULL,
                end_time TEXT,
                total_distance REAL DEFAULT 0,
                total_duration INTEGER DEFAULT 0,
                route_path TEXT NOT NULL DEFAULT '[]',
                planned_route TEXT NOT NULL DEFAULT '[]',
                status TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS walk_moments (
                id TEXT PRIMARY KEY,
                walk_id INTEGER NOT NULL REFERENCES walks(id) ON DELETE CASCADE,
                latitude REAL NOT NULL,
                longitude REAL NOT NULL,
                photo_ref TEXT,
                description TEXT,
                created_at TEXT NOT NULL
            )
        """)
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_walks_user ON walks (user_id, start_time)"
        )
        self.conn.commit()

    def insert_session(self, session: WalkSession) -> int:
        """Write the initial record of a walk, return its ID"""
        now = datetime.now().isoformat()
        with self._lock:
            cursor = self.conn.execute(
                """INSERT INTO walks (user_id, title, start_time, end_time, total_distance,
                                      total_duration, route_path, planned_route, status, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (session.user_id, session.title, _iso(session.start_time), _iso(session.end_time),
                 session.total_distance, session.total_duration,
                 _points_json(session.route_path), _points_json(session.planned_route),
                 session.status, now)
            )
            self.conn.commit()
        return cursor.lastrowid

    def update_session_status(self, session_id: int, status: str):
        now = datetime.now().isoformat()
        with self._lock:
            self.conn.execute(
                "UPDATE walks SET status = ?, updated_at = ? WHERE id = ?",
                (status, now, session_id)
            )
            self.conn.commit()

    def finalize_session(self, session_id: int, end_time: float, total_distance: float,
                         total_duration: int, route_path: list[Location]):
        """Write the frozen totals and trail of a completed walk"""
        now = datetime.now().isoformat()
        with self._lock:
            cursor = self.conn.execute(
                """UPDATE walks SET end_time = ?, total_distance = ?, total_duration = ?,
                                    route_path = ?, status = 'completed', updated_at = ?
                   WHERE id = ?""",
                (_iso(end_time), total_distance, total_duration,
                 _points_json(route_path), now, session_id)
            )
            self.conn.commit()
        if cursor.rowcount == 0:
            raise sqlite3.IntegrityError(f"Walk {session_id} does not exist")

    def insert_moments(self, session_id: int, moments: list[WalkMoment]):
        """Store moments for a walk; already stored moment IDs are left alone"""
        with self._lock:
            self.conn.executemany(
                """INSERT OR IGNORE INTO walk_moments
                       (id, walk_id, latitude, longitude, photo_ref, description, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                [(m.id, session_id, m.lat, m.lng, m.photo_ref, m.description, _iso(m.timestamp))
                 for m in moments]
            )
            self.conn.commit()

    def get_session(self, session_id: int) -> Optional[dict]:
        cursor = self.conn.execute("SELECT * FROM walks WHERE id = ?", (session_id,))
        row = cursor.fetchone()
        return self._walk_row(row) if row else None

    def get_moments(self, session_id: int) -> list[dict]:
        cursor = self.conn.execute(
            "SELECT * FROM walk_moments WHERE walk_id = ? ORDER BY created_at", (session_id,)
        )
        return [dict(row) for row in cursor.fetchall()]

    def list_sessions(self, user_id: Optional[str] = None, limit: int = 20) -> list[dict]:
        """Most recent walks first"""
        if user_id is not None:
            cursor = self.conn.execute(
                "SELECT * FROM walks WHERE user_id = ? ORDER BY start_time DESC, id DESC LIMIT ?",
                (user_id, limit)
            )
        else:
            cursor = self.conn.execute(
                "SELECT * FROM walks ORDER BY start_time DESC, id DESC LIMIT ?", (limit,)
            )
        return [self._walk_row(row) for row in cursor.fetchall()]

    def get_stats(self, user_id: Optional[str] = None) -> dict:
        """Get overall walking stats for completed walks"""
        where = "WHERE status = 'completed'"
        params: tuple = ()
        if user_id is not None:
            where += " AND user_id = ?"
            params = (user_id,)
        row = self.conn.execute(f"""
            SELECT
                COUNT(*) AS total_walks,
                SUM(total_distance) AS total_distance,
                SUM(total_duration) AS total_duration,
                (SELECT COUNT(*) FROM walk_moments m
                   WHERE m.walk_id IN (SELECT id FROM walks {where})) AS total_moments
            FROM walks {where}
        """, params + params).fetchone()
        return {
            "total_walks": row["total_walks"] or 0,
            "total_distance_km": (row["total_distance"] or 0) / 1000,
            "total_duration_minutes": (row["total_duration"] or 0) / 60,
            "total_moments": row["total_moments"] or 0,
        }

    def delete_session(self, session_id: int):
        with self._lock:
            self.conn.execute("DELETE FROM walks WHERE id = ?", (session_id,))
            self.conn.commit()

    @staticmethod
    def _walk_row(row: sqlite3.Row) -> dict:
        walk = dict(row)
        walk["route_path"] = json.loads(walk["route_path"])
        walk["planned_route"] = json.loads(walk["planned_route"])
        return walk

    def close(self):
        self.conn.close()
