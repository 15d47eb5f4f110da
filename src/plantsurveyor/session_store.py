"""
SQLite persistence for plantation sessions and their planted points.

Sessions are keyed by origin marker id; points are keyed by
(origin id, point number) and always read back in point-number order.
Every write is a single transaction: it fully applies or not at all.
"""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import PlantSurveyorConfig, get_config
from .errors import DuplicateOrigin, PersistenceFailure, UnknownOrigin
from .geometry import Position
from .models import PlantedPoint, Session, utc_now

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"

_SESSION_COLUMNS = "session_id, origin_id, name, lat, lon, created_at, updated_at"
_POINT_COLUMNS = (
    "point_number, name, offset_origin_x, offset_origin_y, offset_origin_z, "
    "offset_previous_x, offset_previous_y, offset_previous_z, "
    "previous_point_id, distance_from_previous, timestamp"
)


def _to_text(moment: datetime) -> str:
    # Fixed-width UTC text keeps ORDER BY on timestamp columns chronological
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SessionStore:
    """SQLite store for sessions and points with thread safety.

    Each thread gets its own connection; a re-entrant lock serialises
    statement groups so writes never interleave.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None, config: Optional[PlantSurveyorConfig] = None):
        self._config = config or get_config()

        if db_path is not None:
            self._db_path = str(db_path)
        else:
            default_path = self._config.database_path
            default_path.parent.mkdir(parents=True, exist_ok=True)
            self._db_path = str(default_path)

        self._lock = threading.RLock()
        self._thread_local = threading.local()
        # In-memory databases are per-connection, so share one across threads
        self._shared_connection: Optional[sqlite3.Connection] = None

        self._init_database()

        if self._config.debug_mode:
            logger.info(f"Initialized session store: {self._db_path}")

    @property
    def path(self) -> str:
        return self._db_path

    def _open_connection(self) -> sqlite3.Connection:
        try:
            connection = sqlite3.connect(self._db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"Cannot open database {self._db_path}: {exc}") from exc
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    def _get_connection(self) -> sqlite3.Connection:
        """Get the connection for the calling thread."""
        if self._db_path == MEMORY_DATABASE:
            if self._shared_connection is None:
                self._shared_connection = self._open_connection()
            return self._shared_connection
        if not hasattr(self._thread_local, 'connection'):
            self._thread_local.connection = self._open_connection()
        return self._thread_local.connection

    def _init_database(self):
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS sessions (
                        session_id TEXT PRIMARY KEY,
                        origin_id TEXT UNIQUE NOT NULL,
                        name TEXT NOT NULL,
                        lat REAL NOT NULL DEFAULT 0.0,
                        lon REAL NOT NULL DEFAULT 0.0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS points (
                        row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_origin_id TEXT NOT NULL,
                        point_number INTEGER NOT NULL,
                        name TEXT NOT NULL,
                        offset_origin_x REAL NOT NULL,
                        offset_origin_y REAL NOT NULL,
                        offset_origin_z REAL NOT NULL,
                        offset_previous_x REAL NOT NULL,
                        offset_previous_y REAL NOT NULL,
                        offset_previous_z REAL NOT NULL,
                        previous_point_id INTEGER NOT NULL,
                        distance_from_previous REAL NOT NULL,
                        timestamp TEXT NOT NULL,
                        UNIQUE (session_origin_id, point_number),
                        FOREIGN KEY (session_origin_id) REFERENCES sessions(origin_id) ON DELETE CASCADE
                    )
                """)
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_points_session_number "
                    "ON points(session_origin_id, point_number)"
                )
                conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at)")
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceFailure(f"Failed to initialise schema: {exc}") from exc

    # =====================================================================
    # ROW MAPPING
    # =====================================================================

    @staticmethod
    def _point_from_row(row: sqlite3.Row) -> PlantedPoint:
        return PlantedPoint(
            id=row['point_number'],
            name=row['name'],
            offset_from_origin=Position(row['offset_origin_x'], row['offset_origin_y'], row['offset_origin_z']),
            offset_from_previous=Position(row['offset_previous_x'], row['offset_previous_y'], row['offset_previous_z']),
            previous_point_id=row['previous_point_id'],
            distance_from_previous=row['distance_from_previous'],
            placed_at=datetime.fromisoformat(row['timestamp']),
        )

    def _load_points(self, conn: sqlite3.Connection, origin_id: str) -> List[PlantedPoint]:
        rows = conn.execute(
            f"SELECT {_POINT_COLUMNS} FROM points WHERE session_origin_id = ? ORDER BY point_number ASC",
            (origin_id,)
        ).fetchall()
        return [self._point_from_row(row) for row in rows]

    def _session_from_row(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Session:
        return Session(
            session_id=row['session_id'],
            origin_id=row['origin_id'],
            display_name=row['name'],
            latitude=row['lat'],
            longitude=row['lon'],
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at']),
            points=tuple(self._load_points(conn, row['origin_id'])),
        )

    # =====================================================================
    # SESSIONS
    # =====================================================================

    def get_by_origin_id(self, origin_id: str) -> Optional[Session]:
        """Return the session bound to a marker with its points, or None."""
        with self._lock:
            conn = self._get_connection()
            try:
                row = conn.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE origin_id = ?", (origin_id,)
                ).fetchone()
                if not row:
                    return None
                return self._session_from_row(conn, row)
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"Failed to load session for {origin_id}: {exc}",
                                         details={"origin_id": origin_id}) from exc

    def create(self, session: Session) -> None:
        """Insert a new session record. Never replaces an existing one."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute(f"""
                    INSERT INTO sessions ({_SESSION_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    session.session_id, session.origin_id, session.display_name,
                    session.latitude, session.longitude,
                    _to_text(session.created_at), _to_text(session.updated_at),
                ))
                for point in session.points:
                    self._insert_point(conn, session.origin_id, point)
                conn.commit()
            except sqlite3.IntegrityError as exc:
                conn.rollback()
                exists = conn.execute(
                    "SELECT 1 FROM sessions WHERE origin_id = ?", (session.origin_id,)
                ).fetchone()
                if exists:
                    raise DuplicateOrigin(f"A session already exists for origin {session.origin_id}",
                                          details={"origin_id": session.origin_id}) from exc
                raise PersistenceFailure(f"Failed to create session: {exc}",
                                         details={"origin_id": session.origin_id}) from exc
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceFailure(f"Failed to create session: {exc}",
                                         details={"origin_id": session.origin_id}) from exc

            logger.info(f"Created session {session.session_id} for origin {session.origin_id}: {session.display_name}")

    def list_sessions(self) -> List[Session]:
        """All sessions, most recently updated first, points loaded."""
        with self._lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(
                    f"SELECT {_SESSION_COLUMNS} FROM sessions ORDER BY updated_at DESC"
                ).fetchall()
                return [self._session_from_row(conn, row) for row in rows]
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"Failed to list sessions: {exc}") from exc

    def delete_session(self, origin_id: str) -> bool:
        """Remove a session and all its points in one transaction."""
        with self._lock:
            conn = self._get_connection()
            try:
                conn.execute("DELETE FROM points WHERE session_origin_id = ?", (origin_id,))
                cursor = conn.execute("DELETE FROM sessions WHERE origin_id = ?", (origin_id,))
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceFailure(f"Failed to delete session {origin_id}: {exc}",
                                         details={"origin_id": origin_id}) from exc

            removed = cursor.rowcount > 0
            if removed:
                logger.info(f"Deleted session for origin {origin_id}")
            return removed

    def delete_all(self) -> int:
        """Remove every session and point. Returns the number of sessions removed."""
        with self._lock:
            conn = self._get_connection()
            try:
                count = conn.execute("SELECT COUNT(*) AS count FROM sessions").fetchone()['count']
                conn.execute("DELETE FROM points")
                conn.execute("DELETE FROM sessions")
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceFailure(f"Failed to clear store: {exc}") from exc

            logger.info(f"Cleared {count} sessions")
            return count

    # =====================================================================
    # POINTS
    # =====================================================================

    def _insert_point(self, conn: sqlite3.Connection, origin_id: str, point: PlantedPoint) -> None:
        conn.execute(f"""
            INSERT INTO points (session_origin_id, {_POINT_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            origin_id, point.id, point.name,
            point.offset_from_origin.x, point.offset_from_origin.y, point.offset_from_origin.z,
            point.offset_from_previous.x, point.offset_from_previous.y, point.offset_from_previous.z,
            point.previous_point_id, point.distance_from_previous,
            _to_text(point.placed_at),
        ))

    def append_point(self, origin_id: str, point: PlantedPoint, updated_at: Optional[datetime] = None) -> datetime:
        """Insert a point and refresh the session's updated_at atomically.

        Returns:
            The session's new updated_at.

        Raises:
            UnknownOrigin: no session is bound to ``origin_id``.
            PersistenceFailure: the write failed and was rolled back.
        """
        refreshed_at = updated_at or utc_now()
        with self._lock:
            conn = self._get_connection()
            try:
                exists = conn.execute(
                    "SELECT 1 FROM sessions WHERE origin_id = ?", (origin_id,)
                ).fetchone()
                if not exists:
                    raise UnknownOrigin(f"No session exists for origin {origin_id}",
                                        details={"origin_id": origin_id})

                self._insert_point(conn, origin_id, point)
                conn.execute(
                    "UPDATE sessions SET updated_at = ? WHERE origin_id = ?",
                    (_to_text(refreshed_at), origin_id)
                )
                conn.commit()
            except sqlite3.Error as exc:
                conn.rollback()
                raise PersistenceFailure(f"Failed to append point {point.id} to {origin_id}: {exc}",
                                         details={"origin_id": origin_id, "point_id": point.id}) from exc

            logger.info(f"Appended point {point.id} ({point.name}) to origin {origin_id}")
            return refreshed_at

    # =====================================================================
    # STATISTICS AND EXPORT
    # =====================================================================

    def count_sessions(self) -> int:
        with self._lock:
            conn = self._get_connection()
            try:
                return conn.execute("SELECT COUNT(*) AS count FROM sessions").fetchone()['count']
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"Failed to count sessions: {exc}") from exc

    def count_points(self, origin_id: Optional[str] = None) -> int:
        with self._lock:
            conn = self._get_connection()
            try:
                if origin_id is None:
                    row = conn.execute("SELECT COUNT(*) AS count FROM points").fetchone()
                else:
                    row = conn.execute(
                        "SELECT COUNT(*) AS count FROM points WHERE session_origin_id = ?", (origin_id,)
                    ).fetchone()
                return row['count']
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"Failed to count points: {exc}") from exc

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            conn = self._get_connection()
            try:
                per_session = conn.execute("""
                    SELECT s.origin_id, s.name, COUNT(p.row_id) AS count
                    FROM sessions s
                    LEFT JOIN points p ON p.session_origin_id = s.origin_id
                    GROUP BY s.origin_id
                    ORDER BY s.updated_at DESC
                """).fetchall()
            except sqlite3.Error as exc:
                raise PersistenceFailure(f"Failed to collect statistics: {exc}") from exc

            return {
                "database_path": self._db_path,
                "total_sessions": len(per_session),
                "total_points": sum(row['count'] for row in per_session),
                "points_per_session": {row['origin_id']: row['count'] for row in per_session},
            }

    def export_session(self, origin_id: str) -> Dict[str, Any]:
        """JSON-ready snapshot of one session."""
        session = self.get_by_origin_id(origin_id)
        if session is None:
            raise UnknownOrigin(f"No session exists for origin {origin_id}", details={"origin_id": origin_id})
        return session_to_dict(session)

    def close(self):
        """Close the calling thread's connection."""
        if self._shared_connection is not None:
            self._shared_connection.close()
            self._shared_connection = None
        if hasattr(self._thread_local, 'connection'):
            try:
                self._thread_local.connection.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing database connection: {e}")
            delattr(self._thread_local, 'connection')


def point_to_dict(point: PlantedPoint) -> Dict[str, Any]:
    return {
        "id": point.id,
        "name": point.name,
        "offset_from_origin": list(point.offset_from_origin.as_tuple()),
        "offset_from_previous": list(point.offset_from_previous.as_tuple()),
        "previous_point_id": point.previous_point_id,
        "distance_from_previous": point.distance_from_previous,
        "placed_at": point.placed_at.isoformat(),
    }


def session_to_dict(session: Session, include_points: bool = True) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "session_id": session.session_id,
        "origin_id": session.origin_id,
        "name": session.display_name,
        "lat": session.latitude,
        "lon": session.longitude,
        "created_at": session.created_at.isoformat(),
        "updated_at": session.updated_at.isoformat(),
        "point_count": session.point_count,
    }
    if include_points:
        data["points"] = [point_to_dict(point) for point in session.points]
    return data
