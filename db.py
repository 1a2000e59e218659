import sqlite3
import datetime
import json
import logging
import uuid
from contextlib import contextmanager
from typing import List, Tuple, Optional

from config import YamlConfig
from errors import NotFoundError, ValidationError
from models import HistoryEntry, PerformanceRecord, Session
from settings_schema import validate_settings

logger = logging.getLogger(__name__)


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "sessions": (
            """CREATE TABLE sessions (
                    id TEXT PRIMARY KEY,
                    trainee_id TEXT NOT NULL,
                    trainer_id TEXT NOT NULL,
                    scheduled_date TEXT NOT NULL,
                    completed INTEGER NOT NULL DEFAULT 0,
                    recurrence_group_id TEXT,
                    data TEXT NOT NULL
                );""",
            [
                "id",
                "trainee_id",
                "trainer_id",
                "scheduled_date",
                "completed",
                "recurrence_group_id",
                "data",
            ],
        ),
        "exercise_history": (
            """CREATE TABLE exercise_history (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    exercise_name TEXT NOT NULL,
                    exercise_id TEXT,
                    trainee_id TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    completed_at TEXT NOT NULL,
                    performed TEXT NOT NULL,
                    notes TEXT
                );""",
            [
                "seq",
                "id",
                "exercise_name",
                "exercise_id",
                "trainee_id",
                "session_id",
                "completed_at",
                "performed",
                "notes",
            ],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
    }

    def __init__(self, db_path: str = "training.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._ensure_indexes()
        self._init_settings()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_indexes(self) -> None:
        with self._connection() as conn:
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_history_trainee_exercise "
                "ON exercise_history (trainee_id, exercise_name, completed_at);"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_sessions_group "
                "ON sessions (recurrence_group_id);"
            )

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            conn.execute(
                f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
            )
        conn.execute(f"DROP TABLE {table}_old;")

    def _init_settings(self) -> None:
        defaults = {
            "rest_auto_continue": "0",
            "default_rest_seconds": "60",
            "weight_unit": "kg",
            "history_limit": "10",
            "log_level": "INFO",
            "webhook_url": "",
        }
        with self._connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?);",
                    (key, value),
                )

    def vacuum(self) -> None:
        """Run SQLite VACUUM to reduce database size."""
        with self._connection() as conn:
            conn.execute("VACUUM;")


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def execute_count(self, query: str, params: Tuple = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.rowcount

    def fetch_all(self, query: str, params: Tuple = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()

    def _delete_all(self, table: str) -> None:
        self.execute(f"DELETE FROM {table};")


class HistoryRepository(BaseRepository):
    """Append-only store of completed exercise performances."""

    _COLUMNS = (
        "id, exercise_name, exercise_id, trainee_id, session_id, "
        "completed_at, performed, notes"
    )

    @staticmethod
    def _row_to_entry(row: Tuple) -> HistoryEntry:
        eid, name, ex_id, trainee, session, completed_at, performed, notes = row
        return HistoryEntry(
            id=eid,
            exercise_name=name,
            exercise_id=ex_id,
            trainee_id=trainee,
            session_id=session,
            completed_at=datetime.datetime.fromisoformat(completed_at),
            performed=tuple(
                PerformanceRecord(int(s["reps"]), float(s["weight"]))
                for s in json.loads(performed)
            ),
            notes=notes,
        )

    def append(self, entry: HistoryEntry) -> str:
        if not isinstance(entry, HistoryEntry):
            raise ValidationError("history entry expected")
        for label, value in (
            ("id", entry.id),
            ("exercise_name", entry.exercise_name),
            ("trainee_id", entry.trainee_id),
            ("session_id", entry.session_id),
        ):
            if not value or not str(value).strip():
                raise ValidationError(f"{label} must not be blank")
        if not isinstance(entry.completed_at, datetime.datetime):
            raise ValidationError("completed_at must be a datetime")
        if not entry.performed:
            raise ValidationError("performed must contain at least one set")
        try:
            self.execute(
                f"INSERT INTO exercise_history ({self._COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?);",
                (
                    entry.id,
                    entry.exercise_name,
                    entry.exercise_id,
                    entry.trainee_id,
                    entry.session_id,
                    entry.completed_at.isoformat(),
                    json.dumps([s.to_dict() for s in entry.performed]),
                    entry.notes,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"history entry {entry.id} already exists") from e
        return entry.id

    def save_session(self, session: Session) -> List[HistoryEntry]:
        """Append one entry per performed exercise of a submitted session."""
        if not session.completed or session.completed_at is None:
            raise ValidationError("session must be completed to save history")
        entries: List[HistoryEntry] = []
        for exercise in session.exercises:
            if not exercise.performed:
                continue
            entry = HistoryEntry(
                id=str(uuid.uuid4()),
                exercise_name=exercise.plan.name,
                exercise_id=exercise.plan.exercise_id,
                trainee_id=session.trainee_id,
                session_id=session.id,
                completed_at=session.completed_at,
                performed=tuple(exercise.performed),
                notes=exercise.plan.notes,
            )
            self.append(entry)
            entries.append(entry)
            logger.info(
                "saved history for %s: %d sets", exercise.plan.name, len(entry.performed)
            )
        return entries

    def query(
        self,
        trainee_id: str,
        exercise_name: str,
        limit: Optional[int] = None,
        exercise_id: Optional[str] = None,
    ) -> List[HistoryEntry]:
        if exercise_id:
            query = (
                f"SELECT {self._COLUMNS} FROM exercise_history "
                "WHERE trainee_id = ? AND (exercise_id = ? "
                "OR (exercise_id IS NULL AND exercise_name = ?))"
            )
            params: list = [trainee_id, exercise_id, exercise_name]
        else:
            query = (
                f"SELECT {self._COLUMNS} FROM exercise_history "
                "WHERE trainee_id = ? AND exercise_name = ?"
            )
            params = [trainee_id, exercise_name]
        query += " ORDER BY completed_at DESC, seq DESC"
        if limit is not None and limit > 0:
            query += " LIMIT ?"
            params.append(int(limit))
        rows = self.fetch_all(query + ";", tuple(params))
        return [self._row_to_entry(r) for r in rows]

    def last(
        self,
        trainee_id: str,
        exercise_name: str,
        exercise_id: Optional[str] = None,
    ) -> Optional[HistoryEntry]:
        rows = self.query(trainee_id, exercise_name, limit=1, exercise_id=exercise_id)
        return rows[0] if rows else None

    def query_all(self, trainee_id: str) -> List[HistoryEntry]:
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM exercise_history WHERE trainee_id = ? "
            "ORDER BY completed_at DESC, seq DESC;",
            (trainee_id,),
        )
        return [self._row_to_entry(r) for r in rows]

    def fetch(self, entry_id: str) -> HistoryEntry:
        rows = self.fetch_all(
            f"SELECT {self._COLUMNS} FROM exercise_history WHERE id = ?;",
            (entry_id,),
        )
        if not rows:
            raise NotFoundError(f"history entry {entry_id} not found")
        return self._row_to_entry(rows[0])

    def exercise_names(self, trainee_id: str) -> List[str]:
        rows = self.fetch_all(
            "SELECT DISTINCT exercise_name FROM exercise_history "
            "WHERE trainee_id = ? ORDER BY exercise_name;",
            (trainee_id,),
        )
        return [r[0] for r in rows]

    def trainee_ids(self) -> List[str]:
        rows = self.fetch_all(
            "SELECT DISTINCT trainee_id FROM exercise_history ORDER BY trainee_id;"
        )
        return [r[0] for r in rows]

    def history_count(self) -> int:
        rows = self.fetch_all("SELECT COUNT(*) FROM exercise_history;")
        return int(rows[0][0]) if rows else 0

    def clear(self) -> None:
        self._delete_all("exercise_history")
        logger.info("exercise history cleared")


class SessionRepository(BaseRepository):
    """Collection store for scheduled sessions, one JSON document per row."""

    @staticmethod
    def _params(session: Session) -> Tuple:
        return (
            session.trainee_id,
            session.trainer_id,
            session.scheduled_date.isoformat(),
            int(session.completed),
            session.recurrence_group_id,
            json.dumps(session.to_dict()),
        )

    def create(self, session: Session) -> str:
        try:
            self.execute(
                "INSERT INTO sessions (trainee_id, trainer_id, scheduled_date, completed, recurrence_group_id, data, id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?);",
                self._params(session) + (session.id,),
            )
        except sqlite3.IntegrityError as e:
            raise ValidationError(f"session {session.id} already exists") from e
        return session.id

    def fetch(self, session_id: str) -> Session:
        rows = self.fetch_all("SELECT data FROM sessions WHERE id = ?;", (session_id,))
        if not rows:
            raise NotFoundError(f"session {session_id} not found")
        return Session.from_dict(json.loads(rows[0][0]))

    def update(self, session: Session) -> Session:
        count = self.execute_count(
            "UPDATE sessions SET trainee_id = ?, trainer_id = ?, scheduled_date = ?, "
            "completed = ?, recurrence_group_id = ?, data = ? WHERE id = ?;",
            self._params(session) + (session.id,),
        )
        if count == 0:
            raise NotFoundError(f"session {session.id} not found")
        return session

    def delete(self, session_id: str) -> None:
        count = self.execute_count("DELETE FROM sessions WHERE id = ?;", (session_id,))
        if count == 0:
            raise NotFoundError(f"session {session_id} not found")

    def delete_bulk(self, session_ids: list[str]) -> None:
        if not session_ids:
            return
        placeholders = ", ".join("?" for _ in session_ids)
        self.execute(
            f"DELETE FROM sessions WHERE id IN ({placeholders});", tuple(session_ids)
        )

    def _fetch_where(self, clause: str, params: Tuple) -> List[Session]:
        rows = self.fetch_all(
            f"SELECT data FROM sessions WHERE {clause} ORDER BY scheduled_date, id;",
            params,
        )
        return [Session.from_dict(json.loads(r[0])) for r in rows]

    def fetch_for_trainee(
        self, trainee_id: str, completed: Optional[bool] = None
    ) -> List[Session]:
        if completed is None:
            return self._fetch_where("trainee_id = ?", (trainee_id,))
        return self._fetch_where(
            "trainee_id = ? AND completed = ?", (trainee_id, int(completed))
        )

    def fetch_for_trainer(self, trainer_id: str) -> List[Session]:
        return self._fetch_where("trainer_id = ?", (trainer_id,))

    def fetch_by_group(self, recurrence_group_id: str) -> List[Session]:
        return self._fetch_where("recurrence_group_id = ?", (recurrence_group_id,))

    def fetch_all_sessions(self) -> List[Session]:
        return self._fetch_where("1 = 1", ())

    def delete_all(self) -> None:
        self._delete_all("sessions")


class SettingsRepository(BaseRepository):
    """Repository for engine settings synchronized with YAML."""

    _BOOL_KEYS = {"rest_auto_continue"}

    def __init__(
        self, db_path: str = "training.db", yaml_path: str = "settings.yaml"
    ) -> None:
        super().__init__(db_path)
        self._yaml = YamlConfig(yaml_path)
        self._sync_from_yaml()
        self._sync_to_yaml()

    def _raw_all_settings(self) -> dict:
        rows = self.fetch_all("SELECT key, value FROM settings ORDER BY key;")
        result: dict[str, int | float | str | bool] = {}
        for k, v in rows:
            if k in self._BOOL_KEYS:
                result[k] = v in {"1", "1.0", "true", "True"}
                continue
            try:
                result[k] = int(v)
            except ValueError:
                try:
                    result[k] = float(v)
                except ValueError:
                    result[k] = v
        return result

    def all_settings(self) -> dict:
        self._sync_from_yaml()
        return self._raw_all_settings()

    def _sync_from_yaml(self) -> None:
        data = self._yaml.load()
        if not data:
            return
        validate_settings(data)
        with self._connection() as conn:
            for key, value in data.items():
                val = str(value)
                if key in self._BOOL_KEYS:
                    val = "1" if val in {"1", "1.0", "true", "True"} else "0"
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, val),
                )

    def _sync_to_yaml(self) -> None:
        self._yaml.save(self._raw_all_settings())

    def get_text(self, key: str, default: str) -> str:
        self._sync_from_yaml()
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def get_int(self, key: str, default: int) -> int:
        try:
            return int(float(self.get_text(key, str(default))))
        except ValueError:
            return default

    def get_bool(self, key: str, default: bool) -> bool:
        return self.get_text(key, "1" if default else "0") in {
            "1",
            "true",
            "True",
            "1.0",
        }

    def set_text(self, key: str, value: str) -> None:
        self.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )
        self._sync_to_yaml()

    def set_int(self, key: str, value: int) -> None:
        self.set_text(key, str(value))

    def set_bool(self, key: str, value: bool) -> None:
        self.set_text(key, "1" if value else "0")

    def update(self, data: dict) -> None:
        """Validate and store several settings at once."""
        validate_settings(data)
        for key, value in data.items():
            if key in self._BOOL_KEYS:
                self.set_bool(key, value in (True, 1, "1", "true", "True"))
            else:
                self.set_text(key, str(value))
