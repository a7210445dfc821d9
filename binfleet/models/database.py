from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from binfleet.models.changes import ChangeFeed
from binfleet.models.schemas import Device, Feedback, HistoricalSample, Route, User, WeatherSensor

LOGGER = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DEVICE_TABLES = {"devices": Device, "weather_sensors": WeatherSensor}
DEVICE_FIELDS = {
    "devices": {"bin_height", "lat", "lng", "battery", "level", "is_registered"},
    "weather_sensors": {"lat", "lng", "battery", "temperature", "humidity", "is_registered"},
}


class RepositoryError(RuntimeError):
    pass


def _iso(value: datetime | None) -> str | None:
    return value.astimezone(UTC).isoformat() if value else None


class DatabaseManager:
    def __init__(self, db_path: Path, feed: ChangeFeed | None = None):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.feed = feed or ChangeFeed()
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

    def initialize(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS devices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unique_id TEXT NOT NULL UNIQUE,
                    bin_height REAL,
                    lat REAL,
                    lng REAL,
                    battery REAL,
                    level REAL,
                    is_registered INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS weather_sensors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unique_id TEXT NOT NULL UNIQUE,
                    lat REAL,
                    lng REAL,
                    battery REAL,
                    temperature REAL,
                    humidity REAL,
                    is_registered INTEGER NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS historical (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unique_id TEXT NOT NULL,
                    saved_time TEXT NOT NULL,
                    level_in_percents REAL NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_historical_device_time
                    ON historical(unique_id, saved_time);

                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    fname TEXT NOT NULL,
                    lname TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    role TEXT NOT NULL DEFAULT 'employee'
                );

                CREATE TABLE IF NOT EXISTS routes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    employee_id INTEGER NOT NULL,
                    device_ids TEXT NOT NULL,
                    empty_bin INTEGER NOT NULL,
                    change_battery INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL,
                    started TEXT,
                    finished TEXT
                );

                CREATE TABLE IF NOT EXISTS feedbacks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unique_id TEXT,
                    message TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'open',
                    created_at TEXT NOT NULL
                );
                """
            )
            self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _fetch(self, query: str, args: tuple[Any, ...] | list[Any] = ()) -> list[dict[str, Any]]:
        try:
            with self._lock:
                rows = self._conn.execute(query, args).fetchall()
        except sqlite3.Error:
            LOGGER.exception("Query failed: %s", " ".join(query.split()))
            return []
        return [dict(row) for row in rows]

    def _execute(self, query: str, args: tuple[Any, ...] | list[Any] = ()) -> sqlite3.Cursor:
        try:
            with self._lock:
                cursor = self._conn.execute(query, args)
                self._conn.commit()
        except sqlite3.Error as exc:
            LOGGER.exception("Write failed: %s", " ".join(query.split()))
            raise RepositoryError(str(exc)) from exc
        return cursor

    def _emit(self, table: str, event_type: str, *, new: BaseModel | None = None, old: dict[str, Any] | None = None) -> None:
        self.feed.emit(table, event_type, new=new.model_dump(mode="json") if new is not None else None, old=old)

    @staticmethod
    def _to_models(rows: list[dict[str, Any]], model: type[ModelT]) -> list[ModelT]:
        return [model.model_validate(row) for row in rows]

    # devices / weather_sensors

    def list_devices(self, *, registered: bool | None = True, table: str = "devices") -> list[Any]:
        model = DEVICE_TABLES[table]
        if registered is None:
            rows = self._fetch(f"SELECT * FROM {table} ORDER BY unique_id")
        else:
            rows = self._fetch(
                f"SELECT * FROM {table} WHERE is_registered = ? ORDER BY unique_id",
                (int(registered),),
            )
        return self._to_models(rows, model)

    def get_device(self, unique_id: str, *, table: str = "devices") -> Any | None:
        rows = self._fetch(f"SELECT * FROM {table} WHERE unique_id = ?", (unique_id,))
        return DEVICE_TABLES[table].model_validate(rows[0]) if rows else None

    def insert_device(self, device: Device | WeatherSensor, *, table: str = "devices") -> Any:
        payload = device.model_dump(exclude={"id"})
        columns = list(payload)
        self._execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            [payload[column] for column in columns],
        )
        created = self.get_device(device.unique_id, table=table)
        if created is None:
            raise RepositoryError(f"Inserted device {device.unique_id} not found in {table}")
        self._emit(table, "INSERT", new=created)
        return created

    def update_device(self, unique_id: str, fields: dict[str, Any], *, table: str = "devices") -> Any | None:
        unknown = set(fields) - DEVICE_FIELDS[table]
        if unknown:
            raise RepositoryError(f"Unknown {table} fields: {sorted(unknown)}")

        previous = self.get_device(unique_id, table=table)
        if previous is None:
            return None
        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            self._execute(
                f"UPDATE {table} SET {assignments} WHERE unique_id = ?",
                [*fields.values(), unique_id],
            )

        updated = self.get_device(unique_id, table=table)
        self._emit(table, "UPDATE", new=updated, old=previous.model_dump(mode="json"))
        return updated

    # historical

    def list_historical(self, *, unique_id: str | None = None) -> list[HistoricalSample]:
        if unique_id is None:
            rows = self._fetch("SELECT * FROM historical ORDER BY saved_time ASC, id ASC")
        else:
            rows = self._fetch(
                "SELECT * FROM historical WHERE unique_id = ? ORDER BY saved_time ASC, id ASC",
                (unique_id,),
            )
        return self._to_models(rows, HistoricalSample)

    def insert_historical(self, sample: HistoricalSample) -> HistoricalSample:
        cursor = self._execute(
            "INSERT INTO historical (unique_id, saved_time, level_in_percents) VALUES (?, ?, ?)",
            (sample.unique_id, _iso(sample.saved_time), sample.level_in_percents),
        )
        created = sample.model_copy(update={"id": cursor.lastrowid})
        self._emit("historical", "INSERT", new=created)
        return created

    def clear_historical(self) -> int:
        removed = self._fetch("SELECT id FROM historical")
        self._execute("DELETE FROM historical")
        if removed:
            self._emit("historical", "TRUNCATE", old={"ids": [row["id"] for row in removed]})
        return len(removed)

    # routes

    def _route_from_row(self, row: dict[str, Any]) -> Route:
        row = dict(row)
        row["device_ids"] = json.loads(row["device_ids"])
        if row.get("fname") is not None:
            row["created_by"] = f"{row['fname']} {row['lname']}"
        return Route.model_validate(row)

    def list_routes(self, *, limit: int | None = None) -> list[Route]:
        query = """
            SELECT r.*, u.fname, u.lname
            FROM routes r
            LEFT JOIN users u ON u.id = r.employee_id
            ORDER BY r.created_at DESC, r.id DESC
        """
        args: list[Any] = []
        if limit is not None:
            query += " LIMIT ?"
            args.append(limit)
        return [self._route_from_row(row) for row in self._fetch(query, args)]

    def get_route(self, route_id: int) -> Route | None:
        rows = self._fetch(
            """
            SELECT r.*, u.fname, u.lname
            FROM routes r
            LEFT JOIN users u ON u.id = r.employee_id
            WHERE r.id = ?
            """,
            (route_id,),
        )
        return self._route_from_row(rows[0]) if rows else None

    def insert_route(self, route: Route) -> Route:
        cursor = self._execute(
            """
            INSERT INTO routes (
                employee_id, device_ids, empty_bin, change_battery,
                status, created_at, started, finished
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                route.employee_id,
                json.dumps(route.device_ids),
                int(route.empty_bin),
                int(route.change_battery),
                route.status,
                _iso(route.created_at),
                _iso(route.started),
                _iso(route.finished),
            ),
        )
        created = self.get_route(int(cursor.lastrowid)) or route.model_copy(update={"id": cursor.lastrowid})
        self._emit("routes", "INSERT", new=created)
        return created

    def update_route_status(self, route: Route) -> Route:
        if route.id is None:
            raise RepositoryError("Cannot update a route without id")
        self._execute(
            "UPDATE routes SET status = ?, started = ?, finished = ? WHERE id = ?",
            (route.status, _iso(route.started), _iso(route.finished), route.id),
        )
        self._emit("routes", "UPDATE", new=route)
        return route

    def delete_route(self, route_id: int) -> bool:
        cursor = self._execute("DELETE FROM routes WHERE id = ?", (route_id,))
        if cursor.rowcount == 0:
            return False
        self._emit("routes", "DELETE", old={"id": route_id})
        return True

    # feedbacks

    def list_feedbacks(self, *, limit: int | None = None) -> list[Feedback]:
        query = "SELECT * FROM feedbacks ORDER BY created_at DESC, id DESC"
        args: list[Any] = []
        if limit is not None:
            query += " LIMIT ?"
            args.append(limit)
        return self._to_models(self._fetch(query, args), Feedback)

    def insert_feedback(self, feedback: Feedback) -> Feedback:
        cursor = self._execute(
            "INSERT INTO feedbacks (unique_id, message, status, created_at) VALUES (?, ?, ?, ?)",
            (feedback.unique_id, feedback.message, feedback.status, _iso(feedback.created_at)),
        )
        created = feedback.model_copy(update={"id": cursor.lastrowid})
        self._emit("feedbacks", "INSERT", new=created)
        return created

    def update_feedback(self, feedback_id: int, fields: dict[str, Any]) -> Feedback | None:
        unknown = set(fields) - {"status", "message"}
        if unknown:
            raise RepositoryError(f"Unknown feedback fields: {sorted(unknown)}")
        if fields:
            assignments = ", ".join(f"{name} = ?" for name in fields)
            self._execute(f"UPDATE feedbacks SET {assignments} WHERE id = ?", [*fields.values(), feedback_id])

        rows = self._fetch("SELECT * FROM feedbacks WHERE id = ?", (feedback_id,))
        if not rows:
            return None
        updated = Feedback.model_validate(rows[0])
        self._emit("feedbacks", "UPDATE", new=updated)
        return updated

    # users

    def insert_user(self, user: User) -> User:
        cursor = self._execute(
            "INSERT INTO users (fname, lname, email, role) VALUES (?, ?, ?, ?)",
            (user.fname, user.lname, user.email, user.role),
        )
        created = user.model_copy(update={"id": cursor.lastrowid})
        self._emit("users", "INSERT", new=created)
        return created

    def get_user(self, user_id: int) -> User | None:
        rows = self._fetch("SELECT * FROM users WHERE id = ?", (user_id,))
        return User.model_validate(rows[0]) if rows else None

    def email_exists(self, email: str) -> bool:
        return bool(self._fetch("SELECT id FROM users WHERE email = ?", (email,)))
