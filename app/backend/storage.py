import json
import logging
import os
import secrets
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Protocol

import psycopg
from psycopg import errors as pg_errors
from psycopg.types.json import Jsonb

from .constants import (
    STATUS_PENDING,
    SUBMISSION_KEY_ALPHABET,
    SUBMISSION_KEY_LENGTH,
    UNSET,
)
from .models import PROFILE_FIELDS, StartupRecord, UserRecord, utc_now


logger = logging.getLogger("uvicorn.error")

PROFILE_COLUMN_TYPES: Dict[str, str] = {
    "organization_name": "TEXT",
    "url": "TEXT",
    "location": "TEXT",
    "industries": "JSONB",
    "industry_groups": "JSONB",
    "funding_rounds": "INTEGER",
    "last_funding": "DOUBLE PRECISION",
    "last_funding_type": "TEXT",
    "equity": "DOUBLE PRECISION",
    "total_funding": "DOUBLE PRECISION",
    "valuation": "DOUBLE PRECISION",
    "last_valuation_date": "DATE",
    "revenue": "DOUBLE PRECISION",
    "growth": "DOUBLE PRECISION",
    "founders_count": "INTEGER",
    "employees_count": "INTEGER",
    "founders": "JSONB",
    "top_investors": "JSONB",
    "monthly_metrics": "JSONB",
    "key_metrics": "JSONB",
}

STARTUP_COLUMNS = (
    "id",
    "submission_key",
    "status",
    "created_at",
    *PROFILE_FIELDS,
    "ai_analysis",
    "analysis_error",
)
JSON_COLUMNS = {name for name, kind in PROFILE_COLUMN_TYPES.items() if kind == "JSONB"} | {"ai_analysis"}


class SubmissionKeyCollision(RuntimeError):
    pass


def generate_submission_key() -> str:
    return "".join(secrets.choice(SUBMISSION_KEY_ALPHABET) for _ in range(SUBMISSION_KEY_LENGTH))


def normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://") :]
    return database_url


def _check_profile_columns(profile: Dict[str, Any]) -> None:
    unknown = sorted(set(profile) - set(PROFILE_COLUMN_TYPES))
    if unknown:
        raise ValueError(f"Unknown profile columns: {', '.join(unknown)}")


class StartupStore(Protocol):
    storage_name: str

    def create_submission(self) -> str:
        pass

    def get_by_key(self, submission_key: str) -> Optional[StartupRecord]:
        pass

    def update_startup(
        self,
        submission_key: str,
        *,
        profile: Optional[Dict[str, Any]] = None,
        status: Optional[str] = None,
        ai_analysis: object = UNSET,
        analysis_error: object = UNSET,
    ) -> StartupRecord:
        pass

    def list_startups(self) -> List[StartupRecord]:
        pass

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        pass

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        pass

    def create_user(self, user_id: str, username: str) -> UserRecord:
        pass


class InMemoryStartupStore:
    storage_name = "memory"

    def __init__(self, key_factory: Callable[[], str] = generate_submission_key) -> None:
        self._key_factory = key_factory
        self._startups: Dict[str, StartupRecord] = {}
        self._users: Dict[str, UserRecord] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def create_submission(self) -> str:
        with self._lock:
            submission_key = self._key_factory()
            if submission_key in self._startups:
                logger.warning("submission_key_collision retrying")
                submission_key = self._key_factory()
                if submission_key in self._startups:
                    raise SubmissionKeyCollision("Could not generate a unique submission key.")

            self._startups[submission_key] = StartupRecord(
                id=self._next_id,
                submission_key=submission_key,
                status=STATUS_PENDING,
                created_at=utc_now(),
            )
            self._next_id += 1
            return submission_key

    def get_by_key(self, submission_key: str) -> Optional[StartupRecord]:
        with self._lock:
            record = self._startups.get(submission_key)
            return replace(record) if record is not None else None

    def update_startup(
        self,
        submission_key: str,
        *,
        profile: Optional[Dict[str, Any]] = None,
        status: Optional[str] = None,
        ai_analysis: object = UNSET,
        analysis_error: object = UNSET,
    ) -> StartupRecord:
        _check_profile_columns(profile or {})
        with self._lock:
            record = self._startups.get(submission_key)
            if record is None:
                raise KeyError(f"Startup {submission_key} not found.")

            changes: Dict[str, Any] = dict(profile or {})
            if status is not None:
                changes["status"] = status
            if ai_analysis is not UNSET:
                changes["ai_analysis"] = ai_analysis
            if analysis_error is not UNSET:
                changes["analysis_error"] = analysis_error

            record = replace(record, **changes)
            self._startups[submission_key] = record
            return replace(record)

    def list_startups(self) -> List[StartupRecord]:
        with self._lock:
            return [replace(record) for record in sorted(self._startups.values(), key=lambda r: r.id)]

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            return self._users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user
            return None

    def create_user(self, user_id: str, username: str) -> UserRecord:
        with self._lock:
            if any(user.username == username for user in self._users.values()):
                raise ValueError(f"Username {username} already exists.")
            user = UserRecord(id=user_id, username=username, created_at=utc_now())
            self._users[user_id] = user
            return user


class PostgresStartupStore:
    storage_name = "postgres"

    def __init__(
        self,
        database_url: str,
        key_factory: Callable[[], str] = generate_submission_key,
    ) -> None:
        self._database_url = normalize_database_url(database_url)
        self._key_factory = key_factory
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self._database_url, autocommit=True)

    def _ensure_schema(self) -> None:
        profile_ddl = ",\n".join(
            f"{name} {kind} NULL" for name, kind in PROFILE_COLUMN_TYPES.items()
        )
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id TEXT PRIMARY KEY,
                        username TEXT NOT NULL UNIQUE,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                    )
                    """
                )
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS startups (
                        id SERIAL PRIMARY KEY,
                        submission_key TEXT NOT NULL UNIQUE,
                        {profile_ddl},
                        ai_analysis JSONB NULL,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                        status TEXT NOT NULL DEFAULT 'pending'
                    )
                    """
                )
                cur.execute(
                    """
                    ALTER TABLE startups
                    ADD COLUMN IF NOT EXISTS analysis_error TEXT NULL
                    """
                )

    @staticmethod
    def _row_to_record(row) -> StartupRecord:
        values = dict(zip(STARTUP_COLUMNS, row))
        for column in JSON_COLUMNS:
            if isinstance(values.get(column), str):
                values[column] = json.loads(values[column])
        return StartupRecord(**values)

    def _insert_submission(self, submission_key: str) -> None:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "INSERT INTO startups (submission_key, status) VALUES (%s, %s)",
                    (submission_key, STATUS_PENDING),
                )

    def create_submission(self) -> str:
        submission_key = self._key_factory()
        try:
            self._insert_submission(submission_key)
        except pg_errors.UniqueViolation:
            logger.warning("submission_key_collision retrying")
            submission_key = self._key_factory()
            try:
                self._insert_submission(submission_key)
            except pg_errors.UniqueViolation as exc:
                raise SubmissionKeyCollision("Could not generate a unique submission key.") from exc
        return submission_key

    def get_by_key(self, submission_key: str) -> Optional[StartupRecord]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {', '.join(STARTUP_COLUMNS)} FROM startups WHERE submission_key = %s",
                    (submission_key,),
                )
                row = cur.fetchone()
                if row is None:
                    return None
                return self._row_to_record(row)

    def update_startup(
        self,
        submission_key: str,
        *,
        profile: Optional[Dict[str, Any]] = None,
        status: Optional[str] = None,
        ai_analysis: object = UNSET,
        analysis_error: object = UNSET,
    ) -> StartupRecord:
        profile = profile or {}
        _check_profile_columns(profile)

        assignments: List[str] = []
        values: List[Any] = []

        for column, value in profile.items():
            assignments.append(f"{column} = %s")
            if column in JSON_COLUMNS and value is not None:
                values.append(Jsonb(value))
            else:
                values.append(value)
        if status is not None:
            assignments.append("status = %s")
            values.append(status)
        if ai_analysis is not UNSET:
            assignments.append("ai_analysis = %s")
            values.append(Jsonb(ai_analysis) if ai_analysis is not None else None)
        if analysis_error is not UNSET:
            assignments.append("analysis_error = %s")
            values.append(analysis_error)

        if not assignments:
            record = self.get_by_key(submission_key)
            if record is None:
                raise KeyError(f"Startup {submission_key} not found.")
            return record

        values.append(submission_key)
        query = (
            f"UPDATE startups SET {', '.join(assignments)} "
            f"WHERE submission_key = %s RETURNING {', '.join(STARTUP_COLUMNS)}"
        )

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, values)
                row = cur.fetchone()
                if row is None:
                    raise KeyError(f"Startup {submission_key} not found.")
                return self._row_to_record(row)

    def list_startups(self) -> List[StartupRecord]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT {', '.join(STARTUP_COLUMNS)} FROM startups ORDER BY id")
                return [self._row_to_record(row) for row in cur.fetchall()]

    def _fetch_user(self, where: str, value: str) -> Optional[UserRecord]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT id, username, created_at FROM users WHERE {where} = %s", (value,))
                row = cur.fetchone()
                if row is None:
                    return None
                user_id, username, created_at = row
                return UserRecord(id=user_id, username=username, created_at=created_at)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self._fetch_user("id", user_id)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        return self._fetch_user("username", username)

    def create_user(self, user_id: str, username: str) -> UserRecord:
        with self._connect() as conn:
            with conn.cursor() as cur:
                try:
                    cur.execute(
                        """
                        INSERT INTO users (id, username)
                        VALUES (%s, %s)
                        RETURNING id, username, created_at
                        """,
                        (user_id, username),
                    )
                except pg_errors.UniqueViolation as exc:
                    raise ValueError(f"Username {username} already exists.") from exc
                row_id, row_username, created_at = cur.fetchone()
                return UserRecord(id=row_id, username=row_username, created_at=created_at)


def build_startup_store() -> StartupStore:
    database_url = os.getenv("DATABASE_URL", "").strip()
    if database_url:
        return PostgresStartupStore(database_url=database_url)
    return InMemoryStartupStore()
