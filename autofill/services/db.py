import logging
import threading
import uuid
import psycopg2

from psycopg2.errors import UniqueViolation
from psycopg2.extras import RealDictCursor, Json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from autofill.env import DB_HOST, DB_PORT, DB_NAME, DB_USER, DB_PASSWORD
from autofill.errors import AliasConflict
from autofill.models import (
    ApplicationSession,
    FillPlanResult,
    LabelAlias,
    Profile,
    SessionEvent,
)
from autofill.logging import get_logger

# Build connection string
CONNINFO = f"host={DB_HOST} port={DB_PORT} dbname={DB_NAME} user={DB_USER} password={DB_PASSWORD}"

SESSION_COLUMNS = ("status", "job_context", "fill_plan", "ended_at")

get_logger()
logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def Txc():
    """
    Context manager for database transactions.

    Usage:
        with Txc() as tx:
            tx.insert_label_alias(...)
            tx.insert_event(...)
        # Auto-commits on success, auto-rollbacks on exception
    """
    with psycopg2.connect(CONNINFO) as conn:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            yield AutofillRepo(cur, conn)


def _session_from_row(row: dict) -> ApplicationSession:
    data = dict(row)
    if data.get("fill_plan") is not None:
        data["fill_plan"] = FillPlanResult.model_validate(data["fill_plan"])
    data["job_context"] = data.get("job_context") or {}
    return ApplicationSession.model_validate(data)


class AutofillRepo:
    """Repository for Autofill Operations"""

    def __init__(self, cursor, conn):
        self.cursor = cursor
        self.conn = conn

    # --- Profiles ---

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        self.cursor.execute(
            "SELECT id, display_name, base_info FROM profiles WHERE id = %(id)s",
            {"id": profile_id},
        )
        row = self.cursor.fetchone()
        if not row:
            return None
        return Profile(
            id=row["id"],
            display_name=row["display_name"] or "",
            base_info=row["base_info"] or {},
        )

    def upsert_profile(self, profile: Profile) -> Profile:
        """
        Insert or update a profile.
        Returns the stored profile.
        """
        self.cursor.execute(
            """
            INSERT INTO profiles (id, display_name, base_info)
            VALUES (%(id)s, %(display_name)s, %(base_info)s)
            ON CONFLICT (id) DO UPDATE SET
                display_name = EXCLUDED.display_name,
                base_info = EXCLUDED.base_info
            RETURNING id
            """,
            {
                "id": profile.id,
                "display_name": profile.display_name,
                "base_info": Json(profile.base_info.model_dump(mode="json", by_alias=True)),
            },
        )
        result = self.cursor.fetchone()
        if not result:
            raise RuntimeError(f"Failed to insert/update profile: {profile.id}")
        return profile

    # --- Label aliases ---

    def list_label_aliases(self) -> list[LabelAlias]:
        self.cursor.execute(
            """
            SELECT * FROM label_aliases
            ORDER BY created_at ASC
            """
        )
        return [LabelAlias.model_validate(dict(row)) for row in self.cursor.fetchall()]

    def find_label_alias(self, alias_id: str) -> Optional[LabelAlias]:
        self.cursor.execute("SELECT * FROM label_aliases WHERE id = %(id)s", {"id": alias_id})
        row = self.cursor.fetchone()
        return LabelAlias.model_validate(dict(row)) if row else None

    def find_label_alias_by_normalized(self, normalized: str) -> Optional[LabelAlias]:
        self.cursor.execute(
            "SELECT * FROM label_aliases WHERE normalized_alias = %(normalized)s",
            {"normalized": normalized},
        )
        row = self.cursor.fetchone()
        return LabelAlias.model_validate(dict(row)) if row else None

    def insert_label_alias(self, record: LabelAlias) -> LabelAlias:
        try:
            self.cursor.execute(
                """
                INSERT INTO label_aliases (id, canonical_key, alias, normalized_alias, created_at, updated_at)
                VALUES (%(id)s, %(canonical_key)s, %(alias)s, %(normalized_alias)s, %(created_at)s, %(updated_at)s)
                RETURNING *
                """,
                record.model_dump(),
            )
        except UniqueViolation as e:
            raise AliasConflict("Alias already exists") from e
        result = self.cursor.fetchone()
        if not result:
            raise RuntimeError(f"Failed to insert alias: {record.alias}")
        return LabelAlias.model_validate(dict(result))

    def update_label_alias(self, record: LabelAlias) -> LabelAlias:
        try:
            self.cursor.execute(
                """
                UPDATE label_aliases SET
                    canonical_key = %(canonical_key)s,
                    alias = %(alias)s,
                    normalized_alias = %(normalized_alias)s,
                    updated_at = %(updated_at)s
                WHERE id = %(id)s
                RETURNING *
                """,
                record.model_dump(),
            )
        except UniqueViolation as e:
            raise AliasConflict("Alias already exists") from e
        result = self.cursor.fetchone()
        if not result:
            raise RuntimeError(f"Failed to update alias: {record.id}")
        return LabelAlias.model_validate(dict(result))

    def delete_label_alias(self, alias_id: str) -> bool:
        self.cursor.execute("DELETE FROM label_aliases WHERE id = %(id)s", {"id": alias_id})
        return self.cursor.rowcount > 0

    # --- Sessions ---

    def insert_session(self, session: ApplicationSession) -> ApplicationSession:
        self.cursor.execute(
            """
            INSERT INTO application_sessions (id, profile_id, url, domain, status, job_context, fill_plan, started_at, ended_at)
            VALUES (%(id)s, %(profile_id)s, %(url)s, %(domain)s, %(status)s, %(job_context)s, NULL, %(started_at)s, NULL)
            RETURNING *
            """,
            {
                "id": session.id,
                "profile_id": session.profile_id,
                "url": session.url,
                "domain": session.domain,
                "status": session.status,
                "job_context": Json(session.job_context),
                "started_at": session.started_at,
            },
        )
        result = self.cursor.fetchone()
        if not result:
            raise RuntimeError(f"Failed to insert session: {session.id}")
        return _session_from_row(result)

    def get_session(self, session_id: str) -> Optional[ApplicationSession]:
        self.cursor.execute(
            "SELECT * FROM application_sessions WHERE id = %(id)s", {"id": session_id}
        )
        row = self.cursor.fetchone()
        return _session_from_row(row) if row else None

    def update_session(self, session_id: str, **changes: Any) -> Optional[ApplicationSession]:
        """
        Update the given session columns.
        Unknown columns raise ValueError.
        """
        unknown = set(changes) - set(SESSION_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown session columns: {sorted(unknown)}")
        if not changes:
            return self.get_session(session_id)

        params: dict[str, Any] = {"id": session_id}
        assignments = []
        for column, value in changes.items():
            if column == "fill_plan" and value is not None:
                value = Json(value.model_dump(mode="json"))
            elif column == "job_context":
                value = Json(value or {})
            params[column] = value
            assignments.append(f"{column} = %({column})s")

        self.cursor.execute(
            f"UPDATE application_sessions SET {', '.join(assignments)} WHERE id = %(id)s RETURNING *",
            params,
        )
        row = self.cursor.fetchone()
        return _session_from_row(row) if row else None

    def insert_event(self, event: SessionEvent) -> SessionEvent:
        self.cursor.execute(
            """
            INSERT INTO session_events (id, session_id, event_type, payload, created_at)
            VALUES (%(id)s, %(session_id)s, %(event_type)s, %(payload)s, %(created_at)s)
            """,
            {
                "id": event.id,
                "session_id": event.session_id,
                "event_type": event.event_type,
                "payload": Json(event.payload),
                "created_at": event.created_at,
            },
        )
        return event

    def list_events(self, session_id: str) -> list[SessionEvent]:
        self.cursor.execute(
            """
            SELECT * FROM session_events
            WHERE session_id = %(session_id)s
            ORDER BY created_at ASC
            """,
            {"session_id": session_id},
        )
        return [SessionEvent.model_validate(dict(row)) for row in self.cursor.fetchall()]


class PostgresStore:
    """Store backed by Postgres; each call runs in its own transaction."""

    def __getattr__(self, name: str):
        if not hasattr(AutofillRepo, name):
            raise AttributeError(name)

        def call(*args, **kwargs):
            with Txc() as tx:
                return getattr(tx, name)(*args, **kwargs)

        return call


class MemoryStore:
    """
    In-process store with the same interface as AutofillRepo.
    Used when no database is configured and in tests.
    """

    def __init__(self, profiles: Optional[list[Profile]] = None):
        self._lock = threading.Lock()
        self.profiles: dict[str, Profile] = {p.id: p for p in profiles or []}
        self.aliases: dict[str, LabelAlias] = {}
        self.sessions: dict[str, ApplicationSession] = {}
        self.events: list[SessionEvent] = []

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        return self.profiles.get(profile_id)

    def upsert_profile(self, profile: Profile) -> Profile:
        with self._lock:
            self.profiles[profile.id] = profile
        return profile

    def list_label_aliases(self) -> list[LabelAlias]:
        return list(self.aliases.values())

    def find_label_alias(self, alias_id: str) -> Optional[LabelAlias]:
        return self.aliases.get(alias_id)

    def find_label_alias_by_normalized(self, normalized: str) -> Optional[LabelAlias]:
        for record in self.aliases.values():
            if record.normalized_alias == normalized:
                return record
        return None

    def insert_label_alias(self, record: LabelAlias) -> LabelAlias:
        with self._lock:
            if self.find_label_alias_by_normalized(record.normalized_alias):
                raise AliasConflict("Alias already exists")
            self.aliases[record.id] = record
        return record

    def update_label_alias(self, record: LabelAlias) -> LabelAlias:
        with self._lock:
            if record.id not in self.aliases:
                raise RuntimeError(f"Failed to update alias: {record.id}")
            existing = self.find_label_alias_by_normalized(record.normalized_alias)
            if existing and existing.id != record.id:
                raise AliasConflict("Alias already exists")
            self.aliases[record.id] = record
        return record

    def delete_label_alias(self, alias_id: str) -> bool:
        with self._lock:
            return self.aliases.pop(alias_id, None) is not None

    def insert_session(self, session: ApplicationSession) -> ApplicationSession:
        with self._lock:
            self.sessions[session.id] = session
        return session

    def get_session(self, session_id: str) -> Optional[ApplicationSession]:
        return self.sessions.get(session_id)

    def update_session(self, session_id: str, **changes: Any) -> Optional[ApplicationSession]:
        unknown = set(changes) - set(SESSION_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown session columns: {sorted(unknown)}")
        with self._lock:
            session = self.sessions.get(session_id)
            if session is None:
                return None
            session = session.model_copy(update=changes)
            self.sessions[session_id] = session
        return session

    def insert_event(self, event: SessionEvent) -> SessionEvent:
        with self._lock:
            self.events.append(event)
        return event

    def list_events(self, session_id: str) -> list[SessionEvent]:
        return [e for e in self.events if e.session_id == session_id]


def new_event(session_id: str, event_type: str, payload: Optional[dict] = None) -> SessionEvent:
    return SessionEvent(
        id=str(uuid.uuid4()),
        session_id=session_id,
        event_type=event_type,
        payload=payload or {},
        created_at=utcnow(),
    )


def default_store():
    if DB_HOST and DB_NAME:
        logger.info(f"Using Postgres store at {DB_HOST}:{DB_PORT}/{DB_NAME}")
        return PostgresStore()
    logger.info("No database configured, using in-memory store")
    return MemoryStore()
