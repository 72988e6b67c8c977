"""
Schema store: a SQLAlchemy-backed implementation and an in-memory test double.

Both implementations hold the five LDSS relations (users, sessions, projects,
project_data, sync_log). Services never cache rows read from here; every
ownership check goes back to the store.
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Protocol

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
    text,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ldss.errors import DurableStoreError

logger = logging.getLogger(__name__)

PROVIDER_NONE = "none"
STATUS_NOT_CONFIGURED = "not_configured"
STATUS_CONNECTED = "connected"
STATUS_ERROR = "error"


def payload_size(serialized: str) -> int:
    """Storage cost of a record: UTF-8 bytes of its serialized payload."""
    return len(serialized.encode("utf-8"))


@dataclass
class UserRecord:
    id: str
    email: str
    password_hash: str
    name: Optional[str]
    created_at: float
    last_login: Optional[float] = None

    def as_dict(self) -> dict:
        return {"id": self.id, "email": self.email, "name": self.name}


@dataclass
class SessionRecord:
    id: str
    user_id: str
    token: str
    created_at: float
    expires_at: float

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "session_token": self.token,
            "expires_at": self.expires_at,
        }


@dataclass
class ProjectRecord:
    id: str
    user_id: str
    name: str
    description: Optional[str]
    token: str
    created_at: float
    backend_provider: str = PROVIDER_NONE
    backend_config: Optional[str] = None
    backend_status: str = STATUS_NOT_CONFIGURED
    last_backend_test: Optional[float] = None
    active_users: int = 0
    total_storage_bytes: int = 0

    def parsed_backend_config(self) -> Optional[dict]:
        if not self.backend_config:
            return None
        return json.loads(self.backend_config)


@dataclass
class DataRecord:
    id: str
    project_id: str
    collection: str
    data: str
    created_at: float
    updated_at: float
    device_id: Optional[str] = None
    end_user_id: Optional[str] = None

    @property
    def payload(self) -> Any:
        return json.loads(self.data)

    @property
    def size_bytes(self) -> int:
        return payload_size(self.data)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "collection": self.collection,
            "data": self.payload,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "device_id": self.device_id,
            "end_user_id": self.end_user_id,
        }


@dataclass
class SyncLogRecord:
    id: str
    project_id: str
    operation: str
    timestamp: float
    details: Optional[str] = None


class DbClient(Protocol):
    """Interface for schema store access."""

    def ping(self) -> None:
        ...

    def create_user(self, user: UserRecord) -> None:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def update_last_login(self, user_id: str, timestamp: float) -> None:
        ...

    def create_session(self, session: SessionRecord) -> None:
        ...

    def get_session(self, token: str) -> Optional[SessionRecord]:
        ...

    def create_project(self, project: ProjectRecord) -> None:
        ...

    def list_projects(self, user_id: str) -> List[ProjectRecord]:
        ...

    def get_project(self, project_id: str, user_id: str) -> Optional[ProjectRecord]:
        ...

    def delete_project(self, project_id: str) -> None:
        ...

    def update_backend(
        self,
        project_id: str,
        *,
        provider: str,
        config_json: str,
        status: str,
        tested_at: float,
    ) -> None:
        ...

    def upsert_data(self, record: DataRecord) -> None:
        ...

    def query_data(
        self, project_id: str, collection: Optional[str], limit: int
    ) -> List[DataRecord]:
        ...

    def sum_payload_bytes(self, project_id: str) -> int:
        ...

    def set_storage_bytes(self, project_id: str, total_bytes: int) -> None:
        ...


class InMemoryDbClient:
    """Simple in-memory schema store for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.sessions: Dict[str, SessionRecord] = {}
        self.projects: Dict[str, ProjectRecord] = {}
        self.data: Dict[tuple[str, str], DataRecord] = {}
        self.sync_log: List[SyncLogRecord] = []

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.sessions.clear()
        self.projects.clear()
        self.data.clear()
        self.sync_log.clear()

    def ping(self) -> None:
        return None

    def create_user(self, user: UserRecord) -> None:
        self.users[user.id] = user

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.email == email:
                return user
        return None

    def update_last_login(self, user_id: str, timestamp: float) -> None:
        user = self.users.get(user_id)
        if user:
            user.last_login = timestamp

    def create_session(self, session: SessionRecord) -> None:
        self.sessions[session.token] = session

    def get_session(self, token: str) -> Optional[SessionRecord]:
        return self.sessions.get(token)

    def create_project(self, project: ProjectRecord) -> None:
        self.projects[project.id] = project

    def list_projects(self, user_id: str) -> List[ProjectRecord]:
        owned = [p for p in reversed(self.projects.values()) if p.user_id == user_id]
        return sorted(owned, key=lambda p: p.created_at, reverse=True)

    def get_project(self, project_id: str, user_id: str) -> Optional[ProjectRecord]:
        project = self.projects.get(project_id)
        if not project or project.user_id != user_id:
            return None
        return project

    def delete_project(self, project_id: str) -> None:
        for key in [k for k in self.data if k[0] == project_id]:
            del self.data[key]
        self.projects.pop(project_id, None)

    def update_backend(
        self,
        project_id: str,
        *,
        provider: str,
        config_json: str,
        status: str,
        tested_at: float,
    ) -> None:
        project = self.projects.get(project_id)
        if not project:
            return
        project.backend_provider = provider
        project.backend_config = config_json
        project.backend_status = status
        project.last_backend_test = tested_at

    def upsert_data(self, record: DataRecord) -> None:
        key = (record.project_id, record.id)
        # Re-insert so dict order follows write order.
        self.data.pop(key, None)
        self.data[key] = record

    def query_data(
        self, project_id: str, collection: Optional[str], limit: int
    ) -> List[DataRecord]:
        rows = [
            r
            for r in reversed(self.data.values())
            if r.project_id == project_id
            and (collection is None or r.collection == collection)
        ]
        rows = sorted(rows, key=lambda r: r.created_at, reverse=True)
        return rows[:limit]

    def sum_payload_bytes(self, project_id: str) -> int:
        return sum(
            r.size_bytes for r in self.data.values() if r.project_id == project_id
        )

    def set_storage_bytes(self, project_id: str, total_bytes: int) -> None:
        project = self.projects.get(project_id)
        if project:
            project.total_storage_bytes = total_bytes


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    The engine and schema are created on first use, so an unreachable database
    surfaces as ``DurableStoreError`` from the failing call (and a degraded
    health check) instead of failing construction. A failed attempt is retried
    on the next call.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        self.database_url = database_url
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None
        self._connect_lock = threading.Lock()

    def _connect(self) -> sessionmaker:
        with self._connect_lock:
            if self._sessionmaker is not None:
                return self._sessionmaker
            engine = None
            try:
                engine = create_engine(
                    self.database_url,
                    future=True,
                    pool_pre_ping=True,
                    pool_recycle=1800,
                )
                Base.metadata.create_all(engine)
            except (SQLAlchemyError, ImportError) as exc:
                if engine is not None:
                    engine.dispose()
                logger.error("Schema store unavailable: %s", exc)
                raise DurableStoreError(f"Schema creation failed: {exc}") from exc
            self._engine = engine
            self._sessionmaker = sessionmaker(
                bind=engine, class_=Session, expire_on_commit=False, future=True
            )
            return self._sessionmaker

    @property
    def engine(self) -> Engine:
        self._connect()
        return self._engine

    @contextmanager
    def _session(self) -> Iterator[Session]:
        make_session = self._connect()
        try:
            with make_session() as session:
                yield session
        except SQLAlchemyError as exc:
            raise DurableStoreError(f"Database error: {exc}") from exc

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()

    def ping(self) -> None:
        with self._session() as session:
            session.execute(text("SELECT 1"))

    def create_user(self, user: UserRecord) -> None:
        with self._session() as session:
            session.add(
                UserRow(
                    id=user.id,
                    email=user.email,
                    password_hash=user.password_hash,
                    name=user.name,
                    created_at=user.created_at,
                    last_login=user.last_login,
                )
            )
            session.commit()

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email)
            ).scalar_one_or_none()
            if not row:
                return None
            return UserRecord(
                id=row.id,
                email=row.email,
                password_hash=row.password_hash,
                name=row.name,
                created_at=row.created_at,
                last_login=row.last_login,
            )

    def update_last_login(self, user_id: str, timestamp: float) -> None:
        with self._session() as session:
            session.execute(
                update(UserRow).where(UserRow.id == user_id).values(last_login=timestamp)
            )
            session.commit()

    def create_session(self, session_record: SessionRecord) -> None:
        with self._session() as session:
            session.add(
                SessionRow(
                    id=session_record.id,
                    user_id=session_record.user_id,
                    token=session_record.token,
                    created_at=session_record.created_at,
                    expires_at=session_record.expires_at,
                )
            )
            session.commit()

    def get_session(self, token: str) -> Optional[SessionRecord]:
        with self._session() as session:
            row = session.execute(
                select(SessionRow).where(SessionRow.token == token)
            ).scalar_one_or_none()
            if not row:
                return None
            return SessionRecord(
                id=row.id,
                user_id=row.user_id,
                token=row.token,
                created_at=row.created_at,
                expires_at=row.expires_at,
            )

    def _to_project_record(self, row: "ProjectRow") -> ProjectRecord:
        return ProjectRecord(
            id=row.id,
            user_id=row.user_id,
            name=row.name,
            description=row.description,
            token=row.token,
            created_at=row.created_at,
            backend_provider=row.backend_provider,
            backend_config=row.backend_config,
            backend_status=row.backend_status,
            last_backend_test=row.last_backend_test,
            active_users=row.active_users or 0,
            total_storage_bytes=row.total_storage_bytes or 0,
        )

    def create_project(self, project: ProjectRecord) -> None:
        with self._session() as session:
            session.add(
                ProjectRow(
                    id=project.id,
                    user_id=project.user_id,
                    name=project.name,
                    description=project.description,
                    token=project.token,
                    created_at=project.created_at,
                    backend_provider=project.backend_provider,
                    backend_config=project.backend_config,
                    backend_status=project.backend_status,
                    last_backend_test=project.last_backend_test,
                    active_users=project.active_users,
                    total_storage_bytes=project.total_storage_bytes,
                )
            )
            session.commit()

    def list_projects(self, user_id: str) -> List[ProjectRecord]:
        with self._session() as session:
            rows = session.execute(
                select(ProjectRow)
                .where(ProjectRow.user_id == user_id)
                .order_by(ProjectRow.created_at.desc())
            ).scalars()
            return [self._to_project_record(row) for row in rows]

    def get_project(self, project_id: str, user_id: str) -> Optional[ProjectRecord]:
        with self._session() as session:
            row = session.execute(
                select(ProjectRow).where(
                    ProjectRow.id == project_id, ProjectRow.user_id == user_id
                )
            ).scalar_one_or_none()
            if not row:
                return None
            return self._to_project_record(row)

    def delete_project(self, project_id: str) -> None:
        # Data rows first, project row last, one transaction.
        with self._session() as session:
            with session.begin():
                session.execute(
                    delete(DataRow).where(DataRow.project_id == project_id)
                )
                session.execute(delete(ProjectRow).where(ProjectRow.id == project_id))

    def update_backend(
        self,
        project_id: str,
        *,
        provider: str,
        config_json: str,
        status: str,
        tested_at: float,
    ) -> None:
        with self._session() as session:
            session.execute(
                update(ProjectRow)
                .where(ProjectRow.id == project_id)
                .values(
                    backend_provider=provider,
                    backend_config=config_json,
                    backend_status=status,
                    last_backend_test=tested_at,
                )
            )
            session.commit()

    def upsert_data(self, record: DataRecord) -> None:
        values = {
            "project_id": record.project_id,
            "id": record.id,
            "collection": record.collection,
            "data": record.data,
            "size_bytes": record.size_bytes,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
            "device_id": record.device_id,
            "end_user_id": record.end_user_id,
        }
        dialect_insert = _DIALECT_INSERTS.get(self.engine.dialect.name)
        with self._session() as session:
            if dialect_insert is not None:
                stmt = dialect_insert(DataRow).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[DataRow.project_id, DataRow.id],
                    set_={
                        name: stmt.excluded[name]
                        for name in values
                        if name not in ("project_id", "id")
                    },
                )
                session.execute(stmt)
                session.commit()
                return
            try:
                _write_data_row(session, values)
                session.commit()
            except IntegrityError:
                # Another writer inserted the same key first; overwrite it.
                session.rollback()
                _write_data_row(session, values)
                session.commit()

    def query_data(
        self, project_id: str, collection: Optional[str], limit: int
    ) -> List[DataRecord]:
        stmt = select(DataRow).where(DataRow.project_id == project_id)
        if collection is not None:
            stmt = stmt.where(DataRow.collection == collection)
        stmt = stmt.order_by(DataRow.created_at.desc()).limit(limit)
        with self._session() as session:
            return [
                DataRecord(
                    id=row.id,
                    project_id=row.project_id,
                    collection=row.collection,
                    data=row.data,
                    created_at=row.created_at,
                    updated_at=row.updated_at,
                    device_id=row.device_id,
                    end_user_id=row.end_user_id,
                )
                for row in session.execute(stmt).scalars()
            ]

    def sum_payload_bytes(self, project_id: str) -> int:
        with self._session() as session:
            total = session.execute(
                select(func.coalesce(func.sum(DataRow.size_bytes), 0)).where(
                    DataRow.project_id == project_id
                )
            ).scalar_one()
            return int(total)

    def set_storage_bytes(self, project_id: str, total_bytes: int) -> None:
        with self._session() as session:
            session.execute(
                update(ProjectRow)
                .where(ProjectRow.id == project_id)
                .values(total_storage_bytes=total_bytes)
            )
            session.commit()


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    last_login = Column(Float, nullable=True)


class SessionRow(Base):
    __tablename__ = "sessions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String, unique=True, nullable=False)
    created_at = Column(Float, nullable=False)
    expires_at = Column(Float, nullable=False)


class ProjectRow(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    token = Column(String, unique=True, nullable=False)
    created_at = Column(Float, nullable=False)

    backend_provider = Column(String, nullable=False, default=PROVIDER_NONE)
    backend_config = Column(Text, nullable=True)
    backend_status = Column(String, nullable=False, default=STATUS_NOT_CONFIGURED)
    last_backend_test = Column(Float, nullable=True)

    active_users = Column(Integer, nullable=False, default=0)
    total_storage_bytes = Column(Integer, nullable=False, default=0)


class DataRow(Base):
    __tablename__ = "project_data"

    project_id = Column(String, ForeignKey("projects.id"), primary_key=True)
    id = Column(String, primary_key=True)
    collection = Column(String, nullable=False, index=True)
    data = Column(Text, nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)
    device_id = Column(String, nullable=True)
    end_user_id = Column(String, nullable=True)


# Dialects with a native INSERT ... ON CONFLICT DO UPDATE.
_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _write_data_row(session: Session, values: Dict[str, Any]) -> None:
    row = session.get(DataRow, (values["project_id"], values["id"]))
    if row is None:
        session.add(DataRow(**values))
        session.flush()
        return
    for name, value in values.items():
        setattr(row, name, value)


class SyncLogRow(Base):
    __tablename__ = "sync_log"

    id = Column(String, primary_key=True)
    project_id = Column(String, ForeignKey("projects.id"), nullable=False, index=True)
    operation = Column(String, nullable=False)
    timestamp = Column(Float, nullable=False)
    details = Column(Text, nullable=True)
