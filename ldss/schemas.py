"""
Pydantic schemas for the LDSS FastAPI backend.
"""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from ldss.db import DataRecord, ProjectRecord, SessionRecord, UserRecord
from ldss.stats import format_bytes


class RegisterRequest(BaseModel):
    email: str = Field(default="", max_length=320)
    password: str = ""
    name: Optional[str] = Field(default=None, max_length=256)


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserResponse":
        return cls(**user.as_dict())


class SessionResponse(BaseModel):
    user_id: str
    session_token: str
    expires_at: float

    @classmethod
    def from_record(cls, session: SessionRecord) -> "SessionResponse":
        return cls(**session.as_dict())


class AuthResponse(BaseModel):
    user: UserResponse
    session: SessionResponse


class CreateProjectRequest(BaseModel):
    name: str = ""
    description: Optional[str] = None


class ProjectSummary(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    token: str
    created_at: float
    backend_provider: str
    backend_status: str
    active_users: int
    total_storage: str

    @classmethod
    def from_record(cls, project: ProjectRecord) -> "ProjectSummary":
        return cls(
            id=project.id,
            name=project.name,
            description=project.description,
            token=project.token,
            created_at=project.created_at,
            backend_provider=project.backend_provider,
            backend_status=project.backend_status,
            active_users=project.active_users,
            total_storage=format_bytes(project.total_storage_bytes),
        )


class ProjectDetail(ProjectSummary):
    backend_config: Optional[dict] = None
    last_backend_test: Optional[float] = None

    @classmethod
    def from_record(cls, project: ProjectRecord) -> "ProjectDetail":
        summary = ProjectSummary.from_record(project)
        return cls(
            **summary.model_dump(),
            backend_config=project.parsed_backend_config(),
            last_backend_test=project.last_backend_test,
        )


class ListProjectsResponse(BaseModel):
    projects: list[ProjectSummary]


class DeleteProjectResponse(BaseModel):
    status: Literal["ok"]
    message: str


class ConfigureBackendResponse(BaseModel):
    message: str
    latency: int


class ConnectionTestResponse(BaseModel):
    success: bool
    message: str
    latency: int


class StoreDataRequest(BaseModel):
    # Validated by the sync engine so errors carry its messages.
    collection: Optional[Any] = None
    items: Optional[Any] = None


class StoreDataResponse(BaseModel):
    stored: int


class DataItem(BaseModel):
    id: str
    collection: str
    data: Any
    created_at: float
    updated_at: float
    device_id: Optional[str] = None
    end_user_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: DataRecord) -> "DataItem":
        return cls(**record.as_dict())


class QueryDataResponse(BaseModel):
    data: list[DataItem]


class StatsResponse(BaseModel):
    total_storage_bytes: int
    total_storage: str


class MemoryUsage(BaseModel):
    max_rss: str
    gc_objects: int


class HealthResponse(BaseModel):
    timestamp: str
    status: Literal["ok", "degraded"]
    services: dict[str, str]
    memory: MemoryUsage
