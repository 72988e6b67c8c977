"""
HTTP routes for the LDSS backend API.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from ldss.backends import BackendBindingManager
from ldss.db import DbClient
from ldss.dependencies import (
    get_binding_manager,
    get_current_user_id,
    get_db_client,
    get_identity_gate,
    get_project_registry,
    get_stats_aggregator,
    get_sync_engine,
)
from ldss.errors import (
    AuthenticationError,
    BackendConnectionError,
    DurableStoreError,
    LdssError,
    NotFoundError,
    ValidationError,
)
from ldss.health import health_check
from ldss.identity import IdentityGate
from ldss.projects import ProjectRegistry
from ldss.schemas import (
    AuthResponse,
    ConfigureBackendResponse,
    ConnectionTestResponse,
    CreateProjectRequest,
    DataItem,
    DeleteProjectResponse,
    HealthResponse,
    ListProjectsResponse,
    LoginRequest,
    ProjectDetail,
    ProjectSummary,
    QueryDataResponse,
    RegisterRequest,
    SessionResponse,
    StatsResponse,
    StoreDataRequest,
    StoreDataResponse,
    UserResponse,
)
from ldss.stats import StatsAggregator, format_bytes
from ldss.sync import CollectionSyncEngine

logger = logging.getLogger(__name__)

router = APIRouter()

_STATUS_CODES = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (BackendConnectionError, 502),
    (DurableStoreError, 503),
)


@contextmanager
def _service_errors() -> Iterator[None]:
    """Translate service-layer errors into HTTP responses."""
    try:
        yield
    except LdssError as exc:
        status_code = next(
            (code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500
        )
        if status_code >= 500:
            logger.error("Request failed: %s", exc)
        raise HTTPException(status_code=status_code, detail=exc.message) from exc


def _auth_response(result) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.from_record(result.user),
        session=SessionResponse.from_record(result.session),
    )


@router.get("/health", response_model=HealthResponse)
def health(db: DbClient = Depends(get_db_client)):
    return health_check(db)


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest, identity: IdentityGate = Depends(get_identity_gate)
):
    with _service_errors():
        result = identity.register_user(payload.email, payload.password, payload.name)
    return _auth_response(result)


@router.post("/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, identity: IdentityGate = Depends(get_identity_gate)):
    with _service_errors():
        result = identity.login_user(payload.email, payload.password)
    return _auth_response(result)


@router.get("/projects", response_model=ListProjectsResponse)
def list_projects(
    user_id: str = Depends(get_current_user_id),
    projects: ProjectRegistry = Depends(get_project_registry),
):
    with _service_errors():
        records = projects.list_projects(user_id)
    return ListProjectsResponse(
        projects=[ProjectSummary.from_record(record) for record in records]
    )


@router.post("/projects", response_model=ProjectDetail, status_code=201)
def create_project(
    payload: CreateProjectRequest,
    user_id: str = Depends(get_current_user_id),
    projects: ProjectRegistry = Depends(get_project_registry),
):
    with _service_errors():
        project = projects.create_project(user_id, payload.name, payload.description)
    return ProjectDetail.from_record(project)


@router.get("/projects/{project_id}", response_model=ProjectDetail)
def get_project(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    projects: ProjectRegistry = Depends(get_project_registry),
):
    with _service_errors():
        project = projects.get_project(user_id, project_id)
    return ProjectDetail.from_record(project)


@router.delete("/projects/{project_id}", response_model=DeleteProjectResponse)
def delete_project(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    projects: ProjectRegistry = Depends(get_project_registry),
):
    with _service_errors():
        projects.delete_project(user_id, project_id)
    return DeleteProjectResponse(status="ok", message="Project deleted successfully")


@router.post("/projects/{project_id}/backend", response_model=ConfigureBackendResponse)
def configure_backend(
    project_id: str,
    config: dict = Body(...),
    user_id: str = Depends(get_current_user_id),
    bindings: BackendBindingManager = Depends(get_binding_manager),
):
    with _service_errors():
        result = bindings.configure_backend(user_id, project_id, config)
    return ConfigureBackendResponse(**result)


@router.post(
    "/projects/{project_id}/backend/test", response_model=ConnectionTestResponse
)
def run_backend_test(
    project_id: str,
    config: dict = Body(...),
    user_id: str = Depends(get_current_user_id),
    bindings: BackendBindingManager = Depends(get_binding_manager),
):
    with _service_errors():
        result = bindings.test_backend(user_id, project_id, config)
    return ConnectionTestResponse(**result.as_dict())


@router.get("/projects/{project_id}/data", response_model=QueryDataResponse)
def query_data(
    project_id: str,
    collection: Optional[str] = Query(None),
    limit: Optional[str] = Query(None, description="Coerced to an integer"),
    user_id: str = Depends(get_current_user_id),
    engine: CollectionSyncEngine = Depends(get_sync_engine),
):
    with _service_errors():
        records = engine.query(user_id, project_id, collection, limit)
    return QueryDataResponse(data=[DataItem.from_record(r) for r in records])


@router.post("/projects/{project_id}/data", response_model=StoreDataResponse)
def store_data(
    project_id: str,
    payload: StoreDataRequest,
    user_id: str = Depends(get_current_user_id),
    engine: CollectionSyncEngine = Depends(get_sync_engine),
):
    with _service_errors():
        result = engine.store(user_id, project_id, payload.collection, payload.items)
    return StoreDataResponse(**result)


@router.post("/projects/{project_id}/stats/recompute", response_model=StatsResponse)
def recompute_stats(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    projects: ProjectRegistry = Depends(get_project_registry),
    stats: StatsAggregator = Depends(get_stats_aggregator),
):
    with _service_errors():
        projects.require_project(user_id, project_id)
        total = stats.recompute_storage(project_id)
    return StatsResponse(total_storage_bytes=total, total_storage=format_bytes(total))
