"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
import threading

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ldss.backends import BackendBindingManager
from ldss.config import get_settings
from ldss.db import DbClient, InMemoryDbClient, SqlDbClient
from ldss.errors import AuthenticationError, DurableStoreError
from ldss.identity import IdentityGate
from ldss.projects import ProjectRegistry
from ldss.providers import ProviderRegistry
from ldss.stats import StatsAggregator
from ldss.sync import CollectionSyncEngine

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None
_provider_registry: ProviderRegistry | None = None
_singleton_lock = threading.Lock()

security_scheme = HTTPBearer(auto_error=False)


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client is not None:
        return _db_client

    with _singleton_lock:
        if _db_client is None:
            settings = get_settings()
            if settings.use_in_memory_backends or not settings.database_url:
                _db_client = InMemoryDbClient()
            else:
                _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_provider_registry() -> ProviderRegistry:
    global _provider_registry
    if _provider_registry is not None:
        return _provider_registry

    with _singleton_lock:
        if _provider_registry is None:
            settings = get_settings()
            _provider_registry = ProviderRegistry.default(
                simulated_delay_seconds=settings.simulated_probe_delay_seconds
            )
    return _provider_registry


def get_identity_gate(db: DbClient = Depends(get_db_client)) -> IdentityGate:
    return IdentityGate(db, session_ttl_days=get_settings().session_ttl_days)


def get_project_registry(db: DbClient = Depends(get_db_client)) -> ProjectRegistry:
    return ProjectRegistry(db)


def get_stats_aggregator(db: DbClient = Depends(get_db_client)) -> StatsAggregator:
    return StatsAggregator(db)


def get_binding_manager(
    db: DbClient = Depends(get_db_client),
    projects: ProjectRegistry = Depends(get_project_registry),
    providers: ProviderRegistry = Depends(get_provider_registry),
) -> BackendBindingManager:
    return BackendBindingManager(db, projects, providers)


def get_sync_engine(
    db: DbClient = Depends(get_db_client),
    projects: ProjectRegistry = Depends(get_project_registry),
    stats: StatsAggregator = Depends(get_stats_aggregator),
) -> CollectionSyncEngine:
    settings = get_settings()
    return CollectionSyncEngine(
        db,
        projects,
        stats,
        recompute_stats=settings.recompute_stats_on_store,
        default_limit=settings.default_query_limit,
    )


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security_scheme),
    identity: IdentityGate = Depends(get_identity_gate),
) -> str:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token"
        )
    try:
        return identity.authenticate(credentials.credentials)
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.message
        ) from exc
    except DurableStoreError as exc:
        logger.error("Session lookup failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message
        ) from exc
