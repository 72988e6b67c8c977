"""
Binding a project to an external backend provider.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Callable

from ldss.db import STATUS_CONNECTED, DbClient
from ldss.errors import BackendConnectionError
from ldss.projects import ProjectRegistry
from ldss.providers import ConnectionTestResult, ProviderRegistry

logger = logging.getLogger(__name__)


class BackendBindingManager:
    def __init__(
        self,
        db: DbClient,
        projects: ProjectRegistry,
        providers: ProviderRegistry,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.projects = projects
        self.providers = providers
        self.clock = clock

    def configure_backend(self, owner_id: str, project_id: str, config) -> dict:
        """
        Validate, probe and persist a backend binding.

        Nothing is written unless the connection test succeeds. The provider,
        serialized config, status and test time are stored in one update.
        """
        self.projects.require_project(owner_id, project_id)
        self.providers.validate_config(config)

        result = self.providers.test_connection(config)
        if not result.success:
            raise BackendConnectionError(f"Backend connection failed: {result.message}")

        provider = config["provider"]
        self.db.update_backend(
            project_id,
            provider=provider,
            config_json=json.dumps(config),
            status=STATUS_CONNECTED,
            tested_at=self.clock(),
        )
        logger.info("Backend configured for %s: %s", project_id, provider)
        return {
            "message": f"{provider} backend configured successfully",
            "latency": result.latency_ms,
        }

    def test_backend(
        self, owner_id: str, project_id: str, config
    ) -> ConnectionTestResult:
        self.projects.require_project(owner_id, project_id)
        return self.providers.test_connection(config)
