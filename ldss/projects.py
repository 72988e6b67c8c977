"""
Project registry: project lifecycle and the ownership check.
"""

from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, List, Optional

from ldss.db import DbClient, ProjectRecord
from ldss.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def new_id(prefix: str, nbytes: int = 8) -> str:
    return prefix + secrets.token_hex(nbytes)


class ProjectRegistry:
    def __init__(self, db: DbClient, clock: Callable[[], float] = time.time):
        self.db = db
        self.clock = clock

    def create_project(
        self, owner_id: str, name: str, description: Optional[str] = None
    ) -> ProjectRecord:
        if not name or not name.strip():
            raise ValidationError("Project name required")
        project = ProjectRecord(
            id=new_id("project_"),
            user_id=owner_id,
            name=name,
            description=description or None,
            token=new_id("ldss_", 16),
            created_at=self.clock(),
        )
        self.db.create_project(project)
        logger.info("Project created: %s (owner %s)", project.id, owner_id)
        return project

    def list_projects(self, owner_id: str) -> List[ProjectRecord]:
        return self.db.list_projects(owner_id)

    def require_project(self, owner_id: str, project_id: str) -> ProjectRecord:
        """
        Re-read the project from the store, filtered by owner.

        Missing and not-owned projects raise the same ``NotFoundError`` so a
        caller cannot probe for other users' project ids.
        """
        project = self.db.get_project(project_id, owner_id)
        if project is None:
            raise NotFoundError("Project not found")
        return project

    def get_project(self, owner_id: str, project_id: str) -> ProjectRecord:
        return self.require_project(owner_id, project_id)

    def delete_project(self, owner_id: str, project_id: str) -> None:
        self.require_project(owner_id, project_id)
        self.db.delete_project(project_id)
        logger.info("Project deleted: %s", project_id)
