"""Service wiring for the API.

Services are constructed once in the application lifespan and stored on
app.state; routes receive them through Depends(get_services). Tests build
a Services object directly with temporary directories and a fake gateway.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from planforge.artifacts.store import ArtifactStore
from planforge.config import Settings
from planforge.context.assembler import ContextAssembler
from planforge.context.catalog import PromptCatalog
from planforge.llm.backends import GenerationGateway
from planforge.llm.factory import get_backend
from planforge.packaging.engine import PackageJanitor, PackagingEngine
from planforge.sessions.repository import (
    FileSessionRepository,
    SessionRepository,
    SqlSessionRepository,
)
from planforge.sessions.service import SessionService
from planforge.storage.db import Database

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a request handler may need, built once per process."""

    settings: Settings
    db: Database
    sessions: SessionService
    artifacts: ArtifactStore
    catalog: PromptCatalog
    assembler: ContextAssembler
    packaging: PackagingEngine
    janitor: Optional[PackageJanitor] = None

    @property
    def gateway(self) -> Optional[GenerationGateway]:
        return self.assembler.gateway

    def install_gateway(self, gateway: GenerationGateway) -> None:
        """Swap the generation backend used by every later request."""
        self.assembler.gateway = gateway
        logger.info(f"Generation gateway set to {gateway.model_id} (ready={gateway.is_ready()})")


def build_gateway(settings: Settings, api_key: Optional[str] = None) -> GenerationGateway:
    """Backend for settings.model. Raises ValueError for an unknown model."""
    return get_backend(
        settings.model,
        api_key=api_key,
        timeout_seconds=settings.llm_timeout_seconds,
        max_tokens=settings.llm_max_tokens,
    )


def build_services(
    settings: Settings,
    gateway: Optional[GenerationGateway] = None,
) -> Services:
    """Construct all services for the given settings."""
    db = Database(settings.database_url, settings.sqlite_path)

    repository: SessionRepository
    if settings.session_backend == "file":
        repository = FileSessionRepository(settings.sessions_dir)
    elif settings.session_backend == "database":
        repository = SqlSessionRepository(db)
    else:
        raise ValueError(
            f"Unknown session backend: '{settings.session_backend}'. "
            f"Expected 'database' or 'file'."
        )

    artifacts = ArtifactStore(settings.artifacts_dir)
    sessions = SessionService(repository, on_delete=artifacts.delete_all)

    catalog = PromptCatalog()
    catalog.load()

    if gateway is None:
        try:
            gateway = build_gateway(settings)
        except ValueError as e:
            logger.warning(f"No generation gateway configured: {e}")

    packaging = PackagingEngine(
        sessions,
        db,
        settings.packages_dir,
        package_ttl_seconds=settings.package_ttl_seconds,
        download_retention_seconds=settings.download_retention_seconds,
    )

    logger.info(
        f"Services ready: sessions={type(repository).__name__}, "
        f"database={db.backend_name}, data_dir={settings.data_dir}"
    )
    return Services(
        settings=settings,
        db=db,
        sessions=sessions,
        artifacts=artifacts,
        catalog=catalog,
        assembler=ContextAssembler(catalog, artifacts, gateway),
        packaging=packaging,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
