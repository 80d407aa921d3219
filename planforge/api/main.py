"""Planforge API - phased project planning service.

Guides a project through six planning phases, generates grounded
documents with a language model, and bundles the results for download.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from planforge import __version__
from planforge.api.deps import Services, build_services
from planforge.api.routes import ai, generator, sessions
from planforge.config import Settings
from planforge.errors import PlanforgeError
from planforge.packaging.engine import PackageJanitor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    services: Optional[Services] = getattr(app.state, "services", None)
    if services is None:
        logger.info("Building services from environment...")
        services = build_services(Settings.from_env())
        app.state.services = services

    # Startup: clear leftovers from a previous process, then expire packages
    services.packaging.remove_stale_build_files()
    expired = services.packaging.sweep_expired()
    logger.info(f"Startup sweep removed {expired} expired package(s)")

    services.janitor = PackageJanitor(
        services.packaging, services.settings.sweep_interval_seconds
    )
    services.janitor.start()

    gateway = services.gateway
    logger.info(
        f"Generation gateway: {gateway.model_id if gateway else 'none'} "
        f"(ready={services.assembler.is_ready()})"
    )
    logger.info("Planforge API ready")
    yield
    # Shutdown
    services.janitor.stop()
    logger.info("Shutting down Planforge API")


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the FastAPI app. Pass `services` to skip environment wiring."""
    app = FastAPI(
        title="Planforge API",
        description="""
## Phased Project Planning

- **Sessions**: create a project, complete its six planning phases, track progress
- **AI**: chat with phase agents, fill document templates, get next-step suggestions
- **Generator**: preview and build a zip of every completed document plus agent prompts

### Key Endpoints

- `POST /v1/sessions` - Create a session
- `POST /v1/sessions/{id}/phases/{phase}/complete` - Complete a phase
- `POST /v1/ai/chat` - Chat with an agent
- `POST /v1/ai/generate-template` - Generate and save a document
- `POST /v1/generator/package/{id}` - Build a package
""",
        version=__version__,
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PlanforgeError)
    async def planforge_error_handler(request: Request, exc: PlanforgeError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    # Include routers with /v1 prefix
    app.include_router(sessions.router, prefix="/v1")
    app.include_router(ai.router, prefix="/v1")
    app.include_router(generator.router, prefix="/v1")

    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "service": "Planforge API",
            "version": __version__,
            "docs": "/docs",
            "endpoints": {
                "sessions": "/v1/sessions",
                "ai": "/v1/ai",
                "generator": "/v1/generator",
            },
        }

    @app.get("/health")
    async def health(request: Request):
        """Health check endpoint."""
        services: Services = request.app.state.services
        return {
            "status": "healthy",
            "version": __version__,
            "database": services.db.backend_name,
            "session_backend": services.settings.session_backend,
            "ai_ready": services.assembler.is_ready(),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "planforge.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
