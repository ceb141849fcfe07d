"""Application entry point."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from specflow import __version__
from specflow.api.container import get_container
from specflow.api.routes.generate import router as generate_router
from specflow.api.routes.models import router as models_router
from specflow.api.routes.workflow import router as workflow_router
from specflow.shared.logging import setup_logging

log = structlog.get_logger()


def _apply_logging_config(container) -> None:
    """Apply logging from container config (stdout + optional file)."""
    c = container.config
    setup_logging(
        level=c.log_level,
        file_path=c.log_file or "",
        rotation_max_mb=c.log_rotation_max_mb,
        rotation_backups=c.log_rotation_backups,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: logging, restore workflow state. Shutdown: flush it."""
    container = get_container()
    _apply_logging_config(container)
    cfg = container.config
    log.info(
        "startup_begin",
        base_url=cfg.openrouter.base_url,
        default_model=cfg.generation.default_model,
        data_dir=cfg.persistence.data_dir,
    )
    engine = container.workflow_engine
    log.info("workflow_restored", phase=engine.state.phase.value, has_content=engine.state.has_content())
    log.info("startup_complete")
    yield
    log.info("shutdown_begin")
    try:
        container.shutdown()
    except OSError:
        log.warning("workflow_flush_failed", exc_info=True)
    log.info("shutdown_complete")


app = FastAPI(
    title="SpecFlow",
    version=__version__,
    description="Requirements -> Design -> Tasks spec generation with approval gates",
    lifespan=lifespan,
)

# CORS
container = get_container()
app.add_middleware(
    CORSMiddleware,
    allow_origins=container.config.security.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(generate_router)
app.include_router(models_router)
app.include_router(workflow_router)


@app.get("/health")
async def health() -> dict:
    """Liveness plus workflow summary. Does not call the completion API."""
    container = get_container()
    engine = container.workflow_engine
    return {
        "status": "ok",
        "service": "specflow",
        "version": __version__,
        "phase": engine.state.phase.value,
        "is_generating": engine.state.is_generating,
        "api_key_configured": engine.has_api_key,
        "default_model": container.config.generation.default_model,
    }
