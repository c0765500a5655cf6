"""FastAPI application exposing the document insight pipeline."""
import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from . import __version__
from .api.documents import router as documents_router
from .api.reports import router as reports_router
from .config import Settings
from .logging_config import configure_logging
from .services import insight

settings = Settings.from_env()
configure_logging(settings.log_level, settings.log_dir)

LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Document Insight API", version=__version__)
app.include_router(documents_router)
app.include_router(reports_router)


@app.on_event("startup")
async def _startup() -> None:
    LOGGER.info(
        {
            "step": "app.startup",
            "run_mode": settings.run_mode,
            "ai_backend": settings.ai_backend,
            "store": "sql" if settings.database_url else "memory",
        }
    )


@app.on_event("shutdown")
async def _shutdown() -> None:
    service = insight._insight_service
    if service is not None:
        await service.aclose()


@app.get("/healthz", response_class=PlainTextResponse)
def healthz() -> str:
    """Liveness probe."""
    return "ok"
