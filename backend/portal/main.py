import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .db.session import get_engine
from .logging_config import configure_logging
from .routes import CLIENT_HEADER, PortalRegistry, router as portal_router


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    if getattr(app.state, "portal_registry", None) is None:
        app.state.portal_registry = PortalRegistry(get_settings())
    try:
        yield
    finally:
        registry = app.state.portal_registry
        app.state.portal_registry = None
        await registry.dispose_all()


app = FastAPI(title="Member Portal Backend", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CLIENT_HEADER],
)
app.include_router(portal_router)

settings_snapshot = get_settings()
logger.info("Backend starting with database configured: %s", bool(settings_snapshot.database_url))
logger.info("Profile removal policy: %s", settings_snapshot.profile_removal_policy)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "removal_policy": settings.profile_removal_policy}


@app.get("/healthz/database")
def database_health() -> Dict[str, Any]:
    try:
        engine = get_engine()
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except (RuntimeError, SQLAlchemyError) as exc:
        logger.warning("Database health check failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return {"status": "ok", "dialect": engine.dialect.name, "pool": engine.pool.status()}


def run() -> None:
    import uvicorn

    uvicorn.run(
        "portal.main:app",
        host=os.getenv("PORTAL_HOST", "127.0.0.1"),
        port=int(os.getenv("PORTAL_PORT", "8000")),
        log_config=None,
    )


if __name__ == "__main__":
    run()
