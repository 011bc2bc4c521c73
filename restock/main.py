import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from restock.core.config import CORS_ORIGINS, DATABASE_URL, ENV
from restock.core.database import Base, engine
from restock.core.errors import RestockError
from restock.core.logging_setup import configure_logging
from restock.core.startup_checks import ensure_migrations_applied, validate_database_environment
from restock.middleware.observability import ObservabilityMiddleware
import restock.models  # registers every model on Base.metadata before create_all

from restock.routers.orders import router as orders_router
from restock.routers.sync import router as sync_router

configure_logging()

logger = logging.getLogger(__name__)
REPO_ROOT = Path(__file__).resolve().parents[1]
ALEMBIC_CONFIG_PATH = Path(os.getenv("ALEMBIC_CONFIG", str(REPO_ROOT / "alembic.ini")))


def _startup_tasks() -> None:
    try:
        validate_database_environment()
        if DATABASE_URL.startswith("sqlite"):
            # Local/dev databases are created from the models; everything else goes through Alembic.
            Base.metadata.create_all(bind=engine)
        else:
            ensure_migrations_applied(engine=engine, alembic_config_path=ALEMBIC_CONFIG_PATH)
    except Exception:
        logger.exception("[STARTUP] failed env=%s", ENV)
        raise


@asynccontextmanager
async def lifespan(_: FastAPI):
    _startup_tasks()
    yield


app = FastAPI(
    title="Restock API",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(ObservabilityMiddleware)


@app.exception_handler(RestockError)
async def restock_error_handler(request: Request, exc: RestockError):
    if exc.status_code >= 500:
        logger.error(
            "Request failed: %s",
            exc.message,
            extra={"endpoint": request.url.path, "method": request.method, "status_code": exc.status_code},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(orders_router)
app.include_router(sync_router)


@app.get("/")
def root():
    return {"service": "restock", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "ok", "env": ENV}
