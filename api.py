"""HTTP trigger endpoint.

POST /scan runs one scan synchronously and answers with its totals;
GET /scan/{scan_run_id} reports a run and its per-source statuses.

Access:
    A request must carry `Authorization: Bearer <SCAN_SECRET>` or come from
    the app's own origin (APP_URL, or localhost). A request with neither
    Origin nor Referer counts as same-origin. Without SCAN_SECRET configured
    every request is refused with 500.

Errors are answered as {"error": "..."}: 400 for malformed bodies, bad
periods, and unknown sources; 401 for failed access checks.
"""

import logging
from contextlib import asynccontextmanager
from typing import Annotated
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from config import Config
from database import Database
from errors import AuthorizationError, CompassError, ConfigurationError, InvalidScanRequest
from models.scan import Period, ScanMode, ScanRequest
from pipeline import Orchestrator

logger = logging.getLogger(__name__)

LOCAL_ORIGIN_PREFIXES = ("http://localhost:", "http://127.0.0.1:")


class ScanBody(BaseModel):
    """POST /scan request body (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    period: Period
    target_ids: list[str] | None = Field(default=None, alias="targetIds")
    mode: ScanMode = ScanMode.LATEST
    sources: list[str] | None = None
    scan_run_id: str | None = Field(default=None, alias="scanRunId")

    @field_validator("mode", mode="before")
    @classmethod
    def _default_mode(cls, value):
        return ScanMode.COMPREHENSIVE if value == ScanMode.COMPREHENSIVE.value else ScanMode.LATEST

    @field_validator("target_ids")
    @classmethod
    def _empty_means_all(cls, value: list[str] | None) -> list[str] | None:
        return value or None

    def to_request(self) -> ScanRequest:
        return ScanRequest(
            period=self.period,
            target_ids=self.target_ids,
            mode=self.mode,
            sources=self.sources,
            scan_run_id=self.scan_run_id,
        )


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def is_same_origin(origin: str | None, referer: str | None, app_url: str) -> bool:
    """Origin/Referer check against the configured app URL."""
    if not origin and not referer:
        return True
    allowed = _origin(app_url)
    for value in (origin, referer):
        if not value:
            continue
        if _origin(value) == allowed or value.startswith(LOCAL_ORIGIN_PREFIXES):
            return True
    return False


def get_config(request: Request) -> Config:
    return request.app.state.config


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


def get_db(request: Request) -> Database:
    return request.app.state.db


async def require_scan_access(
    config: Annotated[Config, Depends(get_config)],
    authorization: Annotated[str | None, Header()] = None,
    origin: Annotated[str | None, Header()] = None,
    referer: Annotated[str | None, Header()] = None,
) -> None:
    """Bearer secret or same-origin gate.

    Raises:
        ConfigurationError: SCAN_SECRET is not configured
        AuthorizationError: Neither check passed
    """
    if not config.scan_secret:
        raise ConfigurationError("SCAN_SECRET not configured")
    if authorization == f"Bearer {config.scan_secret}":
        return
    if is_same_origin(origin, referer, config.app_url):
        return
    raise AuthorizationError("Unauthorized")


ScanAccess = Depends(require_scan_access)
OrchestratorDep = Annotated[Orchestrator, Depends(get_orchestrator)]
DB = Annotated[Database, Depends(get_db)]

router = APIRouter()


@router.post("/scan", dependencies=[ScanAccess])
async def trigger_scan(body: ScanBody, orchestrator: OrchestratorDep):
    """Run one scan and report its totals."""
    try:
        result = await orchestrator.run(body.to_request())
    except CompassError:
        raise
    except Exception as e:
        logger.error("Scan request failed | error=%s", e, exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})

    payload = {
        "ok": True,
        "scanRunId": result.scan_run_id,
        "totalFound": result.total_found,
        "newFound": result.new_found,
    }
    if result.failed_sources:
        payload["failedSources"] = result.failed_sources
    if result.digest_run_id:
        payload["digestRunId"] = result.digest_run_id
    if result.message:
        payload["message"] = result.message
    return payload


@router.get("/scan/{scan_run_id}", dependencies=[ScanAccess])
async def scan_status(scan_run_id: str, db: DB):
    """A scan run with its per-source statuses."""
    run = db.get_scan_run(scan_run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Scan run not found")
    return {
        "scanRunId": run.id,
        "period": run.period.value,
        "mode": run.mode.value,
        "status": run.status.value,
        "targetIds": run.target_ids,
        "sourcesTotal": run.sources_total,
        "sourcesCompleted": run.sources_completed,
        "totalFound": run.items_found,
        "newFound": run.new_found,
        "error": run.error,
        "createdAt": run.created_at,
        "completedAt": run.completed_at,
        "sources": [
            {
                "source": s.source,
                "status": s.status.value,
                "itemsFound": s.items_found,
                "error": s.error,
            }
            for s in db.source_statuses(run.id)
        ],
    }


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    config: Config | None = None,
    orchestrator: Orchestrator | None = None,
    db: Database | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    Collaborators not passed in are created on startup and the database is
    closed on shutdown.
    """
    config = config or Config.load()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned_db = None
        if getattr(app.state, "db", None) is None:
            owned_db = Database(config.db_path)
            app.state.db = owned_db
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = Orchestrator(config, app.state.db)
        logger.info("API started | db=%s", config.db_path)
        try:
            yield
        finally:
            if owned_db is not None:
                owned_db.close()

    app = FastAPI(title="Compass scan API", version="1.0.0", lifespan=lifespan)
    app.state.config = config
    app.state.db = db if db is not None else (orchestrator.db if orchestrator else None)
    app.state.orchestrator = orchestrator

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        fields = {".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()}
        detail = ", ".join(sorted(f for f in fields if f)) or "body"
        return _error(400, f"Invalid request: {detail}")

    @app.exception_handler(InvalidScanRequest)
    async def _invalid_scan(request: Request, exc: InvalidScanRequest):
        return _error(400, str(exc))

    @app.exception_handler(AuthorizationError)
    async def _unauthorized(request: Request, exc: AuthorizationError):
        return _error(401, str(exc))

    @app.exception_handler(ConfigurationError)
    async def _misconfigured(request: Request, exc: ConfigurationError):
        return _error(500, str(exc))

    app.include_router(router)
    return app
