"""FastAPI application entrypoint and router wiring for the governance backend."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

from app.api.audit import router as audit_router
from app.api.auto_approval import router as auto_approval_router
from app.api.proposals import router as proposals_router
from app.api.rates import router as rates_router
from app.api.reviews import router as reviews_router
from app.api.voting import router as voting_router
from app.core.config import settings
from app.core.error_handling import install_error_handling
from app.core.logging import configure_logging, get_logger
from app.db.session import check_database, init_db
from app.schemas.health import HealthStatusResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

configure_logging()
logger = get_logger(__name__)
OPENAPI_TAGS = [
    {
        "name": "health",
        "description": "Service liveness/readiness probes used by infrastructure checks.",
    },
    {
        "name": "proposals",
        "description": (
            "Identification form drafting, submission, revisions, routing and the "
            "derived ROI, criteria and tier views."
        ),
    },
    {
        "name": "voting",
        "description": "Voting sessions, ballots, session closing and voter capability grants.",
    },
    {
        "name": "auto-approval",
        "description": "Auto-approval rule management, match previews and rule application.",
    },
    {
        "name": "staff-rates",
        "description": "Hourly staff rate card with dated rate periods.",
    },
    {
        "name": "reviews",
        "description": "Post-implementation reviews and estimation-accuracy reporting.",
    },
    {
        "name": "audit",
        "description": "Append-only audit trail of governance state changes.",
    },
]

_GENERIC_RESPONSE_DESCRIPTIONS = {"Successful Response", "Validation Error"}
_HTTP_RESPONSE_DESCRIPTIONS = {
    "200": "Request completed successfully.",
    "201": "Resource created successfully.",
    "400": "Request validation failed.",
    "401": "Caller identity is missing.",
    "403": "Caller is not eligible for this operation.",
    "404": "Requested resource was not found.",
    "409": "Request conflicts with the current governance state.",
    "422": "Request payload failed schema or field validation.",
    "500": "Internal server error.",
}
_METHOD_SUMMARY_PREFIX = {
    "get": "Get",
    "post": "Create",
    "patch": "Update",
    "delete": "Delete",
}


def _build_operation_summary(*, method: str, path: str) -> str:
    """Build a readable summary when an operation does not define one."""
    prefix = _METHOD_SUMMARY_PREFIX.get(method.lower(), "Handle")
    path_without_prefix = path.removeprefix("/api/v1/")
    parts = [
        part.replace("-", " ")
        for part in path_without_prefix.split("/")
        if part and not (part.startswith("{") and part.endswith("}"))
    ]
    if not parts:
        return prefix
    return f"{prefix} {' '.join(parts)}".strip().title()


def _normalize_operation_docs(openapi_schema: dict[str, Any]) -> None:
    """Fill missing summaries and generic response descriptions."""
    paths = openapi_schema.get("paths")
    if not isinstance(paths, dict):
        return
    for path, path_item in paths.items():
        if not isinstance(path_item, dict):
            continue
        for method, operation in path_item.items():
            if not isinstance(operation, dict):
                continue
            if not str(operation.get("summary", "")).strip():
                operation["summary"] = _build_operation_summary(method=method, path=path)
            responses = operation.get("responses")
            if not isinstance(responses, dict):
                continue
            for status_code, response in responses.items():
                if not isinstance(response, dict):
                    continue
                existing = str(response.get("description", "")).strip()
                if not existing or existing in _GENERIC_RESPONSE_DESCRIPTIONS:
                    response["description"] = _HTTP_RESPONSE_DESCRIPTIONS.get(
                        str(status_code),
                        "Request processed.",
                    )


class GovernanceFastAPI(FastAPI):
    """FastAPI application with normalized OpenAPI docs."""

    def openapi(self) -> dict[str, Any]:
        if self.openapi_schema:
            return self.openapi_schema
        openapi_schema = get_openapi(
            title=self.title,
            version=self.version,
            openapi_version=self.openapi_version,
            description=self.description,
            routes=self.routes,
            tags=self.openapi_tags,
        )
        _normalize_operation_docs(openapi_schema)
        self.openapi_schema = openapi_schema
        return self.openapi_schema


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Initialize application resources before serving requests."""
    logger.info(
        "app.lifecycle.starting environment=%s db_auto_migrate=%s",
        settings.environment,
        settings.db_auto_migrate,
    )
    await init_db()
    logger.info("app.lifecycle.started")
    try:
        yield
    finally:
        logger.info("app.lifecycle.stopped")


app = GovernanceFastAPI(
    title="AI Adoption Governance API",
    version="0.1.0",
    lifespan=lifespan,
    openapi_tags=OPENAPI_TAGS,
)

origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )
    logger.info("app.cors.enabled origins_count=%s", len(origins))
else:
    logger.info("app.cors.disabled")

install_error_handling(app)


@app.get(
    "/healthz",
    tags=["health"],
    response_model=HealthStatusResponse,
    summary="Liveness Check",
)
def healthz() -> HealthStatusResponse:
    """Lightweight liveness probe endpoint."""
    return HealthStatusResponse(ok=True)


@app.get(
    "/readyz",
    tags=["health"],
    response_model=HealthStatusResponse,
    summary="Readiness Check",
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": HealthStatusResponse}},
)
async def readyz() -> HealthStatusResponse | JSONResponse:
    """Readiness probe; fails while the database is unreachable."""
    if not await check_database():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"ok": False},
        )
    return HealthStatusResponse(ok=True)


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(proposals_router)
api_v1.include_router(voting_router)
api_v1.include_router(auto_approval_router)
api_v1.include_router(rates_router)
api_v1.include_router(reviews_router)
api_v1.include_router(audit_router)
app.include_router(api_v1)

logger.debug("app.routes.registered count=%s", len(app.routes))
