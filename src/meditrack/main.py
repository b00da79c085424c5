import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.datastructures import Headers

from src.meditrack.api.v1.routes_signup import router as signup_router_v1
from src.meditrack.api.v1.routes_system import router as system_router_v1
from src.meditrack.config import settings
from src.meditrack.infra.db.bootstrap import init_repositories

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("meditrack")

app = FastAPI(title="MediTrack Account Provisioning API")


@app.on_event("startup")
async def on_startup() -> None:
    """Application startup hook.

    Selects the storage/auth collaborators from REPOSITORY_BACKEND. In tests
    and local dev this is a no-op and the in-memory stores remain active.
    """

    backend = init_repositories()
    logger.info("Signup collaborators: %s", backend)


class PreflightCORSMiddleware(CORSMiddleware):
    """CORSMiddleware whose successful preflight answer carries no body."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            key: value for key, value in response.headers.items() if key not in ("content-length", "content-type")
        }
        return Response(status_code=response.status_code, headers=headers)


# CORS configuration – permissive by default because the signup form is
# served from another origin. Tighten via CORS_ALLOW_ORIGINS in production.
allow_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    PreflightCORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Erreur serveur inattendue", "details": str(exc) or type(exc).__name__},
    )


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    """Basic liveness probe for the API root."""
    return {"status": "ok"}


# Versioned API routers
app.include_router(system_router_v1, prefix="/api/v1")
app.include_router(signup_router_v1, prefix="/api/v1")
# Same handler under the serverless-function path the web client invokes.
app.include_router(signup_router_v1, prefix="/functions/v1")
