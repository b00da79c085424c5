from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from src.meditrack.services.signup.errors import SignupError
from src.meditrack.services.signup.service import SignupService, get_signup_service

logger = logging.getLogger("signup")

router = APIRouter(tags=["signup"])

# The signup form runs in the browser on another origin and calls this
# endpoint directly, with the backend client's usual headers.
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def _json(status_code: int, content: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=CORS_HEADERS)


@router.options("/signup")
async def signup_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.post("/signup")
async def signup(
    request: Request,
    service: SignupService = Depends(get_signup_service),
) -> JSONResponse:
    """Create an organization and its first administrator account.

    Body: ``{fullName, organizationName, email, password, organizationCategory}``.
    Every failure is answered with a JSON error body; nothing escapes as an
    unhandled exception.
    """

    try:
        payload = await request.json()
        # Provisioning runs to completion in a worker thread even if the
        # client disconnects, so a compensating delete is never cut short.
        account = await run_in_threadpool(service.provision_tenant, payload)
    except SignupError as exc:
        return _json(exc.status_code, exc.to_payload())
    except Exception as exc:
        logger.exception("Unexpected error during signup")
        return _json(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            {"error": "Erreur serveur inattendue", "details": str(exc) or type(exc).__name__},
        )

    return _json(
        status.HTTP_200_OK,
        {
            "success": True,
            "message": "Compte créé avec succès",
            "user": {"id": str(account.id), "email": account.email},
        },
    )
