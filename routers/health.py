"""
Liveness and readiness checks.
"""

import logfire

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from services.auth import AuthService, get_auth_service
from utils.exceptions import StorageError, WorkerFailure

from typing import Annotated

router = APIRouter(
    prefix="/health",
    tags=["Health"],
)


@router.get("/live")
async def live():
    return {"status": "ok"}


@router.get("/ready")
async def ready(auth_service: Annotated[AuthService, Depends(get_auth_service)]):
    """Report whether the credential store (and revocation list, if enabled) is reachable."""
    try:
        await auth_service.check_ready()
    except (StorageError, WorkerFailure) as e:
        logfire.warning("Readiness check failed: {error}", error=e.code)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "storage": "down"},
        )
    return {"status": "ready", "storage": "ok"}
