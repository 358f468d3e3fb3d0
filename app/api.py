"""HTTP route definitions for the session service."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.schemas import (
    ConnectRequest,
    ConnectResponse,
    DisconnectRequest,
    DisconnectResponse,
    Reading,
    Region,
)
from services.errors import AuthError, CgmSyncError, GatewayTimeout, SessionExpired, UpstreamError
from services.sessions import SessionManager, build_default_session_manager
from settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def get_session_manager() -> SessionManager:
    return build_default_session_manager()


def _default_region() -> Region:
    try:
        return Region(get_settings().default_region)
    except ValueError:
        logger.warning("Unknown default region, using EU", extra={"region": get_settings().default_region})
        return Region.EU


@router.post(
    "/session/connect",
    response_model=ConnectResponse,
    summary="Log in to the vendor and open a session.",
)
def connect(
    payload: ConnectRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> ConnectResponse:
    try:
        session_id = manager.login(
            payload.email,
            payload.password,
            payload.region or _default_region(),
            payload.client_version,
        )
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    except GatewayTimeout as exc:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Vendor could not be reached (timeout).",
        ) from exc
    except UpstreamError as exc:
        logger.warning("Vendor login failed", extra={"reason": str(exc), "status_code": exc.status_code})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Vendor login failed.",
        ) from exc
    return ConnectResponse(session_id=session_id)


@router.get(
    "/session/read",
    response_model=Reading,
    summary="Fetch the latest reading for a session.",
    responses={204: {"description": "No reading available."}, 401: {"description": "Session expired."}},
)
def read(
    session_id: str = Query(..., alias="sessionId"),
    manager: SessionManager = Depends(get_session_manager),
) -> Reading | Response:
    try:
        reading = manager.read(session_id)
    except SessionExpired as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except CgmSyncError as exc:
        logger.warning("Read failed", extra={"session_id": session_id, "reason": str(exc)})
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    if reading is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return reading


@router.post(
    "/session/disconnect",
    response_model=DisconnectResponse,
    summary="Close a session. Unknown sessions are ignored.",
)
def disconnect(
    payload: DisconnectRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> DisconnectResponse:
    if payload.session_id:
        manager.disconnect(payload.session_id)
    return DisconnectResponse()


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
