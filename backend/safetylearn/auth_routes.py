"""Sign-up, sign-in and sign-out endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from .api_models import AuthResponse, SessionStatusResponse, SignInRequest, SignOutResponse, SignUpRequest
from .services import get_session_manager
from .session_manager import CONFIRM_EMAIL_MESSAGE, SessionManager
from .user_profile import age_group_for

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/sign-up", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def sign_up(
    payload: SignUpRequest,
    response: Response,
    manager: SessionManager = Depends(get_session_manager),
) -> AuthResponse:
    outcome = await manager.sign_up(
        payload.email,
        payload.password,
        name=payload.name.strip(),
        age=payload.age,
        age_group=payload.age_group or age_group_for(payload.age),
    )
    if outcome.error == CONFIRM_EMAIL_MESSAGE:
        response.status_code = status.HTTP_202_ACCEPTED
        return AuthResponse(message=outcome.error)
    if outcome.error is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=outcome.error)
    return AuthResponse(user=outcome.user)


@router.post("/sign-in", response_model=AuthResponse)
async def sign_in(
    payload: SignInRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> AuthResponse:
    outcome = await manager.sign_in(payload.email, payload.password)
    if outcome.error is not None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=outcome.error)
    return AuthResponse(user=outcome.user)


@router.post("/sign-out", response_model=SignOutResponse)
async def sign_out(manager: SessionManager = Depends(get_session_manager)) -> SignOutResponse:
    outcome = await manager.sign_out()
    if outcome.error is not None:
        logger.warning("Sign-out failed: %s", outcome.error)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=outcome.error)
    return SignOutResponse()


@router.get("/session", response_model=SessionStatusResponse)
async def session_status(manager: SessionManager = Depends(get_session_manager)) -> SessionStatusResponse:
    session = await manager.get_session()
    if session is None:
        return SessionStatusResponse(authenticated=False)
    return SessionStatusResponse(
        authenticated=True,
        user_id=session.identity.id,
        expires_at=session.expires_at,
    )
