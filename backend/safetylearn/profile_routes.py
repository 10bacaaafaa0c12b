"""Endpoints for the signed-in user's profile, progress and achievements."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from .errors import (
    NOT_AUTHENTICATED_MESSAGE,
    PROGRESS_MISSING_MESSAGE,
    TRANSIENT_FAILURE_MESSAGE,
)
from .profile_sync import CONCURRENT_UPDATE_MESSAGE, MutationResult
from .services import get_session_manager
from .session_manager import SessionManager
from .user_profile import ProfileUpdate, UnlockedAchievement, User

router = APIRouter(prefix="/api/me", tags=["profile"])
logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    NOT_AUTHENTICATED_MESSAGE: status.HTTP_401_UNAUTHORIZED,
    PROGRESS_MISSING_MESSAGE: status.HTTP_404_NOT_FOUND,
    CONCURRENT_UPDATE_MESSAGE: status.HTTP_409_CONFLICT,
    TRANSIENT_FAILURE_MESSAGE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _raise_for_result(result: MutationResult) -> None:
    if result.error is None:
        return
    if result.error.startswith("Invalid "):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = _ERROR_STATUS.get(result.error, status.HTTP_500_INTERNAL_SERVER_ERROR)
    logger.info("Request failed with %s: %s", code, result.error)
    raise HTTPException(status_code=code, detail=result.error)


async def _require_user(manager: SessionManager) -> User:
    user = await manager.get_current_user()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=NOT_AUTHENTICATED_MESSAGE)
    return user


@router.get("", response_model=User)
async def current_user(manager: SessionManager = Depends(get_session_manager)) -> User:
    return await _require_user(manager)


@router.patch("/profile", response_model=User)
async def update_profile(
    payload: ProfileUpdate,
    manager: SessionManager = Depends(get_session_manager),
) -> User:
    result = await manager.synchronizer.update_profile(payload)
    _raise_for_result(result)
    return await _require_user(manager)


@router.post("/lessons/{lesson_id}/complete", response_model=User)
async def complete_lesson(
    lesson_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> User:
    result = await manager.synchronizer.complete_lesson(lesson_id)
    _raise_for_result(result)
    return await _require_user(manager)


@router.get("/achievements", response_model=List[UnlockedAchievement])
async def list_achievements(manager: SessionManager = Depends(get_session_manager)) -> List[UnlockedAchievement]:
    user = await _require_user(manager)
    return user.achievements
