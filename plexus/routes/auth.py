from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel, EmailStr, Field

from ..logging_config import logger
from ..models.schemas import SessionResponse
from ..services.container import Services
from ..utils.auth import get_current_user_id, get_services

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    display_name: str | None = Field(default=None, max_length=120)


@router.post("/signup", status_code=201, response_model=SessionResponse)
async def signup(payload: SignupRequest, services: Services = Depends(get_services)) -> SessionResponse:
    store = services.store
    if store.email_exists(payload.email):
        raise HTTPException(status_code=409, detail={"error_code": "ACCOUNT_EXISTS", "message": "An account with this email already exists"})
    friendly_name = payload.display_name or payload.email.split("@", 1)[0].replace(".", " ").title()
    user = store.register(str(uuid.uuid4()), email=payload.email, display_name=friendly_name, password=payload.password)
    logger.info("auth.signup", user_id=user.id)
    return SessionResponse(token=store.issue_session_token(user.id), user=user)


@router.post("/login", response_model=SessionResponse)
async def login(payload: LoginRequest, services: Services = Depends(get_services)) -> SessionResponse:
    user_id = services.store.authenticate(payload.email, payload.password)
    if not user_id:
        raise HTTPException(status_code=401, detail={"error_code": "AUTH_FAILED", "message": "Invalid credentials"})
    user = await services.store.load(user_id)
    return SessionResponse(token=services.store.issue_session_token(user_id), user=user)


@router.post("/logout", status_code=204)
async def logout(
    authorization: str = Header(...),
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
) -> None:
    services.store.revoke_session_token(authorization[len("Bearer "):].strip())
    logger.info("auth.logout", user_id=user_id)
