import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import get_db, to_object_id
from errors import AuthenticationError, ConflictError, NotFoundError
from schemas import User as UserSchema
from security import (
    REFRESH_COOKIE,
    clear_token_cookies,
    decode_token,
    get_token_payload,
    hash_password,
    public_user,
    set_token_cookies,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# Auth models
class RegisterInput(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)


class LoginInput(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


@router.post("/register", status_code=201)
def register(payload: RegisterInput, response: Response, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise ConflictError("Email already in use")
    user_model = UserSchema(
        email=email,
        password_hash=hash_password(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        role="customer",
    )
    try:
        result = db["user"].insert_one(user_model.model_dump())
    except DuplicateKeyError:
        raise ConflictError("Email already in use")
    user = db["user"].find_one({"_id": result.inserted_id})
    logger.info("Registered user %s", result.inserted_id)
    set_token_cookies(response, user)
    return {"user": public_user(user)}


@router.post("/login")
def login(payload: LoginInput, response: Response, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.info("Failed login for %s", payload.email.lower())
        raise AuthenticationError("Invalid credentials")
    set_token_cookies(response, user)
    return {"user": public_user(user)}


@router.post("/logout")
def logout(response: Response):
    clear_token_cookies(response)
    return {"message": "Logged out"}


@router.post("/refresh")
def refresh(
    response: Response,
    refresh_token: Optional[str] = Cookie(default=None, alias=REFRESH_COOKIE),
    db: Database = Depends(get_db),
):
    if not refresh_token:
        raise AuthenticationError("Refresh token required")
    try:
        payload = decode_token(refresh_token, config.JWT_REFRESH_SECRET, "refresh")
    except AuthenticationError:
        return _reject("Invalid or expired refresh token")
    user_id = to_object_id(payload["sub"])
    user = db["user"].find_one({"_id": user_id}) if user_id else None
    if not user:
        return _reject("User not found")
    set_token_cookies(response, user)
    return {"user": public_user(user)}


@router.get("/me")
def me(payload: dict = Depends(get_token_payload), db: Database = Depends(get_db)):
    user_id = to_object_id(payload["sub"])
    user = db["user"].find_one({"_id": user_id}) if user_id else None
    if not user:
        raise NotFoundError("User not found")
    return {"user": public_user(user)}


def _reject(detail: str) -> JSONResponse:
    # Returned instead of raised: cookies on the injected Response are lost on raise
    response = JSONResponse(status_code=401, content={"error": detail})
    clear_token_cookies(response)
    return response
