from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import Cookie, Depends, Header, Response
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import get_db, serialize_doc, to_object_id, utcnow
from errors import AuthenticationError, PermissionDeniedError

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def _encode(claims: dict, secret: str, expires_delta: timedelta) -> str:
    to_encode = claims.copy()
    to_encode.update({"exp": utcnow() + expires_delta})
    return jwt.encode(to_encode, secret, algorithm=config.ALGORITHM)


def create_access_token(user: Dict[str, Any]) -> str:
    claims = {"sub": str(user["_id"]), "email": user["email"], "role": user.get("role", "customer"), "type": "access"}
    return _encode(claims, config.JWT_SECRET, timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))


def create_refresh_token(user: Dict[str, Any]) -> str:
    claims = {"sub": str(user["_id"]), "type": "refresh"}
    return _encode(claims, config.JWT_REFRESH_SECRET, timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS))


def decode_token(token: str, secret: str, token_type: str) -> dict:
    """Verify signature, expiry and token type; raise AuthenticationError otherwise."""
    try:
        payload = jwt.decode(token, secret, algorithms=[config.ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")
    if payload.get("type") != token_type or not payload.get("sub"):
        raise AuthenticationError("Invalid or expired token")
    return payload


def set_token_cookies(response: Response, user: Dict[str, Any]) -> None:
    response.set_cookie(
        ACCESS_COOKIE,
        create_access_token(user),
        max_age=config.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=config.IS_PRODUCTION,
        samesite="lax",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        create_refresh_token(user),
        max_age=config.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=config.IS_PRODUCTION,
        samesite="lax",
    )


def clear_token_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(user)
    # Never send password hash
    user.pop("password_hash", None)
    return user


# Dependencies

def get_token_payload(
    access_token: Optional[str] = Cookie(default=None, alias=ACCESS_COOKIE),
    authorization: Optional[str] = Header(default=None),
) -> dict:
    token = access_token
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1]
    if not token:
        raise AuthenticationError("Authentication required")
    return decode_token(token, config.JWT_SECRET, "access")


def get_current_user(payload: dict = Depends(get_token_payload), db: Database = Depends(get_db)) -> Dict[str, Any]:
    user_id = to_object_id(payload.get("sub"))
    user = db["user"].find_one({"_id": user_id}) if user_id else None
    if not user:
        raise AuthenticationError("User not found")
    return user


def require_admin(current_user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if current_user.get("role") != "admin":
        raise PermissionDeniedError("Insufficient permissions")
    return current_user
