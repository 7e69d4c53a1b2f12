"""
Authentication

Password hashing, bearer token issue/decode, and the FastAPI dependencies
that resolve a request to the stored user or admin.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, ExpiredSignatureError, JWTError
from passlib.context import CryptContext

import settings
from database import collection, get_document_by_id, now
from errors import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

# Use pbkdf2_sha256 to avoid bcrypt backend issues in some environments
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# auto_error=False so a missing header is reported as 401 rather than 403
bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # stored value is not a recognised hash
        return False


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    to_encode = data.copy()
    minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    to_encode["exp"] = now() + timedelta(minutes=minutes)
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except JWTError:
        raise Unauthorized("Invalid token")


def token_for(user: dict) -> str:
    return create_access_token({"sub": str(user["_id"]), "is_admin": bool(user.get("is_admin", False))})


def authenticate(email: str, password: str) -> dict:
    user = collection("user").find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password_hash")):
        logger.warning("Failed login for %s", email)
        raise Unauthorized("Invalid credentials")
    return user


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> dict:
    """Resolve the bearer token to the stored user document"""
    if credentials is None or not credentials.credentials:
        raise Unauthorized()
    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token payload")
    user = get_document_by_id("user", user_id)
    if not user:
        raise Unauthorized("User not found")
    return user


def get_current_admin(user: dict = Depends(get_current_user)) -> dict:
    # role is read from the stored user, so a demotion takes effect immediately
    if not user.get("is_admin"):
        raise Forbidden("Admin only")
    return user
