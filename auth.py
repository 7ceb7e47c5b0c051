import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import collection_name, get_db, to_object_id
from errors import AuthenticationFailure, AuthorizationFailure
from logging_config import set_user_id
from schemas import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def token_for_user(user: Dict[str, Any]) -> str:
    return create_access_token({
        "sub": user.get("email"),
        "role": user.get("role"),
        "ref_id": str(user["_id"]),
    })


def full_name(user: Dict[str, Any]) -> str:
    parts = [user.get("firstName"), user.get("middleName"), user.get("lastName")]
    return " ".join(p for p in parts if p)


def get_current_user(request: Request, db: Database = Depends(get_db)) -> Optional[Dict[str, Any]]:
    """Return the stored user for the bearer token, or None when no usable token is sent."""
    auth = request.headers.get("authorization") or request.headers.get("Authorization")
    if not auth or not auth.lower().startswith("bearer "):
        return None
    token = auth.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        return None
    ref_id = payload.get("ref_id")
    if not ref_id:
        return None
    user = db[collection_name(User)].find_one({"_id": to_object_id(ref_id)})
    if user is None:
        raise AuthenticationFailure("User no longer exists")
    return user


def require_roles(*roles: str):
    async def _dep(user: Optional[Dict[str, Any]] = Depends(get_current_user)):
        if user is None:
            raise AuthenticationFailure()
        # set here, on the request's own context; sync dependencies run on a copy
        set_user_id(str(user["_id"]))
        if user.get("status") not in ("active", "graduated"):
            raise AuthorizationFailure("Your account has been suspended. Please contact administration.")
        if roles and user.get("role") not in roles:
            logger.warning("Role %s refused (allowed: %s)", user.get("role"), ", ".join(roles))
            raise AuthorizationFailure(f"User role '{user.get('role')}' is not authorized to access this route")
        return user
    return _dep
