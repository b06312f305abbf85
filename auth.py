import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import get_db, store_errors, to_object_id
from services import AuthService
from settings import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ADMIN_LOGIN_PATH,
    ALGORITHM,
    SECRET_KEY,
    USER_LOGIN_PATH,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
# auto_error off: a missing token is a redirect, not a 401
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth", auto_error=False)


class LoginRedirect(Exception):
    """Raised when a view needs a session it does not have; rendered as a 303."""

    def __init__(self, location: str, detail: Optional[str] = None):
        self.location = location
        self.detail = detail


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def authenticate_user(db, email: str, password: str):
    user = AuthService(db).find_by_email(email)
    if not user or not verify_password(password, user.get("password_hash", "")):
        return None
    return user


def get_current_user(token: Optional[str] = Depends(oauth2_scheme), db=Depends(get_db)):
    """Resolve the session to a user document, or None when there is no valid session."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = to_object_id(payload.get("sub"))
    if user_id is None:
        return None
    with store_errors("Failed to resolve session"):
        return db["users"].find_one({"_id": user_id})


def require_user(user=Depends(get_current_user)):
    if user is None:
        raise LoginRedirect(USER_LOGIN_PATH)
    return user


# Admin guard
def require_admin(user=Depends(get_current_user), db=Depends(get_db)):
    # no session and no admin role redirect identically
    if user is None:
        raise LoginRedirect(ADMIN_LOGIN_PATH)
    if not AuthService(db).is_admin(str(user["_id"])):
        logger.info(f"Admin access refused for user {user['_id']}")
        raise LoginRedirect(ADMIN_LOGIN_PATH)
    return user
