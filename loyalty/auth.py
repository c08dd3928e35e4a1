import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from jose import jwt, JWTError
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from .config import Settings
from .deps import get_settings, get_storage
from .errors import AuthError
from .schemas import UserCredentials
from .storage import Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["auth"])

# Use Argon2 for new password hashes; bcrypt stays in the context so hashes
# created with it still verify.
pwd_context = CryptContext(schemes=["argon2", "bcrypt"], deprecated="auto")

TOKEN_COOKIE = "gm_token"


# 🔐 Утилиты
def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (UnknownHashError, ValueError):
        # Unrecognised or corrupted hash -> treat as authentication failure
        return False


def create_access_token(user_id: int, settings: Settings) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {"sub": str(user_id), "exp": expire}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> Optional[int]:
    """User id from a token, or None when the token is invalid or expired."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        return None


def _issue_token(response: Response, user_id: int, settings: Settings) -> dict:
    token = create_access_token(user_id, settings)
    response.set_cookie(
        TOKEN_COOKIE, token,
        max_age=settings.access_token_expire_minutes * 60, path="/", httponly=True,
    )
    response.headers["Authorization"] = f"Bearer {token}"
    return {"access_token": token, "token_type": "bearer"}


# ✅ Регистрация пользователя
@router.post("/register")
async def register_user(
    payload: UserCredentials,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    # ConflictError for a taken login is turned into 409 by the app's error handler
    user = await storage.create_user(payload.login, get_password_hash(payload.password))
    logger.info("registered user %s (id=%d)", user.login, user.id)
    return _issue_token(response, user.id, settings)


# ✅ Логин
@router.post("/login")
async def login_user(
    payload: UserCredentials,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    user = await storage.get_user_by_login(payload.login)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid login or password",
        )
    return _issue_token(response, user.id, settings)


# ✅ Проверка токена
async def get_current_user(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> int:
    """Id of the caller, taken from the Authorization header or the auth cookie."""
    token = None
    auth = request.headers.get("Authorization")
    if auth and auth.lower().startswith("bearer "):
        token = auth.split(None, 1)[1].strip()
    if not token:
        token = request.cookies.get(TOKEN_COOKIE)
    if not token:
        raise AuthError("missing or invalid token")

    user_id = decode_access_token(token, settings)
    if user_id is None or await storage.get_user(user_id) is None:
        raise AuthError("missing or invalid token")
    return user_id
