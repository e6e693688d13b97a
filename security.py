import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

import settings
from errors import Unauthorized

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the core: who, and in which role."""

    account_id: str
    role: str


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return pwd_context.verify(password, hashed)


def _encode(data: Dict, secret: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires_delta})
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)


def create_access_token(account_id: str, role: str, email: str, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(
        {"sub": account_id, "role": role, "email": email, "type": ACCESS},
        settings.ACCESS_TOKEN_SECRET,
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    )


def create_refresh_token(account_id: str, expires_delta: Optional[timedelta] = None) -> str:
    return _encode(
        {"sub": account_id, "type": REFRESH, "jti": secrets.token_hex(8)},
        settings.REFRESH_TOKEN_SECRET,
        expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str, token_type: str = ACCESS) -> Dict:
    secret = settings.ACCESS_TOKEN_SECRET if token_type == ACCESS else settings.REFRESH_TOKEN_SECRET
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthorized("Could not validate credentials")
    if payload.get("type") != token_type or not payload.get("sub"):
        raise Unauthorized("Could not validate credentials")
    return payload


def hash_refresh_token(refresh_token: str) -> str:
    return hashlib.sha256(f"{settings.REFRESH_TOKEN_SECRET}:{refresh_token}".encode()).hexdigest()


def is_refresh_token_valid(account: Dict, refresh_token: str) -> bool:
    stored = account.get("refresh_token_hash")
    if not stored or not refresh_token:
        return False
    return stored == hash_refresh_token(refresh_token)
