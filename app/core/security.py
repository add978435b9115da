import logging
import bcrypt
from datetime import timedelta
from typing import Optional
from jose import jwt, JWTError
from app.core.clock import utcnow
from app.core.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES

logger = logging.getLogger(__name__)

BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    """
    Hash a password with bcrypt.

    Passwords over 72 bytes are rejected by the signup schema; this refuses
    them too instead of silently truncating.

    Raises:
        ValueError: If the password cannot be hashed
    """
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > BCRYPT_MAX_BYTES:
        raise ValueError("Password too long (bcrypt limit 72 bytes)")
    try:
        return bcrypt.hashpw(password_bytes, bcrypt.gensalt()).decode("utf-8")
    except ValueError as e:
        logger.error(f"Password hashing failed: {e}")
        raise ValueError("Invalid password") from e


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > BCRYPT_MAX_BYTES:
        return False
    try:
        return bcrypt.checkpw(password_bytes, hashed.encode("utf-8"))
    except ValueError as e:
        logger.warning(f"Password verification failed: {e}")
        return False


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and validate a bearer token.

    Raises:
        JWTError: Bad signature, expired, or missing the subject claim
    """
    claims = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    if not claims.get("sub"):
        raise JWTError("Token has no subject")
    return claims
