"""
Request dependencies: database session, authenticated user, role checks.
"""
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.orm import Session
from app.core.errors import ForbiddenError
from app.core.security import decode_access_token
from app.db.session import SessionLocal
from app.db.models.user import User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_db():
    """One session per request, closed after the response."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_current_user_obj(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the bearer token to a User row."""
    try:
        claims = decode_access_token(token)
    except JWTError:
        raise _unauthorized("Invalid token")

    user = db.query(User).filter(User.email == claims["sub"]).first()
    if not user:
        raise _unauthorized("User no longer exists")
    return user


def require_role(role: str):
    """Dependency factory: the authenticated user must hold `role`."""
    def _check(user: User = Depends(get_current_user_obj)) -> User:
        if user.role != role:
            raise ForbiddenError(f"This action requires a {role} account", code="ROLE_NOT_ALLOWED").to_http_exception()
        return user
    return _check
