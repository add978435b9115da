import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db
from app.core.security import hash_password, verify_password, create_access_token
from app.db.models.user import User
from app.schemas.auth import SignupRequest, SignupResponse, TokenResponse
from app.services.subscription_ledger import get_or_create_subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/signup", status_code=status.HTTP_201_CREATED, response_model=SignupResponse)
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    """
    Register a company or freelancer.

    The subscription ledger row is created with status 'none'; companies can
    post their first gig right away, freelancers need a plan to apply.
    """
    existing_user = db.query(User).filter(User.email == payload.email).first()
    if existing_user:
        raise HTTPException(status_code=400, detail="Email already registered")

    try:
        hashed = hash_password(payload.password)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid password")

    user = User(
        full_name=payload.full_name,
        email=payload.email,
        password_hash=hashed,
        role=payload.role,
    )
    db.add(user)
    db.flush()
    get_or_create_subscription(db, user.id, user.role)
    db.commit()
    db.refresh(user)

    logger.info(f"User signed up: user_id={user.id}, role={user.role}")
    return SignupResponse(message="User created successfully", user_id=user.id, role=user.role)


@router.post("/login", response_model=TokenResponse)
def login(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
):
    # Swagger sends "username", but we treat it as email
    user = db.query(User).filter(User.email == form_data.username).first()

    if not user or not verify_password(form_data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_access_token({"sub": user.email, "role": user.role})
    return TokenResponse(access_token=token, role=user.role)
