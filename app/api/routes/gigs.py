"""
Gig endpoints.

Companies post and manage gigs; anyone signed in can browse open gigs.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db, get_current_user_obj, require_role
from app.core.errors import MarketplaceError
from app.core.plan_limits import ROLE_COMPANY
from app.db.models.user import User
from app.schemas.gig import GigCreate, GigResponse, GigListResponse
from app.services import gig_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gigs", tags=["Gigs"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=GigResponse)
def create_gig(
    gig_data: GigCreate,
    user: User = Depends(require_role(ROLE_COMPANY)),
    db: Session = Depends(get_db)
):
    """
    Post a new gig.

    The first gig of a company is free; later gigs need an active plan with a
    remaining gig slot (402 otherwise).
    """
    try:
        gig = gig_store.create_gig(db, user, gig_data.model_dump())
        return GigResponse.model_validate(gig)
    except MarketplaceError as e:
        db.rollback()
        raise e.to_http_exception()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to create gig: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create gig"
        )


@router.get("", response_model=GigListResponse)
def list_open_gigs(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    """Browse active gigs that still have open slots."""
    gigs = gig_store.list_open_gigs(db, limit=page_size, offset=(page - 1) * page_size)
    return GigListResponse(gigs=[GigResponse.model_validate(g) for g in gigs], total=len(gigs))


@router.get("/mine", response_model=GigListResponse)
def list_my_gigs(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    user: User = Depends(require_role(ROLE_COMPANY)),
    db: Session = Depends(get_db)
):
    gigs = gig_store.list_company_gigs(db, user.id, status=status_filter)
    return GigListResponse(gigs=[GigResponse.model_validate(g) for g in gigs], total=len(gigs))


@router.get("/{gig_id}", response_model=GigResponse)
def get_gig(
    gig_id: int,
    user: User = Depends(get_current_user_obj),
    db: Session = Depends(get_db)
):
    try:
        return GigResponse.model_validate(gig_store.get_gig(db, gig_id))
    except MarketplaceError as e:
        raise e.to_http_exception()


def _transition(db: Session, gig_id: int, user: User, action: str) -> GigResponse:
    try:
        gig = gig_store.transition_gig(db, gig_id, user.id, action)
        return GigResponse.model_validate(gig)
    except MarketplaceError as e:
        db.rollback()
        raise e.to_http_exception()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to {action} gig: gig_id={gig_id}, error={e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {action} gig"
        )


@router.post("/{gig_id}/publish", response_model=GigResponse)
def publish_gig(gig_id: int, user: User = Depends(require_role(ROLE_COMPANY)), db: Session = Depends(get_db)):
    """draft -> active"""
    return _transition(db, gig_id, user, "publish")


@router.post("/{gig_id}/pause", response_model=GigResponse)
def pause_gig(gig_id: int, user: User = Depends(require_role(ROLE_COMPANY)), db: Session = Depends(get_db)):
    """active -> paused; no new applications or acceptances while paused."""
    return _transition(db, gig_id, user, "pause")


@router.post("/{gig_id}/resume", response_model=GigResponse)
def resume_gig(gig_id: int, user: User = Depends(require_role(ROLE_COMPANY)), db: Session = Depends(get_db)):
    return _transition(db, gig_id, user, "resume")


@router.post("/{gig_id}/close", response_model=GigResponse)
def close_gig(gig_id: int, user: User = Depends(require_role(ROLE_COMPANY)), db: Session = Depends(get_db)):
    return _transition(db, gig_id, user, "close")
