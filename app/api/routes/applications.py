"""
Application endpoints: apply, review, accept, reject.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from app.core.auth_dependency import get_db, require_role
from app.core.errors import MarketplaceError
from app.core.plan_limits import ROLE_COMPANY, ROLE_FREELANCER
from app.db.models.user import User
from app.schemas.application import (
    ApplicationCreate,
    ApplicationResponse,
    ApplicationListResponse,
    AcceptResponse,
    RejectRequest,
)
from app.services import application_workflow
from app.services.escrow_coordinator import EscrowCoordinator, get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Applications"])


@router.post("/gigs/{gig_id}/applications", status_code=status.HTTP_201_CREATED, response_model=ApplicationResponse)
def apply_to_gig(
    gig_id: int,
    payload: ApplicationCreate,
    user: User = Depends(require_role(ROLE_FREELANCER)),
    db: Session = Depends(get_db)
):
    """
    Apply to a gig. Consumes one application slot from the freelancer's plan.
    """
    try:
        application = application_workflow.apply_to_gig(
            db, gig_id, user, iterations=payload.iterations, cover_letter=payload.cover_letter
        )
        return ApplicationResponse.model_validate(application)
    except MarketplaceError as e:
        db.rollback()
        raise e.to_http_exception()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to apply: gig_id={gig_id}, error={e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to submit application"
        )


@router.get("/gigs/{gig_id}/applications", response_model=ApplicationListResponse)
def list_gig_applications(
    gig_id: int,
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by status"),
    user: User = Depends(require_role(ROLE_COMPANY)),
    db: Session = Depends(get_db)
):
    """Applications for an owned gig, priority applicants first."""
    try:
        applications = application_workflow.list_gig_applications(db, gig_id, user, status=status_filter)
    except MarketplaceError as e:
        raise e.to_http_exception()
    return ApplicationListResponse(
        applications=[ApplicationResponse.model_validate(a) for a in applications],
        total=len(applications),
    )


@router.post("/gigs/{gig_id}/applications/{freelancer_id}/accept", response_model=AcceptResponse)
def accept_application(
    gig_id: int,
    freelancer_id: int,
    user: User = Depends(require_role(ROLE_COMPANY)),
    db: Session = Depends(get_db),
    coordinator: EscrowCoordinator = Depends(get_coordinator),
):
    """
    Accept an applicant.

    Holds a slot and returns an escrow handle to pay against, or accepts
    immediately for gigs that do not require escrow.
    """
    try:
        result = application_workflow.accept_application(db, gig_id, freelancer_id, user, coordinator)
        return AcceptResponse(**result)
    except MarketplaceError as e:
        db.rollback()
        raise e.to_http_exception()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to accept: gig_id={gig_id}, freelancer_id={freelancer_id}, error={e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to accept application"
        )


@router.post("/gigs/{gig_id}/applications/{freelancer_id}/reject", response_model=ApplicationResponse)
def reject_application(
    gig_id: int,
    freelancer_id: int,
    payload: Optional[RejectRequest] = None,
    user: User = Depends(require_role(ROLE_COMPANY)),
    db: Session = Depends(get_db)
):
    try:
        application = application_workflow.reject_application(
            db, gig_id, freelancer_id, user, reason=payload.reason if payload else None
        )
        return ApplicationResponse.model_validate(application)
    except MarketplaceError as e:
        db.rollback()
        raise e.to_http_exception()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to reject: gig_id={gig_id}, freelancer_id={freelancer_id}, error={e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reject application"
        )


@router.get("/applications/mine", response_model=ApplicationListResponse)
def list_my_applications(
    user: User = Depends(require_role(ROLE_FREELANCER)),
    db: Session = Depends(get_db)
):
    applications = application_workflow.list_freelancer_applications(db, user)
    return ApplicationListResponse(
        applications=[ApplicationResponse.model_validate(a) for a in applications],
        total=len(applications),
    )
