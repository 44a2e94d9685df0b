# backend-server/app/api/v1/endpoints/users.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db import models, session
from app.db.models import utcnow
from app.core import security
from app.schemas import dashboard as dashboard_schema
from app.schemas import user as user_schema
from app.schemas import work as work_schema
from app.services import aggregation, join_requests

logger = logging.getLogger(__name__)

router = APIRouter()

@router.get("/me", response_model=user_schema.Profile)
def read_user_me(current_user: models.Profile = Depends(security.get_current_user)):
    """
    Get the profile of the currently logged-in user.
    """
    return current_user

@router.put("/me", response_model=user_schema.Profile)
def update_user_me(
    updates: user_schema.ProfileUpdate,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    current_user.full_name = updates.full_name
    session.commit_or_400(db)
    db.refresh(current_user)
    return current_user

@router.put("/me/availability", response_model=user_schema.AvailabilityResult)
def update_availability(
    update: user_schema.AvailabilityUpdate,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    """
    Sets the caller available or unavailable and stamps last_seen. The team
    count in the response is adjusted locally instead of re-reading the dashboard.
    """
    if current_user.organization_id:
        team = db.query(models.Profile).filter(models.Profile.organization_id == current_user.organization_id).all()
    else:
        team = [current_user]
    before = aggregation.team_status(team)

    old_status = current_user.availability_status
    new_status = "available" if update.available else "unavailable"
    current_user.availability_status = new_status
    current_user.last_seen = utcnow()
    session.commit_or_400(db)
    db.refresh(current_user)
    logger.info(f"{current_user.email} is now {new_status}")

    return {
        "profile": current_user,
        "team": aggregation.team_status_after_toggle(before, old_status, new_status),
    }

@router.put("/me/password", status_code=status.HTTP_204_NO_CONTENT)
def update_user_password(
    passwords: user_schema.PasswordUpdate,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    """
    Allows a logged-in user to change their own password.
    """
    identity = db.get(models.AuthUser, current_user.id)
    if not identity or not security.verify_password(passwords.current_password, identity.hashed_password):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Incorrect current password")

    identity.hashed_password = security.get_password_hash(passwords.new_password)
    session.commit_or_400(db)
    return

# --- Invitations ---

@router.get("/me/invitations", response_model=List[dashboard_schema.InvitationView])
def read_invitations(
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    """ Pending invitations addressed to the caller, newest first. """
    rows = (
        db.query(models.JoinRequest, models.Organization.name)
        .join(models.Organization, models.JoinRequest.organization_id == models.Organization.id)
        .filter(models.JoinRequest.user_id == current_user.id, models.JoinRequest.status == join_requests.PENDING)
        .order_by(models.JoinRequest.created_at.desc())
        .all()
    )
    return [
        dashboard_schema.InvitationView(
            id=r.id, user_id=r.user_id, organization_id=r.organization_id,
            status=r.status, created_at=r.created_at, organization_name=name,
        )
        for r, name in rows
    ]

@router.post("/me/invitations/{request_id}/approve", response_model=work_schema.JoinRequest)
def approve_invitation(
    request_id: str,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    return join_requests.approve(db, request_id, current_user)

@router.post("/me/invitations/{request_id}/deny", response_model=work_schema.JoinRequest)
def deny_invitation(
    request_id: str,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    return join_requests.deny(db, request_id, current_user)

# --- Performance ---

@router.get("/me/performance", response_model=dashboard_schema.PerformanceMetrics)
def read_my_performance(
    period: dashboard_schema.Period = "month",
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    return aggregation.load_performance(db, current_user, period)
