# backend-server/app/services/join_requests.py
# Invitation workflow: pending -> approved | denied. A terminal request only
# leaves its state through a re-invite, which resets it to pending.
import enum
import logging
from typing import Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from app.db import models
from app.db.models import utcnow
from app.db.session import commit_or_400

logger = logging.getLogger(__name__)

PENDING = "pending"
APPROVED = "approved"
DENIED = "denied"


class InviteOutcome(str, enum.Enum):
    SENT = "sent"
    RESENT = "resent"
    ALREADY_INVITED = "already_invited"


def find_invitee(db: Session, email: str) -> models.Profile:
    """ Looks a user up by e-mail; only users outside any organization can be invited. """
    user = db.query(models.Profile).filter(models.Profile.email == email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No user found with this email address.")
    if user.organization_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="This user is already part of an organization.")
    return user


def latest_request(db: Session, user_id: str, organization_id: str) -> Optional[models.JoinRequest]:
    """ The most recently created request is the authoritative one for a (user, organization) pair. """
    return (
        db.query(models.JoinRequest)
        .filter(models.JoinRequest.user_id == user_id, models.JoinRequest.organization_id == organization_id)
        .order_by(models.JoinRequest.created_at.desc())
        .first()
    )


def send_invite(db: Session, organization_id: str, user_id: str) -> Tuple[InviteOutcome, models.JoinRequest]:
    existing = latest_request(db, user_id, organization_id)
    if existing is not None:
        if existing.status == PENDING:
            return InviteOutcome.ALREADY_INVITED, existing
        existing.status = PENDING
        existing.created_at = utcnow()
        commit_or_400(db)
        db.refresh(existing)
        logger.info(f"Re-sent invitation {existing.id} to user {user_id}")
        return InviteOutcome.RESENT, existing

    request = models.JoinRequest(user_id=user_id, organization_id=organization_id, status=PENDING)
    db.add(request)
    commit_or_400(db)
    db.refresh(request)
    logger.info(f"Sent invitation {request.id} to user {user_id}")
    return InviteOutcome.SENT, request


def _pending_request_for(db: Session, request_id: str, user: models.Profile) -> models.JoinRequest:
    request = db.get(models.JoinRequest, request_id)
    if request is None or request.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")
    if request.status != PENDING:
        logger.warning(f"Rejected transition of {request.status} invitation {request.id}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Invitation is already {request.status}")
    return request


def approve(db: Session, request_id: str, user: models.Profile) -> models.JoinRequest:
    """ Accepts the invitation and moves the user into the organization. """
    request = _pending_request_for(db, request_id, user)
    if user.organization_id and user.organization_id != request.organization_id:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You already belong to an organization.")
    request.status = APPROVED
    user.organization_id = request.organization_id
    commit_or_400(db)
    db.refresh(request)
    return request


def deny(db: Session, request_id: str, user: models.Profile) -> models.JoinRequest:
    request = _pending_request_for(db, request_id, user)
    request.status = DENIED
    commit_or_400(db)
    db.refresh(request)
    return request
