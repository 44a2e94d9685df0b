# backend-server/app/services/profiles.py
import logging

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db import models

logger = logging.getLogger(__name__)


def ensure_profile(db: Session, user_id: str) -> models.Profile:
    """
    Returns the caller's profile, creating it on first load from the identity
    record with role "user" and availability "unavailable".
    """
    profile = db.get(models.Profile, user_id)
    if profile is not None:
        return profile

    identity = db.get(models.AuthUser, user_id)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user identity")

    profile = models.Profile(
        id=identity.id,
        email=identity.email,
        full_name=identity.full_name or "",
        role="user",
        availability_status="unavailable",
    )
    db.add(profile)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first.
        db.rollback()
        profile = db.get(models.Profile, user_id)
        if profile is None:
            raise
        return profile

    db.refresh(profile)
    logger.info(f"Created profile for {identity.email}")
    return profile
