# backend-server/app/db/session.py
import logging

from fastapi import HTTPException, status
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.core.config import settings
from app.db.changefeed import ChangeFeed, FEED_KEY

logger = logging.getLogger(__name__)

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    # Dashboard queries run on threadpool workers.
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,  # Verify connections before use
    connect_args=connect_args,
)

# Every session made by SessionLocal publishes its committed changes here.
change_feed = ChangeFeed()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, info={FEED_KEY: change_feed})


# dependency for database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory():
    return SessionLocal


def get_change_feed():
    return change_feed


def commit_or_400(db):
    """ Commits a mutation; a database error rolls back and is reported with its message. """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Write failed: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(getattr(e, "orig", None) or e))
