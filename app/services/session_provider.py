# backend-server/app/services/session_provider.py
"""
Process-wide authentication state.

The provider is created once per application (see the lifespan in app.main),
handed to consumers through FastAPI dependencies, and is the only writer of the
session registry. Every sign-in opens a `user_sessions` row that stays open
until sign-out or expiry, which is what the dashboards use for "online now" and
attendance history.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from fastapi import HTTPException, status
from jose import JWTError
from starlette.concurrency import run_in_threadpool

from app.core import security
from app.core.config import settings
from app.db import models
from app.db.models import utcnow

logger = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

AuthListener = Callable[[str, "AuthSession"], None]


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    email: str
    session_id: str
    access_token: str
    expires_at: datetime


class SessionProvider:
    def __init__(self, session_factory, heartbeat_seconds: float = settings.SESSION_HEARTBEAT_SECONDS):
        self._session_factory = session_factory
        self._heartbeat_seconds = heartbeat_seconds
        self._sessions: Dict[str, AuthSession] = {}
        self._listeners: List[AuthListener] = []
        self._heartbeat_task: Optional[asyncio.Task] = None

    # --- Lifecycle ---

    async def start(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat())
            logger.info(f"Session heartbeat every {self._heartbeat_seconds}s")

    async def stop(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
            self._heartbeat_task = None
        self._listeners.clear()
        self._sessions.clear()

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            try:
                await self.refresh_sessions()
            except Exception:
                logger.exception("Session heartbeat failed")

    # --- Auth state listeners ---

    def on_auth_state_changed(self, callback: AuthListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: str, auth_session: AuthSession) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, auth_session)
            except Exception:
                logger.exception(f"Auth listener failed on {event}")

    @property
    def active_sessions(self) -> List[AuthSession]:
        return list(self._sessions.values())

    # --- Operations ---

    async def sign_up(self, email: str, password: str, full_name: Optional[str] = None) -> str:
        """ Registers an identity. The profile row is created lazily on first load. """
        def _create():
            with self._session_factory() as db:
                if db.query(models.AuthUser).filter(models.AuthUser.email == email).first():
                    raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
                identity = models.AuthUser(
                    email=email, full_name=full_name,
                    hashed_password=security.get_password_hash(password),
                )
                db.add(identity)
                db.commit()
                return identity.id

        return await run_in_threadpool(_create)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        def _open():
            with self._session_factory() as db:
                identity = db.query(models.AuthUser).filter(models.AuthUser.email == email).first()
                if not identity or not security.verify_password(password, identity.hashed_password):
                    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")
                user_session = models.UserSession(user_id=identity.id, login_time=utcnow())
                db.add(user_session)
                db.commit()
                return identity.id, identity.email, user_session.id, user_session.login_time

        user_id, user_email, session_id, login_time = await run_in_threadpool(_open)
        expires_at = security.token_expiry(login_time)
        token = security.create_access_token({"sub": user_id, "sid": session_id}, expires_at)
        auth_session = AuthSession(user_id, user_email, session_id, token, expires_at)
        self._sessions[session_id] = auth_session
        logger.info(f"Session {session_id} opened for {user_email}")
        self._emit(SIGNED_IN, auth_session)
        return auth_session

    async def get_session(self, token: str) -> Optional[AuthSession]:
        """
        Re-validates a token: signature and expiry, then that its session row is
        still open. Raises JWTError for an unreadable token, returns None for a
        closed session.
        """
        claims = security.decode_access_token(token)
        if not claims.user_id or not claims.session_id:
            raise JWTError("Token is missing its subject or session")

        cached = self._sessions.get(claims.session_id)
        if cached is not None and cached.access_token == token:
            if cached.expires_at > utcnow():
                return cached
            await self._close(cached)
            return None

        def _load():
            with self._session_factory() as db:
                row = db.get(models.UserSession, claims.session_id)
                if row is None or row.user_id != claims.user_id or row.logout_time is not None:
                    return None
                identity = db.get(models.AuthUser, claims.user_id)
                return identity.email if identity else None, row.login_time

        loaded = await run_in_threadpool(_load)
        if loaded is None or loaded[0] is None:
            return None
        email, login_time = loaded
        auth_session = AuthSession(claims.user_id, email, claims.session_id, token, security.token_expiry(login_time))
        self._sessions[claims.session_id] = auth_session
        return auth_session

    async def sign_out(self, auth_session: AuthSession) -> None:
        await self._close(auth_session)

    async def refresh_sessions(self) -> List[AuthSession]:
        """
        Closes expired sessions and forgets ones closed elsewhere. Returns the
        cached sessions dropped. Rows this process never cached are swept too:
        an open row older than the token lifetime is stamped as ending when its
        token expired.
        """
        now = utcnow()
        expired = [s for s in self._sessions.values() if s.expires_at <= now]
        for auth_session in expired:
            await self._close(auth_session)

        open_ids = list(self._sessions)
        cutoff = now - timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

        def _sweep():
            with self._session_factory() as db:
                stale = db.query(models.UserSession).filter(
                    models.UserSession.logout_time.is_(None), models.UserSession.login_time <= cutoff
                ).all()
                for row in stale:
                    row.logout_time = security.token_expiry(row.login_time)
                    row.duration_seconds = max(0, int((row.logout_time - row.login_time).total_seconds()))
                if stale:
                    db.commit()
                still_open = set()
                if open_ids:
                    rows = db.query(models.UserSession.id).filter(
                        models.UserSession.id.in_(open_ids), models.UserSession.logout_time.is_(None)
                    ).all()
                    still_open = {row[0] for row in rows}
                return len(stale), still_open

        swept, still_open = await run_in_threadpool(_sweep)
        if swept:
            logger.info(f"Closed {swept} stale session rows past token expiry")
        dropped = list(expired)
        for session_id in open_ids:
            if session_id in still_open:
                continue
            # sign_out may have removed it while the sweep was running.
            auth_session = self._sessions.pop(session_id, None)
            if auth_session is None:
                continue
            dropped.append(auth_session)
            self._emit(SIGNED_OUT, auth_session)
        return dropped

    async def _close(self, auth_session: AuthSession) -> None:
        def _stamp():
            with self._session_factory() as db:
                row = db.get(models.UserSession, auth_session.session_id)
                if row is None or row.logout_time is not None:
                    return
                row.logout_time = utcnow()
                row.duration_seconds = max(0, int((row.logout_time - row.login_time).total_seconds()))
                db.commit()

        await run_in_threadpool(_stamp)
        self._sessions.pop(auth_session.session_id, None)
        logger.info(f"Session {auth_session.session_id} closed for {auth_session.email}")
        self._emit(SIGNED_OUT, auth_session)
