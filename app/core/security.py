# backend-server/app/core/security.py
# Handles password hashing, JWTs, and all role-checking dependencies.
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from jose import JWTError, jwt
from passlib.context import CryptContext
from datetime import datetime, timedelta

from app.db import models, session
from app.core.config import settings
from app.schemas import token as token_schema
from app.services import profiles

# --- Password Hashing ---
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")
def verify_password(plain: str, hashed: str) -> bool: return pwd_context.verify(plain, hashed)
def get_password_hash(pwd: str) -> str: return pwd_context.hash(pwd)

# --- JWT Creation ---
def create_access_token(data: dict, expires_at: datetime) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": expires_at})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

def token_expiry(now: datetime) -> datetime:
    return now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

def decode_access_token(token: str) -> token_schema.TokenData:
    """ Raises JWTError for a malformed, forged or expired token. """
    payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    return token_schema.TokenData(user_id=payload.get("sub"), session_id=payload.get("sid"))

# --- Role-Checking Dependencies ---
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")

def get_session_provider(request: Request):
    return request.app.state.session_provider

async def get_current_session(token: str = Depends(oauth2_scheme), provider=Depends(get_session_provider)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        auth_session = await provider.get_session(token)
    except JWTError:
        raise credentials_exception
    if auth_session is None:
        raise credentials_exception
    return auth_session

def get_current_user(auth_session=Depends(get_current_session), db: Session = Depends(session.get_db)) -> models.Profile:
    return profiles.ensure_profile(db, auth_session.user_id)

def get_current_admin_user(current_user: models.Profile = Depends(get_current_user)):
    if current_user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not enough permissions for this resource")
    if current_user.organization_id is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Please contact your system administrator to assign you to an organization.")
    return current_user
