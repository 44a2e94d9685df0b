# backend-server/app/api/v1/endpoints/auth.py
from fastapi import APIRouter, Depends, status
from fastapi.security import OAuth2PasswordRequestForm

from app.core import security
from app.schemas import token as token_schema
from app.schemas import user as user_schema

router = APIRouter()

@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(user_in: user_schema.SignUp, provider=Depends(security.get_session_provider)):
    """ Registers a new identity. Sign in afterwards through /auth/token. """
    user_id = await provider.sign_up(user_in.email, user_in.password, user_in.full_name)
    return {"id": user_id, "email": user_in.email}

@router.post("/token", response_model=token_schema.Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), provider=Depends(security.get_session_provider)):
    auth_session = await provider.sign_in(form_data.username, form_data.password)
    return {
        "access_token": auth_session.access_token,
        "token_type": "bearer",
        "session_id": auth_session.session_id,
        "expires_at": auth_session.expires_at,
    }

@router.get("/session")
async def read_session(auth_session=Depends(security.get_current_session)):
    return {
        "user_id": auth_session.user_id,
        "email": auth_session.email,
        "session_id": auth_session.session_id,
        "expires_at": auth_session.expires_at,
    }

@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(auth_session=Depends(security.get_current_session), provider=Depends(security.get_session_provider)):
    """ Closes the session row; open dashboards of this session are disconnected. """
    await provider.sign_out(auth_session)
    return
