# backend-server/app/schemas/token.py
from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class Token(BaseModel):
    access_token: str
    token_type: str
    session_id: str
    expires_at: datetime

class TokenData(BaseModel):
    user_id: Optional[str] = None
    session_id: Optional[str] = None
