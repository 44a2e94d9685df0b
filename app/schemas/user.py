# backend-server/app/schemas/user.py
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Literal, Optional
from datetime import datetime

Role = Literal["user", "admin"]
Availability = Literal["available", "unavailable"]


class SignUp(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    full_name: Optional[str] = None


class Profile(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    role: Role
    organization_id: Optional[str] = None
    department_id: Optional[str] = None
    availability_status: Availability
    working_hours: Optional[float] = None
    last_seen: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileUpdate(BaseModel):
    full_name: str

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()


class AvailabilityUpdate(BaseModel):
    available: bool


class TeamStatus(BaseModel):
    available: int = 0
    total: int = 0


class AvailabilityResult(BaseModel):
    profile: Profile
    team: TeamStatus


class PasswordUpdate(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


class UserUpdate(BaseModel):
    """ Admin edit: department ("none" clears it), monthly working hours and role. """
    department_id: Optional[str] = None
    working_hours: Optional[float] = Field(default=None, ge=0)
    role: Optional[Role] = None

    @field_validator("department_id")
    @classmethod
    def none_clears_department(cls, value: Optional[str]) -> Optional[str]:
        if value in ("", "none"):
            return None
        return value


class Invite(BaseModel):
    email: EmailStr


class SessionEntry(BaseModel):
    login_time: datetime
    logout_time: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    class Config:
        from_attributes = True
