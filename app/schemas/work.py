# backend-server/app/schemas/work.py
# Request and response models for organizations, departments, work allotments,
# tasks, daily logs and join requests.
from pydantic import AfterValidator, BaseModel, Field, field_validator, model_validator
from typing import Annotated, Dict, List, Literal, Optional
from datetime import date, datetime

TaskStatus = Literal["todo", "in_progress", "done"]
JoinStatus = Literal["pending", "approved", "denied"]


def _required_text(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


RequiredText = Annotated[str, AfterValidator(_required_text)]
OptionalText = Annotated[Optional[str], AfterValidator(_optional_text)]


# --- Organizations & departments ---

class OrganizationCreate(BaseModel):
    name: RequiredText
    description: OptionalText = None


class OrganizationUpdate(OrganizationCreate):
    pass


class Organization(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DepartmentCreate(BaseModel):
    name: RequiredText


class DepartmentUpdate(DepartmentCreate):
    pass


class Department(BaseModel):
    id: str
    name: str
    organization_id: str

    class Config:
        from_attributes = True


# --- Work allotments ---

class WorkAllotmentCreate(BaseModel):
    title: RequiredText
    description: OptionalText = None
    department_id: Optional[str] = None
    target_hours: float = Field(gt=0)
    start_date: date
    end_date: Optional[date] = None

    @field_validator("department_id")
    @classmethod
    def none_means_unassigned(cls, value: Optional[str]) -> Optional[str]:
        return None if value in ("", "none") else value

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date.")
        return self


class WorkAllotment(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    organization_id: str
    department_id: Optional[str] = None
    target_hours: float
    start_date: date
    end_date: Optional[date] = None

    class Config:
        from_attributes = True


# --- Tasks ---

class TaskAssign(BaseModel):
    """ One task definition fanned out to every selected user. """
    title: RequiredText
    description: OptionalText = None
    allotment_id: str
    hours: float = Field(default=0, ge=0)
    user_ids: List[str] = Field(min_length=1)
    # Optional monthly allocation per selected user, stored for the current month.
    monthly_hours: Dict[str, float] = Field(default_factory=dict)

    @field_validator("user_ids")
    @classmethod
    def unique_users(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))

    @field_validator("monthly_hours")
    @classmethod
    def non_negative_hours(cls, value: Dict[str, float]) -> Dict[str, float]:
        for hours in value.values():
            if hours < 0 or hours > 200:
                raise ValueError("monthly hours must be between 0 and 200")
        return value


class Task(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: TaskStatus
    allotment_id: str
    user_id: str
    organization_id: str
    hours: float
    created_at: datetime

    class Config:
        from_attributes = True


class TaskStatusUpdate(BaseModel):
    status: TaskStatus


# --- Daily logs ---

class DailyLogCreate(BaseModel):
    """
    A log is filed against an existing task of the caller, or against a new
    task created from the log when `new_task_title` and `allotment_id` are given.
    """
    task_id: Optional[str] = None
    new_task_title: OptionalText = None
    allotment_id: Optional[str] = None
    hours_spent: float = Field(gt=0, le=24)
    log_date: date = Field(default_factory=date.today)
    tasks_completed: RequiredText

    @model_validator(mode="after")
    def task_or_new_task(self):
        if self.task_id is None and not (self.new_task_title and self.allotment_id):
            raise ValueError("Select a task or give a title and allotment for a new one.")
        return self


class DailyLog(BaseModel):
    id: str
    user_id: str
    task_id: str
    log_date: date
    hours_spent: float
    tasks_completed: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TaskLogEntry(BaseModel):
    log_date: date
    tasks_completed: Optional[str] = None
    hours_spent: float

    class Config:
        from_attributes = True


# --- Join requests ---

class JoinRequest(BaseModel):
    id: str
    user_id: str
    organization_id: str
    status: JoinStatus
    created_at: datetime

    class Config:
        from_attributes = True


class InviteResult(BaseModel):
    outcome: Literal["sent", "resent"]
    request: JoinRequest
