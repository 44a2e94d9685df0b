# backend-server/app/schemas/dashboard.py
from pydantic import BaseModel
from typing import List, Literal, Optional
from datetime import date, datetime

from app.schemas.user import Profile, SessionEntry, TeamStatus
from app.schemas.work import Department, JoinRequest, Organization

Period = Literal["week", "month", "quarter"]


# --- Performance metrics ---

class MonthlyHoursSummary(BaseModel):
    current: float = 0
    target: float = 0
    percentage: float = 0
    remaining: float = 0

    class Config:
        frozen = True


class PerformanceMetrics(BaseModel):
    period: Period
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    todo_tasks: int = 0
    completion_rate: float = 0
    total_hours_logged: float = 0
    period_hours: float = 0
    period_tasks_completed: int = 0
    average_hours_per_day: float = 0
    productivity_score: float = 0
    monthly_hours: MonthlyHoursSummary = MonthlyHoursSummary()

    class Config:
        frozen = True


class AttendanceDay(BaseModel):
    date: date
    hours: float

    class Config:
        frozen = True


# --- Dashboard snapshot pieces ---

class TaskView(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    status: str
    hours: float = 0
    allotment_id: str
    allotment_title: str
    user_id: str
    assignee_name: str
    created_at: datetime


class LogView(BaseModel):
    id: str
    task_id: str
    task_title: str
    log_date: date
    hours_spent: float
    tasks_completed: Optional[str] = None


class MemberView(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    role: str
    department_id: Optional[str] = None
    department_name: str
    availability_status: str
    working_hours: Optional[float] = None
    last_seen: Optional[datetime] = None


class DepartmentView(Department):
    member_count: int = 0


class AllotmentView(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    department_id: Optional[str] = None
    department_name: str
    target_hours: float
    start_date: date
    end_date: Optional[date] = None
    task_count: int = 0
    monthly_logged_hours: float = 0
    progress_percentage: int = 0
    remaining_hours: float = 0


class InvitationView(JoinRequest):
    organization_name: str


class JoinRequestView(JoinRequest):
    user_email: str
    user_name: Optional[str] = None


class ActivityItem(BaseModel):
    id: str
    type: Literal["login", "logout", "task_created", "work_log"]
    at: datetime
    message: str


class OnlineUser(BaseModel):
    id: str
    name: str


class AllotmentProgress(BaseModel):
    target_hours: float = 0
    logged_hours: float = 0
    percentage: int = 0


class MemberStats(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: float = 0
    hours_logged_this_month: float = 0
    monthly_target: float = 0


class MemberSnapshot(BaseModel):
    profile: Profile
    organization: Optional[Organization] = None
    setup_required: bool = False
    department_name: str
    tasks: List[TaskView] = []
    recent_logs: List[LogView] = []
    invitations: List[InvitationView] = []
    team: List[MemberView] = []
    team_status: TeamStatus = TeamStatus()
    stats: MemberStats = MemberStats()
    failed_sections: List[str] = []
    generated_at: datetime


class AdminSnapshot(BaseModel):
    profile: Profile
    organization: Optional[Organization] = None
    setup_required: bool = False
    departments: List[DepartmentView] = []
    users: List[MemberView] = []
    work_allotments: List[AllotmentView] = []
    tasks: List[TaskView] = []
    join_requests: List[JoinRequestView] = []
    allotment_progress: AllotmentProgress = AllotmentProgress()
    team_status: TeamStatus = TeamStatus()
    available_percentage: int = 0
    recent_activity: List[ActivityItem] = []
    online_users: List[OnlineUser] = []
    failed_sections: List[str] = []
    generated_at: datetime


class UserTaskView(BaseModel):
    title: str
    description: Optional[str] = None
    status: str
    allotment_title: str


class UserDetail(BaseModel):
    profile: MemberView
    tasks: List[UserTaskView] = []
    logs: List[LogView] = []
    sessions: List[SessionEntry] = []
    attendance: List[AttendanceDay] = []
