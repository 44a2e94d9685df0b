# backend-server/app/api/v1/endpoints/admin.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db import models, session
from app.db.models import utcnow
from app.core import security
from app.schemas import dashboard as dashboard_schema
from app.schemas import user as user_schema
from app.schemas import work as work_schema
from app.services import aggregation, join_requests, metrics
from app.api.v1.endpoints.organizations import get_org_department

logger = logging.getLogger(__name__)

router = APIRouter()

DETAIL_LIMIT = 5

def get_org_member(db: Session, user_id: str, admin: models.Profile) -> models.Profile:
    member = db.get(models.Profile, user_id)
    if not member or member.organization_id != admin.organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return member

# --- User management ---

@router.get("/users", response_model=List[user_schema.Profile])
def get_all_users(
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    """ Retrieves the members of the admin's organization. """
    return (
        db.query(models.Profile)
        .filter(models.Profile.organization_id == admin.organization_id)
        .order_by(models.Profile.created_at)
        .all()
    )

@router.put("/users/{user_id}", response_model=user_schema.Profile)
def update_user_details(
    user_id: str,
    updates: user_schema.UserUpdate,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    """ Updates a member's department, monthly working hours or role. """
    member = get_org_member(db, user_id, admin)
    update_data = updates.model_dump(exclude_unset=True)
    if update_data.get("department_id") is not None:
        get_org_department(db, update_data["department_id"], admin.organization_id)
    if "role" in update_data and update_data["role"] is None:
        del update_data["role"]

    for field, value in update_data.items():
        setattr(member, field, value)

    session.commit_or_400(db)
    db.refresh(member)
    return member

@router.delete("/users/{user_id}/membership", status_code=status.HTTP_204_NO_CONTENT)
def remove_from_organization(
    user_id: str,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    if user_id == admin.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="You cannot remove yourself from the organization.")
    member = get_org_member(db, user_id, admin)
    member.organization_id = None
    member.department_id = None
    member.role = "user"
    session.commit_or_400(db)
    logger.info(f"Removed {member.email} from organization {admin.organization_id}")
    return

@router.get("/users/{user_id}/detail", response_model=dashboard_schema.UserDetail)
def read_user_detail(
    user_id: str,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    """ Tasks with allotment titles, recent logs, recent sessions and attendance for one member. """
    member = get_org_member(db, user_id, admin)
    department_names = {}
    if member.department_id:
        department = db.get(models.Department, member.department_id)
        if department:
            department_names[department.id] = department.name

    tasks = (
        db.query(models.Task, models.WorkAllotment.title)
        .outerjoin(models.WorkAllotment, models.Task.allotment_id == models.WorkAllotment.id)
        .filter(models.Task.user_id == member.id)
        .order_by(models.Task.created_at.desc())
        .all()
    )
    logs = (
        db.query(models.DailyLog, models.Task.title)
        .outerjoin(models.Task, models.DailyLog.task_id == models.Task.id)
        .filter(models.DailyLog.user_id == member.id)
        .order_by(models.DailyLog.log_date.desc(), models.DailyLog.created_at.desc())
        .limit(DETAIL_LIMIT)
        .all()
    )
    sessions = (
        db.query(models.UserSession)
        .filter(models.UserSession.user_id == member.id)
        .order_by(models.UserSession.login_time.desc())
        .all()
    )

    return dashboard_schema.UserDetail(
        profile=aggregation.member_view(member, department_names),
        tasks=[
            dashboard_schema.UserTaskView(
                title=t.title, description=t.description, status=t.status,
                allotment_title=title or aggregation.NO_ALLOTMENT,
            )
            for t, title in tasks
        ],
        logs=[aggregation.log_view(log, title) for log, title in logs],
        sessions=[user_schema.SessionEntry.model_validate(s) for s in sessions[:DETAIL_LIMIT]],
        attendance=metrics.attendance_by_day(sessions),
    )

@router.get("/users/{user_id}/sessions", response_model=List[user_schema.SessionEntry])
def read_user_sessions(
    user_id: str,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    """ Sessions started in the current calendar month, newest first. """
    member = get_org_member(db, user_id, admin)
    month_start, next_month = metrics.month_bounds(utcnow())
    return (
        db.query(models.UserSession)
        .filter(
            models.UserSession.user_id == member.id,
            models.UserSession.login_time >= month_start,
            models.UserSession.login_time < next_month,
        )
        .order_by(models.UserSession.login_time.desc())
        .all()
    )

@router.get("/users/{user_id}/performance", response_model=dashboard_schema.PerformanceMetrics)
def read_user_performance(
    user_id: str,
    period: dashboard_schema.Period = "month",
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    member = get_org_member(db, user_id, admin)
    return aggregation.load_performance(db, member, period)

# --- Invitations ---

@router.post("/invitations", response_model=work_schema.InviteResult, status_code=status.HTTP_201_CREATED)
def invite_user(
    invite: user_schema.Invite,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    """ Invites a user without an organization; a denied or approved invitation is re-sent. """
    invitee = join_requests.find_invitee(db, invite.email)
    outcome, request = join_requests.send_invite(db, admin.organization_id, invitee.id)
    if outcome == join_requests.InviteOutcome.ALREADY_INVITED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Invitation already sent")
    return {"outcome": outcome.value, "request": request}
