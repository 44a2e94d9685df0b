# backend-server/app/api/v1/endpoints/tasks.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.db import models, session
from app.db.models import utcnow
from app.core import security
from app.schemas import work as work_schema
from app.services import metrics

logger = logging.getLogger(__name__)

router = APIRouter()

TASK_LOG_LIMIT = 5

def get_org_allotment(db: Session, allotment_id: str, organization_id: str) -> models.WorkAllotment:
    allotment = db.get(models.WorkAllotment, allotment_id)
    if not allotment or allotment.organization_id != organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Work allotment not found")
    return allotment

def get_visible_task(db: Session, task_id: str, user: models.Profile) -> models.Task:
    """ A task is visible to its owner and to admins of its organization. """
    task = db.get(models.Task, task_id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    is_org_admin = user.role == "admin" and user.organization_id == task.organization_id
    if task.user_id != user.id and not is_org_admin:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return task

# --- Tasks ---

@router.post("/tasks", response_model=List[work_schema.Task], status_code=status.HTTP_201_CREATED)
def assign_task(
    task_in: work_schema.TaskAssign,
    db: Session = Depends(session.get_db),
    admin: models.Profile = Depends(security.get_current_admin_user)
):
    """ Creates one task row per selected user, all in the same allotment. """
    get_org_allotment(db, task_in.allotment_id, admin.organization_id)

    members = (
        db.query(models.Profile.id)
        .filter(models.Profile.id.in_(task_in.user_ids), models.Profile.organization_id == admin.organization_id)
        .all()
    )
    found = {row[0] for row in members}
    missing = [uid for uid in task_in.user_ids if uid not in found]
    if missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Users not in this organization: {', '.join(missing)}",
        )

    tasks = []
    for user_id in task_in.user_ids:
        task = models.Task(
            title=task_in.title,
            description=task_in.description,
            status="todo",
            allotment_id=task_in.allotment_id,
            user_id=user_id,
            organization_id=admin.organization_id,
            hours=task_in.hours,
        )
        db.add(task)
        tasks.append(task)

    month = metrics.month_key(utcnow())
    for user_id, hours in task_in.monthly_hours.items():
        if user_id not in found:
            continue
        allocation = (
            db.query(models.MonthlyHours)
            .filter(models.MonthlyHours.user_id == user_id, models.MonthlyHours.month == month)
            .first()
        )
        if allocation:
            allocation.allocated_hours = hours
        else:
            db.add(models.MonthlyHours(user_id=user_id, month=month, allocated_hours=hours))

    session.commit_or_400(db)
    for task in tasks:
        db.refresh(task)
    logger.info(f"Assigned '{task_in.title}' to {len(tasks)} user(s)")
    return tasks

@router.put("/tasks/{task_id}/status", response_model=work_schema.Task)
def update_task_status(
    task_id: str,
    update: work_schema.TaskStatusUpdate,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    task = get_visible_task(db, task_id, current_user)
    task.status = update.status
    session.commit_or_400(db)
    db.refresh(task)
    return task

@router.get("/tasks/{task_id}/logs", response_model=List[work_schema.TaskLogEntry])
def read_task_logs(
    task_id: str,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    """ The most recent logs filed against a task. """
    task = get_visible_task(db, task_id, current_user)
    return (
        db.query(models.DailyLog)
        .filter(models.DailyLog.task_id == task.id)
        .order_by(models.DailyLog.log_date.desc(), models.DailyLog.created_at.desc())
        .limit(TASK_LOG_LIMIT)
        .all()
    )

# --- Daily logs ---

@router.post("/daily-logs", response_model=work_schema.DailyLog, status_code=status.HTTP_201_CREATED)
def submit_daily_log(
    log_in: work_schema.DailyLogCreate,
    db: Session = Depends(session.get_db),
    current_user: models.Profile = Depends(security.get_current_user)
):
    if log_in.task_id is not None:
        task = db.get(models.Task, log_in.task_id)
        if not task or task.user_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    else:
        # Task creation from the log form.
        if not current_user.organization_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Join an organization before logging work.")
        get_org_allotment(db, log_in.allotment_id, current_user.organization_id)
        task = models.Task(
            title=log_in.new_task_title,
            status="in_progress",
            allotment_id=log_in.allotment_id,
            user_id=current_user.id,
            organization_id=current_user.organization_id,
            hours=0,
        )
        db.add(task)
        db.flush()

    log = models.DailyLog(
        user_id=current_user.id,
        task_id=task.id,
        log_date=log_in.log_date,
        hours_spent=log_in.hours_spent,
        tasks_completed=log_in.tasks_completed,
    )
    db.add(log)
    session.commit_or_400(db)
    db.refresh(log)
    return log
