# backend-server/app/services/aggregation.py
"""
Dashboard aggregation.

A snapshot is everything one dashboard renders. The caller's profile is
resolved first (and created if missing); the remaining reads are independent
and run together, each in its own database session on the threadpool. A read
that fails is logged and leaves its section empty, and its name is reported in
`failed_sections`; a snapshot is always returned.

Reads within one batch are not atomic: rows fetched later may reflect a
slightly newer database state than rows fetched earlier.
"""
import asyncio
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.db import models
from app.db.models import utcnow
from app.schemas import dashboard as dashboard_schema
from app.schemas.user import Profile, TeamStatus
from app.schemas.work import Organization
from app.services import metrics, profiles

logger = logging.getLogger(__name__)

NO_ALLOTMENT = "No Allotment"
NO_DEPARTMENT = "No Department"
UNKNOWN_USER = "Unknown"
RECENT_ACTIVITY_LIMIT = 20
RECENT_LOG_LIMIT = 10

Query = Callable[[Session], Any]


# --- Helpers ---

def display_name(profile, fallback: str = "User") -> str:
    if profile is None:
        return fallback
    return profile.full_name or profile.email or fallback


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def capped_percentage(part: float, whole: float) -> int:
    """ Whole-number progress percentage capped at 100; 0 when there is no target. """
    if whole <= 0:
        return 0
    return min(100, round_half_up(part / whole * 100))


def team_status(members) -> TeamStatus:
    members = list(members)
    return TeamStatus(
        available=sum(1 for m in members if m.availability_status == "available"),
        total=len(members),
    )


def team_status_after_toggle(before: TeamStatus, old_status: str, new_status: str) -> TeamStatus:
    """ Adjusts the visible counts for one member's availability change without re-reading the team. """
    delta = 0
    if old_status != new_status:
        delta = 1 if new_status == "available" else -1
    available = min(max(before.available + delta, 0), before.total)
    return TeamStatus(available=available, total=before.total)


def member_view(profile, department_names: Dict[str, str]) -> dashboard_schema.MemberView:
    return dashboard_schema.MemberView(
        id=profile.id,
        email=profile.email,
        full_name=profile.full_name,
        role=profile.role,
        department_id=profile.department_id,
        department_name=department_names.get(profile.department_id, NO_DEPARTMENT),
        availability_status=profile.availability_status,
        working_hours=profile.working_hours,
        last_seen=profile.last_seen,
    )


def task_view(task, allotment_titles: Dict[str, str], names: Dict[str, str]) -> dashboard_schema.TaskView:
    return dashboard_schema.TaskView(
        id=task.id,
        title=task.title,
        description=task.description,
        status=task.status,
        hours=metrics.to_number(task.hours),
        allotment_id=task.allotment_id,
        allotment_title=allotment_titles.get(task.allotment_id, NO_ALLOTMENT),
        user_id=task.user_id,
        assignee_name=names.get(task.user_id, UNKNOWN_USER),
        created_at=task.created_at,
    )


def log_view(log, task_title: Optional[str]) -> dashboard_schema.LogView:
    return dashboard_schema.LogView(
        id=log.id,
        task_id=log.task_id,
        task_title=task_title or "a task",
        log_date=log.log_date,
        hours_spent=metrics.to_number(log.hours_spent),
        tasks_completed=log.tasks_completed,
    )


def build_recent_activity(sessions, tasks, logs, names: Dict[str, str], limit: int = RECENT_ACTIVITY_LIMIT):
    """ Merges logins, logouts, task creations and work-log submissions, newest first. """
    def name(user_id):
        return names.get(user_id, "User")

    events: List[dashboard_schema.ActivityItem] = []
    for s in sessions:
        if s.login_time:
            events.append(dashboard_schema.ActivityItem(
                id=f"{s.id}-login", type="login", at=s.login_time, message=f"{name(s.user_id)} logged in"))
        if s.logout_time:
            events.append(dashboard_schema.ActivityItem(
                id=f"{s.id}-logout", type="logout", at=s.logout_time, message=f"{name(s.user_id)} logged out"))
    for t in tasks:
        events.append(dashboard_schema.ActivityItem(
            id=f"task-{t.id}", type="task_created", at=t.created_at, message=f"Task created: {t.title}"))
    for log, task_title in logs:
        hours = metrics.to_number(log.hours_spent)
        events.append(dashboard_schema.ActivityItem(
            id=f"log-{log.id}", type="work_log", at=log.created_at,
            message=f"{name(log.user_id)} submitted {hours:g}h on {task_title or 'a task'}"))
    events.sort(key=lambda e: e.at, reverse=True)
    return events[:limit]


# --- Fetcher ---

class AggregationFetcher:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def _run(self, fn: Query):
        def _call():
            with self._session_factory() as db:
                return fn(db)
        return await run_in_threadpool(_call)

    async def _section(self, name: str, fn: Query, default, failed: List[str]):
        try:
            return await self._run(fn)
        except Exception:
            logger.exception(f"Dashboard section '{name}' failed")
            failed.append(name)
            return default

    async def _batch(self, queries: Dict[str, Tuple[Query, Any]]) -> Tuple[Dict[str, Any], List[str]]:
        """ Runs independent reads concurrently; a failed read yields its default. """
        failed: List[str] = []
        names = list(queries)
        values = await asyncio.gather(
            *(self._section(name, fn, default, failed) for name, (fn, default) in queries.items())
        )
        return dict(zip(names, values)), sorted(failed)

    async def load_profile(self, user_id: str) -> models.Profile:
        return await self._run(lambda db: profiles.ensure_profile(db, user_id))

    # --- Member dashboard ---

    async def fetch_member_snapshot(self, user_id: str) -> dashboard_schema.MemberSnapshot:
        profile = await self.load_profile(user_id)
        org_id = profile.organization_id
        now = utcnow()
        month_start, next_month = metrics.month_bounds(now)

        own_allotment_ids = select(models.Task.allotment_id).where(models.Task.user_id == user_id)
        queries = {
            "organization": (lambda db: db.get(models.Organization, org_id) if org_id else None, None),
            "departments": (lambda db: _org_rows(db, models.Department, org_id), []),
            "work_allotments": (lambda db: db.query(models.WorkAllotment)
                                .filter(models.WorkAllotment.id.in_(own_allotment_ids)).all(), []),
            "tasks": (lambda db: db.query(models.Task).filter(models.Task.user_id == user_id)
                      .order_by(models.Task.created_at.desc()).all(), []),
            "daily_logs": (lambda db: db.query(models.DailyLog, models.Task.title)
                           .outerjoin(models.Task, models.DailyLog.task_id == models.Task.id)
                           .filter(models.DailyLog.user_id == user_id)
                           .order_by(models.DailyLog.log_date.desc(), models.DailyLog.created_at.desc())
                           .limit(RECENT_LOG_LIMIT).all(), []),
            "monthly_hours": (lambda db: db.query(func.coalesce(func.sum(models.DailyLog.hours_spent), 0))
                              .filter(models.DailyLog.user_id == user_id,
                                      models.DailyLog.log_date >= month_start.date(),
                                      models.DailyLog.log_date < next_month.date()).scalar(), 0),
            "invitations": (lambda db: db.query(models.JoinRequest, models.Organization.name)
                            .join(models.Organization, models.JoinRequest.organization_id == models.Organization.id)
                            .filter(models.JoinRequest.user_id == user_id, models.JoinRequest.status == "pending")
                            .order_by(models.JoinRequest.created_at.desc()).all(), []),
            "team_members": (lambda db: _org_rows(db, models.Profile, org_id), []),
        }
        results, failed = await self._batch(queries)

        organization = results["organization"]
        department_names = {d.id: d.name for d in results["departments"]}
        allotment_titles = {a.id: a.title for a in results["work_allotments"]}
        names = {profile.id: display_name(profile)}
        tasks = results["tasks"]
        completed = sum(1 for t in tasks if t.status == "done")
        team = results["team_members"]

        return dashboard_schema.MemberSnapshot(
            profile=Profile.model_validate(profile),
            organization=Organization.model_validate(organization) if organization else None,
            setup_required=_setup_required(org_id, organization, failed),
            department_name=department_names.get(profile.department_id, NO_DEPARTMENT),
            tasks=[task_view(t, allotment_titles, names) for t in tasks],
            recent_logs=[log_view(log, title) for log, title in results["daily_logs"]],
            invitations=[
                dashboard_schema.InvitationView(
                    id=r.id, user_id=r.user_id, organization_id=r.organization_id,
                    status=r.status, created_at=r.created_at, organization_name=org_name,
                )
                for r, org_name in results["invitations"]
            ],
            team=[member_view(m, department_names) for m in team],
            team_status=team_status(team),
            stats=dashboard_schema.MemberStats(
                total_tasks=len(tasks),
                completed_tasks=completed,
                completion_rate=metrics.completion_rate(len(tasks), completed),
                hours_logged_this_month=metrics.to_number(results["monthly_hours"]),
                monthly_target=metrics.monthly_target(profile.working_hours),
            ),
            failed_sections=failed,
            generated_at=now,
        )

    # --- Admin dashboard ---

    async def fetch_admin_snapshot(self, user_id: str) -> dashboard_schema.AdminSnapshot:
        profile = await self.load_profile(user_id)
        if profile.role != "admin":
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Requires admin role")

        org_id = profile.organization_id
        now = utcnow()
        if org_id is None:
            return dashboard_schema.AdminSnapshot(
                profile=Profile.model_validate(profile), setup_required=True, generated_at=now,
            )

        month_start, next_month = metrics.month_bounds(now)
        queries = {
            "organization": (lambda db: db.get(models.Organization, org_id), None),
            "departments": (lambda db: _org_rows(db, models.Department, org_id), []),
            "users": (lambda db: _org_rows(db, models.Profile, org_id), []),
            "work_allotments": (lambda db: _org_rows(db, models.WorkAllotment, org_id), []),
            "tasks": (lambda db: db.query(models.Task).filter(models.Task.organization_id == org_id)
                      .order_by(models.Task.created_at.desc()).all(), []),
            "join_requests": (lambda db: db.query(models.JoinRequest, models.Profile)
                              .join(models.Profile, models.JoinRequest.user_id == models.Profile.id)
                              .filter(models.JoinRequest.organization_id == org_id)
                              .order_by(models.JoinRequest.created_at.desc()).all(), []),
            "allotment_hours": (lambda db: dict(
                db.query(models.Task.allotment_id, func.sum(models.DailyLog.hours_spent))
                .join(models.Task, models.DailyLog.task_id == models.Task.id)
                .filter(models.Task.organization_id == org_id,
                        models.DailyLog.log_date >= month_start.date(),
                        models.DailyLog.log_date < next_month.date())
                .group_by(models.Task.allotment_id).all()), {}),
            "recent_sessions": (lambda db: db.query(models.UserSession)
                                .join(models.Profile, models.UserSession.user_id == models.Profile.id)
                                .filter(models.Profile.organization_id == org_id)
                                .order_by(models.UserSession.login_time.desc())
                                .limit(RECENT_ACTIVITY_LIMIT).all(), []),
            "recent_logs": (lambda db: db.query(models.DailyLog, models.Task.title)
                            .join(models.Task, models.DailyLog.task_id == models.Task.id)
                            .filter(models.Task.organization_id == org_id)
                            .order_by(models.DailyLog.created_at.desc())
                            .limit(RECENT_ACTIVITY_LIMIT).all(), []),
            "online_users": (lambda db: [row[0] for row in
                                         db.query(models.UserSession.user_id)
                                         .join(models.Profile, models.UserSession.user_id == models.Profile.id)
                                         .filter(models.Profile.organization_id == org_id,
                                                 models.UserSession.logout_time.is_(None))
                                         .order_by(models.UserSession.login_time.desc()).all()], []),
        }
        results, failed = await self._batch(queries)

        organization = results["organization"]
        departments = results["departments"]
        users = results["users"]
        allotments = results["work_allotments"]
        tasks = results["tasks"]
        allotment_hours = {k: metrics.to_number(v) for k, v in results["allotment_hours"].items()}

        # Lookup maps, built once per snapshot.
        department_names = {d.id: d.name for d in departments}
        allotment_titles = {a.id: a.title for a in allotments}
        names = {u.id: display_name(u) for u in users}
        members_per_department: Dict[str, int] = {}
        for u in users:
            if u.department_id:
                members_per_department[u.department_id] = members_per_department.get(u.department_id, 0) + 1
        tasks_per_allotment: Dict[str, int] = {}
        for t in tasks:
            tasks_per_allotment[t.allotment_id] = tasks_per_allotment.get(t.allotment_id, 0) + 1

        allotment_views = []
        for a in allotments:
            logged = allotment_hours.get(a.id, 0.0)
            target = metrics.to_number(a.target_hours)
            allotment_views.append(dashboard_schema.AllotmentView(
                id=a.id, title=a.title, description=a.description,
                department_id=a.department_id,
                department_name=department_names.get(a.department_id, NO_DEPARTMENT),
                target_hours=target, start_date=a.start_date, end_date=a.end_date,
                task_count=tasks_per_allotment.get(a.id, 0),
                monthly_logged_hours=logged,
                progress_percentage=capped_percentage(logged, target),
                remaining_hours=max(target - logged, 0.0),
            ))
        total_target = sum(metrics.to_number(a.target_hours) for a in allotments)
        total_logged = sum(allotment_hours.values())

        status_counts = team_status(users)
        online = []
        for uid in dict.fromkeys(results["online_users"]):
            online.append(dashboard_schema.OnlineUser(id=uid, name=names.get(uid, "User")))

        return dashboard_schema.AdminSnapshot(
            profile=Profile.model_validate(profile),
            organization=Organization.model_validate(organization) if organization else None,
            setup_required=_setup_required(org_id, organization, failed),
            departments=[
                dashboard_schema.DepartmentView(
                    id=d.id, name=d.name, organization_id=d.organization_id,
                    member_count=members_per_department.get(d.id, 0),
                )
                for d in departments
            ],
            users=[member_view(u, department_names) for u in users],
            work_allotments=allotment_views,
            tasks=[task_view(t, allotment_titles, names) for t in tasks],
            join_requests=[
                dashboard_schema.JoinRequestView(
                    id=r.id, user_id=r.user_id, organization_id=r.organization_id,
                    status=r.status, created_at=r.created_at,
                    user_email=p.email, user_name=p.full_name,
                )
                for r, p in results["join_requests"]
            ],
            allotment_progress=dashboard_schema.AllotmentProgress(
                target_hours=total_target,
                logged_hours=total_logged,
                percentage=capped_percentage(total_logged, total_target),
            ),
            team_status=status_counts,
            available_percentage=(
                round_half_up(status_counts.available / status_counts.total * 100) if status_counts.total else 0
            ),
            recent_activity=build_recent_activity(
                results["recent_sessions"], tasks[:RECENT_ACTIVITY_LIMIT], results["recent_logs"], names,
            ),
            online_users=online,
            failed_sections=failed,
            generated_at=now,
        )


def _org_rows(db: Session, model, org_id: Optional[str]):
    if org_id is None:
        return []
    return db.query(model).filter(model.organization_id == org_id).order_by(model.created_at).all()


def _setup_required(org_id, organization, failed: List[str]) -> bool:
    """ No organization to show, and not because its read failed. """
    return org_id is None or (organization is None and "organization" not in failed)


# --- Performance report ---

def load_performance(db: Session, profile: models.Profile, period: str = "month", now=None):
    """ Reads the rows a performance report needs for one profile and computes it. """
    now = now or utcnow()
    tasks = db.query(models.Task).filter(models.Task.user_id == profile.id).all()
    logs = db.query(models.DailyLog).filter(models.DailyLog.user_id == profile.id).all()
    allocation = (
        db.query(models.MonthlyHours)
        .filter(models.MonthlyHours.user_id == profile.id, models.MonthlyHours.month == metrics.month_key(now))
        .first()
    )
    return metrics.calculate_performance(
        tasks, logs, period=period, working_hours=profile.working_hours, allocation=allocation, now=now,
    )
