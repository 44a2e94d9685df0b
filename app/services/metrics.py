# backend-server/app/services/metrics.py
# Pure performance calculations over raw task, log and session rows.
# Rows may be ORM objects or plain dicts; malformed numbers and dates count as 0 / absent.
import math
from datetime import date, datetime, timedelta
from typing import Any, Iterable, List, Optional

from app.core.config import settings
from app.db.models import utcnow
from app.schemas.dashboard import AttendanceDay, MonthlyHoursSummary, PerformanceMetrics

PERIODS = ("week", "month", "quarter")


def _field(row: Any, name: str, default=None):
    if isinstance(row, dict):
        return row.get(name, default)
    return getattr(row, name, default)


def to_number(value) -> float:
    """Coerces anything to a finite float, 0 when it cannot be read as one."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def _to_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return _to_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def period_start(period: str, now: datetime) -> datetime:
    """ Start of the ISO week, calendar month or calendar quarter containing `now`. """
    midnight = datetime(now.year, now.month, now.day)
    if period == "week":
        return midnight - timedelta(days=now.weekday())
    if period == "month":
        return datetime(now.year, now.month, 1)
    if period == "quarter":
        return datetime(now.year, (now.month - 1) // 3 * 3 + 1, 1)
    raise ValueError(f"Unknown period '{period}'")


def month_bounds(now: datetime):
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end


def month_key(now: datetime) -> str:
    return now.strftime("%Y-%m")


def monthly_target(working_hours, default: Optional[float] = None) -> float:
    """ The profile's monthly working hours, or the configured default when unset. """
    hours = to_number(working_hours)
    if hours > 0:
        return hours
    return settings.DEFAULT_WORKING_HOURS if default is None else default


def sum_hours(logs: Iterable[Any]) -> float:
    return math.fsum(to_number(_field(log, "hours_spent")) for log in logs)


def completion_rate(total: int, completed: int) -> float:
    return (completed / total) * 100 if total > 0 else 0.0


def calculate_performance(
    tasks: Iterable[Any],
    logs: Iterable[Any],
    period: str = "month",
    working_hours=None,
    allocation: Any = None,
    now: Optional[datetime] = None,
) -> PerformanceMetrics:
    """
    Derives the performance report for one user.

    `working_hours` is the profile's monthly target and falls back to the
    configured default. `allocation` is the optional MonthlyHours row of the
    current month; when present its allocated/logged hours take precedence for
    the monthly summary.
    """
    now = now or utcnow()
    tasks = list(tasks)
    logs = list(logs)
    start = period_start(period, now)

    statuses = [_field(t, "status") for t in tasks]
    total_tasks = len(tasks)
    completed = statuses.count("done")
    rate = completion_rate(total_tasks, completed)
    total_hours = sum_hours(logs)

    period_logs = [l for l in logs if (_to_datetime(_field(l, "log_date")) or datetime.min) >= start]
    period_hours = sum_hours(period_logs)
    period_tasks_done = sum(
        1 for t in tasks
        if _field(t, "status") == "done" and (_to_datetime(_field(t, "created_at")) or datetime.min) >= start
    )
    elapsed_days = (now - start).total_seconds() / 86400
    average_per_day = period_hours / max(1, math.ceil(elapsed_days))

    fallback_target = monthly_target(working_hours)
    productivity = min(100.0, rate * 0.6 + min(total_hours / fallback_target, 1) * 40)
    productivity = max(0.0, productivity)

    month_start, next_month = month_bounds(now)
    computed_month_hours = sum_hours(
        l for l in logs
        if month_start <= (_to_datetime(_field(l, "log_date")) or datetime.min) < next_month
    )
    logged = _field(allocation, "logged_hours") if allocation is not None else None
    allocated = _field(allocation, "allocated_hours") if allocation is not None else None
    current = to_number(logged) if logged is not None else computed_month_hours
    target = to_number(allocated) if allocated is not None else fallback_target

    return PerformanceMetrics(
        period=period,
        total_tasks=total_tasks,
        completed_tasks=completed,
        in_progress_tasks=statuses.count("in_progress"),
        todo_tasks=statuses.count("todo"),
        completion_rate=rate,
        total_hours_logged=total_hours,
        period_hours=period_hours,
        period_tasks_completed=period_tasks_done,
        average_hours_per_day=average_per_day,
        productivity_score=productivity,
        monthly_hours=MonthlyHoursSummary(
            current=current,
            target=target,
            percentage=(current / target) * 100 if target > 0 else 0.0,
            remaining=max(target - current, 0.0),
        ),
    )


def session_seconds(session: Any, now: datetime) -> int:
    duration = _field(session, "duration_seconds")
    if isinstance(duration, (int, float)) and not isinstance(duration, bool):
        return max(0, int(duration))
    start = _to_datetime(_field(session, "login_time"))
    if start is None:
        return 0
    end = _to_datetime(_field(session, "logout_time")) or now
    return max(0, int((end - start).total_seconds()))


def attendance_by_day(sessions: Iterable[Any], now: Optional[datetime] = None, days: int = 7) -> List[AttendanceDay]:
    """ Hours online per login day, newest first. """
    now = now or utcnow()
    totals = {}
    for session in sessions:
        start = _to_datetime(_field(session, "login_time"))
        if start is None:
            continue
        totals[start.date()] = totals.get(start.date(), 0) + session_seconds(session, now)
    ordered = sorted(totals.items(), key=lambda item: item[0], reverse=True)[:days]
    return [AttendanceDay(date=day, hours=round(seconds / 3600, 1)) for day, seconds in ordered]
