# backend-server/app/db/models.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, String, ForeignKey, DateTime, Date, Float, Integer, Text, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AuthUser(Base):
    # Identity record owned by the auth layer; profiles are created from it lazily.
    __tablename__ = "auth_users"
    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Organization(Base):
    __tablename__ = "organizations"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    departments = relationship("Department", back_populates="organization")


class Department(Base):
    __tablename__ = "departments"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    organization = relationship("Organization", back_populates="departments")


class Profile(Base):
    __tablename__ = "profiles"
    id = Column(String(36), ForeignKey("auth_users.id"), primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default="user")
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=True, index=True)
    department_id = Column(String(36), ForeignKey("departments.id"), nullable=True)
    availability_status = Column(String(20), nullable=False, default="unavailable")
    # Monthly hour target; null falls back to DEFAULT_WORKING_HOURS.
    working_hours = Column(Float, nullable=True)
    last_seen = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    __table_args__ = (
        CheckConstraint("role IN ('user', 'admin')"),
        CheckConstraint("availability_status IN ('available', 'unavailable')"),
    )
    tasks = relationship("Task", back_populates="owner")


class JoinRequest(Base):
    __tablename__ = "join_requests"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    __table_args__ = ( CheckConstraint("status IN ('pending', 'approved', 'denied')"), )


class WorkAllotment(Base):
    __tablename__ = "work_allotments"
    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    department_id = Column(String(36), ForeignKey("departments.id"), nullable=True)
    target_hours = Column(Float, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    __table_args__ = ( CheckConstraint("end_date IS NULL OR end_date > start_date"), )


class Task(Base):
    # One row per (allotment, assignee).
    __tablename__ = "tasks"
    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="todo")
    allotment_id = Column(String(36), ForeignKey("work_allotments.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    organization_id = Column(String(36), ForeignKey("organizations.id"), nullable=False, index=True)
    hours = Column(Float, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    __table_args__ = ( CheckConstraint("status IN ('todo', 'in_progress', 'done')"), )
    owner = relationship("Profile", back_populates="tasks")
    logs = relationship("DailyLog", back_populates="task")


class DailyLog(Base):
    __tablename__ = "daily_logs"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    task_id = Column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
    log_date = Column(Date, nullable=False, index=True)
    hours_spent = Column(Float, nullable=False)
    tasks_completed = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    task = relationship("Task", back_populates="logs")


class UserSession(Base):
    # logout_time is null while the user is online.
    __tablename__ = "user_sessions"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("auth_users.id"), nullable=False, index=True)
    login_time = Column(DateTime, nullable=False, default=utcnow)
    logout_time = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)


class MonthlyHours(Base):
    __tablename__ = "monthly_hours"
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    month = Column(String(7), nullable=False)
    allocated_hours = Column(Float, nullable=False)
    logged_hours = Column(Float, nullable=True)
    __table_args__ = ( UniqueConstraint("user_id", "month"), )
