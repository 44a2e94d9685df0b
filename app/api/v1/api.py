# backend-server/app/api/v1/api.py
from fastapi import APIRouter
from app.api.v1.endpoints import admin, dashboard, organizations, realtime, tasks, users

api_router = APIRouter()

api_router.include_router(users.router, prefix="/users", tags=["Users"])
api_router.include_router(organizations.router, tags=["Organizations"])
api_router.include_router(tasks.router, tags=["Tasks"])

api_router.include_router(admin.router, prefix="/admin", tags=["Admin"])
api_router.include_router(dashboard.router, prefix="/dashboard", tags=["Dashboard"])
api_router.include_router(realtime.router, prefix="/realtime", tags=["Realtime"])
