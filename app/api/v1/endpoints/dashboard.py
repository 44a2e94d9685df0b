# backend-server/app/api/v1/endpoints/dashboard.py
from fastapi import APIRouter, Depends

from app.db import session
from app.core import security
from app.schemas import dashboard as dashboard_schema
from app.services.aggregation import AggregationFetcher

router = APIRouter()

def get_fetcher(session_factory=Depends(session.get_session_factory)) -> AggregationFetcher:
    return AggregationFetcher(session_factory)

@router.get("/me", response_model=dashboard_schema.MemberSnapshot)
async def get_member_dashboard(
    auth_session=Depends(security.get_current_session),
    fetcher: AggregationFetcher = Depends(get_fetcher)
):
    """ Everything the member dashboard shows, in one snapshot. """
    return await fetcher.fetch_member_snapshot(auth_session.user_id)

@router.get("/admin", response_model=dashboard_schema.AdminSnapshot)
async def get_admin_dashboard(
    auth_session=Depends(security.get_current_session),
    fetcher: AggregationFetcher = Depends(get_fetcher)
):
    """ Organization-wide snapshot; a profile without an organization gets `setup_required`. """
    return await fetcher.fetch_admin_snapshot(auth_session.user_id)
