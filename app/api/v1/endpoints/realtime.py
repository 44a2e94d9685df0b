# backend-server/app/api/v1/endpoints/realtime.py
# Live dashboards over a WebSocket: an initial snapshot, then a fresh one after
# every change that touches the dashboard's tables.
import asyncio
import logging
from typing import Literal

from fastapi import APIRouter, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from jose import JWTError
from starlette.websockets import WebSocketState

from app.db import session
from app.services import session_provider as provider_module
from app.services.aggregation import AggregationFetcher
from app.services.realtime import RealtimeRefreshBridge, TableBinding, admin_bindings, member_bindings

logger = logging.getLogger(__name__)

router = APIRouter()

def own_profile_binding(user_id: str):
    # Until an organization exists only the caller's own profile can change the view.
    return [TableBinding("profiles", {"id": user_id})]

def snapshot_bindings(scope: str, user_id: str):
    def bindings_for(snapshot):
        org_id = snapshot.profile.organization_id
        if scope == "admin":
            return admin_bindings(org_id) if org_id else own_profile_binding(user_id)
        return member_bindings(user_id, org_id)
    return bindings_for

async def _receive_commands(websocket: WebSocket, bridge: RealtimeRefreshBridge):
    """ Reads client messages until disconnect; {"type": "refresh"} forces a refresh. """
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                logger.warning("Realtime client sent a frame that is not JSON, ignoring it")
                continue
            if isinstance(message, dict) and message.get("type") == "refresh":
                bridge.request_refresh()
    except WebSocketDisconnect:
        logger.debug("Realtime client disconnected")

@router.websocket("/dashboard")
async def dashboard_feed(
    websocket: WebSocket,
    token: str = Query(...),
    scope: Literal["member", "admin"] = Query("member"),
):
    provider = websocket.app.state.session_provider
    try:
        auth_session = await provider.get_session(token)
    except JWTError:
        auth_session = None
    if auth_session is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()

    user_id = auth_session.user_id
    fetcher = AggregationFetcher(session.get_session_factory())
    if scope == "admin":
        refresh = lambda: fetcher.fetch_admin_snapshot(user_id)
    else:
        refresh = lambda: fetcher.fetch_member_snapshot(user_id)

    async def deliver(snapshot):
        await websocket.send_json({"type": "snapshot", "scope": scope, "data": jsonable_encoder(snapshot)})

    bridge = RealtimeRefreshBridge(
        websocket.app.state.change_feed, refresh, deliver,
        bindings=member_bindings(user_id) if scope == "member" else own_profile_binding(user_id),
        bindings_for=snapshot_bindings(scope, user_id),
    )

    def on_auth_change(event, changed):
        if event == provider_module.SIGNED_OUT and changed.session_id == auth_session.session_id:
            bridge.close_threadsafe()

    stop_listening = provider.on_auth_state_changed(on_auth_change)
    bridge_task = asyncio.create_task(bridge.run())
    receive_task = asyncio.create_task(_receive_commands(websocket, bridge))
    cancelled = False
    try:
        await asyncio.wait({bridge_task, receive_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        cancelled = True
    finally:
        stop_listening()
        await bridge.close()
        for task in (bridge_task, receive_task):
            if not task.done():
                task.cancel()
    if cancelled:
        logger.debug(f"Realtime {scope} dashboard for {user_id} cancelled by the server")
        return

    try:
        await _finish(websocket, bridge_task, receive_task, scope, user_id)
    except asyncio.CancelledError:
        # The connection is already being torn down and the bridge is closed.
        logger.debug(f"Realtime {scope} dashboard for {user_id} cancelled during close")

async def _finish(websocket: WebSocket, bridge_task, receive_task, scope: str, user_id: str):
    """ Waits for both loops to stop, then closes the socket with a code matching how the bridge ended. """
    results = await asyncio.gather(bridge_task, receive_task, return_exceptions=True)
    close_code = status.WS_1000_NORMAL_CLOSURE
    error = results[0]
    if isinstance(error, HTTPException):
        logger.info(f"Realtime {scope} dashboard refused for {user_id}: {error.detail}")
        close_code = status.WS_1008_POLICY_VIOLATION
    elif isinstance(error, Exception) and not isinstance(error, (WebSocketDisconnect, RuntimeError)):
        logger.error(f"Realtime {scope} dashboard failed for {user_id}: {error}")
        close_code = status.WS_1011_INTERNAL_ERROR

    if websocket.client_state == WebSocketState.CONNECTED and websocket.application_state == WebSocketState.CONNECTED:
        await websocket.close(code=close_code)
