"""WebSocket stream of change hints."""

import asyncio

import structlog
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from taskboard.api.deps import decode_access_token, get_active_user
from taskboard.services.project import ProjectService

router = APIRouter(prefix="/ws", tags=["websocket"])
logger = structlog.get_logger()


async def _answer_pings(websocket: WebSocket) -> None:
    """Read client frames until disconnect; only pings are answered."""
    while True:
        message = await websocket.receive_json()
        if isinstance(message, dict) and message.get("type") == "ping":
            await websocket.send_json({"type": "pong"})


@router.websocket("/changes")
async def change_stream(websocket: WebSocket, token: str = Query(...)):
    """
    Stream change hints for the caller's projects and inbox.

    Each frame is ``{"type": "change", "payload": {table, op, pk, project_id, user_id}}``.
    Hints may be dropped or duplicated; clients re-query on receipt. The stream
    ends after the feed's idle timeout and the membership snapshot is taken at
    connect time, so clients reconnect to pick up new projects.
    """
    state = websocket.app.state
    user_id = decode_access_token(token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    async with state.session_factory() as db:
        user = await get_active_user(db, user_id)
        if user is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        projects = await ProjectService(db).user_projects(user_id)

    await websocket.accept()
    subscription = state.change_feed.subscribe([p.id for p in projects], user_id=user_id)
    logger.info("change_stream_opened", user_id=str(user_id), projects=len(projects))

    receiver = asyncio.create_task(_answer_pings(websocket))
    idle = False
    try:
        while True:
            getter = asyncio.create_task(subscription.next_event())
            done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if getter not in done:
                getter.cancel()
                error = receiver.exception()
                if error is not None and not isinstance(error, WebSocketDisconnect):
                    logger.warning("change_stream_receive_failed", error=str(error))
                break
            event = getter.result()
            if event is None:
                idle = True
                break
            await websocket.send_json({"type": "change", "payload": event.to_dict()})
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()
        receiver.cancel()
        logger.info("change_stream_closed", user_id=str(user_id), dropped=subscription.dropped, idle=idle)

    if idle:
        await websocket.close()
