"""
Support Chat Router - Bot endpoint, store REST surface dan realtime feed

File: support_chat/router.py

ENDPOINTS:
- POST /functions/chat-bot             : Bot Responder
- GET  /sessions/{id}                  : Get session
- GET  /sessions/{id}/messages         : Message history (ascending)
- POST /sessions/{id}/messages         : Insert customer/employee message
- POST /sessions/{id}/escalate         : Hand session to an employee
- POST /sessions/{id}/resolve          : Close escalated session
- WS   /realtime/ws?token=             : Change feed
"""

from typing import Optional
import asyncio
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .auth import extract_bearer
from .change_notifier import ChangeEvent, ChangeFilter, Subscription
from .context import ChatContext
from .errors import (
    AccessDenied,
    CompletionError,
    InvariantViolation,
    SessionNotFound,
    StoreError,
    SupportChatError,
    Unauthorized,
)
from .realtime import RealtimeConnection
from .schemas import (
    Actor,
    BotErrorResponse,
    BotRequest,
    BotSuccessResponse,
    MessageCreateRequest,
    MessageListResponse,
    MessageResponse,
    MessageRole,
    RealtimeSubscribeRequest,
    SessionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Support Chat"])


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_context(request: Request) -> ChatContext:
    return request.app.state.chat_context


async def get_actor(
    authorization: Optional[str] = Header(default=None),
    context: ChatContext = Depends(get_context),
) -> Actor:
    try:
        return await context.actor_for_token(extract_bearer(authorization))
    except Unauthorized as e:
        raise HTTPException(status_code=401, detail=str(e))


def raise_http(e: SupportChatError):
    """Translate a domain error into an HTTPException"""
    if isinstance(e, Unauthorized):
        raise HTTPException(status_code=401, detail=str(e))
    if isinstance(e, AccessDenied):
        raise HTTPException(status_code=403, detail=str(e))
    if isinstance(e, SessionNotFound):
        raise HTTPException(status_code=404, detail="Session not found")
    if isinstance(e, InvariantViolation):
        raise HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StoreError):
        logger.error(f"❌ Store failure: {e}")
        raise HTTPException(status_code=500, detail="Store error")
    raise HTTPException(status_code=500, detail=str(e))


# ============================================================================
# BOT RESPONDER
# ============================================================================

def _bot_error(status_code: int, message: str) -> JSONResponse:
    body = BotErrorResponse(error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@router.post("/functions/chat-bot")
async def chat_bot(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    context: ChatContext = Depends(get_context),
):
    """
    Bot Responder endpoint

    Body:
        {"message": "...", "sessionId": "..."}

    Response:
        200 {"message": "...", "sessionId": "...", "needEscalation": bool}
        4xx/5xx {"error": "...", "needEscalation": true}
    """
    try:
        payload = BotRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        return _bot_error(400, "Message is required")

    try:
        token = extract_bearer(authorization)
        reply = await context.responder.respond(token, payload.message, payload.session_id)
    except Unauthorized as e:
        return _bot_error(401, str(e))
    except SessionNotFound:
        return _bot_error(404, "Session not found")
    except CompletionError as e:
        return _bot_error(e.status_code, str(e) or "AI gateway error")
    except Exception as e:
        logger.error(f"❌ Error in chat-bot function: {e}", exc_info=True)
        return _bot_error(500, str(e) or "Unknown error")

    body = BotSuccessResponse(
        message=reply.message,
        session_id=reply.session_id,
        need_escalation=reply.need_escalation,
    )
    return JSONResponse(status_code=200, content=body.model_dump(by_alias=True))


# ============================================================================
# SESSION STORE
# ============================================================================

@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: str,
    actor: Actor = Depends(get_actor),
    context: ChatContext = Depends(get_context),
):
    try:
        session = await context.store.get_session(actor, session_id)
    except SupportChatError as e:
        raise_http(e)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.to_dict()


@router.get("/sessions/{session_id}/messages", response_model=MessageListResponse)
async def get_messages(
    session_id: str,
    limit: Optional[int] = Query(default=None, ge=1),
    actor: Actor = Depends(get_actor),
    context: ChatContext = Depends(get_context),
):
    """Get chat history for a session, oldest first"""
    try:
        messages = await context.store.list_messages(actor, session_id, limit=limit)
    except SupportChatError as e:
        raise_http(e)

    return {
        "session_id": session_id,
        "total_messages": len(messages),
        "messages": [m.to_dict() for m in messages],
    }


@router.post("/sessions/{session_id}/messages", status_code=201, response_model=MessageResponse)
async def post_message(
    session_id: str,
    body: MessageCreateRequest,
    actor: Actor = Depends(get_actor),
    context: ChatContext = Depends(get_context),
):
    """
    Owner writes as customer, anyone else as employee; the store policy
    decides whether that is allowed.
    """
    try:
        session = await context.store.get_session(actor, session_id)
        if session is None:
            raise SessionNotFound(session_id)
        role = MessageRole.CUSTOMER if session.user_id == actor.user_id else MessageRole.EMPLOYEE
        message = await context.store.insert_message(actor, session_id, role, body.content)
    except SupportChatError as e:
        raise_http(e)
    return message.to_dict()


@router.post("/sessions/{session_id}/escalate", response_model=SessionResponse)
async def escalate_session(
    session_id: str,
    actor: Actor = Depends(get_actor),
    context: ChatContext = Depends(get_context),
):
    try:
        session = await context.store.escalate_session(actor, session_id)
    except SupportChatError as e:
        raise_http(e)
    return session.to_dict()


@router.post("/sessions/{session_id}/resolve", response_model=SessionResponse)
async def resolve_session(
    session_id: str,
    actor: Actor = Depends(get_actor),
    context: ChatContext = Depends(get_context),
):
    try:
        session = await context.store.resolve_session(actor, session_id)
    except SupportChatError as e:
        raise_http(e)
    return session.to_dict()


# ============================================================================
# WEBSOCKET: REALTIME CHANGE FEED
# ============================================================================

async def _can_see(context: ChatContext, actor: Actor, event: ChangeEvent) -> bool:
    if event.table == "chat_messages":
        session_id = event.new.get("session_id")
    elif event.table == "chat_sessions":
        session_id = event.new.get("id")
    else:
        return False
    if not session_id:
        return False
    return await context.store.get_session(actor, session_id) is not None


async def _pump(context: ChatContext, actor: Actor, conn: RealtimeConnection,
                channel: str, subscription: Subscription):
    """Forward readable events of one subscription to the socket"""
    try:
        async for event in subscription:
            if not await _can_see(context, actor, event):
                continue
            await conn.websocket.send_json({"type": "change", "channel": channel, **event.to_dict()})
    except (WebSocketDisconnect, RuntimeError, OSError) as e:
        logger.debug(f"Realtime pump for conn {conn.id} stopped: {e}")
    except SupportChatError as e:
        logger.error(f"❌ Realtime pump for conn {conn.id} failed: {e}")


@router.websocket("/realtime/ws")
async def realtime_websocket(websocket: WebSocket, token: Optional[str] = None):
    """
    Realtime change feed

    Messages FROM client:
        {"type": "subscribe", "channel": "...", "table": "chat_messages",
         "event": "INSERT", "filter": "session_id=eq.<id>"}
        {"type": "unsubscribe", "channel": "..."}

    Messages TO client:
        {"type": "subscribed", "channel": "..."}
        {"type": "unsubscribed", "channel": "..."}
        {"type": "change", "channel": "...", "table": ..., "event": ..., "new": {...}, "old": {...}}
        {"type": "error", "error": "..."}
    """
    context: ChatContext = websocket.app.state.chat_context

    try:
        actor = await context.actor_for_token(token)
    except Unauthorized as e:
        logger.info(f"🚫 Realtime connection rejected: {e}")
        await websocket.close(code=4401)
        return

    manager = context.realtime
    conn = await manager.connect(websocket, actor.user_id)

    try:
        while True:
            try:
                data = await websocket.receive_json()
                request = RealtimeSubscribeRequest.model_validate(data)
            except (ValueError, ValidationError):
                await websocket.send_json({"type": "error", "error": "Invalid message"})
                continue

            if request.type == "subscribe":
                try:
                    change_filter = ChangeFilter.parse(request.table or "", request.event or "*", request.filter)
                except ValueError as e:
                    await websocket.send_json({"type": "error", "error": str(e)})
                    continue

                channel = request.channel or f"{change_filter.table}:{request.event or '*'}:{request.filter or ''}"
                subscription = context.notifier.subscribe(change_filter)
                task = asyncio.create_task(_pump(context, actor, conn, channel, subscription))
                await manager.attach(conn, channel, subscription, task)
                await websocket.send_json({"type": "subscribed", "channel": channel})

            elif request.type == "unsubscribe":
                await manager.detach(conn, request.channel)
                await websocket.send_json({"type": "unsubscribed", "channel": request.channel})

            else:
                await websocket.send_json({"type": "error", "error": f"Unknown message type: {request.type}"})

    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(conn)
