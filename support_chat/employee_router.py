"""
Employee Router - Listing for the employee console

File: support_chat/employee_router.py

ENDPOINTS:
- GET /employee/access    : Does the caller hold employee/admin role
- GET /employee/sessions  : Escalated sessions with profile and last message
"""

from fastapi import APIRouter, Depends

from .context import ChatContext
from .employee_console import build_session_summaries
from .errors import SupportChatError
from .router import get_actor, get_context, raise_http
from .schemas import Actor, EmployeeSessionsResponse, STAFF_ROLES

router = APIRouter(prefix="/employee", tags=["Employee Console"])


@router.get("/access")
async def get_access(
    actor: Actor = Depends(get_actor),
    context: ChatContext = Depends(get_context),
):
    """Advisory check the console uses to decide whether to render"""
    try:
        roles = await context.store.get_roles(actor, actor.user_id)
    except SupportChatError as e:
        raise_http(e)
    return {
        "user_id": actor.user_id,
        "roles": sorted(roles),
        "is_employee": bool(set(roles) & STAFF_ROLES),
    }


@router.get("/sessions", response_model=EmployeeSessionsResponse)
async def get_escalated_sessions(
    actor: Actor = Depends(get_actor),
    context: ChatContext = Depends(get_context),
):
    """Escalated sessions newest first; rows the caller may not read are left out"""
    try:
        summaries = await build_session_summaries(context.store, actor)
    except SupportChatError as e:
        raise_http(e)
    return EmployeeSessionsResponse(
        total=len(summaries),
        sessions=[s.to_dict() for s in summaries],
    )
