"""
Support Chat Schemas - Enums, records dan Pydantic models

File: support_chat/schemas.py
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Any, Dict
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum


# ============================================================================
# ENUMS
# ============================================================================

class SessionStatus(str, Enum):
    """Status sesi chat"""
    ACTIVE = "active"          # Chat dengan bot
    ESCALATED = "escalated"    # Menunggu / chat dengan employee
    RESOLVED = "resolved"      # Ditutup oleh employee


class MessageRole(str, Enum):
    """Author role sebuah message"""
    CUSTOMER = "customer"
    BOT = "bot"
    EMPLOYEE = "employee"


class UserRoleName(str, Enum):
    CUSTOMER = "customer"
    EMPLOYEE = "employee"
    ADMIN = "admin"


STAFF_ROLES = frozenset({UserRoleName.EMPLOYEE.value, UserRoleName.ADMIN.value})


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class SessionFallback(str, Enum):
    """What the bot does when a given session id is unusable"""
    FAIL = "fail"
    CREATE_NEW = "create_new"


# ============================================================================
# CALLER IDENTITY
# ============================================================================

@dataclass(frozen=True)
class Actor:
    """
    Caller identity seen by the store.

    The service actor is the Bot Responder's own identity and bypasses
    ownership checks, like a service-role key.
    """
    user_id: Optional[str]
    roles: frozenset = frozenset()
    is_service: bool = False

    @property
    def is_staff(self) -> bool:
        return bool(self.roles & STAFF_ROLES)

    @classmethod
    def service(cls) -> "Actor":
        return cls(user_id=None, is_service=True)


# ============================================================================
# STORE RECORDS
# ============================================================================

@dataclass(frozen=True)
class SessionRecord:
    id: str
    user_id: str
    status: SessionStatus
    escalated_to_employee: bool
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "escalated_to_employee": self.escalated_to_employee,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class MessageRecord:
    id: str
    session_id: str
    user_id: Optional[str]
    role: MessageRole
    content: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "role": self.role.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ProfileRecord:
    id: str
    full_name: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class BotReply:
    """Successful Bot Responder result"""
    message: str
    session_id: str
    need_escalation: bool


@dataclass
class Notice:
    """Toast shown by a client controller"""
    title: str
    description: str
    variant: str = "default"


@dataclass
class SessionSummary:
    """One row of the employee console listing"""
    id: str
    user_id: str
    status: SessionStatus
    created_at: datetime
    full_name: Optional[str] = None
    email: Optional[str] = None
    last_message: Optional[MessageRecord] = None

    @property
    def display_name(self) -> str:
        return self.full_name or "Клиент"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "profiles": {"full_name": self.full_name, "email": self.email},
            "last_message": (
                {
                    "content": self.last_message.content,
                    "created_at": self.last_message.created_at.isoformat(),
                }
                if self.last_message else None
            ),
        }


@dataclass
class TranscriptEntry:
    role: MessageRole
    content: str
    timestamp: datetime
    message_id: Optional[str] = None


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class BotRequest(BaseModel):
    """Request ke Bot Responder"""
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1)
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class MessageCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)


class RealtimeSubscribeRequest(BaseModel):
    """Message dari client realtime ke server"""
    type: str  # subscribe, unsubscribe
    channel: Optional[str] = None
    table: Optional[str] = None
    event: Optional[str] = "*"
    filter: Optional[str] = None


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class BotSuccessResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    session_id: str = Field(..., serialization_alias="sessionId")
    need_escalation: bool = Field(..., serialization_alias="needEscalation")


class BotErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    error: str
    need_escalation: bool = Field(True, serialization_alias="needEscalation")


class SessionResponse(BaseModel):
    id: str
    user_id: str
    status: SessionStatus
    escalated_to_employee: bool
    created_at: datetime


class MessageResponse(BaseModel):
    id: str
    session_id: str
    user_id: Optional[str] = None
    role: MessageRole
    content: str
    created_at: datetime


class MessageListResponse(BaseModel):
    session_id: str
    total_messages: int
    messages: List[MessageResponse]


class EmployeeSessionsResponse(BaseModel):
    total: int
    sessions: List[Dict[str, Any]]


def parse_timestamp(value) -> datetime:
    """Datetime from an event payload value (ISO string)"""
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc)
