# support_chat/models.py
import uuid

from sqlalchemy import Column, String, Text, DateTime, Boolean, ForeignKey, Index, UniqueConstraint
from sqlalchemy.sql import func

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class ChatSessionModel(Base):
    """Sesi chat customer (bot -> employee)"""
    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)

    status = Column(String(20), nullable=False, default="active")
    escalated_to_employee = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_chat_sessions_escalated_created", "escalated_to_employee", "created_at"),
    )

    def __repr__(self):
        return f"<ChatSession id={self.id} status={self.status}>"


class ChatMessageModel(Base):
    """Append-only message dalam sesi"""
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(36), ForeignKey("chat_sessions.id"), nullable=False)
    user_id = Column(String(64), nullable=True)

    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_chat_messages_session_created", "session_id", "created_at"),
    )

    def __repr__(self):
        return f"<ChatMessage session={self.session_id} role={self.role}>"


class ProfileModel(Base):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    full_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)

    def __repr__(self):
        return f"<Profile id={self.id}>"


class UserRoleModel(Base):
    __tablename__ = "user_roles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    role = Column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )

    def __repr__(self):
        return f"<UserRole user={self.user_id} role={self.role}>"
