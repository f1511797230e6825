"""
Session Store - Chat sessions, messages, profiles & roles

File: support_chat/session_store.py

Responsibilities:
- Single-row inserts/updates over SQLAlchemy
- Row-level policy check before every operation
- Publish a ChangeEvent after each commit
"""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import asc, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .access_policy import RowLevelPolicy
from .change_notifier import ChangeEvent, ChangeNotifier
from .errors import AccessDenied, InvariantViolation, SessionNotFound, StoreError
from .models import ChatMessageModel, ChatSessionModel, ProfileModel, UserRoleModel
from .schemas import (
    Actor,
    ChangeType,
    MessageRecord,
    MessageRole,
    ProfileRecord,
    SessionRecord,
    SessionStatus,
    UserRoleName,
)

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_record(row: ChatSessionModel) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        status=SessionStatus(row.status),
        escalated_to_employee=bool(row.escalated_to_employee),
        created_at=_as_utc(row.created_at),
    )


def _message_record(row: ChatMessageModel) -> MessageRecord:
    return MessageRecord(
        id=row.id,
        session_id=row.session_id,
        user_id=row.user_id,
        role=MessageRole(row.role),
        content=row.content,
        created_at=_as_utc(row.created_at),
    )


class MonotonicClock:
    """UTC timestamps that never repeat or go backwards within a process"""

    def __init__(self):
        self._last: Optional[datetime] = None
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            now = datetime.now(timezone.utc)
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
            return now


class SessionStore:
    """
    Store facade used by the Bot Responder, customer widget and employee
    console. Construct one per process and pass it around explicitly.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        notifier: ChangeNotifier,
        policy: Optional[RowLevelPolicy] = None,
        clock: Optional[MonotonicClock] = None,
    ):
        self._session_factory = session_factory
        self.notifier = notifier
        self.policy = policy or RowLevelPolicy()
        self._clock = clock or MonotonicClock()

    @contextmanager
    def _db(self):
        """DB session with commit/rollback; SQLAlchemy errors become StoreError"""
        db: Session = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Store error: {e}")
            raise StoreError(str(e)) from e
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _publish(self, table: str, change: ChangeType, new: dict, old: Optional[dict] = None):
        self.notifier.publish(ChangeEvent(table=table, type=change, new=new, old=old))

    def _load_session(self, db: Session, session_id: str) -> Optional[ChatSessionModel]:
        return db.query(ChatSessionModel).filter(ChatSessionModel.id == session_id).first()

    def _require_readable(self, db: Session, actor: Actor, session_id: str) -> SessionRecord:
        row = self._load_session(db, session_id)
        if row is None:
            raise SessionNotFound(session_id)
        record = _session_record(row)
        if not self.policy.can_read_session(actor, record):
            # Invisible rows look absent
            raise SessionNotFound(session_id)
        return record

    # =========================================================================
    # SESSIONS
    # =========================================================================

    async def create_session(self, actor: Actor, user_id: Optional[str] = None) -> SessionRecord:
        """Create new session with status=active"""
        owner = user_id or actor.user_id
        if not owner:
            raise AccessDenied("Session owner is required")
        if not self.policy.can_create_session(actor, owner):
            raise AccessDenied("Cannot create a session for another user")

        with self._db() as db:
            row = ChatSessionModel(
                id=str(uuid.uuid4()),
                user_id=owner,
                status=SessionStatus.ACTIVE.value,
                escalated_to_employee=False,
                created_at=self._clock.now(),
            )
            db.add(row)
            db.flush()
            record = _session_record(row)

        logger.info(f"🆕 Session {record.id} created for user {owner}")
        self._publish("chat_sessions", ChangeType.INSERT, record.to_dict())
        return record

    async def get_session(self, actor: Actor, session_id: str) -> Optional[SessionRecord]:
        """Get session; None when absent or not visible to actor"""
        with self._db() as db:
            row = self._load_session(db, session_id)
            if row is None:
                return None
            record = _session_record(row)
        if not self.policy.can_read_session(actor, record):
            return None
        return record

    async def update_session(
        self,
        actor: Actor,
        session_id: str,
        status: Optional[SessionStatus] = None,
        escalated_to_employee: Optional[bool] = None,
    ) -> SessionRecord:
        """Update status / escalation flag of one session"""
        with self._db() as db:
            row = self._load_session(db, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            old = _session_record(row)

            if not self.policy.can_read_session(actor, old):
                raise SessionNotFound(session_id)
            if not self.policy.can_update_session(actor, old, status, escalated_to_employee):
                raise AccessDenied(f"Update not allowed on session {session_id}")

            new_status = status or old.status
            new_escalated = old.escalated_to_employee if escalated_to_employee is None else escalated_to_employee

            if new_escalated and new_status == SessionStatus.ACTIVE:
                raise InvariantViolation("Escalated session cannot be active")
            if old.escalated_to_employee and not new_escalated:
                raise InvariantViolation("Escalation cannot be undone")

            row.status = new_status.value
            row.escalated_to_employee = new_escalated
            db.flush()
            record = _session_record(row)

        self._publish("chat_sessions", ChangeType.UPDATE, record.to_dict(), old.to_dict())
        return record

    async def escalate_session(self, actor: Actor, session_id: str) -> SessionRecord:
        record = await self.update_session(
            actor, session_id,
            status=SessionStatus.ESCALATED,
            escalated_to_employee=True,
        )
        logger.info(f"🙋 Session {session_id} escalated to employee")
        return record

    async def resolve_session(self, actor: Actor, session_id: str) -> SessionRecord:
        record = await self.update_session(actor, session_id, status=SessionStatus.RESOLVED)
        logger.info(f"✅ Session {session_id} resolved by {actor.user_id or 'service'}")
        return record

    async def list_escalated_sessions(self, actor: Actor) -> List[SessionRecord]:
        """All escalated sessions visible to actor, newest first"""
        with self._db() as db:
            rows = (
                db.query(ChatSessionModel)
                .filter(ChatSessionModel.escalated_to_employee.is_(True))
                .order_by(desc(ChatSessionModel.created_at))
                .all()
            )
            records = [_session_record(r) for r in rows]
        return [r for r in records if self.policy.can_read_session(actor, r)]

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def insert_message(
        self,
        actor: Actor,
        session_id: str,
        role: MessageRole,
        content: str,
        user_id: Optional[str] = None,
    ) -> MessageRecord:
        """Append one message; user_id defaults to the actor"""
        with self._db() as db:
            session = self._require_readable(db, actor, session_id)
            if not self.policy.can_insert_message(actor, session, role):
                raise AccessDenied(f"Cannot insert {role.value} message into session {session_id}")

            row = ChatMessageModel(
                id=str(uuid.uuid4()),
                session_id=session_id,
                user_id=user_id or actor.user_id,
                role=role.value,
                content=content,
                created_at=self._clock.now(),
            )
            db.add(row)
            db.flush()
            record = _message_record(row)

        self._publish("chat_messages", ChangeType.INSERT, record.to_dict())
        return record

    async def list_messages(
        self,
        actor: Actor,
        session_id: str,
        limit: Optional[int] = None,
    ) -> List[MessageRecord]:
        """
        Messages ascending by created_at.

        With limit, the most recent `limit` messages (still ascending).
        """
        with self._db() as db:
            session = self._require_readable(db, actor, session_id)
            if not self.policy.can_read_messages(actor, session):
                raise AccessDenied(f"Cannot read messages of session {session_id}")
            query = db.query(ChatMessageModel).filter(ChatMessageModel.session_id == session_id)
            if limit is None:
                rows = query.order_by(asc(ChatMessageModel.created_at)).all()
            else:
                rows = query.order_by(desc(ChatMessageModel.created_at)).limit(limit).all()
                rows.reverse()
            return [_message_record(r) for r in rows]

    async def get_last_message(self, actor: Actor, session_id: str) -> Optional[MessageRecord]:
        messages = await self.list_messages(actor, session_id, limit=1)
        return messages[0] if messages else None

    # =========================================================================
    # PROFILES & ROLES
    # =========================================================================

    async def get_profile(self, actor: Actor, user_id: str) -> Optional[ProfileRecord]:
        if not self.policy.can_read_profile(actor, user_id):
            return None
        with self._db() as db:
            row = db.query(ProfileModel).filter(ProfileModel.id == user_id).first()
            if row is None:
                return None
            return ProfileRecord(id=row.id, full_name=row.full_name, email=row.email)

    async def upsert_profile(
        self,
        actor: Actor,
        user_id: str,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> ProfileRecord:
        if not self.policy.can_write_profile(actor, user_id):
            raise AccessDenied("Cannot edit another user's profile")
        with self._db() as db:
            row = db.query(ProfileModel).filter(ProfileModel.id == user_id).first()
            if row is None:
                row = ProfileModel(id=user_id)
                db.add(row)
            row.full_name = full_name
            row.email = email
            db.flush()
            return ProfileRecord(id=row.id, full_name=row.full_name, email=row.email)

    async def get_roles(self, actor: Actor, user_id: str) -> List[str]:
        if not self.policy.can_read_roles(actor, user_id):
            return []
        with self._db() as db:
            rows = db.query(UserRoleModel).filter(UserRoleModel.user_id == user_id).all()
            return [r.role for r in rows]

    async def grant_role(self, actor: Actor, user_id: str, role: UserRoleName) -> None:
        if not self.policy.can_grant_role(actor):
            raise AccessDenied("Only the service identity grants roles")
        with self._db() as db:
            exists = (
                db.query(UserRoleModel)
                .filter(UserRoleModel.user_id == user_id, UserRoleModel.role == role.value)
                .first()
            )
            if exists is None:
                db.add(UserRoleModel(id=str(uuid.uuid4()), user_id=user_id, role=role.value))
        logger.info(f"🔑 Role {role.value} granted to {user_id}")

    async def resolve_actor(self, user_id: str) -> Actor:
        """Actor with roles loaded from user_roles"""
        roles = await self.get_roles(Actor.service(), user_id)
        return Actor(user_id=user_id, roles=frozenset(roles))
