"""
Row-Level Policy - Authorization boundary for the session store

File: support_chat/access_policy.py

Every store operation asks this policy first. Client-side role checks
(employee console) are only a redirect; this is where access is decided.
"""

from typing import Optional

from .schemas import (
    Actor,
    MessageRole,
    SessionRecord,
    SessionStatus,
)


class RowLevelPolicy:
    """
    Rules:
    - Session: owner and staff may read; only the owner (or service) creates;
      owner may escalate; staff may escalate or resolve.
    - Message: readable by whoever may read the session. Owner inserts
      customer messages, staff inserts employee messages into escalated
      sessions, only the service inserts bot messages.
    - Profile / roles: self and staff may read; only service grants roles.
    """

    # =========================================================================
    # SESSIONS
    # =========================================================================

    def can_read_session(self, actor: Actor, session: SessionRecord) -> bool:
        if actor.is_service or actor.is_staff:
            return True
        return actor.user_id is not None and actor.user_id == session.user_id

    def can_create_session(self, actor: Actor, user_id: str) -> bool:
        if actor.is_service:
            return True
        return actor.user_id is not None and actor.user_id == user_id

    def can_update_session(
        self,
        actor: Actor,
        session: SessionRecord,
        status: Optional[SessionStatus] = None,
        escalated_to_employee: Optional[bool] = None,
    ) -> bool:
        if actor.is_service:
            return True

        is_owner = actor.user_id is not None and actor.user_id == session.user_id

        # Owner may only escalate
        if is_owner and not actor.is_staff:
            if status not in (None, SessionStatus.ESCALATED):
                return False
            if escalated_to_employee is False:
                return False
            return True

        return actor.is_staff

    # =========================================================================
    # MESSAGES
    # =========================================================================

    def can_read_messages(self, actor: Actor, session: SessionRecord) -> bool:
        return self.can_read_session(actor, session)

    def can_insert_message(self, actor: Actor, session: SessionRecord, role: MessageRole) -> bool:
        if actor.is_service:
            return True

        if role == MessageRole.BOT:
            return False

        if role == MessageRole.CUSTOMER:
            return actor.user_id is not None and actor.user_id == session.user_id

        # employee
        return actor.is_staff and session.escalated_to_employee

    # =========================================================================
    # PROFILES & ROLES
    # =========================================================================

    def can_read_profile(self, actor: Actor, user_id: str) -> bool:
        return actor.is_service or actor.is_staff or actor.user_id == user_id

    def can_write_profile(self, actor: Actor, user_id: str) -> bool:
        return actor.is_service or actor.user_id == user_id

    def can_read_roles(self, actor: Actor, user_id: str) -> bool:
        return actor.is_service or actor.is_staff or actor.user_id == user_id

    def can_grant_role(self, actor: Actor) -> bool:
        return actor.is_service
