"""
Support Chat Errors - Domain exceptions

File: support_chat/errors.py
"""

from typing import Optional


class SupportChatError(Exception):
    """Base class untuk semua error support chat"""


# ============================================================================
# AUTH / ACCESS
# ============================================================================

class Unauthorized(SupportChatError):
    """Caller credential missing or invalid"""


class AccessDenied(SupportChatError):
    """Row-level policy rejected the operation"""


class ConsoleAccessDenied(AccessDenied):
    """Caller has no employee/admin role; the console redirects away"""

    def __init__(self, message: str = "Access denied", redirect_to: str = "/"):
        super().__init__(message)
        self.redirect_to = redirect_to


# ============================================================================
# STORE
# ============================================================================

class SessionNotFound(SupportChatError):
    def __init__(self, session_id: Optional[str]):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class InvariantViolation(SupportChatError):
    """Update would break a data-model invariant"""


class StoreError(SupportChatError):
    """Wrapped database failure"""


# ============================================================================
# COMPLETION BACKEND
# ============================================================================

class CompletionError(SupportChatError):
    """Completion backend failed (unknown cause)"""

    status_code = 500


class CompletionThrottled(CompletionError):
    status_code = 429


class CompletionBillingError(CompletionError):
    status_code = 402


class BotCallError(SupportChatError):
    """Bot Responder call failed as seen from the widget"""

    def __init__(self, message: str, status_code: int = 500, need_escalation: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.need_escalation = need_escalation
