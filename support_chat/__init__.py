"""
Support Chat Package - Bot-first customer support with human escalation

File: support_chat/__init__.py

Modules:
- schemas: Enums, records, Pydantic models
- session_store: Sessions, messages, profiles, roles (policy enforced)
- access_policy: Row-level access rules
- change_notifier: Row-change subscriptions
- bot_responder: Chat-bot turn (history, completion, escalation hint)
- customer_widget: Customer chat controller
- employee_console: Escalated chat listing and conversation view
- router / employee_router: HTTP and WebSocket endpoints
- context: Wiring of all of the above
"""

from .schemas import (
    Actor,
    BotReply,
    MessageRole,
    SessionFallback,
    SessionStatus,
    UserRoleName,
)

from .errors import (
    SupportChatError,
    Unauthorized,
    AccessDenied,
    ConsoleAccessDenied,
    SessionNotFound,
    InvariantViolation,
    StoreError,
    CompletionError,
    CompletionThrottled,
    CompletionBillingError,
    BotCallError,
)

from .change_notifier import (
    ChangeEvent,
    ChangeFilter,
    ChangeNotifier,
    Subscription,
)

from .session_store import SessionStore
from .bot_responder import BotResponder
from .customer_widget import CustomerChatWidget, WidgetState
from .employee_console import EmployeeConsole, ConversationView
from .context import ChatContext, build_context

__all__ = [
    # Schemas
    "Actor",
    "BotReply",
    "MessageRole",
    "SessionFallback",
    "SessionStatus",
    "UserRoleName",

    # Errors
    "SupportChatError",
    "Unauthorized",
    "AccessDenied",
    "ConsoleAccessDenied",
    "SessionNotFound",
    "InvariantViolation",
    "StoreError",
    "CompletionError",
    "CompletionThrottled",
    "CompletionBillingError",
    "BotCallError",

    # Notifier
    "ChangeEvent",
    "ChangeFilter",
    "ChangeNotifier",
    "Subscription",

    # Components
    "SessionStore",
    "BotResponder",
    "CustomerChatWidget",
    "WidgetState",
    "EmployeeConsole",
    "ConversationView",
    "ChatContext",
    "build_context",
]
