"""
Escalation Policy - Decide whether a bot reply suggests a human

File: support_chat/escalation.py

The bot is instructed to suggest contacting an employee when a question is
outside its FAQ topics; the default policy looks for those phrases in the
reply text.
"""

import re
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from .config import DEFAULT_ESCALATION_PHRASES


class EscalationPolicy(ABC):
    @abstractmethod
    def should_escalate(self, reply_text: str) -> bool:
        """True when the reply suggests handing over to an employee"""


class KeywordEscalationPolicy(EscalationPolicy):
    """
    Case-insensitive substring match against fixed phrases.

    A heuristic only: the model may phrase the suggestion differently.
    """

    def __init__(self, phrases: Optional[Iterable[str]] = None):
        self.phrases: List[str] = [p for p in (phrases or DEFAULT_ESCALATION_PHRASES) if p]
        self.patterns = [re.compile(re.escape(p), re.IGNORECASE) for p in self.phrases]

    def should_escalate(self, reply_text: str) -> bool:
        if not reply_text:
            return False
        for pattern in self.patterns:
            if pattern.search(reply_text):
                return True
        return False
