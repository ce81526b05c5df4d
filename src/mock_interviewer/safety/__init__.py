"""Content-safety guard for user utterances."""

from mock_interviewer.safety.guard import ContentSafetyGuard
from mock_interviewer.safety.rules import (
    DEFAULT_RULES,
    EARLY_END_MESSAGE,
    REDIRECT_MESSAGE,
    GuardAction,
    GuardCategory,
    GuardDecision,
    GuardRule,
)

__all__ = [
    "ContentSafetyGuard",
    "DEFAULT_RULES",
    "EARLY_END_MESSAGE",
    "REDIRECT_MESSAGE",
    "GuardAction",
    "GuardCategory",
    "GuardDecision",
    "GuardRule",
]
