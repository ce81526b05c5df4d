"""
Content-safety guard.

Sits between transcript finalization and the outbound turn request. It is a
plain ordered rule evaluator: prompt-injection attempts get a canned redirect
and are never forwarded to the model, non-serious input ends the interview
with a polite canned message.
"""

from __future__ import annotations

import logging
from typing import Iterable

from mock_interviewer.safety.rules import (
    DEFAULT_RULES,
    EARLY_END_MESSAGE,
    REDIRECT_MESSAGE,
    GuardAction,
    GuardDecision,
    GuardRule,
)

logger = logging.getLogger(__name__)


class ContentSafetyGuard:
    """Ordered ``(pattern, category) -> action`` evaluator."""

    def __init__(
        self,
        rules: Iterable[GuardRule] | None = None,
        *,
        redirect_message: str = REDIRECT_MESSAGE,
        end_message: str = EARLY_END_MESSAGE,
    ) -> None:
        self._rules: list[GuardRule] = list(DEFAULT_RULES if rules is None else rules)
        self._redirect_message = redirect_message
        self._end_message = end_message

    @property
    def rules(self) -> list[GuardRule]:
        return list(self._rules)

    def add_rule(self, rule: GuardRule, *, first: bool = False) -> None:
        if first:
            self._rules.insert(0, rule)
        else:
            self._rules.append(rule)

    def evaluate(self, text: str) -> GuardDecision:
        """
        Classify one finalized user utterance.

        Args:
            text: Transcript text.

        Returns:
            The decision of the first matching rule, or ``ALLOW``.
        """
        for rule in self._rules:
            if rule.action is GuardAction.ALLOW or not rule.matches(text):
                continue
            message = self._end_message if rule.action is GuardAction.END_INTERVIEW else self._redirect_message
            logger.info(f"[GUARD] rule={rule.name} category={rule.category.value} action={rule.action.value}")
            return GuardDecision(
                action=rule.action,
                category=rule.category,
                rule_name=rule.name,
                message=message,
            )
        return GuardDecision()
