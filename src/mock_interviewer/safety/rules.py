"""
Data structures for content-safety rules.

A rule maps a regular expression over a user utterance to a category and an
action. Rules are evaluated in order; the first match decides.
"""

import re
from enum import Enum

from pydantic import BaseModel, Field, PrivateAttr

REDIRECT_MESSAGE = "I'm here to conduct your interview. Let's focus on that."
EARLY_END_MESSAGE = (
    "Thanks for your time. It seems like now might not be the best time to continue, "
    "so we'll wrap up here."
)


class GuardCategory(str, Enum):
    """Families of input the guard reacts to."""

    PROMPT_INJECTION = "prompt_injection"  # Instruction extraction or role hijacking
    NON_SERIOUS = "non_serious"  # Trolling, abuse, or refusal to take part


class GuardAction(str, Enum):
    """What the session does with a matching utterance."""

    ALLOW = "allow"
    REDIRECT = "redirect"
    END_INTERVIEW = "end_interview"


class GuardRule(BaseModel):
    """A single ordered content-safety rule."""

    name: str = Field(..., description="Human-readable rule name")
    category: GuardCategory = Field(..., description="Family the rule belongs to")
    pattern: str = Field(..., description="Case-insensitive regular expression")
    action: GuardAction = Field(..., description="Action taken on match")

    _compiled: re.Pattern = PrivateAttr()

    def model_post_init(self, __context) -> None:
        self._compiled = re.compile(self.pattern, re.IGNORECASE)

    def matches(self, text: str) -> bool:
        return bool(self._compiled.search(text or ""))


class GuardDecision(BaseModel):
    """Verdict for one user utterance."""

    action: GuardAction = Field(default=GuardAction.ALLOW, description="Action to take")
    category: GuardCategory | None = Field(default=None, description="Matched family")
    rule_name: str | None = Field(default=None, description="Name of the matched rule")
    message: str | None = Field(default=None, description="Canned reply to speak instead of a model turn")

    @property
    def should_end_interview(self) -> bool:
        return self.action is GuardAction.END_INTERVIEW

    @property
    def forward_to_model(self) -> bool:
        return self.action is GuardAction.ALLOW


DEFAULT_RULES: list[GuardRule] = [
    GuardRule(
        name="reveal_instructions",
        category=GuardCategory.PROMPT_INJECTION,
        pattern=r"\b(system|meta|hidden|initial)\s+(prompt|instructions?|message)\b",
        action=GuardAction.REDIRECT,
    ),
    GuardRule(
        name="ignore_previous",
        category=GuardCategory.PROMPT_INJECTION,
        pattern=r"\b(ignore|disregard|forget)\b.{0,30}\b(previous|prior|above|all|your)\b.{0,20}\b(instructions?|rules|prompt|directions)\b",
        action=GuardAction.REDIRECT,
    ),
    GuardRule(
        name="what_are_your_instructions",
        category=GuardCategory.PROMPT_INJECTION,
        pattern=r"\b(what|show|tell|repeat|print|reveal)\b.{0,20}\byour\s+(instructions|prompt|rules|guidelines|training|model)\b",
        action=GuardAction.REDIRECT,
    ),
    GuardRule(
        name="role_hijack",
        category=GuardCategory.PROMPT_INJECTION,
        pattern=r"\b(you\s+are\s+now\s+(a|an|my|the)|pretend\s+(to\s+be|you\s+are)|developer\s+mode|jailbreak)\b",
        action=GuardAction.REDIRECT,
    ),
    GuardRule(
        name="are_you_ai",
        category=GuardCategory.PROMPT_INJECTION,
        pattern=r"\bare\s+you\s+(an?\s+)?(ai|bot|robot|chat\s*gpt|language\s+model|llm)\b",
        action=GuardAction.REDIRECT,
    ),
    GuardRule(
        name="refuses_interview",
        category=GuardCategory.NON_SERIOUS,
        pattern=r"\b(this\s+interview\s+is\s+(a\s+joke|stupid|pointless)|i('m|\s+am)\s+(just\s+)?(trolling|kidding\s+around|messing\s+(with|around)))\b",
        action=GuardAction.END_INTERVIEW,
    ),
    GuardRule(
        name="abusive",
        category=GuardCategory.NON_SERIOUS,
        pattern=r"\b(f+u+c+k+\s+(you|off|this)|shut\s+up|screw\s+(you|this)|go\s+to\s+hell)\b",
        action=GuardAction.END_INTERVIEW,
    ),
    GuardRule(
        name="nonsense_filler",
        category=GuardCategory.NON_SERIOUS,
        pattern=r"^\s*((bla+h?|la+|lol+|ha(ha)+|meow|banana|poop|skibidi)[\s,.!?]*){3,}$",
        action=GuardAction.END_INTERVIEW,
    ),
]
