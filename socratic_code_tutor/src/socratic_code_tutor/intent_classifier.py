"""
Intent Classification

Heuristic classification of a student message:
- coarse intent (debugging / explanation / unknown) drives strategy selection
- message intent (solution_request / debugging / conceptual / clarification) drives
  analytics and answer-seeking detection
- learner confidence is nudged by self-doubt and hedging phrasing

The heuristics sit behind the IntentClassifier interface so they can be swapped
without touching the turn pipeline.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

from socratic_code_tutor.misconceptions import clamp


class CoarseIntent(str, Enum):
    DEBUGGING = "debugging"
    EXPLANATION = "explanation"
    UNKNOWN = "unknown"


class MessageIntent(str, Enum):
    SOLUTION_REQUEST = "solution_request"
    DEBUGGING = "debugging"
    CONCEPTUAL = "conceptual"
    CLARIFICATION = "clarification"


SELF_DOUBT_PENALTY = 0.08
HEDGING_BONUS = 0.04

_LINE_BREAKS = re.compile(r"[\t\n\r\v\f]")
_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F]")
_WHITESPACE = re.compile(r"\s+")

SOLUTION_REQUEST_PATTERN = re.compile(
    r"give me|just tell|what is the answer|full solution|complete solution"
    r"|show (me )?the code|write the code|fix it for me"
)
DEBUGGING_PATTERN = re.compile(r"error|exception|stack trace|bug|fails?|fix|debug|crash")
CLARIFICATION_PATTERN = re.compile(r"meaning|clarif(y|ication)|what do you mean|which one")
EXPLANATION_PATTERN = re.compile(
    r"\bexplain|^\W*why\b"
    r"|\bwhy\s+(is|isn't|does|doesn't|do|don't|did|didn't|are|aren't|was|wasn't|were"
    r"|would|wouldn't|can|can't|could|should|will|won't)\b"
)
SELF_DOUBT_PATTERN = re.compile(r"not sure|confused|stuck")
HEDGING_PATTERN = re.compile(r"\bi think\b|\bmaybe\b")
REASONING_PATTERN = re.compile(
    r"\bbecause\b|\bi think\b|\bso that\b|\bwhich means\b|\bthat's why\b|\bsince\b|\bi guess\b"
)


def sanitize_user_input(text: str) -> str:
    """Strip control characters and collapse whitespace."""
    if not text:
        return ""
    cleaned = _LINE_BREAKS.sub(" ", text)
    cleaned = _CONTROL_CHARS.sub("", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


@dataclass(frozen=True)
class IntentResult:
    intent: CoarseIntent
    message_intent: MessageIntent
    learner_confidence: float
    is_reasoning: bool = False

    @property
    def is_answer_seeking(self) -> bool:
        return self.message_intent is MessageIntent.SOLUTION_REQUEST


class IntentClassifier(ABC):
    """Classifies one sanitized message given the learner's prior confidence."""

    @abstractmethod
    def classify(self, message: str, prior_confidence: float) -> IntentResult:
        pass


class HeuristicIntentClassifier(IntentClassifier):
    """Regex-based classifier. Cheap, deterministic, no external calls."""

    def classify(self, message: str, prior_confidence: float) -> IntentResult:
        lower = message.lower()
        return IntentResult(
            intent=self.coarse_intent(message),
            message_intent=self.message_intent(message),
            learner_confidence=self.adjust_confidence(lower, prior_confidence),
            is_reasoning=bool(REASONING_PATTERN.search(lower)),
        )

    def coarse_intent(self, message: str) -> CoarseIntent:
        intent = CoarseIntent.UNKNOWN
        if "?" in message:
            intent = CoarseIntent.DEBUGGING
        # Explanation requests win over a bare question mark
        if EXPLANATION_PATTERN.search(message.lower()):
            intent = CoarseIntent.EXPLANATION
        return intent

    def message_intent(self, message: str) -> MessageIntent:
        lower = message.lower()
        if SOLUTION_REQUEST_PATTERN.search(lower):
            return MessageIntent.SOLUTION_REQUEST
        if DEBUGGING_PATTERN.search(lower) or "?" in message:
            return MessageIntent.DEBUGGING
        if CLARIFICATION_PATTERN.search(lower):
            return MessageIntent.CLARIFICATION
        return MessageIntent.CONCEPTUAL

    def adjust_confidence(self, lower: str, prior_confidence: float) -> float:
        confidence = prior_confidence
        if SELF_DOUBT_PATTERN.search(lower):
            confidence -= SELF_DOUBT_PENALTY
        if HEDGING_PATTERN.search(lower):
            confidence += HEDGING_BONUS
        return clamp(confidence)
