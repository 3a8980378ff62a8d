"""
Dialogue strategy selection.

Decision table, evaluated in order:
1. dominant misconception (confidence > 0.75) -> conceptual-contrast
2. debugging -> narrowing if the learner is confident (> 0.55), else diagnostic
3. explanation -> reflective
4. anything else -> diagnostic
"""

from enum import Enum
from typing import Optional

from socratic_code_tutor.intent_classifier import CoarseIntent


class Strategy(str, Enum):
    DIAGNOSTIC = "diagnostic"
    NARROWING = "narrowing"
    CONCEPTUAL_CONTRAST = "conceptual-contrast"
    REFLECTIVE = "reflective"


CONTRAST_THRESHOLD = 0.75
NARROWING_CONFIDENCE = 0.55


def choose_strategy(
    intent: CoarseIntent,
    learner_confidence: float,
    top_confidence: Optional[float],
) -> Strategy:
    if top_confidence is not None and top_confidence > CONTRAST_THRESHOLD:
        return Strategy.CONCEPTUAL_CONTRAST
    if intent == CoarseIntent.DEBUGGING:
        return Strategy.NARROWING if learner_confidence > NARROWING_CONFIDENCE else Strategy.DIAGNOSTIC
    if intent == CoarseIntent.EXPLANATION:
        return Strategy.REFLECTIVE
    return Strategy.DIAGNOSTIC
