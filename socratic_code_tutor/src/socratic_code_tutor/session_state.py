"""
Session State Data Model

SessionState is the dialogue state the turn pipeline mutates once per turn.
SessionContext wraps it with the bookkeeping used for analytics and the
persistence mirror.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from socratic_code_tutor.intent_classifier import MessageIntent
from socratic_code_tutor.misconceptions import ConfidenceLedger

INITIAL_LEARNER_CONFIDENCE = 0.5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionState:
    """Per-conversation dialogue state."""
    ledger: ConfidenceLedger = field(default_factory=ConfidenceLedger)
    learner_confidence: float = INITIAL_LEARNER_CONFIDENCE  # global engagement estimate, not per-misconception
    last_question: Optional[str] = None
    summary: str = ""
    turn_index: int = 0

    def snapshot(self) -> Dict[str, Any]:
        return {
            "ledger": self.ledger.snapshot(),
            "learner_confidence": self.learner_confidence,
            "last_question": self.last_question,
            "summary": self.summary,
            "turn_index": self.turn_index,
        }


@dataclass
class SessionContext:
    """SessionState plus counters and timestamps. Counters only grow until the session ends."""
    session_id: str
    user_id: Optional[str] = None
    state: SessionState = field(default_factory=SessionState)
    started_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    intent_counts: Dict[str, int] = field(
        default_factory=lambda: {intent.value: 0 for intent in MessageIntent}
    )
    direct_answer_count: int = 0
    reasoning_turn_count: int = 0
    tokens_in: int = 0
    tokens_out: int = 0
    mirrored: bool = False

    @property
    def turn_count(self) -> int:
        return self.state.turn_index

    def record_intent(self, message_intent: MessageIntent, is_reasoning: bool) -> None:
        self.intent_counts[message_intent.value] = self.intent_counts.get(message_intent.value, 0) + 1
        if message_intent is MessageIntent.SOLUTION_REQUEST:
            self.direct_answer_count += 1
        if is_reasoning:
            self.reasoning_turn_count += 1

    def add_tokens(self, tokens_in: int, tokens_out: int) -> None:
        self.tokens_in += max(0, tokens_in)
        self.tokens_out += max(0, tokens_out)

    def touch(self, now: Optional[datetime] = None) -> None:
        self.last_activity_at = now or utcnow()

    def _percentage(self, count: int) -> float:
        if self.turn_count == 0:
            return 0.0
        return round(100.0 * count / self.turn_count, 2)

    @property
    def direct_answer_pct(self) -> float:
        return self._percentage(self.direct_answer_count)

    @property
    def reasoning_pct(self) -> float:
        return self._percentage(self.reasoning_turn_count)

    def metrics_row(self) -> Dict[str, Any]:
        """Aggregate metrics in the shape the persistence mirror stores."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "turn_count": self.turn_count,
            "intent_counts": dict(self.intent_counts),
            "direct_answer_count": self.direct_answer_count,
            "reasoning_turn_count": self.reasoning_turn_count,
            "direct_answer_pct": self.direct_answer_pct,
            "reasoning_pct": self.reasoning_pct,
            "tokens_in": self.tokens_in,
            "tokens_out": self.tokens_out,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }
