"""
Request/response schemas for the tutoring engine.

Raw request bodies are validated here before any domain value is built;
failures surface as InputError.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from socratic_code_tutor.errors import InputError


class HistoryItem(BaseModel):
    role: str
    text: str = Field(validation_alias=AliasChoices("text", "parts", "content"))

    @field_validator("role")
    @classmethod
    def role_not_blank(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("role must not be blank")
        return value


class TurnRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str
    history: List[HistoryItem] = Field(default_factory=list)
    context: Optional[str] = None
    session_id: Optional[str] = None
    turn_index: Optional[int] = Field(default=None, ge=0)
    user_id: Optional[str] = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value

    @field_validator("history", mode="before")
    @classmethod
    def history_default(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("session_id", "user_id")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None


class LedgerEntry(BaseModel):
    id: str
    confidence: float


class StateSnapshot(BaseModel):
    ledger: List[LedgerEntry]
    learner_confidence: float
    last_question: Optional[str] = None
    summary: str = ""
    turn_index: int


class TurnResponse(BaseModel):
    response: str
    session_id: str
    targeted_misconception: Optional[str] = None
    classifier_certainty: float = 0.0
    deltas: Dict[str, float] = Field(default_factory=dict)
    resolution_events: List[str] = Field(default_factory=list)
    state: StateSnapshot
    tokens_in: int = 0
    tokens_out: int = 0
    intent: str
    confidence_before: Optional[float] = None
    confidence_after: Optional[float] = None
    resolved: bool = False
    all_doubts_resolved: bool = False
    is_new_session: bool = False
    student_understood: bool = False
    learning_summary: Optional[str] = None


class SessionSummary(BaseModel):
    session_id: str
    turn_count: int
    direct_answer_pct: float
    reasoning_pct: float
    tokens_in: int
    tokens_out: int
    started_at: datetime
    ended_at: Optional[datetime] = None


class NewDoubtRequest(BaseModel):
    current_session_id: Optional[str] = None
    user_id: Optional[str] = None


class NewDoubtResult(BaseModel):
    previous_session_id: Optional[str] = None
    session_id: str
    previous_summary: Optional[SessionSummary] = None


def parse_turn_request(payload: Any) -> TurnRequest:
    """Validate a raw request body, raising InputError on the first problem."""
    if isinstance(payload, TurnRequest):
        return payload
    if not isinstance(payload, dict):
        raise InputError("Request body must be a JSON object")
    try:
        return TurnRequest.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise InputError(f"Invalid request: {field or 'body'}: {first.get('msg')}", field=field) from e
