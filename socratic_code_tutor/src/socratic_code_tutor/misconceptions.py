"""
Misconception Taxonomy and Confidence Ledger

Defines the fixed set of coding misconceptions the tutor tracks, the verdicts the
external classifier produces about them, and the per-session ledger that turns
those verdicts into confidence scores.

Update rule (per verdict):
- reinforced -> prior + DELTA_UP
- weakened   -> prior - DELTA_DOWN
- new        -> NEUTRAL_CONFIDENCE + DELTA_UP / 2
- absent     -> prior * DECAY

Active misconceptions that no verdict mentions decay by DECAY as well. A value at or
below RESOLUTION_THRESHOLD is removed from the ledger and reported as resolved.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class MisconceptionId(str, Enum):
    """Closed set of misconception tags. Declaration order is the tie-break order."""
    OFF_BY_ONE = "off-by-one"
    MUTATION_VS_REASSIGNMENT = "mutation-vs-reassignment"
    RETURN_VS_PRINT = "return-vs-print"
    ASYNC_VS_PARALLEL = "async-vs-parallel"
    NULL_CHECKS = "null-checks"
    SCOPE_SHADOWING = "scope-shadowing"
    STATEFULNESS = "statefulness"
    SIDE_EFFECTS = "side-effects"


class VerdictStatus(str, Enum):
    REINFORCED = "reinforced"
    WEAKENED = "weakened"
    NEW = "new"
    ABSENT = "absent"


@dataclass(frozen=True)
class MisconceptionDescriptor:
    """Static reference data for one misconception."""
    id: MisconceptionId
    label: str
    description: str
    examples: Tuple[str, ...]


MISCONCEPTION_TAXONOMY: Tuple[MisconceptionDescriptor, ...] = (
    MisconceptionDescriptor(
        id=MisconceptionId.OFF_BY_ONE,
        label="Off-by-one errors",
        description="Loops or indexing that miss the first/last element or iterate one step too far.",
        examples=("for (i <= length)", "index starts at 1 vs 0", "using <= instead of <"),
    ),
    MisconceptionDescriptor(
        id=MisconceptionId.MUTATION_VS_REASSIGNMENT,
        label="Mutation vs reassignment",
        description="Changing an object in place vs creating a new object or variable binding.",
        examples=("list.append vs list = list + [x]", "spreading vs push"),
    ),
    MisconceptionDescriptor(
        id=MisconceptionId.RETURN_VS_PRINT,
        label="Return vs print",
        description="Returning a value from a function vs printing or logging it.",
        examples=("missing return", "using print instead of returning"),
    ),
    MisconceptionDescriptor(
        id=MisconceptionId.ASYNC_VS_PARALLEL,
        label="Async does not mean parallel",
        description="Concurrency vs true parallelism; awaiting vs spawning threads.",
        examples=("await inside loop", "thinking async speeds CPU work"),
    ),
    MisconceptionDescriptor(
        id=MisconceptionId.NULL_CHECKS,
        label="Null/undefined checks",
        description="Accessing properties before null/undefined guards; missing default paths.",
        examples=("cannot read property of undefined", "optional chaining"),
    ),
    MisconceptionDescriptor(
        id=MisconceptionId.SCOPE_SHADOWING,
        label="Scope / shadowing",
        description="Variables shadowed or out of scope leading to wrong references.",
        examples=("let inside block not visible", "this vs outer variable"),
    ),
    MisconceptionDescriptor(
        id=MisconceptionId.STATEFULNESS,
        label="Stateful logic assumptions",
        description="Forgetting to reset or initialize state between calls/iterations.",
        examples=("stale cache", "accumulator not reset"),
    ),
    MisconceptionDescriptor(
        id=MisconceptionId.SIDE_EFFECTS,
        label="Side-effects and ordering",
        description="Order-dependent mutations cause unexpected outputs.",
        examples=("mutating input array then reusing",),
    ),
)

TAXONOMY_BY_ID: Dict[MisconceptionId, MisconceptionDescriptor] = {
    item.id: item for item in MISCONCEPTION_TAXONOMY
}

NEUTRAL_CONFIDENCE = 0.32
DELTA_UP = 0.22
DELTA_DOWN = 0.18
DECAY = 0.9
RESOLUTION_THRESHOLD = 0.18
# Products like 0.2 * 0.9 land a hair above 0.18 in binary floating point
RESOLUTION_EPSILON = 1e-9

DEFAULT_CERTAINTY = 0.5

GENERIC_FALLBACK_QUESTION = "What specific case still seems unclear?"

FALLBACK_QUESTIONS: Dict[MisconceptionId, str] = {
    MisconceptionId.OFF_BY_ONE: "What happens at the first and last index of the loop?",
    MisconceptionId.MUTATION_VS_REASSIGNMENT: "How does the data change after this line compared to before it?",
    MisconceptionId.RETURN_VS_PRINT: "Where does the value go after this function runs?",
    MisconceptionId.ASYNC_VS_PARALLEL: "Which parts actually wait for others to finish here?",
    MisconceptionId.NULL_CHECKS: "What if the value is null before this access?",
    MisconceptionId.SCOPE_SHADOWING: "Which variable name is actually read at this point?",
    MisconceptionId.STATEFULNESS: "When is the state reset between runs?",
    MisconceptionId.SIDE_EFFECTS: "What else changes when this code executes in this order?",
}


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(high, max(low, value))


def parse_misconception_id(value: Any) -> Optional[MisconceptionId]:
    """Map a raw tag to a MisconceptionId, or None if it is not in the taxonomy."""
    if isinstance(value, MisconceptionId):
        return value
    if not isinstance(value, str):
        return None
    try:
        return MisconceptionId(value.strip().lower())
    except ValueError:
        return None


def fallback_question(targeted: Optional[MisconceptionId]) -> str:
    """Canonical question for a misconception, used when generation gives up."""
    if targeted is None:
        return GENERIC_FALLBACK_QUESTION
    return FALLBACK_QUESTIONS.get(targeted, GENERIC_FALLBACK_QUESTION)


@dataclass(frozen=True)
class Verdict:
    """Classifier judgment about one misconception for the current turn."""
    id: MisconceptionId
    status: VerdictStatus
    certainty: float = DEFAULT_CERTAINTY
    rationale: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Verdict"]:
        """
        Build a Verdict from raw classifier output.

        Returns None for anything outside the taxonomy or the four statuses.
        Missing or unparseable certainty falls back to DEFAULT_CERTAINTY.
        """
        if not isinstance(data, dict):
            return None

        misconception_id = parse_misconception_id(data.get("id"))
        if misconception_id is None:
            return None

        raw_status = data.get("status")
        if not isinstance(raw_status, str):
            return None
        try:
            status = VerdictStatus(raw_status.strip().lower())
        except ValueError:
            return None

        certainty = DEFAULT_CERTAINTY
        raw_certainty = data.get("certainty")
        if isinstance(raw_certainty, (int, float)) and not isinstance(raw_certainty, bool):
            certainty = clamp(float(raw_certainty))

        rationale = data.get("rationale")
        if rationale is not None and not isinstance(rationale, str):
            rationale = str(rationale)

        return cls(id=misconception_id, status=status, certainty=certainty, rationale=rationale)


def verdicts_from_payload(items: Iterable[Any]) -> List[Verdict]:
    """Keep only well-formed verdicts, in their original order."""
    verdicts = []
    for item in items:
        verdict = Verdict.from_dict(item)
        if verdict is not None:
            verdicts.append(verdict)
    return verdicts


@dataclass
class LedgerUpdate:
    """Result of applying one turn of verdicts."""
    deltas: Dict[MisconceptionId, float] = field(default_factory=dict)
    resolution_events: List[MisconceptionId] = field(default_factory=list)


class ConfidenceLedger:
    """
    Per-session map of active misconceptions to a confidence in [0, 1].

    Only active tags are stored. Every stored value is strictly above
    RESOLUTION_THRESHOLD; a tag that drops to the threshold or below is removed.
    """

    def __init__(self, entries: Optional[Dict[MisconceptionId, float]] = None):
        self._entries: Dict[MisconceptionId, float] = {}
        for misconception_id, confidence in (entries or {}).items():
            value = clamp(confidence)
            if not self._is_resolved(value):
                self._entries[misconception_id] = value

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, misconception_id: object) -> bool:
        return misconception_id in self._entries

    def get(self, misconception_id: MisconceptionId) -> Optional[float]:
        return self._entries.get(misconception_id)

    def items(self) -> List[Tuple[MisconceptionId, float]]:
        """Active entries in taxonomy order."""
        return [
            (item.id, self._entries[item.id])
            for item in MISCONCEPTION_TAXONOMY
            if item.id in self._entries
        ]

    def is_empty(self) -> bool:
        return not self._entries

    @staticmethod
    def _is_resolved(value: float) -> bool:
        return value <= RESOLUTION_THRESHOLD + RESOLUTION_EPSILON

    @staticmethod
    def _next_value(prior: float, status: VerdictStatus) -> float:
        if status is VerdictStatus.REINFORCED:
            return prior + DELTA_UP
        if status is VerdictStatus.WEAKENED:
            return prior - DELTA_DOWN
        if status is VerdictStatus.NEW:
            return NEUTRAL_CONFIDENCE + DELTA_UP / 2
        return prior * DECAY

    def _store(self, misconception_id: MisconceptionId, prior: float, value: float, update: LedgerUpdate):
        value = clamp(value)
        update.deltas[misconception_id] = value - prior
        if self._is_resolved(value):
            self._entries.pop(misconception_id, None)
            if misconception_id not in update.resolution_events:
                update.resolution_events.append(misconception_id)
        else:
            self._entries[misconception_id] = value
            # A tag resolved earlier in this turn and revived by a later verdict is active again
            if misconception_id in update.resolution_events:
                update.resolution_events.remove(misconception_id)

    def apply_verdicts(self, verdicts: Iterable[Verdict]) -> LedgerUpdate:
        """
        Apply this turn's verdicts, then decay every active tag nobody mentioned.

        Mutates the ledger in place.

        Returns:
            LedgerUpdate with the signed delta per touched tag and the tags
            resolved this turn (in the order they resolved).
        """
        update = LedgerUpdate()
        mentioned = set()

        for verdict in verdicts:
            mentioned.add(verdict.id)
            prior = self._entries.get(verdict.id, NEUTRAL_CONFIDENCE)
            self._store(verdict.id, prior, self._next_value(prior, verdict.status), update)

        for item in MISCONCEPTION_TAXONOMY:
            if item.id in mentioned or item.id not in self._entries:
                continue
            prior = self._entries[item.id]
            self._store(item.id, prior, prior * DECAY, update)

        return update

    def pick_top(self) -> Optional[Tuple[MisconceptionId, float]]:
        """Tag with the strictly highest confidence; ties go to taxonomy order."""
        top: Optional[Tuple[MisconceptionId, float]] = None
        for misconception_id, confidence in self.items():
            if top is None or confidence > top[1]:
                top = (misconception_id, confidence)
        return top

    def snapshot(self) -> List[Dict[str, Any]]:
        return [
            {"id": misconception_id.value, "confidence": confidence}
            for misconception_id, confidence in self.items()
        ]
