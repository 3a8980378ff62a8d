"""
Question Shape Validation

Generated questions must be a single short question with no code, no steps,
no explanation, and must not repeat the previous question.
"""

import re
from dataclasses import dataclass
from typing import Optional, Set

MAX_QUESTION_LENGTH = 160
MAX_QUESTION_WORDS = 20
MAX_OVERLAP = 0.8
DEFAULT_QUESTION = "What happens when the list is empty?"

CODE_PATTERN = re.compile(r"```|\bcode\b|\bclass\b|<[^>]+>", re.IGNORECASE)
STEPS_PATTERN = re.compile(r"step\s+\d|first,|second,|third,", re.IGNORECASE)
EXPLANATION_PATTERN = re.compile(r"because|for example|you should", re.IGNORECASE)
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_EMPHASIS = re.compile(r"[`*]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None


def normalize_question(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    stripped = _NON_ALNUM.sub("", text.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def _word_set(normalized: str) -> Set[str]:
    return set(normalized.split()) if normalized else set()


def token_overlap(current: str, previous: str) -> float:
    """|A & B| / max(|A|, |B|) over normalized word sets."""
    current_words = _word_set(normalize_question(current))
    previous_words = _word_set(normalize_question(previous))
    largest = max(len(current_words), len(previous_words))
    if largest == 0:
        return 0.0
    return len(current_words & previous_words) / largest


class QuestionValidator:
    """Hard shape rules. The first failing rule names the rejection reason."""

    def hard_validate(self, question: str, previous_question: Optional[str] = None) -> ValidationResult:
        if question.count("?") > 1:
            return ValidationResult(False, "Multiple questions in one response")
        if CODE_PATTERN.search(question):
            return ValidationResult(False, "Contains code or code-like markers")
        if STEPS_PATTERN.search(question):
            return ValidationResult(False, "Contains step-by-step enumeration")
        if len(question) > MAX_QUESTION_LENGTH:
            return ValidationResult(False, f"Longer than {MAX_QUESTION_LENGTH} characters")
        if EXPLANATION_PATTERN.search(question):
            return ValidationResult(False, "Contains explanatory phrasing")
        if previous_question and self.is_repeat(question, previous_question):
            return ValidationResult(False, "Question too similar to previous")
        return ValidationResult(True)

    def is_repeat(self, question: str, previous_question: str) -> bool:
        if normalize_question(question) == normalize_question(previous_question):
            return True
        return token_overlap(question, previous_question) > MAX_OVERLAP


def sanitize_to_single_question(text: str) -> str:
    """
    Reduce raw model output to one well-formed question.

    Strips markdown emphasis, keeps only the sentence that ends at the first "?",
    caps it at MAX_QUESTION_WORDS words and forces a trailing "?". Output with no
    question at all is replaced by DEFAULT_QUESTION.
    """
    cleaned = _WHITESPACE.sub(" ", _EMPHASIS.sub("", text or "")).strip()

    question_end = cleaned.find("?")
    if question_end == -1:
        return DEFAULT_QUESTION

    head = cleaned[:question_end + 1]
    # "arr.length" is not a sentence boundary, "Good. What" is
    boundary = max(head.rfind(". "), head.rfind("! "))
    question = head[boundary + 1:].strip()

    words = question.split()
    if len(words) > MAX_QUESTION_WORDS:
        question = " ".join(words[:MAX_QUESTION_WORDS])

    if question and not question.endswith("?"):
        question += "?"

    return question or DEFAULT_QUESTION
