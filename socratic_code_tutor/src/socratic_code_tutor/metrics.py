"""
Prometheus metrics for the tutoring engine.

Registered on the default prometheus_client registry and exposed by the
backend's /metrics endpoint.
"""

from prometheus_client import Counter, Gauge, Histogram, Summary

BLOCKED_PROMPTS = Counter(
    "socratic_blocked_prompts_total",
    "Turns where no generated question passed validation and a canned question was used",
)

ANSWER_SEEKING = Counter(
    "socratic_answer_seeking_total",
    "Student messages classified as direct solution requests",
)

QUESTION_REJECTIONS = Counter(
    "socratic_question_rejections_total",
    "Generated questions rejected by the shape validator",
    ["reason"],
)

PROVIDER_RETRIES = Counter(
    "socratic_provider_retries_total",
    "Retries caused by provider failures",
    ["operation", "kind"],
)

FALLBACK_QUESTIONS = Counter(
    "socratic_fallback_questions_total",
    "Canned fallback questions served",
    ["misconception"],
)

MISCONCEPTION_RESOLUTIONS = Counter(
    "socratic_misconception_resolutions_total",
    "Misconceptions whose confidence dropped below the resolution threshold",
    ["misconception"],
)

STRATEGY_SELECTIONS = Counter(
    "socratic_strategy_selections_total",
    "Dialogue strategies chosen for the next question",
    ["strategy"],
)

HINT_LEVEL = Histogram(
    "socratic_hint_level_distribution",
    "Generation attempts needed before a question was accepted",
    buckets=[1, 2, 3, 4, 5],
)

ACTIVE_SESSIONS = Gauge(
    "socratic_active_sessions",
    "Sessions currently held in memory",
)

TURNS_PER_SESSION = Summary(
    "socratic_turns_per_session",
    "Number of turns in a session at the time it ended",
)

SESSION_DROP_OFF = Counter(
    "socratic_session_drop_off_total",
    "Sessions ended after at most one turn",
)
