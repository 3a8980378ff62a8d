"""
Generation Orchestrator

Wraps the external question service with bounded retries:
- generate: sanitize + validate each candidate; invalid candidates are retried
  immediately, overload is retried with exponential backoff (1s, 2s, 4s, ...),
  other errors consume an attempt. Exhaustion serves a canned question for the
  targeted misconception.
- classify: no validation gate. Overload is retried with the same backoff and
  degrades to "no verdicts"; any other failure propagates, since a strategy
  cannot be chosen safely without the classifier.
- summarize: single best-effort call.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from socratic_code_tutor import metrics
from socratic_code_tutor.errors import PermanentProviderError, ProviderError, TransientProviderError
from socratic_code_tutor.llm_service import QuestionService, ServiceReply, TokenUsage
from socratic_code_tutor.misconceptions import (
    MisconceptionId,
    Verdict,
    fallback_question,
    verdicts_from_payload,
)
from socratic_code_tutor.question_validator import (
    EXPLANATION_PATTERN,
    MAX_QUESTION_LENGTH,
    QuestionValidator,
    sanitize_to_single_question,
)

logger = logging.getLogger(__name__)

COMPLETION_MARKERS = ("that's correct", "that is correct", "exactly right")

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_EMPHASIS = re.compile(r"[`*]")
_WHITESPACE = re.compile(r"\s+")


@dataclass
class ClassificationOutcome:
    verdicts: List[Verdict] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    degraded: bool = False

    def certainty_for(self, misconception_id: Optional[MisconceptionId]) -> float:
        """Certainty of the verdict on a tag, else the highest certainty, else 0."""
        if not self.verdicts:
            return 0.0
        if misconception_id is not None:
            for verdict in self.verdicts:
                if verdict.id == misconception_id:
                    return verdict.certainty
        return max(verdict.certainty for verdict in self.verdicts)


@dataclass
class GenerationOutcome:
    question: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    attempts: int = 0
    fallback: bool = False
    understood: bool = False
    rejections: List[str] = field(default_factory=list)


def parse_verdict_text(raw: Optional[str]) -> List[Verdict]:
    """
    Parse classifier output into verdicts.

    Accepts {"verdicts": [...]} or a bare list, optionally inside a ```json fence.
    Anything else yields an empty list.
    """
    if not raw or not raw.strip():
        return []
    text = _FENCE.sub("", raw.strip())
    try:
        payload: Any = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        logger.warning("⚠️ [GenerationOrchestrator] Classifier returned non-JSON output, ignoring it")
        return []

    if isinstance(payload, dict):
        payload = payload.get("verdicts", [])
    if not isinstance(payload, list):
        return []
    return verdicts_from_payload(payload)


def completion_confirmation(text: Optional[str]) -> Optional[str]:
    """
    Return the confirmation sentence if the model says the student got it.

    Only the first sentence is kept, and only when it passes the question length
    and explanation rules; otherwise the marker alone is returned.
    """
    cleaned = _WHITESPACE.sub(" ", _EMPHASIS.sub("", text or "")).strip()
    lower = cleaned.lower()
    marker = next((marker for marker in COMPLETION_MARKERS if lower.startswith(marker)), None)
    if marker is None:
        return None

    bare = cleaned[:len(marker)] + "!"
    ends = [index for index in (cleaned.find(terminal) for terminal in ".!?") if index != -1]
    if not ends:
        return bare
    end = min(ends)
    sentence = cleaned[:end + 1]
    if cleaned[end] == "?" or len(sentence) > MAX_QUESTION_LENGTH or EXPLANATION_PATTERN.search(sentence):
        return bare
    return sentence


class GenerationOrchestrator:
    """Retry, backoff and fallback policy around a QuestionService."""

    def __init__(
        self,
        service: QuestionService,
        validator: Optional[QuestionValidator] = None,
        max_attempts: int = 3,
        classify_max_attempts: int = 3,
        backoff_base_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1 or classify_max_attempts < 1:
            raise ValueError("attempt counts must be at least 1")
        self.service = service
        self.validator = validator or QuestionValidator()
        self.max_attempts = max_attempts
        self.classify_max_attempts = classify_max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base_seconds * (2 ** (attempt - 1))

    async def classify(
        self,
        message: str,
        context: Optional[str],
        prior_summary: str,
        last_question: Optional[str],
    ) -> ClassificationOutcome:
        for attempt in range(1, self.classify_max_attempts + 1):
            try:
                reply = await self.service.classify(message, context, prior_summary, last_question)
            except TransientProviderError as e:
                if attempt < self.classify_max_attempts:
                    delay = self.backoff_delay(attempt)
                    metrics.PROVIDER_RETRIES.labels(operation="classify", kind="transient").inc()
                    logger.warning(
                        f"⚠️ [GenerationOrchestrator] Classifier overloaded, retrying in {delay:.1f}s "
                        f"(attempt {attempt}/{self.classify_max_attempts})"
                    )
                    await self.sleep(delay)
                    continue
                logger.error(f"❌ [GenerationOrchestrator] Classifier still overloaded after {attempt} attempts: {e}")
                return ClassificationOutcome(degraded=True)
            except ProviderError as e:
                logger.error(f"❌ [GenerationOrchestrator] Classification failed: {e}")
                raise
            except Exception as e:
                logger.error(f"❌ [GenerationOrchestrator] Classification failed: {type(e).__name__}: {e}")
                raise PermanentProviderError(str(e), operation="classify") from e

            verdicts = parse_verdict_text(reply.text)
            logger.debug(f"[GenerationOrchestrator] Classifier verdicts: {[(v.id.value, v.status.value) for v in verdicts]}")
            return ClassificationOutcome(verdicts=verdicts, usage=reply.usage)

        return ClassificationOutcome(degraded=True)

    async def generate(
        self,
        targeted: Optional[MisconceptionId],
        strategy: str,
        message: str,
        summary: str,
        context: Optional[str],
        last_question: Optional[str],
    ) -> GenerationOutcome:
        usage = TokenUsage()
        rejections: List[str] = []

        for attempt in range(1, self.max_attempts + 1):
            try:
                reply = await self.service.generate(targeted, strategy, message, summary, context, last_question)
            except TransientProviderError as e:
                if attempt < self.max_attempts:
                    delay = self.backoff_delay(attempt)
                    metrics.PROVIDER_RETRIES.labels(operation="generate", kind="transient").inc()
                    logger.warning(
                        f"⚠️ [GenerationOrchestrator] Generator overloaded, retrying in {delay:.1f}s "
                        f"(attempt {attempt}/{self.max_attempts})"
                    )
                    await self.sleep(delay)
                else:
                    logger.error(f"❌ [GenerationOrchestrator] Generator still overloaded after {attempt} attempts: {e}")
                continue
            except Exception as e:
                metrics.PROVIDER_RETRIES.labels(operation="generate", kind="permanent").inc()
                logger.error(
                    f"❌ [GenerationOrchestrator] Generation error on attempt {attempt}/{self.max_attempts}: "
                    f"{type(e).__name__}: {e}"
                )
                continue

            usage.add(reply.usage)

            confirmation = completion_confirmation(reply.text)
            if confirmation:
                logger.info("✅ [GenerationOrchestrator] Student reached the solution")
                return GenerationOutcome(
                    question=confirmation,
                    usage=usage,
                    attempts=attempt,
                    understood=True,
                    rejections=rejections,
                )

            question = sanitize_to_single_question(reply.text)
            result = self.validator.hard_validate(question, last_question)
            if result.valid:
                metrics.HINT_LEVEL.observe(attempt)
                return GenerationOutcome(question=question, usage=usage, attempts=attempt, rejections=rejections)

            rejections.append(result.reason)
            metrics.QUESTION_REJECTIONS.labels(reason=result.reason).inc()
            logger.info(f"🔁 [GenerationOrchestrator] Rejected candidate ({result.reason}): {question!r}")

        label = targeted.value if targeted is not None else "none"
        metrics.BLOCKED_PROMPTS.inc()
        metrics.FALLBACK_QUESTIONS.labels(misconception=label).inc()
        logger.warning(f"⚠️ [GenerationOrchestrator] No valid question after {self.max_attempts} attempts, using fallback ({label})")
        return GenerationOutcome(
            question=fallback_question(targeted),
            usage=usage,
            attempts=self.max_attempts,
            fallback=True,
            rejections=rejections,
        )

    async def summarize(self, history: List[Dict[str, str]]) -> Optional[ServiceReply]:
        """Best-effort summary; None when the service fails or returns nothing."""
        try:
            reply = await self.service.summarize(history)
        except Exception as e:
            logger.warning(f"⚠️ [GenerationOrchestrator] Summary refresh failed, keeping previous summary: {e}")
            return None
        text = (reply.text or "").strip()
        if not text:
            return None
        return ServiceReply(text=text, usage=reply.usage)
