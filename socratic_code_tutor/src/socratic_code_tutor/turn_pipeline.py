"""
Turn Pipeline

Composes intent classification, misconception tracking, strategy selection and
question generation into one "process one turn" operation, plus the session
lifecycle operations (end, new doubt, idle eviction).

Per turn:
1. validate the request (InputError, nothing mutated)
2. under the session lock: resolve/create the session, advance the turn index
3. refresh the rolling summary every few turns
4. classify intent, update learner confidence and counters
5. classify misconceptions -> update ledger -> pick target -> choose strategy
6. generate the next question (validated, with fallback)
7. assemble the response and mirror the turn to persistence (fire-and-forget)

Turns are not transactional: if a later step fails, earlier mutations stay.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, Set

from socratic_code_tutor import metrics
from socratic_code_tutor.errors import InputError, SessionNotFoundError
from socratic_code_tutor.generation import GenerationOrchestrator, GenerationOutcome
from socratic_code_tutor.intent_classifier import (
    HeuristicIntentClassifier,
    IntentClassifier,
    sanitize_user_input,
)
from socratic_code_tutor.llm_service import TokenUsage
from socratic_code_tutor.persistence import NullSessionRecorder, SessionRecorder
from socratic_code_tutor.schemas import (
    LedgerEntry,
    NewDoubtResult,
    SessionSummary,
    StateSnapshot,
    TurnRequest,
    TurnResponse,
    parse_turn_request,
)
from socratic_code_tutor.session_state import SessionContext, SessionState
from socratic_code_tutor.session_store import SessionStore
from socratic_code_tutor.strategy_selector import Strategy, choose_strategy

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_INTERVAL = 3


class TurnPipeline:
    """Processes tutoring turns against an injected SessionStore."""

    def __init__(
        self,
        store: SessionStore,
        orchestrator: GenerationOrchestrator,
        recorder: Optional[SessionRecorder] = None,
        intent_classifier: Optional[IntentClassifier] = None,
        summary_interval: int = DEFAULT_SUMMARY_INTERVAL,
    ):
        if summary_interval < 1:
            raise ValueError("summary_interval must be at least 1")
        self.store = store
        self.orchestrator = orchestrator
        self.recorder = recorder or NullSessionRecorder()
        self.intent_classifier = intent_classifier or HeuristicIntentClassifier()
        self.summary_interval = summary_interval
        self._pending: Set[asyncio.Task] = set()

    # ==================== Fire-and-forget persistence ====================

    def _dispatch(self, operation: str, coro: Awaitable[Any]) -> None:
        task = asyncio.create_task(self._guarded(operation, coro))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _guarded(self, operation: str, coro: Awaitable[Any]) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning(f"⚠️ [TurnPipeline] Persistence {operation} failed (ignored): {e}")

    async def _mirror_session(self, session: SessionContext) -> None:
        await self.recorder.initialize_session(session)
        session.mirrored = True

    async def drain(self) -> None:
        """Wait for pending persistence writes (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    # ==================== Turn processing ====================

    async def process_turn(self, payload: Any) -> TurnResponse:
        """
        Process one student message.

        Args:
            payload: raw request dict or a TurnRequest

        Raises:
            InputError: malformed request (no state is touched)
            PermanentProviderError: the misconception classifier failed
        """
        request = parse_turn_request(payload)
        message = sanitize_user_input(request.message)
        if not message:
            raise InputError("Invalid request: message: must contain visible text", field="message")
        code_context = sanitize_user_input(request.context) if request.context else None

        session_id = request.session_id or self.store.id_factory()
        async with self.store.lock(session_id):
            return await self._run_turn(request, session_id, message, code_context or None)

    async def _run_turn(
        self,
        request: TurnRequest,
        session_id: str,
        message: str,
        code_context: Optional[str],
    ) -> TurnResponse:
        session, created = self.store.get_or_create(session_id, request.user_id)
        if created:
            self._dispatch("initialize_session", self._mirror_session(session))
        if request.user_id and not session.user_id:
            session.user_id = request.user_id

        state = session.state
        state.turn_index += 1
        usage = TokenUsage()
        history = self._history_payload(request, message)

        if not state.summary or state.turn_index % self.summary_interval == 0:
            await self._refresh_summary(state, history, usage)

        intent_result = self.intent_classifier.classify(message, state.learner_confidence)
        state.learner_confidence = intent_result.learner_confidence
        session.record_intent(intent_result.message_intent, intent_result.is_reasoning)
        if intent_result.is_answer_seeking:
            metrics.ANSWER_SEEKING.inc()

        classification = await self.orchestrator.classify(message, code_context, state.summary, state.last_question)
        usage.add(classification.usage)

        prior_values = dict(state.ledger.items())
        update = state.ledger.apply_verdicts(classification.verdicts)
        for resolved_id in update.resolution_events:
            metrics.MISCONCEPTION_RESOLUTIONS.labels(misconception=resolved_id.value).inc()
            logger.info(f"🎯 [TurnPipeline] Misconception resolved in session {session.session_id}: {resolved_id.value}")

        top = state.ledger.pick_top()
        targeted, top_confidence = top if top else (None, None)
        strategy = choose_strategy(intent_result.intent, state.learner_confidence, top_confidence)
        metrics.STRATEGY_SELECTIONS.labels(strategy=strategy.value).inc()

        generation = await self.orchestrator.generate(
            targeted,
            strategy.value,
            message,
            state.summary,
            code_context,
            state.last_question,
        )
        usage.add(generation.usage)
        state.last_question = generation.question

        learning_summary = None
        if generation.understood:
            await self._refresh_summary(state, history + [{"role": "assistant", "text": generation.question}], usage)
            learning_summary = state.summary or None

        session.add_tokens(usage.tokens_in, usage.tokens_out)
        session.touch(self.store.clock())

        resolved = bool(update.resolution_events)
        response = TurnResponse(
            response=generation.question,
            session_id=session.session_id,
            targeted_misconception=targeted.value if targeted else None,
            classifier_certainty=classification.certainty_for(targeted),
            deltas={misconception_id.value: delta for misconception_id, delta in update.deltas.items()},
            resolution_events=[misconception_id.value for misconception_id in update.resolution_events],
            state=self._snapshot(state),
            tokens_in=usage.tokens_in,
            tokens_out=usage.tokens_out,
            intent=intent_result.message_intent.value,
            confidence_before=prior_values.get(targeted) if targeted else None,
            confidence_after=state.ledger.get(targeted) if targeted else None,
            resolved=resolved,
            all_doubts_resolved=state.ledger.is_empty() and (resolved or generation.understood),
            is_new_session=created,
            student_understood=generation.understood,
            learning_summary=learning_summary,
        )

        logger.info(
            f"💬 [TurnPipeline] Session {session.session_id} turn {state.turn_index}: "
            f"intent={intent_result.message_intent.value} strategy={strategy.value} "
            f"target={response.targeted_misconception} fallback={generation.fallback}"
        )

        turn_row = self._turn_row(request, message, response, strategy, generation, intent_result.intent.value)
        self._dispatch("log_turn", self.recorder.log_turn(session, turn_row))
        self._dispatch("upsert_session_metrics", self.recorder.upsert_session_metrics(session))
        return response

    async def _refresh_summary(self, state: SessionState, history: List[Dict[str, str]], usage: TokenUsage) -> None:
        reply = await self.orchestrator.summarize(history)
        if reply is None:
            return
        state.summary = reply.text
        usage.add(reply.usage)

    @staticmethod
    def _history_payload(request: TurnRequest, message: str) -> List[Dict[str, str]]:
        history = [{"role": item.role, "text": item.text} for item in request.history]
        history.append({"role": "user", "text": message})
        return history

    @staticmethod
    def _snapshot(state: SessionState) -> StateSnapshot:
        return StateSnapshot(
            ledger=[LedgerEntry(id=entry["id"], confidence=entry["confidence"]) for entry in state.ledger.snapshot()],
            learner_confidence=state.learner_confidence,
            last_question=state.last_question,
            summary=state.summary,
            turn_index=state.turn_index,
        )

    @staticmethod
    def _turn_row(
        request: TurnRequest,
        message: str,
        response: TurnResponse,
        strategy: Strategy,
        generation: GenerationOutcome,
        coarse_intent: str,
    ) -> Dict[str, Any]:
        return {
            "turn_index": response.state.turn_index,
            "client_turn_index": request.turn_index,
            "message": message,
            "response": response.response,
            "intent": response.intent,
            "coarse_intent": coarse_intent,
            "strategy": strategy.value,
            "targeted_misconception": response.targeted_misconception,
            "classifier_certainty": response.classifier_certainty,
            "deltas": response.deltas,
            "resolution_events": response.resolution_events,
            "learner_confidence": response.state.learner_confidence,
            "fallback": generation.fallback,
            "attempts": generation.attempts,
            "student_understood": response.student_understood,
            "tokens_in": response.tokens_in,
            "tokens_out": response.tokens_out,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

    # ==================== Session lifecycle ====================

    def _finalize(self, session: SessionContext) -> SessionSummary:
        metrics.TURNS_PER_SESSION.observe(session.turn_count)
        if session.turn_count <= 1:
            metrics.SESSION_DROP_OFF.inc()
        self._dispatch("upsert_session_metrics", self.recorder.upsert_session_metrics(session))
        return SessionSummary(
            session_id=session.session_id,
            turn_count=session.turn_count,
            direct_answer_pct=session.direct_answer_pct,
            reasoning_pct=session.reasoning_pct,
            tokens_in=session.tokens_in,
            tokens_out=session.tokens_out,
            started_at=session.started_at,
            ended_at=session.ended_at,
        )

    async def end_session(self, session_id: str) -> SessionSummary:
        """Finalize metrics, remove the session and return its aggregate."""
        if not session_id or session_id not in self.store:
            raise SessionNotFoundError(session_id)
        async with self.store.lock(session_id):
            session = self.store.end(session_id)
        return self._finalize(session)

    async def new_doubt(
        self,
        current_session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> NewDoubtResult:
        """End the current session (if it exists) and open a fresh one."""
        if current_session_id and current_session_id in self.store:
            async with self.store.lock(current_session_id):
                ended, fresh = self.store.replace(current_session_id, user_id)
        else:
            ended, fresh = self.store.replace(None, user_id)

        previous_summary = self._finalize(ended) if ended else None
        self._dispatch("initialize_session", self._mirror_session(fresh))
        return NewDoubtResult(
            previous_session_id=ended.session_id if ended else None,
            session_id=fresh.session_id,
            previous_summary=previous_summary,
        )

    def evict_idle_sessions(self, now: Optional[datetime] = None) -> List[SessionSummary]:
        """End every idle session in the store and finalize its metrics."""
        return [self._finalize(session) for session in self.store.evict_idle(now)]

    async def sweep_idle_sessions(self, interval_seconds: float) -> None:
        """Run evict_idle_sessions periodically until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                evicted = self.evict_idle_sessions()
                if evicted:
                    logger.info(f"🧹 [TurnPipeline] Idle sweep ended {len(evicted)} session(s)")
            except Exception as e:
                logger.error(f"❌ [TurnPipeline] Idle sweep error: {e}")
