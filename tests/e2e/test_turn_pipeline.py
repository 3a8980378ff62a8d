"""
End-to-End Tests for the Turn Pipeline

Drives full tutoring turns through the pipeline with a scripted question
service:
1. New session, first debugging question
2. Misconception reinforcement and conceptual contrast
3. Fallback under persistent overload
4. Session lifecycle (end, new doubt, idle eviction)
5. Concurrency and persistence failure tolerance
"""

import asyncio
import pytest
import sys
import os
from datetime import timedelta

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_code_tutor", "src"))

from socratic_code_tutor.errors import InputError, PermanentProviderError, SessionNotFoundError, TransientProviderError
from socratic_code_tutor.generation import GenerationOrchestrator
from socratic_code_tutor.llm_service import QuestionService
from socratic_code_tutor.session_store import SessionStore
from socratic_code_tutor.turn_pipeline import TurnPipeline

EMPTY_ARRAY_MESSAGE = "I'm not sure why this fails when the array is empty?"


def build_pipeline(service, recorder=None, sleep=None, store=None, **kwargs):
    orchestrator = GenerationOrchestrator(service, sleep=sleep) if sleep else GenerationOrchestrator(service)
    store = store if store is not None else SessionStore()
    return TurnPipeline(store, orchestrator, recorder=recorder, **kwargs)


class TestFirstTurn:
    """New session receiving its first debugging question."""

    @pytest.mark.asyncio
    async def test_empty_array_scenario(self, fake_service_factory, recorder, to_verdicts_json):
        service = fake_service_factory(
            classify=[to_verdicts_json({"id": "off-by-one", "status": "new", "certainty": 0.7})],
            generate=["Good question. What value does the loop index start at when the array is empty?"],
        )
        pipeline = build_pipeline(service, recorder)

        result = await pipeline.process_turn({"message": EMPTY_ARRAY_MESSAGE, "session_id": "demo"})
        await pipeline.drain()

        assert result.session_id == "demo"
        assert result.is_new_session is True
        assert result.intent == "debugging"
        assert result.state.learner_confidence == pytest.approx(0.42)
        assert result.targeted_misconception == "off-by-one"
        assert result.state.ledger[0].confidence == pytest.approx(0.43)
        assert result.deltas == {"off-by-one": pytest.approx(0.11)}
        assert result.classifier_certainty == 0.7
        assert result.confidence_before is None
        assert result.confidence_after == pytest.approx(0.43)
        assert result.response.endswith("?")
        assert result.response.count("?") == 1
        assert len(result.response.split()) <= 20
        assert result.state.last_question == result.response
        assert result.state.turn_index == 1

        # strategy passed to the generator
        assert service.calls["generate"][0][1] == "diagnostic"
        assert recorder.sessions == ["demo"]
        assert len(recorder.turns) == 1
        assert recorder.turns[0]["strategy"] == "diagnostic"

    @pytest.mark.asyncio
    async def test_summary_refreshed_when_empty(self, fake_service_factory):
        service = fake_service_factory(summarize=["Student suspects the loop bounds."])
        pipeline = build_pipeline(service)

        result = await pipeline.process_turn({"message": "Why does my loop skip the last item?"})

        assert result.state.summary == "Student suspects the loop bounds."
        assert result.tokens_in == 30
        assert result.tokens_out == 15

    @pytest.mark.asyncio
    async def test_invalid_request_touches_nothing(self, fake_service_factory):
        service = fake_service_factory()
        pipeline = build_pipeline(service)

        with pytest.raises(InputError) as exc_info:
            await pipeline.process_turn({"message": "   ", "session_id": "demo"})

        assert exc_info.value.field == "message"
        assert "demo" not in pipeline.store
        assert service.calls["classify"] == []

    @pytest.mark.asyncio
    async def test_non_object_body_rejected(self, fake_service_factory):
        pipeline = build_pipeline(fake_service_factory())

        with pytest.raises(InputError):
            await pipeline.process_turn(["message"])

    @pytest.mark.asyncio
    async def test_classifier_failure_reaches_caller(self, fake_service_factory):
        service = fake_service_factory(classify=[PermanentProviderError("invalid api key", operation="classify")])
        pipeline = build_pipeline(service)

        with pytest.raises(PermanentProviderError):
            await pipeline.process_turn({"message": EMPTY_ARRAY_MESSAGE, "session_id": "demo"})

        # turns are not transactional
        assert pipeline.store.get("demo").state.turn_index == 1


class TestMultiTurn:
    """Reinforcement across turns of one session."""

    @pytest.mark.asyncio
    async def test_reinforcement_reaches_conceptual_contrast(self, fake_service_factory, to_verdicts_json):
        service = fake_service_factory(
            classify=[
                to_verdicts_json({"id": "off-by-one", "status": "new"}),
                to_verdicts_json({"id": "off-by-one", "status": "reinforced"}),
                to_verdicts_json({"id": "off-by-one", "status": "reinforced"}),
            ],
            generate=[
                "What index does the loop start at?",
                "What is the last index the loop reads?",
                "How is stopping at length different from stopping before it?",
            ],
        )
        pipeline = build_pipeline(service)

        results = []
        for _ in range(3):
            results.append(await pipeline.process_turn({"message": "it breaks on the last item", "session_id": "s"}))

        assert [r.confidence_after for r in results] == [pytest.approx(0.43), pytest.approx(0.65), pytest.approx(0.87)]
        assert results[2].confidence_before == pytest.approx(0.65)
        assert [call[1] for call in service.calls["generate"]] == ["diagnostic", "diagnostic", "conceptual-contrast"]
        assert results[1].is_new_session is False

    @pytest.mark.asyncio
    async def test_resolution_marks_all_doubts_resolved(self, fake_service_factory, to_verdicts_json):
        service = fake_service_factory(
            classify=[
                to_verdicts_json({"id": "null-checks", "status": "new"}),
                to_verdicts_json({"id": "null-checks", "status": "weakened"}),
                to_verdicts_json({"id": "null-checks", "status": "weakened"}),
            ],
            generate=[
                "What if the value is missing here?",
                "When could the list itself be missing?",
                "What does your guard return for an empty input?",
            ],
        )
        pipeline = build_pipeline(service)

        for _ in range(2):
            await pipeline.process_turn({"message": "i check it first", "session_id": "s"})
        result = await pipeline.process_turn({"message": "i check it first because it can be None", "session_id": "s"})

        assert result.resolution_events == ["null-checks"]
        assert result.resolved is True
        assert result.all_doubts_resolved is True
        assert result.targeted_misconception is None
        assert result.state.ledger == []

    @pytest.mark.asyncio
    async def test_summary_refreshed_every_third_turn(self, fake_service_factory):
        service = fake_service_factory()
        pipeline = build_pipeline(service)

        summary_calls = []
        for _ in range(4):
            await pipeline.process_turn({"message": "the loop still fails", "session_id": "s"})
            summary_calls.append(len(service.calls["summarize"]))

        # turn 1 (empty summary) and turn 3 only
        assert summary_calls == [1, 1, 2, 2]

    @pytest.mark.asyncio
    async def test_student_understood_returns_learning_summary(self, fake_service_factory):
        service = fake_service_factory(
            generate=["Exactly right! The function now hands the value back."],
            summarize=["Student is unsure about return.", "Student learned that return hands values to the caller."],
        )
        pipeline = build_pipeline(service)

        result = await pipeline.process_turn({"message": "so I should return the sum instead of printing it"})

        assert result.student_understood is True
        assert result.response == "Exactly right!"
        assert result.learning_summary == "Student learned that return hands values to the caller."
        assert result.all_doubts_resolved is True

    @pytest.mark.asyncio
    async def test_history_passed_to_summary(self, fake_service_factory):
        service = fake_service_factory()
        pipeline = build_pipeline(service)

        await pipeline.process_turn({
            "message": "still failing",
            "history": [{"role": "User", "parts": "my loop fails"}, {"role": "assistant", "text": "Which index?"}],
        })

        history = service.calls["summarize"][0]
        assert history[0] == {"role": "user", "text": "my loop fails"}
        assert history[-1] == {"role": "user", "text": "still failing"}


class TestFallback:
    """Generation exhausting its retries."""

    @pytest.mark.asyncio
    async def test_off_by_one_fallback_under_overload(self, fake_service_factory, recording_sleep, to_verdicts_json):
        service = fake_service_factory(
            classify=[to_verdicts_json({"id": "off-by-one", "status": "new"})],
            default_generate=TransientProviderError("overloaded", operation="generate", status_code=529),
        )
        pipeline = build_pipeline(service, sleep=recording_sleep)

        result = await pipeline.process_turn({"message": EMPTY_ARRAY_MESSAGE})

        assert result.response == "What happens at the first and last index of the loop?"
        assert result.targeted_misconception == "off-by-one"
        assert result.state.last_question == result.response
        assert recording_sleep.delays == [1.0, 2.0]


class TestSessionLifecycle:
    """End, new doubt and idle eviction."""

    @pytest.mark.asyncio
    async def test_end_session_summary(self, fake_service_factory, recorder):
        pipeline = build_pipeline(fake_service_factory(), recorder)
        await pipeline.process_turn({"message": "just tell me the answer", "session_id": "s"})
        await pipeline.process_turn({"message": "I think it is because the index starts at one", "session_id": "s"})

        summary = await pipeline.end_session("s")
        await pipeline.drain()

        assert summary.turn_count == 2
        assert summary.direct_answer_pct == 50.0
        assert summary.reasoning_pct == 50.0
        assert summary.ended_at is not None
        assert "s" not in pipeline.store
        assert recorder.metrics[-1]["ended_at"] is not None

    @pytest.mark.asyncio
    async def test_end_unknown_session(self, fake_service_factory):
        pipeline = build_pipeline(fake_service_factory())

        with pytest.raises(SessionNotFoundError):
            await pipeline.end_session("missing")

    @pytest.mark.asyncio
    async def test_new_doubt_replaces_session(self, fake_service_factory):
        pipeline = build_pipeline(fake_service_factory())
        await pipeline.process_turn({"message": "my loop fails", "session_id": "old", "user_id": "u1"})

        result = await pipeline.new_doubt("old")

        assert result.previous_session_id == "old"
        assert result.previous_summary.turn_count == 1
        assert result.session_id != "old"
        assert pipeline.store.get(result.session_id).user_id == "u1"
        assert "old" not in pipeline.store

    @pytest.mark.asyncio
    async def test_new_doubt_without_current(self, fake_service_factory):
        pipeline = build_pipeline(fake_service_factory())

        result = await pipeline.new_doubt(None, "u1")

        assert result.previous_session_id is None
        assert result.session_id in pipeline.store

    @pytest.mark.asyncio
    async def test_evict_idle_sessions(self, fake_service_factory):
        store = SessionStore(idle_ttl=timedelta(minutes=30))
        pipeline = build_pipeline(fake_service_factory(), store=store)
        await pipeline.process_turn({"message": "my loop fails", "session_id": "s"})

        evicted = pipeline.evict_idle_sessions(now=store.get("s").last_activity_at + timedelta(hours=1))

        assert [summary.session_id for summary in evicted] == ["s"]
        assert len(store) == 0


class GatedQuestionService(QuestionService):
    """Delegates to a scripted service; the n-th generate call waits for gates[n]."""

    def __init__(self, inner, gate_count=3):
        self.inner = inner
        self.gates = [asyncio.Event() for _ in range(gate_count)]
        self.generate_calls = 0
        self.active = 0
        self.max_active = 0

    async def classify(self, message, context, prior_summary, last_question):
        return await self.inner.classify(message, context, prior_summary, last_question)

    async def generate(self, targeted, strategy, message, summary, context, last_question):
        gate = self.gates[self.generate_calls]
        self.generate_calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await gate.wait()
            return await self.inner.generate(targeted, strategy, message, summary, context, last_question)
        finally:
            self.active -= 1

    async def summarize(self, history):
        return await self.inner.summarize(history)


async def settle(rounds=20):
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestConcurrency:
    """Same-session serialization and persistence isolation."""

    @pytest.mark.asyncio
    async def test_turn_after_end_waits_for_queued_turn(self, fake_service_factory):
        service = GatedQuestionService(fake_service_factory(generate=[
            "What does the loop read first?",
            "What happens on the final pass?",
            "Which value is stored before the loop?",
        ]))
        pipeline = build_pipeline(service)

        first = asyncio.create_task(pipeline.process_turn({"message": "my loop fails", "session_id": "s1"}))
        await settle()
        ending = asyncio.create_task(pipeline.end_session("s1"))
        await settle()
        queued = asyncio.create_task(pipeline.process_turn({"message": "still failing", "session_id": "s1"}))
        await settle()

        service.gates[0].set()
        await settle()
        # the session was ended and the queued turn recreated it; it now holds the lock
        assert ending.done()
        assert service.active == 1

        late = asyncio.create_task(pipeline.process_turn({"message": "and now?", "session_id": "s1"}))
        await settle()
        assert service.active == 1

        service.gates[1].set()
        service.gates[2].set()
        await asyncio.gather(first, ending, queued, late)
        await pipeline.drain()

        assert service.max_active == 1
        assert queued.result().is_new_session is True
        assert late.result().state.turn_index == 2

    @pytest.mark.asyncio
    async def test_same_session_turns_are_serialized(self, fake_service_factory):
        service = fake_service_factory()
        pipeline = build_pipeline(service)

        results = await asyncio.gather(*[
            pipeline.process_turn({"message": f"attempt {i} fails", "session_id": "s"})
            for i in range(5)
        ])

        assert sorted(r.state.turn_index for r in results) == [1, 2, 3, 4, 5]
        assert sum(r.is_new_session for r in results) == 1
        assert pipeline.store.get("s").turn_count == 5

    @pytest.mark.asyncio
    async def test_different_sessions_are_independent(self, fake_service_factory, to_verdicts_json):
        service = fake_service_factory(classify=[to_verdicts_json({"id": "statefulness", "status": "new"})])
        pipeline = build_pipeline(service)

        first, second = await asyncio.gather(
            pipeline.process_turn({"message": "the counter keeps growing", "session_id": "a"}),
            pipeline.process_turn({"message": "the counter keeps growing", "session_id": "b"}),
        )

        assert first.state.ledger[0].id == "statefulness"
        assert second.state.ledger == []

    @pytest.mark.asyncio
    async def test_persistence_failures_do_not_fail_turns(self, fake_service_factory, failing_recorder):
        pipeline = build_pipeline(fake_service_factory(), failing_recorder)

        result = await pipeline.process_turn({"message": "my loop fails", "session_id": "s"})
        await pipeline.drain()

        assert result.session_id == "s"
        assert pipeline.pending_writes == 0
        assert pipeline.store.get("s").mirrored is False
