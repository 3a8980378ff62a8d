"""
Shared fixtures: scripted stand-ins for the question service and the
persistence recorder, and a sleep that records backoff delays.
"""

import json
import os
import sys
from typing import Any, Dict, List, Optional

import pytest

project_root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.join(project_root, "socratic_code_tutor", "src"))

from socratic_code_tutor.errors import PersistenceError
from socratic_code_tutor.llm_service import QuestionService, ServiceReply, TokenUsage
from socratic_code_tutor.persistence import SessionRecorder


class FakeQuestionService(QuestionService):
    """
    Replays scripted replies per operation.

    Each script entry is either reply text or an exception to raise. When a
    script runs out, `default_<operation>` is used the same way.
    """

    def __init__(
        self,
        classify: Optional[List[Any]] = None,
        generate: Optional[List[Any]] = None,
        summarize: Optional[List[Any]] = None,
        default_classify: Any = '{"verdicts": []}',
        default_generate: Any = "What does the loop do on its last pass?",
        default_summarize: Any = "Student is debugging a loop.",
        usage: Optional[TokenUsage] = None,
    ):
        self.scripts = {
            "classify": list(classify or []),
            "generate": list(generate or []),
            "summarize": list(summarize or []),
        }
        self.defaults = {
            "classify": default_classify,
            "generate": default_generate,
            "summarize": default_summarize,
        }
        self.usage = usage or TokenUsage(tokens_in=10, tokens_out=5)
        self.calls: Dict[str, List[Any]] = {"classify": [], "generate": [], "summarize": []}

    def _next(self, operation: str, args: Any) -> ServiceReply:
        self.calls[operation].append(args)
        script = self.scripts[operation]
        item = script.pop(0) if script else self.defaults[operation]
        if isinstance(item, Exception):
            raise item
        return ServiceReply(text=item, usage=TokenUsage(self.usage.tokens_in, self.usage.tokens_out))

    async def classify(self, message, context, prior_summary, last_question):
        return self._next("classify", (message, context, prior_summary, last_question))

    async def generate(self, targeted, strategy, message, summary, context, last_question):
        return self._next("generate", (targeted, strategy, message, summary, context, last_question))

    async def summarize(self, history):
        return self._next("summarize", history)


class RecordingSessionRecorder(SessionRecorder):
    """Keeps every write in memory; optionally fails them all."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sessions: List[str] = []
        self.turns: List[Dict[str, Any]] = []
        self.metrics: List[Dict[str, Any]] = []

    def _check(self, operation: str) -> None:
        if self.fail:
            raise PersistenceError(f"{operation} failed: database unreachable")

    async def initialize_session(self, context):
        self._check("initialize_session")
        self.sessions.append(context.session_id)

    async def log_turn(self, context, turn):
        self._check("log_turn")
        self.turns.append(turn)

    async def upsert_session_metrics(self, context):
        self._check("upsert_session_metrics")
        self.metrics.append(context.metrics_row())


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def verdicts_json(*verdicts: Dict[str, Any]) -> str:
    return json.dumps({"verdicts": list(verdicts)})


@pytest.fixture
def fake_service_factory():
    return FakeQuestionService


@pytest.fixture
def recorder():
    return RecordingSessionRecorder()


@pytest.fixture
def failing_recorder():
    return RecordingSessionRecorder(fail=True)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def to_verdicts_json():
    return verdicts_json
