"""
Unit Tests for Intent Classifier

Tests coarse/message intent heuristics, confidence adjustment and input sanitizing.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_code_tutor", "src"))

from socratic_code_tutor.intent_classifier import (
    CoarseIntent,
    HeuristicIntentClassifier,
    MessageIntent,
    sanitize_user_input,
)


class TestHeuristicIntentClassifier:
    """Test suite for HeuristicIntentClassifier."""

    @pytest.fixture
    def classifier(self):
        return HeuristicIntentClassifier()

    def test_empty_array_question(self, classifier):
        result = classifier.classify("I'm not sure why this fails when the array is empty?", 0.5)

        assert result.intent == CoarseIntent.DEBUGGING
        assert result.message_intent == MessageIntent.DEBUGGING
        assert result.learner_confidence == pytest.approx(0.42)
        assert result.is_answer_seeking is False

    def test_solution_request_wins(self, classifier):
        result = classifier.classify("Just tell me how to fix this error", 0.5)

        assert result.message_intent == MessageIntent.SOLUTION_REQUEST
        assert result.is_answer_seeking is True

    def test_explain_is_explanation(self, classifier):
        assert classifier.coarse_intent("Can you explain closures?") == CoarseIntent.EXPLANATION

    def test_leading_why_is_explanation(self, classifier):
        assert classifier.coarse_intent("Why does my loop stop early?") == CoarseIntent.EXPLANATION

    def test_plain_statement_is_unknown(self, classifier):
        assert classifier.coarse_intent("The loop runs five times") == CoarseIntent.UNKNOWN

    def test_clarification(self, classifier):
        assert classifier.message_intent("What do you mean by the base case") == MessageIntent.CLARIFICATION

    def test_conceptual_default(self, classifier):
        assert classifier.message_intent("Closures capture variables from the outer scope") == MessageIntent.CONCEPTUAL

    def test_hedging_raises_confidence(self, classifier):
        result = classifier.classify("I think the index starts at one", 0.5)

        assert result.learner_confidence == pytest.approx(0.54)
        assert result.is_reasoning is True

    def test_doubt_and_hedging_combine(self, classifier):
        result = classifier.classify("I'm confused, maybe the counter is never reset", 0.5)

        assert result.learner_confidence == pytest.approx(0.46)

    def test_confidence_clamped(self, classifier):
        assert classifier.classify("I'm stuck", 0.03).learner_confidence == 0.0
        assert classifier.classify("maybe it returns None", 0.99).learner_confidence == 1.0


class TestSanitizeUserInput:
    """Test suite for sanitize_user_input."""

    def test_collapses_whitespace(self):
        assert sanitize_user_input("  why\n\tdoes   this  fail  ") == "why does this fail"

    def test_strips_control_characters(self):
        assert sanitize_user_input("a\x00b\x07c") == "abc"

    def test_empty(self):
        assert sanitize_user_input("") == ""
        assert sanitize_user_input("\x00\x01") == ""
