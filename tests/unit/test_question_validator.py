"""
Unit Tests for Question Validator

Tests hard shape rules, repeat detection and output sanitizing.
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_code_tutor", "src"))

from socratic_code_tutor.question_validator import (
    DEFAULT_QUESTION,
    QuestionValidator,
    sanitize_to_single_question,
    token_overlap,
)


class TestQuestionValidator:
    """Test suite for QuestionValidator.hard_validate."""

    @pytest.fixture
    def validator(self):
        return QuestionValidator()

    def test_accepts_short_question(self, validator):
        result = validator.hard_validate("What happens when the list is empty?")

        assert result.valid is True
        assert result.reason is None

    @pytest.mark.parametrize("question", [
        "What is i? What is n?",
        "Why?? Really",
        "Is it empty? Or null?",
    ])
    def test_two_question_marks_always_rejected(self, validator, question):
        result = validator.hard_validate(question)

        assert result.valid is False
        assert result.reason == "Multiple questions in one response"

    def test_rejects_code(self, validator):
        result = validator.hard_validate("What does ```x = 1``` print?")

        assert result.valid is False
        assert result.reason == "Contains code or code-like markers"

    def test_rejects_steps(self, validator):
        assert validator.hard_validate("Step 1 is the loop, what is step 2?").reason == "Contains step-by-step enumeration"

    def test_rejects_long_question(self, validator):
        question = "What " + "happens " * 30 + "here?"

        assert validator.hard_validate(question).reason == "Longer than 160 characters"

    def test_rejects_explanation(self, validator):
        assert validator.hard_validate("You should check the index, right?").reason == "Contains explanatory phrasing"

    def test_rejects_identical_previous(self, validator):
        result = validator.hard_validate(
            "what happens when the list is EMPTY",
            previous_question="What happens when the list is empty?",
        )

        assert result.valid is False
        assert result.reason == "Question too similar to previous"

    def test_accepts_different_previous(self, validator):
        result = validator.hard_validate(
            "Which index does the loop read last?",
            previous_question="What happens when the list is empty?",
        )

        assert result.valid is True

    def test_token_overlap(self):
        assert token_overlap("a b c d", "a b c e") == pytest.approx(0.75)
        assert token_overlap("", "") == 0.0


class TestSanitizeToSingleQuestion:
    """Test suite for sanitize_to_single_question."""

    def test_keeps_first_question_sentence(self):
        text = "Good thinking. What does the loop do on the last index? Then check the length."

        assert sanitize_to_single_question(text) == "What does the loop do on the last index?"

    def test_strips_emphasis(self):
        assert sanitize_to_single_question("**What** is `arr.length` here?") == "What is arr.length here?"

    def test_inner_period_is_not_a_sentence_boundary(self):
        text = "Look closer! Good. Why does arr.length differ from the index?"

        assert sanitize_to_single_question(text) == "Why does arr.length differ from the index?"

    def test_caps_word_count(self):
        text = " ".join(["word"] * 25) + "?"

        result = sanitize_to_single_question(text)

        assert len(result.split()) == 20
        assert result.endswith("?")

    def test_no_question_uses_default(self):
        assert sanitize_to_single_question("Check your loop bounds.") == DEFAULT_QUESTION
        assert sanitize_to_single_question("") == DEFAULT_QUESTION
