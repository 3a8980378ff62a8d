"""
Unit Tests for Strategy Selector
"""

import pytest
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_code_tutor", "src"))

from socratic_code_tutor.intent_classifier import CoarseIntent
from socratic_code_tutor.strategy_selector import Strategy, choose_strategy


class TestChooseStrategy:
    """Test suite for choose_strategy."""

    @pytest.mark.parametrize("intent", list(CoarseIntent))
    def test_dominant_misconception_overrides_intent(self, intent):
        assert choose_strategy(intent, 0.9, 0.76) == Strategy.CONCEPTUAL_CONTRAST

    def test_threshold_is_exclusive(self):
        assert choose_strategy(CoarseIntent.UNKNOWN, 0.5, 0.75) == Strategy.DIAGNOSTIC

    def test_confident_debugging_narrows(self):
        assert choose_strategy(CoarseIntent.DEBUGGING, 0.6, 0.43) == Strategy.NARROWING

    def test_unsure_debugging_diagnoses(self):
        assert choose_strategy(CoarseIntent.DEBUGGING, 0.42, 0.43) == Strategy.DIAGNOSTIC

    def test_explanation_reflects(self):
        assert choose_strategy(CoarseIntent.EXPLANATION, 0.5, None) == Strategy.REFLECTIVE

    def test_unknown_without_ledger(self):
        assert choose_strategy(CoarseIntent.UNKNOWN, 0.5, None) == Strategy.DIAGNOSTIC
