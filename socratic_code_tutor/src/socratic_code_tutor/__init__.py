"""
Socratic Code Tutor

Misconception tracking and dialogue orchestration for a tutor that answers
programming questions with questions.
"""

__version__ = "0.1.0"
