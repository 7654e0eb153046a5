"""
certprep - adaptive practice-question engine for certification exams.

Selects, schedules and tracks practice questions: a scored selection engine,
SM-2 spaced repetition per (user, question), a shared quiz-blueprint pool with
fair rotation, and resumable quiz sessions.
"""

__version__ = "1.0.0"
