"""
Background Grading Jobs.

Submit-and-poll access to the grading engine.
"""

from essay_grader.jobs.manager import AsyncGradingJobManager, InvalidTransitionError

__all__ = [
    "AsyncGradingJobManager",
    "InvalidTransitionError",
]
