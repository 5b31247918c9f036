"""
Essay Grader - AI-assisted grading of civil-service essay answers.

This package scores free-text exam answers against a rubric of weighted
scoring points, blending deterministic keyword matching with LLM judgment,
and runs grading as background jobs that callers poll for completion.
"""

__version__ = "1.0.0"
__author__ = "Essay Grader Team"
