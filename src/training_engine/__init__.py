"""Deterministic training-plan generation and session-execution engine."""

__version__ = "0.1.0"
