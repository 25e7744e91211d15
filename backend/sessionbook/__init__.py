"""Tutoring session booking and teacher-availability engine."""

__version__ = "0.1.0"
