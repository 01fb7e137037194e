"""Router package exports."""

from . import health, questions

__all__ = [
    "health",
    "questions",
]
