from __future__ import annotations

from collections.abc import Iterable

from .errors import InvalidArgumentError
from .models import Difficulty, QuestionCandidate


def normalize_title(title: object) -> str:
    if not isinstance(title, str) or not title.strip():
        raise InvalidArgumentError("title is required")
    return title.strip()


def normalize_source_url(source_url: object, allowed_domains: Iterable[str]) -> str:
    """Trim the URL and check that it points at a recognized problem source."""

    if not isinstance(source_url, str) or not source_url.strip():
        raise InvalidArgumentError("sourceURL is required")
    trimmed = source_url.strip()
    lowered = trimmed.lower()
    domains = tuple(allowed_domains)
    if not any(domain in lowered for domain in domains):
        raise InvalidArgumentError(
            "Invalid URL. Must reference one of: " + ", ".join(domains)
        )
    return trimmed


def normalize_difficulty(difficulty: object) -> Difficulty:
    if isinstance(difficulty, Difficulty):
        return difficulty
    try:
        return Difficulty(difficulty)
    except ValueError:
        raise InvalidArgumentError(
            "Invalid difficulty. Must be Easy, Medium, or Hard"
        ) from None


def build_candidate(
    *,
    title: object,
    source_url: object,
    difficulty: object,
    allowed_domains: Iterable[str],
) -> QuestionCandidate:
    """Validate raw creation input once, at the request boundary."""

    return QuestionCandidate(
        title=normalize_title(title),
        source_url=normalize_source_url(source_url, allowed_domains),
        difficulty=normalize_difficulty(difficulty),
    )
