"""Cheap token estimation for chunk sizing.

The heuristic assumes roughly four characters per token for English and
Portuguese prose and adds a small surcharge for long words, which BPE
tokenizers tend to split into several pieces.  It is intentionally
dependency-free: chunk bounds only need to be approximately right.
"""

from __future__ import annotations

import math
import re

CHARS_PER_TOKEN = 4
LONG_WORD_LENGTH = 6
LONG_WORD_SURCHARGE = 0.2

_WHITESPACE = re.compile(r"\s+")


def _normalize(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def estimate_tokens(text: str) -> int:
    """Return the estimated token count of *text* (0 for empty text, else ≥ 1)."""
    normalized = _normalize(text)
    if not normalized:
        return 0

    long_words = sum(1 for word in normalized.split(" ") if len(word) > LONG_WORD_LENGTH)
    base = math.ceil(len(normalized) / CHARS_PER_TOKEN)
    return max(1, base + math.ceil(long_words * LONG_WORD_SURCHARGE))


def estimate_tokens_conservative(text: str) -> int:
    """Upper-bound flavoured estimate (~3 chars per token)."""
    normalized = _normalize(text)
    return math.ceil(len(normalized) / 3) if normalized else 0


def estimate_tokens_optimistic(text: str) -> int:
    """Lower-bound flavoured estimate (~5 chars per token)."""
    normalized = _normalize(text)
    return math.ceil(len(normalized) / 5) if normalized else 0


def tokens_to_chars(tokens: int) -> int:
    """Translate a token budget into an approximate character length."""
    return max(0, tokens) * CHARS_PER_TOKEN
