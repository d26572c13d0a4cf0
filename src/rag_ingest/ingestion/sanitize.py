"""Strip active content from text-like documents before indexing."""

from __future__ import annotations

import re

_DANGEROUS_BLOCKS = re.compile(
    r"<(script|iframe|object|embed)\b[^>]*>.*?</\1\s*>|<(script|iframe|object|embed)\b[^>]*/?>",
    re.IGNORECASE | re.DOTALL,
)
_EVENT_HANDLERS = re.compile(r"\s+on\w+\s*=\s*(\"[^\"]*\"|'[^']*'|[^\s>]+)", re.IGNORECASE)
_DANGEROUS_SCHEMES = re.compile(r"(javascript|vbscript)\s*:|data\s*:\s*text/html", re.IGNORECASE)


def sanitize_content(text: str) -> str:
    """Remove script-like tags, inline event handlers and dangerous URL schemes."""
    cleaned = _DANGEROUS_BLOCKS.sub("", text)
    cleaned = _EVENT_HANDLERS.sub("", cleaned)
    cleaned = _DANGEROUS_SCHEMES.sub("", cleaned)
    return cleaned
