"""Completion markers stored in the ledger's free-text notes.

A marker is a whitespace-separated `#token` in a transaction's notes. Markers
are only ever appended. Comparison is case-insensitive on the whole token, so
`#Posted-To-Accounting` and `#posted-to-accounting` are the same marker and
`#paid` does not match `#paid:2024-01-31`.
"""

from datetime import date
from typing import FrozenSet, Iterable, List

MARKER_PREFIX = "#"

PUSHED_TO_STORE = "pushed-to-store"
POSTED_TO_ACCOUNTING = "posted-to-accounting"


def paid_marker(paid_on: date) -> str:
    """Marker carrying the posting date, e.g. `paid:2024-01-31`."""
    return f"paid:{paid_on.isoformat()}"


def parse_markers(notes: str) -> FrozenSet[str]:
    """Return the lower-cased marker tokens (without `#`) found in `notes`."""
    if not notes:
        return frozenset()
    return frozenset(
        token[len(MARKER_PREFIX):].lower()
        for token in notes.split()
        if token.startswith(MARKER_PREFIX) and len(token) > len(MARKER_PREFIX)
    )


def merge_markers(notes: str, tokens: Iterable[str]) -> str:
    """Append markers to `notes` without dropping or duplicating anything.

    Existing text is preserved as-is (only trailing whitespace is trimmed when
    something is appended). Returns `notes` unchanged when every token is
    already present.
    """
    existing = set(parse_markers(notes))
    to_add: List[str] = []
    for token in tokens:
        token = token.strip().lstrip(MARKER_PREFIX)
        if not token or token.lower() in existing:
            continue
        existing.add(token.lower())
        to_add.append(f"{MARKER_PREFIX}{token}")

    if not to_add:
        return notes or ""

    base = (notes or "").rstrip()
    addition = " ".join(to_add)
    return f"{base} {addition}" if base else addition
