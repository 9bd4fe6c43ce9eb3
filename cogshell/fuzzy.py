"""Near-miss matching.

Two strategies are kept apart on purpose, because they suggest different things:
containment for pipeline tokens, edit distance for tool names.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


def containment_suggestions(candidate: str, names: Iterable[str], limit: int = 3) -> List[str]:
    """Registry names that contain `candidate`, or are contained in it (case-insensitive)."""
    c = (candidate or "").lower()
    if not c:
        return []
    out: List[str] = []
    for n in names:
        nl = n.lower()
        if c in nl or nl in c:
            out.append(n)
            if len(out) >= limit:
                break
    return out


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur[j] = min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost)
        prev = cur
    return prev[-1]


def nearest(candidate: str, names: Iterable[str]) -> Optional[str]:
    """Closest name by edit distance on lower-cased strings; ties keep the earliest name."""
    best: Optional[str] = None
    best_d = -1
    c = (candidate or "").lower()
    for n in names:
        d = levenshtein(n.lower(), c)
        if best is None or d < best_d:
            best, best_d = n, d
    return best
