from __future__ import annotations

import re
from typing import List, NamedTuple, Optional, Pattern, Sequence, Tuple

from .advisory import CausalEdge, CausalGraph, CausalVariable, Explanation


class CausalTerms(NamedTuple):
    cause: str
    effect: str


# (pattern, fixed cause or None). With a fixed cause, group 1 is the effect;
# otherwise group 1 is the cause and group 2 the effect.
_PATTERNS: List[Tuple[Pattern[str], Optional[str]]] = [
    (re.compile(r"\bwhy\s+(?:does|is|did|do|are)\s+(.+?)(?:\?|$)", re.I), "external factors"),
    (re.compile(r"\bwhat\s+(?:causes?|leads?\s+to|results?\s+in)\s+(.+?)(?:\?|$)", re.I), "preceding conditions"),
    (re.compile(r"\bif\s+(.+?)\s+then\s+(.+?)(?:\?|$)", re.I), None),
    (re.compile(r"(.+?)\s+causes?\s+(.+?)(?:\?|$)", re.I), None),
]


def extract_causal_terms(text: str) -> Optional[CausalTerms]:
    for pattern, fixed_cause in _PATTERNS:
        m = pattern.search(text or "")
        if not m:
            continue
        if fixed_cause is not None:
            cause, effect = fixed_cause, m.group(1)
        else:
            cause, effect = m.group(1), m.group(2)
        cause = cause.strip()
        effect = effect.strip().rstrip("?").strip()
        if cause and effect:
            return CausalTerms(cause, effect)
    return None


def build_graph(terms: CausalTerms, strength: float = 0.8) -> CausalGraph:
    return CausalGraph(
        variables=[CausalVariable(name=terms.cause), CausalVariable(name=terms.effect)],
        edges=[CausalEdge(cause=terms.cause, effect=terms.effect, strength=strength, kind="direct")],
    )


class TemplateCausalReasoner:
    """Narrates the strongest direct path into `effect`."""

    async def explain(self, effect: str, causes: Sequence[str], graph: CausalGraph) -> Explanation:
        incoming = sorted(
            (e for e in graph.edges if e.effect == effect and e.cause in causes),
            key=lambda e: e.strength,
            reverse=True,
        )
        if not incoming:
            return Explanation(narrative="")
        e = incoming[0]
        strength = "strongly" if e.strength >= 0.7 else "partially"
        narrative = (
            f"'{e.effect}' is {strength} driven by '{e.cause}' through a {e.kind} link "
            f"(strength {e.strength:.1f}); other confounders are not modelled."
        )
        return Explanation(narrative=narrative)
