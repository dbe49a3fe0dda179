"""
Filter vs. selection verb disambiguation.

"show only Brussels" filters (hides other rows); "highlight Brussels" selects
(marks rows, hides nothing). The verb the user actually typed decides.
"""
from __future__ import annotations

import re
from typing import Literal, Optional

FILTER_VERBS = ("show", "keep", "include", "exclude", "filter", "only", "hide", "remove")
SELECTION_VERBS = ("select", "pick", "choose", "highlight", "mark", "identify", "extract")

VerbIntent = Literal["filter", "selection", "ambiguous", "none"]


def _verb_pattern(verbs: tuple) -> re.Pattern:
    # Light inflection: "selects", "highlighted", "filtering", "hides"
    alts = "|".join(re.escape(v) for v in verbs)
    return re.compile(rf"\b(?:{alts})(?:s|es|ed|d|ing)?\b", re.IGNORECASE)


_FILTER_RE = _verb_pattern(FILTER_VERBS)
_SELECTION_RE = _verb_pattern(SELECTION_VERBS)


def _first(pattern: re.Pattern, text: str) -> Optional[int]:
    m = pattern.search(text)
    return m.start() if m else None


def classify_verbs(text: str, prefer_first: bool = True) -> VerbIntent:
    """Classify an utterance by the table-action verb it uses.

    Returns "filter" or "selection" when only one class appears. When both
    appear, the first occurrence wins, or "ambiguous" with prefer_first=False.
    Returns "none" when neither appears.

    Example:
        >>> classify_verbs("highlight the cities in Antwerp")
        'selection'
    """
    if not text:
        return "none"
    f = _first(_FILTER_RE, text)
    s = _first(_SELECTION_RE, text)
    if f is None and s is None:
        return "none"
    if s is None:
        return "filter"
    if f is None:
        return "selection"
    if not prefer_first:
        return "ambiguous"
    return "filter" if f < s else "selection"


VERB_RULES = (
    "VERB RULES:\n"
    f"- Filter verbs ({', '.join(FILTER_VERBS)}) mean hiding non-matching rows: call apply_filter.\n"
    f"- Selection verbs ({', '.join(SELECTION_VERBS)}) mean marking rows without hiding any: "
    "call apply_selection with action selectWhere.\n"
    "- Decide by the verb the user actually used, not by the shape of the condition.\n"
)
