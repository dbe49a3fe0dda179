"""
Field alias resolution for the heuristic command parser.
"""
from __future__ import annotations

from typing import Dict, Iterable
import difflib

from schemas import FIELD_NAMES

# Words users type for the table's fields
ALIASES: Dict[str, str] = {
    # price
    "price": "averagePricePerM2",
    "prices": "averagePricePerM2",
    "price per m2": "averagePricePerM2",
    "price per square meter": "averagePricePerM2",
    "average price": "averagePricePerM2",
    "cost": "averagePricePerM2",
    # population
    "pop": "population",
    "inhabitants": "population",
    "people": "population",
    # location
    "zip": "postalCode",
    "zipcode": "postalCode",
    "zip code": "postalCode",
    "postal": "postalCode",
    "postal code": "postalCode",
    "postcode": "postalCode",
    "town": "city",
    "municipality": "city",
    "commune": "city",
    "region": "province",
}


def resolve_column(name: str, columns: Iterable[str] = FIELD_NAMES) -> str | None:
    """Resolve a user-provided or aliased field name to the actual table field.

    Attempts exact match, case-insensitive match, alias map, then fuzzy match
    using difflib. Returns the best guess or None if resolution fails.
    """
    cols = list(columns)
    if not name:
        return None
    name = name.strip()
    # exact
    if name in cols:
        return name
    lowered = {c.lower(): c for c in cols}
    if name.lower() in lowered:
        return lowered[name.lower()]
    # alias
    alias = ALIASES.get(" ".join(name.lower().split()))
    if alias and alias in cols:
        return alias
    # fuzzy
    m = difflib.get_close_matches(name.lower(), list(lowered), n=1, cutoff=0.8)
    if m:
        return lowered[m[0]]
    return None
