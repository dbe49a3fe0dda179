"""
Chat rendering of analytics results.

Numbers use French grouping ("1 200 000", "3 166,667"), the format the
dashboard displays.
"""
from __future__ import annotations

import math
from typing import Any, Iterable, Optional

MAX_FRACTION_DIGITS = 3


def format_number(value: Any) -> str:
    """Format a number with French digit grouping and a comma decimal separator.

    Non-numeric values are returned as ``str(value)``.

    Example:
        >>> format_number(1200000)
        '1 200 000'
        >>> format_number(3166.6666)
        '3 166,667'
    """
    if value is None or isinstance(value, bool):
        return str(value)
    try:
        num = float(value)
    except (TypeError, ValueError):
        return str(value)
    if not math.isfinite(num):
        return str(value)

    rounded = round(num, MAX_FRACTION_DIGITS)
    text = f"{abs(rounded):,.{MAX_FRACTION_DIGITS}f}".rstrip("0").rstrip(".")
    integer, _, fraction = text.partition(".")
    out = integer.replace(",", " ")
    if fraction:
        out += "," + fraction
    return "-" + out if rounded < 0 else out


def _row_line(index: int, row: dict) -> str:
    return (
        f"{index}. {row.get('city')} ({row.get('province')}): "
        f"{format_number(row.get('averagePricePerM2'))} €/m², "
        f"Population: {format_number(row.get('population'))}"
    )


def format_analytics_result(result: Any, display_fields: Optional[Iterable[str]] = None) -> str:
    """Render an AnalyticsResult (object or its dict form) as a chat message.

    ``display_fields`` switches data rows from the default city/price/population
    line to "field: value" pairs.
    """
    r = result.to_dict() if hasattr(result, "to_dict") else dict(result)
    message = r.get("message", "")
    kind = r.get("type")
    if message.startswith("Error:"):
        return message

    if kind == "data" and r.get("data") is not None:
        rows = r["data"]
        message += "\n\nResults:"
        for i, row in enumerate(rows, start=1):
            if display_fields:
                parts = ", ".join(f"{f}: {format_number(row.get(f))}" for f in display_fields)
                message += f"\n{i}. {parts}"
            else:
                message += "\n" + _row_line(i, row)
        message += f"\n\nSelected {len(rows)} rows in the table."
    elif kind == "comparison" and r.get("comparison"):
        c = r["comparison"]
        message += (
            f"\n\nGroup 1: {format_number(c['group1'])}"
            f"\nGroup 2: {format_number(c['group2'])}"
            f"\nDifference: {format_number(c['difference'])}"
            f"\nRatio: {format_number(c['ratio'])}"
        )
    elif kind == "value" and r.get("value") is not None:
        message += f"\n\nResult: {format_number(r['value'])}"
        scope = (r.get("metadata") or {}).get("scope")
        if scope:
            message += f"\nScope: {scope}"
    return message
