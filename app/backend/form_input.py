"""Normalization of raw submission-form values into a profile payload.

The submission page posts every input as text. This mirrors what the form
does before sending JSON: list inputs are split on ", ", numbers are parsed,
blank inputs become null and only the first five investors are kept.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from .constants import MAX_TOP_INVESTORS


LIST_FIELDS = ("industries", "industryGroups", "topInvestors")
INT_FIELDS = ("fundingRounds", "foundersCount", "employeesCount")
FLOAT_FIELDS = ("lastFunding", "equity", "totalFunding", "revenue", "growth", "valuation")
DATE_FIELDS = ("lastValuationDate",)

# Leading numeric prefix, the way the browser's parseInt / parseFloat read input.
_INT_PREFIX = re.compile(r"[+-]?\d+")
_FLOAT_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class FormValueError(ValueError):
    def __init__(self, field: str, text: str) -> None:
        super().__init__(f"Not a number: {text!r}")
        self.field = field


def split_list_field(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [item for item in text.split(", ") if item]


def _parse_number(field: str, text: str, pattern: re.Pattern, convert) -> Optional[Any]:
    value = text.strip()
    if not value:
        return None
    match = pattern.match(value)
    if match is None:
        raise FormValueError(field, text)
    return convert(match.group(0))


def parse_form_fields(form: Dict[str, Any]) -> Dict[str, Any]:
    """Convert raw form strings into a JSON profile payload.

    Integers keep their leading digits ("12.9" and "12abc" give 12), floats
    their leading decimal. Keys not handled by the form are passed through
    untouched, so that the validator still reports them.
    """
    payload: Dict[str, Any] = {}
    for key, raw in form.items():
        if not isinstance(raw, str):
            payload[key] = raw
            continue

        if key in LIST_FIELDS:
            values = split_list_field(raw)
            if key == "topInvestors":
                values = values[:MAX_TOP_INVESTORS]
            payload[key] = values
        elif key in INT_FIELDS:
            payload[key] = _parse_number(key, raw, _INT_PREFIX, int)
        elif key in FLOAT_FIELDS:
            payload[key] = _parse_number(key, raw, _FLOAT_PREFIX, float)
        elif key in DATE_FIELDS:
            payload[key] = raw.strip() or None
        else:
            payload[key] = raw
    return payload
