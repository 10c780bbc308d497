"""Phone number clean-up before handing numbers to a notifier."""

from __future__ import annotations

import re
from typing import Optional

_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone(number: Optional[str], default_country_code: str = "+91") -> Optional[str]:
    """Return ``number`` in ``+<country><subscriber>`` form, or ``None`` when blank.

    Numbers without a leading ``+`` are assumed local and get
    ``default_country_code`` prepended.
    """

    if number is None:
        return None
    cleaned = _SEPARATORS.sub("", number)
    if not cleaned:
        return None
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("00"):
        return f"+{cleaned[2:]}"
    code = default_country_code.strip()
    if code and not code.startswith("+"):
        code = f"+{code}"
    return f"{code}{cleaned}"


__all__ = ["normalize_phone"]
