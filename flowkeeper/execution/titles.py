"""Card title templates."""

from __future__ import annotations

import re
from datetime import datetime

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def interpolate_title(template: str, now: datetime) -> str:
    """Fill ``{{date}}``/``{{day}}`` (YYYY-MM-DD), ``{{weekday}}`` and ``{{month}}``.

    ``now`` should already be in the zone the user reads dates in. Unknown
    placeholders are left untouched.
    """
    values = {
        "date": now.strftime("%Y-%m-%d"),
        "day": now.strftime("%Y-%m-%d"),
        "weekday": now.strftime("%A"),
        "month": now.strftime("%B"),
    }
    return _PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)
