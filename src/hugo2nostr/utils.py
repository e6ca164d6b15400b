"""Small shared helpers."""

import re
from datetime import datetime


def deduplicate_preserving_order(items: list) -> list:
    """Remove duplicates while keeping the first occurrence of each item."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def slugify(text: str) -> str:
    """Lowercase, hyphenate whitespace and drop anything that is not a word character or hyphen."""
    slug = str(text).lower().strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^\w\-]+", "", slug)
    return re.sub(r"-{2,}", "-", slug)


def format_local_datetime(timestamp: int) -> str:
    """Format unix seconds as a Hugo date in local time, e.g. 2013-10-15T14:39:55-04:00."""
    return datetime.fromtimestamp(timestamp).astimezone().isoformat(timespec="seconds")
