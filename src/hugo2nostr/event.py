"""NIP-23 article and NIP-09 deletion event construction.

Deterministic unsigned event generation from document metadata and body.
"""

import logging
import re
import time
from datetime import date, datetime

from .models import ARTICLE_KIND, DELETION_KIND, Document, EventReference, UnsignedEvent
from .utils import deduplicate_preserving_order

logger = logging.getLogger(__name__)

READ_MORE_MARKER = "<!--more-->"
DEFAULT_HOUR = 8
HERO_IMAGE_FIELDS = ("hero_image", "image", "featured_image")

_TIME_OF_DAY = re.compile(r"\d{2}:\d{2}")
_RELATIVE_LINK = re.compile(r"(\[.*?\])\((?!https?://|mailto:|tel:|#)([^)]+)\)")


def construct_event(
    document: Document, *, blog_url: str = "", author_id: str = "", now: int | None = None
) -> UnsignedEvent:
    """Construct an unsigned kind 30023 event from a document.

    CONTRACT:
      Inputs:
        - document: parsed Document (metadata may lack any optional field)
        - blog_url: site base URL, used for canonical and relative URLs ("" disables)
        - author_id: author identifier for the author tag ("" omits the tag)
        - now: unix seconds used for created_at and as the date fallback

      Outputs:
        - event: UnsignedEvent with kind 30023

      Invariants:
        - tags[0] == ["d", slug], tags[1] == ["title", title]
        - optional tags follow in fixed order: author, r, image, summary, published_at
        - topic tags (["t", tag]) come last, in normalized metadata order
        - content has read-more markers removed and is trimmed

      Properties:
        - Deterministic: same document, site values and now yield the same event
        - Total: never raises for missing optional fields
    """
    if now is None:
        now = int(time.time())

    metadata = document.metadata
    slug = str(metadata.get("slug") or document.stem)
    title = str(metadata.get("title") or "Untitled")

    content = prepare_content(document.body, blog_url)
    summary = metadata.get("summary") or metadata.get("description") or get_summary(content)
    image_url = resolve_hero_image(metadata, blog_url)
    canonical_url = f"{blog_url.rstrip('/')}/{slug}/" if blog_url else None
    published_at = normalize_date(metadata.get("date"), now)

    topics = deduplicate_preserving_order(normalize_tags(metadata.get("tags")) + normalize_tags(metadata.get("topics")))

    tags = build_tags(
        slug=slug,
        title=title,
        author_id=author_id,
        canonical_url=canonical_url,
        image_url=image_url,
        summary=str(summary) if summary else None,
        published_at=published_at,
        topics=topics,
    )
    return UnsignedEvent(kind=ARTICLE_KIND, created_at=now, tags=tags, content=content)


def build_tags(
    *,
    slug: str,
    title: str,
    author_id: str = "",
    canonical_url: str | None = None,
    image_url: str | None = None,
    summary: str | None = None,
    published_at: int | None = None,
    topics: list[str] | None = None,
) -> list[list[str]]:
    """Build the ordered article tag list.

    Identifying and title tags come first; clients rely on that. The rest of
    the order is fixed so events are reproducible byte for byte.
    """
    tags = [["d", slug], ["title", title]]

    if author_id:
        tags.append(["author", author_id])

    if canonical_url:
        tags.append(["r", canonical_url])

    if image_url:
        tags.append(["image", image_url])

    if summary:
        tags.append(["summary", summary])

    if published_at is not None:
        tags.append(["published_at", str(published_at)])

    for topic in topics or []:
        tags.append(["t", topic])

    return tags


def build_deletion_event(reference: EventReference, *, now: int | None = None) -> UnsignedEvent:
    """Construct a NIP-09 deletion request for the referenced event."""
    if now is None:
        now = int(time.time())
    tags = [["e", reference.id], ["k", str(reference.kind or ARTICLE_KIND)]]
    return UnsignedEvent(kind=DELETION_KIND, created_at=now, tags=tags, content="")


def normalize_tags(value) -> list[str]:
    """Normalize a tags/topics value into a list of bare tag names.

    Lists keep their order; strings are split on whitespace and commas.
    Leading '#' is stripped and empty entries are dropped.
    """
    if not value:
        return []

    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = re.split(r"[\s,]+", str(value))

    result = []
    for item in items:
        item = item.strip()
        if item.startswith("#"):
            item = item[1:]
        item = item.strip()
        if item:
            result.append(item)
    return result


def normalize_date(value, now: int) -> int:
    """Convert a front matter date into unix seconds.

    Dates without a time of day are placed at 08:00 local time. Missing or
    unparseable values fall back to now with a warning.
    """
    if isinstance(value, datetime):
        return _to_timestamp(value)

    if isinstance(value, date):
        return _to_timestamp(datetime(value.year, value.month, value.day, DEFAULT_HOUR))

    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Could not parse date: %s", text)
            return now
        if not _TIME_OF_DAY.search(text):
            parsed = parsed.replace(hour=DEFAULT_HOUR, minute=0, second=0, microsecond=0)
        return _to_timestamp(parsed)

    logger.warning("No date set, using current time")
    return now


def _to_timestamp(value: datetime) -> int:
    # Naive datetimes are local time, which is what timestamp() assumes
    return int(value.timestamp())


def get_summary(content: str) -> str:
    """Return the first non-blank line of content, or ""."""
    if not content:
        return ""
    text = content.replace("\r\n", "\n").strip()
    return text.split("\n", 1)[0].strip()


def prepare_content(body: str, blog_url: str = "") -> str:
    content = (body or "").replace(READ_MORE_MARKER, "").strip()
    return resolve_content_urls(content, blog_url)


def resolve_url(path: str, base_url: str) -> str:
    """Resolve a site-relative path against base_url; absolute URLs pass through."""
    if not path or not base_url:
        return path or ""
    if path.startswith(("http://", "https://")):
        return path
    if path.startswith("/"):
        return base_url.rstrip("/") + path
    return base_url.rstrip("/") + "/" + path


def resolve_content_urls(content: str, base_url: str) -> str:
    """Rewrite relative Markdown link and image targets to absolute URLs."""
    if not content or not base_url:
        return content
    return _RELATIVE_LINK.sub(lambda m: f"{m.group(1)}({resolve_url(m.group(2), base_url)})", content)


def resolve_hero_image(metadata: dict, blog_url: str = "") -> str | None:
    """Pick the image URL for the event.

    A cached upload URL (nostr_image) wins over the hero image fields. Relative
    hero images need blog_url to become absolute, otherwise they are dropped.
    """
    cached = metadata.get("nostr_image")
    if isinstance(cached, str) and cached.strip():
        return cached.strip()

    for name in HERO_IMAGE_FIELDS:
        value = metadata.get(name)
        if isinstance(value, str) and value.strip():
            value = value.strip()
            if value.startswith(("http://", "https://")):
                return value
            if blog_url:
                return resolve_url(value, blog_url)
            return None
    return None
