"""Reconciliation engine: publish, sync, resync and remote listing.

Front matter is the only record of what has been published. A document whose
``nostr_id`` decodes as an article reference is published; everything else is
a candidate.
"""

import json
import logging
from pathlib import Path

from .config import RunContext
from .errors import AllRelaysFailedError, DecodeError, FrontmatterParseError, Hugo2NostrError, NakInvocationError
from .event import construct_event
from .models import ARTICLE_KIND, BatchSummary, Document, SignedEvent
from .nip19 import decode_nevent, encode_nevent, reencode_with_relays
from .relay import publish_to_relays
from .store import discover_documents, load_document, save_document
from .utils import format_local_datetime, slugify

logger = logging.getLogger(__name__)

SYNC_WINDOW_SECONDS = 5 * 365 * 24 * 60 * 60

PUBLISH_FIELDS = ("published", "skipped", "drafts", "failed")
SYNC_FIELDS = ("synced", "skipped", "conflicts")
UPDATE_FIELDS = ("updated", "skipped", "failed")

# Errors confined to a single document; anything else aborts the batch
DOCUMENT_ERRORS = (Hugo2NostrError, OSError, UnicodeDecodeError)

# Remote events come from relays; ids and tags may be anything
SYNC_ERRORS = (Hugo2NostrError, OSError, ValueError)


def publish_documents(ctx: RunContext, paths: list[Path] | None = None) -> BatchSummary:
    """Publish every unpublished, non-draft document of the site.

    CONTRACT:
      Inputs:
        - ctx: RunContext (site, options, client, pool)
        - paths: documents to consider (default: every document in posts_dir)

      Outputs:
        - BatchSummary with published, skipped, drafts, failed
          (plus planned in dry-run mode)

      Invariants:
        - Drafts never reach the signer or the relays
        - A document with a valid article reference is skipped without network access
        - nostr_id is written only when at least one relay accepted the event,
          and lists exactly the accepted relays
        - The document is written immediately after its own publish, so an
          interrupted batch keeps every reference already obtained
        - One document failing never stops the batch

      Properties:
        - Idempotent: a second run over the same documents publishes nothing
    """
    summary = BatchSummary(PUBLISH_FIELDS)
    paths = discover_documents(ctx.site.posts_dir) if paths is None else list(paths)
    dry_run = ctx.options.dry_run
    attempted = False

    for path in paths:
        try:
            document = load_document(path)
        except DOCUMENT_ERRORS as e:
            logger.error("Failed to read %s: %s", path.name, e)
            summary.increment("failed")
            continue

        if document.is_draft:
            logger.debug("Skipping draft: %s", document.title)
            summary.increment("drafts")
            continue

        if document.nostr_id and not dry_run:
            try:
                decode_nevent(document.nostr_id)
            except DecodeError as e:
                logger.warning("Republishing %s: nostr_id is not an article reference (%s)", path.name, e)
            except NakInvocationError as e:
                logger.error("Failed to check %s: %s", path.name, e)
                summary.increment("failed")
                continue
            else:
                logger.debug("Already published: %s", document.title)
                summary.increment("skipped")
                continue

        if attempted and not dry_run:
            ctx.pause()
        attempted = True

        try:
            _publish_one(ctx, document)
        except DOCUMENT_ERRORS as e:
            logger.error("Failed to publish %s: %s: %s", path.name, type(e).__name__, e)
            summary.increment("failed")
        else:
            summary.increment("planned" if dry_run else "published")

    return summary


def _publish_one(ctx: RunContext, document: Document) -> None:
    unsigned = construct_event(
        document, blog_url=ctx.site.blog_url, author_id=ctx.site.author_id, now=ctx.now()
    )

    if ctx.options.dry_run:
        logger.info("Would publish: %s", document.title)
        ctx.emit(json.dumps(unsigned.to_dict(), ensure_ascii=False))
        return

    logger.info("Publishing: %s", document.title)
    signed = ctx.client.sign(unsigned)
    accepted = publish_to_relays(signed, ctx.relays, ctx.client.send, ctx.pool, sleep=ctx.sleep)
    if not accepted:
        raise AllRelaysFailedError(f"no relay accepted event {signed.id}")

    document.metadata["nostr_id"] = encode_nevent(signed.id, accepted)
    published_at = signed.tag_value("published_at")
    document.metadata["date"] = format_local_datetime(int(published_at) if published_at else signed.created_at)
    save_document(document)
    logger.info("Published %s to %s", document.title, ", ".join(accepted))


def local_references(ctx: RunContext) -> dict[str, Path]:
    """Map each local article reference, re-encoded with the configured relays, to its file.

    Unreadable documents and foreign references are left out; the caller
    treats them as absent.
    """
    references = {}
    for path in discover_documents(ctx.site.posts_dir):
        try:
            document = load_document(path)
        except DOCUMENT_ERRORS as e:
            logger.warning("Ignoring unreadable document %s: %s", path.name, e)
            continue
        if not document.nostr_id:
            continue
        try:
            references[reencode_with_relays(document.nostr_id, ctx.relays)] = path
        except (DecodeError, ValueError):
            logger.debug("Ignoring foreign reference in %s", path.name)
    return references


def fetch_remote_articles(ctx: RunContext) -> list[SignedEvent]:
    """Query the configured relays for this author's articles of the last five years."""
    query = {
        "kinds": [ARTICLE_KIND],
        "authors": [ctx.client.public_key()],
        "since": ctx.now() - SYNC_WINDOW_SECONDS,
    }
    events = ctx.client.query(ctx.relays, query)
    logger.info("Fetched %d events from relays", len(events))
    return events


def sync_documents(ctx: RunContext) -> BatchSummary:
    """Create local documents for remote articles that have no local counterpart.

    Existing files are never overwritten: a remote article whose target file
    already exists is counted as a conflict.

    Raises:
        - NakInvocationError: the relay query failed
    """
    summary = BatchSummary(SYNC_FIELDS)
    local = local_references(ctx)
    logger.info("Found %d local references", len(local))

    seen = set()
    for event in fetch_remote_articles(ctx):
        if event.id in seen:
            continue
        seen.add(event.id)

        try:
            outcome = _sync_one(ctx, event, local)
        except SYNC_ERRORS as e:
            logger.error("Failed to sync event %s: %s: %s", event.id[:16], type(e).__name__, e)
            outcome = "failed"
        summary.increment(outcome)

    return summary


def _sync_one(ctx: RunContext, event: SignedEvent, local: dict[str, Path]) -> str:
    """Materialize one remote article unless it is already known; return the counter to bump."""
    reference = encode_nevent(event.id, ctx.relays)
    if reference in local:
        logger.debug("Already exists, skipping: %s", local[reference].name)
        return "skipped"

    document = document_from_event(event, ctx.site.posts_dir, reference)
    if document.path.exists():
        logger.warning("Not overwriting existing file %s for event %s", document.path.name, event.id)
        return "conflicts"

    if ctx.options.dry_run:
        logger.info("Would save new post: %s", document.path)
        return "planned"

    save_document(document)
    local[reference] = document.path
    logger.info("Saved new post: %s", document.path)
    return "synced"


def document_from_event(event: SignedEvent, posts_dir: Path, reference: str) -> Document:
    """Materialize a remote article as a YAML document."""
    title = event.tag_value("title")
    slug = event.tag_value("d") or (title and slugify(title)) or f"nostr-{event.id[:8]}"
    if "/" in slug or "\\" in slug or slug.startswith("."):
        slug = slugify(slug) or f"nostr-{event.id[:8]}"

    published_at = event.tag_value("published_at")
    try:
        timestamp = int(published_at) if published_at else event.created_at
    except ValueError:
        timestamp = event.created_at

    metadata = {
        "title": title or "Untitled",
        "description": event.tag_value("summary") or "",
        "date": format_local_datetime(timestamp),
        "tags": event.tag_values("t"),
    }
    image = event.tag_value("image")
    if image:
        metadata["hero_image"] = image
    metadata["nostr_id"] = reference

    return Document(path=Path(posts_dir) / f"{slug}.md", metadata=metadata, body=event.content, format="yaml")


def update_references(ctx: RunContext) -> BatchSummary:
    """Re-encode every stored reference with the currently configured relays.

    Documents whose reference already matches are not written, so running
    this twice under the same configuration changes nothing the second time.
    """
    summary = BatchSummary(UPDATE_FIELDS)

    for path in discover_documents(ctx.site.posts_dir):
        try:
            document = load_document(path)
        except DOCUMENT_ERRORS as e:
            logger.error("Failed to read %s: %s", path.name, e)
            summary.increment("failed")
            continue

        current = document.nostr_id
        if not current:
            continue

        try:
            updated = reencode_with_relays(current, ctx.relays)
        except (DecodeError, ValueError) as e:
            logger.debug("Skipping %s: %s", path.name, e)
            summary.increment("skipped")
            continue
        except NakInvocationError as e:
            logger.error("Failed to re-encode %s: %s", path.name, e)
            summary.increment("failed")
            continue

        if updated == current:
            summary.increment("skipped")
            continue

        if ctx.options.dry_run:
            logger.info("Would update %s", path.name)
            summary.increment("planned")
            continue

        document.metadata["nostr_id"] = updated
        try:
            save_document(document)
        except (FrontmatterParseError, OSError) as e:
            logger.error("Failed to write %s: %s", path.name, e)
            summary.increment("failed")
            continue
        logger.info("Updated %s", path.name)
        summary.increment("updated")

    return summary


def list_remote(ctx: RunContext) -> list[tuple[str, str]]:
    """Return (id, title) for each of the author's remote articles.

    Raises:
        - NakInvocationError: the relay query failed
    """
    result = []
    seen = set()
    for event in fetch_remote_articles(ctx):
        if event.id in seen:
            continue
        seen.add(event.id)
        title = event.tag_value("title") or event.content[:50] or "Untitled"
        result.append((event.id, title))
    return result
