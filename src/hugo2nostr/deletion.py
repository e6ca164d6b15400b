"""Deletion engine: NIP-09 deletion requests for published articles.

Local state changes only after at least one relay accepted the deletion
request. Marked documents are removed from disk; the bulk sweep keeps the
files and clears their ``nostr_id``.
"""

import logging
from pathlib import Path

from .config import RunContext
from .errors import AllRelaysFailedError, DecodeError, Hugo2NostrError
from .event import build_deletion_event
from .models import BatchSummary, Document
from .nip19 import decode_nevent, is_article_reference
from .relay import publish_to_relays
from .store import discover_documents, load_document, remove_document, save_document

logger = logging.getLogger(__name__)

DELETE_FIELDS = ("deleted", "failed")

MODE_MARKED = "marked"
MODE_ALL = "all"


def select_marked(documents: list[Document]) -> list[Document]:
    """Documents with delete: true and a non-empty nostr_id."""
    return [doc for doc in documents if doc.marked_for_deletion and doc.nostr_id]


def select_published(documents: list[Document]) -> list[Document]:
    """Documents whose nostr_id is an article reference."""
    return [doc for doc in documents if doc.nostr_id and is_article_reference(doc.nostr_id)]


def delete_marked(ctx: RunContext) -> BatchSummary:
    """Retract every document marked ``delete: true`` and remove its file."""
    return _sweep(ctx, select_marked(_load_all(ctx.site.posts_dir)), MODE_MARKED)


def delete_all(ctx: RunContext) -> BatchSummary:
    """Retract every published document and clear its nostr_id, keeping the file."""
    return _sweep(ctx, select_published(_load_all(ctx.site.posts_dir)), MODE_ALL)


def _load_all(posts_dir: Path) -> list[Document]:
    documents = []
    for path in discover_documents(posts_dir):
        try:
            documents.append(load_document(path))
        except (Hugo2NostrError, OSError, UnicodeDecodeError) as e:
            logger.warning("Ignoring unreadable document %s: %s", path.name, e)
    return documents


def _sweep(ctx: RunContext, selected: list[Document], mode: str) -> BatchSummary:
    """Run the deletion sequence over the selected documents.

    CONTRACT:
      Inputs:
        - ctx: RunContext
        - selected: documents to retract, in processing order
        - mode: MODE_MARKED (remove file) or MODE_ALL (clear nostr_id)

      Outputs:
        - BatchSummary with deleted and failed

      Invariants:
        - Nothing happens unless confirmed (or --yes)
        - A document is only changed after a relay accepted its deletion request
        - Documents are processed one at a time, with the configured delay between them
    """
    summary = BatchSummary(DELETE_FIELDS)

    if not selected:
        logger.warning("No posts to delete")
        return summary

    logger.info("Found %d posts to delete", len(selected))
    if not (ctx.options.yes or ctx.confirm(f"Delete {len(selected)} posts from Nostr?")):
        logger.warning("Cancelled")
        return summary

    total = len(selected)
    for index, document in enumerate(selected, start=1):
        progress = f"[{index}/{total}]"
        try:
            _retract(ctx, document, mode)
        except DecodeError as e:
            logger.error("%s Invalid nostr_id for %s: %s", progress, document.title, e)
            summary.increment("failed")
        except (Hugo2NostrError, OSError) as e:
            logger.error("%s Failed to delete %s: %s: %s", progress, document.title, type(e).__name__, e)
            summary.increment("failed")
        else:
            summary.increment("planned" if ctx.options.dry_run else "deleted")

        if index < total and not ctx.options.dry_run:
            ctx.pause()

    return summary


def _retract(ctx: RunContext, document: Document, mode: str) -> None:
    reference = decode_nevent(document.nostr_id)

    if ctx.options.dry_run:
        logger.info("Would delete: %s (%s)", document.title, reference.id)
        return

    logger.info("Deleting: %s", document.title)
    signed = ctx.client.sign(build_deletion_event(reference, now=ctx.now()))
    accepted = publish_to_relays(signed, ctx.relays, ctx.client.send, ctx.pool, sleep=ctx.sleep)
    if not accepted:
        raise AllRelaysFailedError(f"no relay accepted deletion request {signed.id}")

    if mode == MODE_MARKED:
        remove_document(document)
    else:
        del document.metadata["nostr_id"]
        save_document(document)
    logger.info("Deleted %s from %s", document.title, ", ".join(accepted))
