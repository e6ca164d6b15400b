"""published.json: a derived listing of published articles.

Rebuilt from front matter on demand. Nothing reads it back to decide what
is published.
"""

import json
import logging
from pathlib import Path

from .errors import DecodeError, Hugo2NostrError
from .models import Document, PublishedIndex
from .nip19 import decode_nevent
from .store import discover_documents, load_document

logger = logging.getLogger(__name__)

PUBLISHED_FILE = "published.json"


def build_published_index(documents: list[Document]) -> PublishedIndex:
    """List every document whose nostr_id is an article reference.

    Entries hold the reference, title, file path and the relays recorded in
    the reference, in document order.
    """
    posts = []
    for document in documents:
        if not document.nostr_id:
            continue
        try:
            reference = decode_nevent(document.nostr_id)
        except DecodeError:
            continue
        posts.append(
            {
                "id": document.nostr_id,
                "title": document.title,
                "file": str(document.path),
                "relays": reference.relays,
            }
        )
    return PublishedIndex(posts=posts)


def index_posts_dir(posts_dir: Path) -> PublishedIndex:
    documents = []
    for path in discover_documents(posts_dir):
        try:
            documents.append(load_document(path))
        except (Hugo2NostrError, OSError, UnicodeDecodeError) as e:
            logger.warning("Ignoring unreadable document %s: %s", path.name, e)
    return build_published_index(documents)


def write_published_index(index: PublishedIndex, path: Path) -> None:
    Path(path).write_text(json.dumps(index.to_dict(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    logger.info("Saved %d posts to %s", len(index.posts), path)
