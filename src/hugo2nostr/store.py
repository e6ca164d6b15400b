"""Document store backed by a Hugo posts directory."""

import logging
from pathlib import Path

from .frontmatter import parse_document, serialize_document
from .models import Document

logger = logging.getLogger(__name__)


def discover_documents(posts_dir: Path) -> list[Path]:
    """List Markdown files directly under posts_dir, sorted, skipping section _index.md files."""
    return sorted(p for p in Path(posts_dir).glob("*.md") if p.name != "_index.md")


def load_document(path: Path) -> Document:
    """Read and parse a document.

    Raises:
        - FrontmatterParseError: malformed front matter
        - OSError / UnicodeDecodeError: unreadable file
    """
    return parse_document(Path(path).read_text(encoding="utf-8"), Path(path))


def save_document(document: Document) -> None:
    """Write a document back to its path, preserving every metadata key."""
    content = serialize_document(document)
    if document.format == "plain" and document.metadata:
        document.format = "yaml"
    document.path.write_text(content, encoding="utf-8")
    logger.debug("Wrote %s", document.path)


def remove_document(document: Document) -> None:
    document.path.unlink()
    logger.debug("Removed file: %s", document.path)
