"""Front matter parsing and serialization.

Hugo content files carry YAML (``---``) or TOML (``+++``) front matter. Files
without front matter are treated as ``plain`` documents.
"""

from pathlib import Path

import frontmatter
import toml
import yaml
from frontmatter.default_handlers import TOMLHandler, YAMLHandler

from .errors import FrontmatterParseError
from .models import Document


class StableYAMLHandler(YAMLHandler):
    """YAML handler that keeps key order and writes long strings on one line."""

    def export(self, metadata, **kwargs):
        return yaml.safe_dump(
            metadata,
            sort_keys=False,
            width=1000,
            default_flow_style=False,
            allow_unicode=True,
        ).rstrip()


_HANDLERS = {"yaml": StableYAMLHandler(), "toml": TOMLHandler()}


def detect_format(content: str) -> str:
    """Return "yaml", "toml" or "plain" based on the opening delimiter."""
    if content.startswith("---"):
        return "yaml"
    if content.startswith("+++"):
        return "toml"
    return "plain"


def parse_frontmatter(content: str) -> tuple[dict | None, str]:
    """Split content into front matter mapping and body.

    CONTRACT:
      Inputs:
        - content: full text of a Markdown file

      Outputs:
        - (metadata, body): metadata is None when the file has no front matter,
          in which case body is the original content unchanged

      Invariants:
        - Front matter must parse to a mapping
        - Body has surrounding whitespace trimmed when front matter is present

      Raises:
        - FrontmatterParseError: invalid YAML/TOML, missing closing delimiter,
          or front matter that is not a mapping
    """
    fmt = detect_format(content)
    if fmt == "plain":
        return None, content

    handler = _HANDLERS[fmt]
    try:
        raw_fm, body = handler.split(content)
    except ValueError:
        raise FrontmatterParseError(f"{fmt} front matter has no closing delimiter") from None

    if not raw_fm.strip():
        return {}, body.strip()

    try:
        data = handler.load(raw_fm)
    except (yaml.YAMLError, toml.TomlDecodeError) as e:
        raise FrontmatterParseError(f"invalid {fmt} front matter: {e}") from e

    if not isinstance(data, dict):
        raise FrontmatterParseError(f"front matter must be a mapping, got {type(data).__name__}")

    return data, body.strip()


def parse_document(content: str, path: Path) -> Document:
    """Parse file content into a Document."""
    metadata, body = parse_frontmatter(content)
    if metadata is None:
        return Document(path=path, metadata={}, body=body, format="plain")
    return Document(path=path, metadata=metadata, body=body, format=detect_format(content))


def serialize_document(document: Document) -> str:
    """Render a Document back to file content.

    Plain documents that have gained metadata are written with YAML front
    matter so the metadata is not lost.
    """
    fmt = document.format
    if fmt == "plain":
        if not document.metadata:
            return document.body
        fmt = "yaml"

    post = frontmatter.Post(document.body)
    post.metadata.update(document.metadata)
    try:
        rendered = frontmatter.dumps(post, handler=_HANDLERS[fmt])
    except (yaml.YAMLError, TypeError, ValueError) as e:
        raise FrontmatterParseError(f"cannot serialize {fmt} front matter: {e}") from e
    return rendered.rstrip("\n") + "\n"
