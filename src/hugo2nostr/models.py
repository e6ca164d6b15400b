"""Data models for hugo2nostr.

Plain data classes for documents, events, relay references and batch results.
"""

from dataclasses import dataclass, field
from pathlib import Path

ARTICLE_KIND = 30023
DELETION_KIND = 5

DOCUMENT_FORMATS = ("yaml", "toml", "plain")


@dataclass
class Document:
    """A Markdown file with front matter.

    metadata is an open mapping: keys this package does not know about are
    carried through every read/write unchanged.
    """

    path: Path
    metadata: dict = field(default_factory=dict)
    body: str = ""
    format: str = "yaml"

    @property
    def stem(self) -> str:
        return self.path.stem

    @property
    def title(self) -> str:
        return self.metadata.get("title") or "Untitled"

    @property
    def slug(self) -> str:
        return self.metadata.get("slug") or self.stem

    @property
    def nostr_id(self) -> str | None:
        value = self.metadata.get("nostr_id")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @property
    def is_draft(self) -> bool:
        return self.metadata.get("draft") is True

    @property
    def marked_for_deletion(self) -> bool:
        return self.metadata.get("delete") is True


@dataclass
class UnsignedEvent:
    """Unsigned Nostr event ready for signing via nak."""

    kind: int
    created_at: int
    tags: list[list[str]]
    content: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"kind": self.kind, "created_at": self.created_at, "tags": self.tags, "content": self.content}

    def tag_value(self, name: str) -> str | None:
        return first_tag_value(self.tags, name)


@dataclass(frozen=True)
class SignedEvent:
    """Signed Nostr event as returned by the signer or a relay query."""

    id: str
    pubkey: str
    sig: str
    kind: int
    created_at: int
    tags: list[list[str]]
    content: str

    @classmethod
    def from_dict(cls, data: dict) -> "SignedEvent":
        return cls(
            id=data["id"],
            pubkey=data["pubkey"],
            sig=data.get("sig", ""),
            kind=int(data["kind"]),
            created_at=int(data["created_at"]),
            tags=[list(tag) for tag in data.get("tags", [])],
            content=data.get("content", ""),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
            "sig": self.sig,
        }

    def tag_value(self, name: str) -> str | None:
        return first_tag_value(self.tags, name)

    def tag_values(self, name: str) -> list[str]:
        return [tag[1] for tag in self.tags if len(tag) >= 2 and tag[0] == name]


@dataclass
class EventReference:
    """Decoded nevent: event id plus relay hints, kind and author."""

    id: str
    relays: list[str] = field(default_factory=list)
    kind: int | None = None
    author: str | None = None


@dataclass
class RelayResult:
    """Outcome of delivering one event to one relay."""

    relay: str
    accepted: bool
    attempts: int = 1
    error: str | None = None


@dataclass
class BatchSummary:
    """Per-run counters.

    fields lists the counters reported for the operation, in display order.
    """

    fields: tuple[str, ...] = ("published", "skipped", "drafts", "failed")
    counts: dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        for name in self.fields:
            self.counts.setdefault(name, 0)

    def increment(self, name: str, amount: int = 1) -> None:
        self.counts[name] = self.counts.get(name, 0) + amount

    def __getitem__(self, name: str) -> int:
        return self.counts.get(name, 0)

    @property
    def succeeded(self) -> int:
        return sum(self.counts.get(name, 0) for name in ("published", "synced", "deleted", "updated", "planned"))

    @property
    def failures(self) -> int:
        return self.counts.get("failed", 0) + self.counts.get("conflicts", 0)

    def exit_code(self) -> int:
        """0 when nothing failed, 2 when nothing succeeded either, 1 otherwise."""
        if self.failures == 0:
            return 0
        if self.succeeded == 0:
            return 2
        return 1

    def as_dict(self) -> dict[str, int]:
        """Counters in display order; counters outside fields appear only when non-zero."""
        result = {name: self.counts.get(name, 0) for name in self.fields}
        for name, value in self.counts.items():
            if name not in result and value:
                result[name] = value
        return result


@dataclass
class PublishedIndex:
    """Derived cache of published articles, rebuilt from front matter."""

    posts: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"posts": self.posts}


def first_tag_value(tags: list[list[str]], name: str) -> str | None:
    for tag in tags:
        if len(tag) >= 2 and tag[0] == name:
            return tag[1]
    return None
