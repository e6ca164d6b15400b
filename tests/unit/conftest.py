"""Shared fixtures for unit tests.

FakeClient stands in for NakClient: it signs deterministically, records every
delivery and answers queries from a fixed list of remote events. FakeNak
replaces the nak encode/decode subprocess for every test.
"""

import hashlib
import json
import logging

import pytest

from hugo2nostr.config import RunContext, RunOptions, SiteConfig
from hugo2nostr.models import SignedEvent

PUBKEY = "b" * 64
RELAY_A = "wss://relay-a.example.com"
RELAY_B = "wss://relay-b.example.com"
RELAY_C = "wss://relay-c.example.com"
NOW = 1700000000

# One bech32 character per nibble; the fake "checksum" pads every reference
NIBBLES = "qpzry9x8gf2tvdw0"
CHECKSUM = "qqqqqq"


def fake_reference(prefix, payload):
    """Build a reference that FakeNak decodes back to payload."""
    data = "".join(NIBBLES[byte >> 4] + NIBBLES[byte & 15] for byte in payload.encode("utf-8"))
    return f"{prefix}1{data}{CHECKSUM}"


def fake_nevent(event_id, relays=(), **fields):
    """The nevent FakeNak prints for ``nak encode nevent``; fields adds kind/author entries."""
    return fake_reference("nevent", json.dumps({"id": event_id, "relays": list(relays), **fields}))


NPUB = fake_reference("npub", "c" * 64)


def _fake_payload(reference):
    _, _, data = reference.rpartition("1")
    data = data[: -len(CHECKSUM)]
    if not data or len(data) % 2:
        raise ValueError("odd data length")
    pairs = zip(data[::2], data[1::2])
    return bytes(NIBBLES.index(high) * 16 + NIBBLES.index(low) for high, low in pairs).decode("utf-8")


class FakeNak:
    """Deterministic stand-in for ``nak encode nevent`` and ``nak decode``.

    Called like run_nak and records every command.
    """

    def __init__(self):
        self.calls = []

    def __call__(self, cmd, input_text, timeout):
        self.calls.append(list(cmd))
        if cmd[1:3] == ["encode", "nevent"]:
            relays = [cmd[index + 1] for index, arg in enumerate(cmd) if arg == "--relay"]
            return 0, fake_nevent(cmd[-1], relays) + "\n", ""
        if cmd[1] == "decode":
            try:
                return 0, _fake_payload(cmd[2]) + "\n", ""
            except (ValueError, UnicodeDecodeError):
                return 1, "", "failed to decode"
        raise AssertionError(f"unexpected nak command: {cmd}")


class FakeClient:
    """In-memory signer and transport.

    responses maps a relay URL to an exception raised on every delivery, or
    to a list of outcomes consumed one per attempt (None means accepted).
    """

    def __init__(self, responses=None, remote=None, pubkey=PUBKEY):
        self.responses = responses or {}
        self.remote = remote or []
        self.pubkey = pubkey
        self.signed = []
        self.sent = []
        self.queries = []

    def public_key(self):
        return self.pubkey

    def sign(self, event):
        payload = json.dumps(event.to_dict(), sort_keys=True)
        signed = SignedEvent(
            id=hashlib.sha256(payload.encode("utf-8")).hexdigest(),
            pubkey=self.pubkey,
            sig="c" * 128,
            kind=event.kind,
            created_at=event.created_at,
            tags=event.tags,
            content=event.content,
        )
        self.signed.append(signed)
        return signed

    def send(self, relay, event):
        self.sent.append((relay, event))
        outcome = self.responses.get(relay)
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if outcome else None
        if outcome is not None:
            raise outcome

    def query(self, relays, query):
        self.queries.append((list(relays), query))
        return list(self.remote)


def remote_event(event_id, *, title=None, slug=None, content="Remote body", tags=()):
    """Build a signed kind 30023 event as a relay would return it."""
    event_tags = []
    if slug is not None:
        event_tags.append(["d", slug])
    if title is not None:
        event_tags.append(["title", title])
    event_tags.extend(list(tag) for tag in tags)
    return SignedEvent(
        id=event_id, pubkey=PUBKEY, sig="c" * 128, kind=30023, created_at=NOW - 86400, tags=event_tags, content=content
    )


@pytest.fixture
def posts_dir(tmp_path):
    path = tmp_path / "posts"
    path.mkdir()
    return path


@pytest.fixture
def write_post(posts_dir):
    """Write a Markdown file into the posts directory and return its path."""

    def write(name, content):
        path = posts_dir / name
        path.write_text(content, encoding="utf-8")
        return path

    return write


@pytest.fixture
def make_context(posts_dir):
    """Build a RunContext around a FakeClient with no delays and confirmation given."""

    def make(client, relays=(RELAY_A, RELAY_B), **options):
        options.setdefault("delay", 0)
        options.setdefault("yes", True)
        site = SiteConfig(
            name="test",
            posts_dir=posts_dir,
            blog_url="https://blog.example.com",
            author_id="Jane Doe",
            relays=list(relays),
        )
        emitted = []
        ctx = RunContext(
            site,
            RunOptions(**options),
            client,
            sleep=lambda seconds: None,
            clock=lambda: NOW,
            emit=emitted.append,
        )
        ctx.emitted = emitted
        return ctx

    return make


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo CLI logging setup so caplog sees package records in every test."""
    yield
    package_logger = logging.getLogger("hugo2nostr")
    package_logger.handlers = []
    package_logger.setLevel(logging.NOTSET)
    package_logger.propagate = True


@pytest.fixture(autouse=True)
def fake_nak(monkeypatch):
    """Answer nak encode/decode calls without the nak binary."""
    nak = FakeNak()
    monkeypatch.setattr("hugo2nostr.nip19.run_nak", nak)
    return nak
