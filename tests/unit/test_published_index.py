"""Tests for the derived published.json listing."""

import json

from conftest import NPUB, RELAY_A, RELAY_B, fake_nevent

from hugo2nostr.models import Document, PublishedIndex
from hugo2nostr.published_index import build_published_index, index_posts_dir, write_published_index

REFERENCE = fake_nevent("1" * 64, [RELAY_A, RELAY_B])


class TestBuildPublishedIndex:
    def test_lists_only_article_references(self, tmp_path):
        documents = [
            Document(tmp_path / "a.md", {"title": "A", "nostr_id": REFERENCE}),
            Document(tmp_path / "b.md", {"title": "B"}),
            Document(tmp_path / "c.md", {"title": "C", "nostr_id": NPUB}),
            Document(tmp_path / "d.md", {"title": "D", "nostr_id": "garbage"}),
        ]

        index = build_published_index(documents)

        assert index.posts == [
            {"id": REFERENCE, "title": "A", "file": str(tmp_path / "a.md"), "relays": [RELAY_A, RELAY_B]}
        ]

    def test_empty(self):
        assert build_published_index([]).to_dict() == {"posts": []}


class TestIndexPostsDir:
    def test_skips_unreadable_documents(self, write_post, posts_dir):
        write_post("a.md", f"---\ntitle: A\nnostr_id: {REFERENCE}\n---\nBody")
        write_post("broken.md", "---\ntitle: [unclosed\n---\nBody")
        write_post("_index.md", f"---\ntitle: Section\nnostr_id: {REFERENCE}\n---\n")

        index = index_posts_dir(posts_dir)

        assert [post["file"] for post in index.posts] == [str(posts_dir / "a.md")]


class TestWritePublishedIndex:
    def test_writes_indented_json(self, tmp_path):
        path = tmp_path / "published.json"
        index = PublishedIndex(posts=[{"id": REFERENCE, "title": "Grüße", "file": "a.md", "relays": [RELAY_A]}])

        write_published_index(index, path)

        text = path.read_text(encoding="utf-8")
        assert text.startswith('{\n  "posts": [')
        assert "Grüße" in text
        assert json.loads(text) == index.to_dict()
