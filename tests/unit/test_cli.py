"""Tests for the CLI entrypoint: argument parsing, per-site dispatch and exit codes.

nak is never invoked: NakClient is replaced with the in-memory FakeClient.
"""

import json
from argparse import Namespace

import pytest
from conftest import RELAY_A, RELAY_B, FakeClient, fake_nevent, remote_event

from hugo2nostr import __version__
from hugo2nostr.cli import COMMANDS, build_options, main, parse_arguments, prompt_confirm
from hugo2nostr.errors import NakInvocationError, RelayRejectedError
from hugo2nostr.nip19 import decode_nevent
from hugo2nostr.store import load_document

SECRET = "01" * 32

CONFIG = """\
default_site: blog
sites:
  blog:
    posts_dir: {posts}
    blog_url: https://blog.example.com
    relays:
      - {relay_a}
      - {relay_b}
  notes:
    posts_dir: {missing}
    relays:
      - {relay_a}
"""

ENV_NAMES = ("NOSTR_PRIVATE_KEY", "DRY_RUN", "POSTS_DIR", "BLOG_URL", "AUTHOR_ID", "RELAY_LIST", "IMAGE_HOST")


@pytest.fixture
def cli_env(tmp_path, posts_dir, monkeypatch):
    """Isolated config directory and environment; returns the config directory."""
    directory = tmp_path / "config"
    directory.mkdir()
    (directory / "config.yaml").write_text(
        CONFIG.format(posts=posts_dir, missing=tmp_path / "missing", relay_a=RELAY_A, relay_b=RELAY_B),
        encoding="utf-8",
    )
    monkeypatch.setenv("HUGO2NOSTR_CONFIG_DIR", str(directory))
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("hugo2nostr.cli.load_dotenv", lambda: None)
    monkeypatch.chdir(tmp_path)
    return directory


@pytest.fixture
def fake_client(monkeypatch):
    client = FakeClient()
    monkeypatch.setattr("hugo2nostr.config.NakClient", lambda secret_key, timeout: client)
    return client


@pytest.fixture
def with_key(monkeypatch):
    monkeypatch.setenv("NOSTR_PRIVATE_KEY", SECRET)


class TestParseArguments:
    def test_defaults(self):
        args = parse_arguments(["publish"])

        assert args.command == "publish"
        assert args.site is None
        assert args.all_sites is False
        assert args.delay == 3000
        assert args.timeout == 30
        assert args.dry_run is False
        assert args.json_output is False

    def test_every_command_accepted(self):
        for command in COMMANDS:
            assert parse_arguments([command]).command == command

    def test_flags(self):
        args = parse_arguments(["sync", "--site", "blog", "-v", "-y", "--delay", "0", "--dry-run", "--json"])

        assert args.site == "blog"
        assert args.verbose and args.yes and args.dry_run and args.json_output
        assert args.delay == 0

    @pytest.mark.parametrize(
        "argv",
        [
            [],
            ["unknown"],
            ["publish", "--site", "a", "--all"],
            ["publish", "--delay", "-1"],
            ["publish", "--timeout", "0"],
            ["publish", "--timeout", "soon"],
        ],
    )
    def test_invalid_arguments_exit(self, argv):
        with pytest.raises(SystemExit) as excinfo:
            parse_arguments(argv)
        assert excinfo.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            parse_arguments(["--version"])

        assert excinfo.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestBuildOptions:
    def test_dry_run_from_environment(self):
        options = build_options(parse_arguments(["publish"]), env={"DRY_RUN": "1"})
        assert options.dry_run is True

    def test_other_dry_run_values_ignored(self):
        options = build_options(parse_arguments(["publish"]), env={"DRY_RUN": "yes"})
        assert options.dry_run is False

    def test_copies_arguments(self):
        args = Namespace(
            verbose=False,
            quiet=True,
            yes=True,
            delay=10,
            dry_run=False,
            json_output=True,
            site="notes",
            all_sites=False,
            timeout=5,
        )
        options = build_options(args, env={})

        assert options.quiet and options.yes and options.json_output
        assert (options.delay, options.site, options.timeout) == (10, "notes", 5)


class TestPromptConfirm:
    @pytest.mark.parametrize("answer,expected", [("y", True), ("YES", True), ("", False), ("n", False)])
    def test_answers(self, monkeypatch, answer, expected):
        monkeypatch.setattr("builtins.input", lambda prompt: answer)
        assert prompt_confirm("Delete?") is expected

    def test_end_of_input_refuses(self, monkeypatch):
        def closed(prompt):
            raise EOFError

        monkeypatch.setattr("builtins.input", closed)
        assert prompt_confirm("Delete?") is False


@pytest.mark.usefixtures("cli_env")
class TestMainPublish:
    def test_publishes_and_prints_summary(self, write_post, fake_client, with_key, capsys):
        path = write_post("hello.md", "---\ntitle: Hello\n---\nBody")

        code = main(["publish", "--delay", "0"])

        assert code == 0
        assert capsys.readouterr().out.strip() == "Done: 1 published, 0 skipped, 0 drafts, 0 failed"
        assert decode_nevent(load_document(path).nostr_id).relays == [RELAY_A, RELAY_B]

    def test_json_summary(self, write_post, fake_client, with_key, capsys):
        write_post("hello.md", "---\ntitle: Hello\n---\nBody")
        write_post("draft.md", "---\ntitle: Draft\ndraft: true\n---\nBody")

        code = main(["publish", "--delay", "0", "--json"])

        data = json.loads(capsys.readouterr().out)
        assert code == 0
        assert data == {"site": "blog", "published": 1, "skipped": 0, "drafts": 1, "failed": 0, "exit_code": 0}

    def test_every_relay_rejecting_exits_2(self, write_post, fake_client, with_key, capsys):
        write_post("hello.md", "---\ntitle: Hello\n---\nBody")
        fake_client.responses = {RELAY_A: RelayRejectedError(RELAY_A, "no"), RELAY_B: RelayRejectedError(RELAY_B, "no")}

        assert main(["publish", "--delay", "0"]) == 2
        assert "1 failed" in capsys.readouterr().out

    def test_missing_key_is_configuration_error(self, write_post, fake_client, capsys):
        write_post("hello.md", "---\ntitle: Hello\n---\nBody")

        code = main(["publish"])

        assert code == 3
        assert "ERROR: ConfigurationError: No private key" in capsys.readouterr().err
        assert fake_client.signed == []

    def test_dry_run_needs_no_key(self, write_post, fake_client, capsys):
        path = write_post("hello.md", "---\ntitle: Hello\n---\nBody")
        before = path.read_text(encoding="utf-8")

        code = main(["publish", "--dry-run"])

        output = capsys.readouterr().out
        assert code == 0
        assert "1 planned" in output
        assert '"kind": 30023' in output
        assert fake_client.sent == []
        assert path.read_text(encoding="utf-8") == before

    def test_dry_run_from_environment(self, write_post, fake_client, monkeypatch):
        monkeypatch.setenv("DRY_RUN", "1")
        write_post("hello.md", "---\ntitle: Hello\n---\nBody")

        assert main(["publish"]) == 0
        assert fake_client.signed == []

    def test_unknown_site(self, capsys):
        assert main(["publish", "--site", "nope"]) == 3
        assert 'Site "nope" not found' in capsys.readouterr().err


@pytest.mark.usefixtures("cli_env", "with_key")
class TestMainAllSites:
    def test_highest_exit_code_wins(self, write_post, fake_client, capsys):
        write_post("hello.md", "---\ntitle: Hello\n---\nBody")

        code = main(["publish", "--all", "--delay", "0"])

        captured = capsys.readouterr()
        assert code == 3
        assert "== blog ==" in captured.out
        assert "== notes ==" in captured.out
        assert "Done: 1 published" in captured.out
        assert "Posts directory not found" in captured.err

    def test_requires_configured_sites(self, tmp_path, monkeypatch, capsys):
        empty = tmp_path / "empty"
        empty.mkdir()
        monkeypatch.setenv("HUGO2NOSTR_CONFIG_DIR", str(empty))

        assert main(["publish", "--all"]) == 3
        assert "--all requires sites" in capsys.readouterr().err


@pytest.mark.usefixtures("cli_env", "with_key")
class TestMainRemoteCommands:
    def test_sync_creates_post(self, posts_dir, fake_client, capsys):
        fake_client.remote = [remote_event("e" * 64, title="Remote", slug="remote")]

        assert main(["sync", "--delay", "0"]) == 0
        assert capsys.readouterr().out.strip() == "Done: 1 synced, 0 skipped, 0 conflicts"
        assert load_document(posts_dir / "remote.md").title == "Remote"

    def test_query_failure_exits_2(self, fake_client):
        def unavailable(relays, query):
            raise NakInvocationError("all relays failed")

        fake_client.query = unavailable

        assert main(["sync"]) == 2

    def test_debug_lists_articles(self, fake_client, capsys):
        fake_client.remote = [remote_event("e" * 64, title="Remote", slug="remote")]

        assert main(["debug"]) == 0
        output = capsys.readouterr().out
        assert "Found 1 articles" in output
        assert "  - Remote" in output
        assert "e" * 64 in output

    def test_debug_nothing_found(self, fake_client, capsys):
        assert main(["debug"]) == 0
        assert "No articles found" in capsys.readouterr().out

    def test_delete_with_yes(self, write_post, fake_client):
        reference = fake_nevent("1" * 64, [RELAY_A])
        path = write_post("gone.md", f"---\ntitle: Gone\ndelete: true\nnostr_id: {reference}\n---\nBody")

        assert main(["delete", "-y", "--delay", "0"]) == 0
        assert not path.exists()


@pytest.mark.usefixtures("cli_env")
class TestMainUpdate:
    def test_runs_without_key(self, write_post, fake_client, capsys):
        path = write_post("a.md", f"---\ntitle: A\nnostr_id: {fake_nevent('1' * 64, [RELAY_A])}\n---\nBody")

        assert main(["update"]) == 0
        assert capsys.readouterr().out.strip() == "Done: 1 updated, 0 skipped, 0 failed"
        assert load_document(path).nostr_id == fake_nevent("1" * 64, [RELAY_A, RELAY_B])


@pytest.mark.usefixtures("cli_env")
class TestMainLocalCommands:
    def test_index_writes_published_json(self, tmp_path, write_post, capsys):
        reference = fake_nevent("1" * 64, [RELAY_A])
        write_post("a.md", f"---\ntitle: A\nnostr_id: {reference}\n---\nBody")
        write_post("b.md", "---\ntitle: B\n---\nBody")

        assert main(["index"]) == 0

        data = json.loads((tmp_path / "published.json").read_text(encoding="utf-8"))
        assert [post["id"] for post in data["posts"]] == [reference]
        assert "Saved 1 posts to published.json" in capsys.readouterr().out

    def test_config_never_prints_key(self, with_key, capsys):
        assert main(["config"]) == 0

        output = capsys.readouterr().out
        assert "Site: blog (default)" in output
        assert "Site: notes" in output
        assert "Private key: configured" in output
        assert SECRET not in output

    def test_config_without_key(self, capsys):
        assert main(["config", "--site", "notes"]) == 0

        output = capsys.readouterr().out
        assert "Site: blog" not in output
        assert "Private key: not configured" in output
