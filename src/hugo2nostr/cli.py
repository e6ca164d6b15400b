"""CLI entrypoint for hugo2nostr.

Command-line interface running one batch operation per configured site.
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from . import __version__
from .cli_output import EXIT_ERROR, EXIT_FAILED, EXIT_OK, format_summary, format_summary_json
from .config import (
    DEFAULT_DELAY_MS,
    RunContext,
    RunOptions,
    config_dir,
    create_context,
    get_site_config,
    get_site_names,
    load_config,
    load_private_key,
)
from .deletion import delete_all, delete_marked
from .errors import ConfigurationError, Hugo2NostrError, NakInvocationError
from .models import BatchSummary
from .published_index import PUBLISHED_FILE, index_posts_dir, write_published_index
from .reconcile import list_remote, publish_documents, sync_documents, update_references

logger = logging.getLogger(__name__)

COMMANDS = {
    "publish": "Publish new posts to Nostr",
    "delete": "Delete posts marked with delete: true",
    "delete-all": "Delete all published posts from Nostr",
    "update": "Update nostr_id references with the configured relays",
    "sync": "Create local posts for articles found on Nostr",
    "debug": "List your articles found on Nostr",
    "index": f"Write {PUBLISHED_FILE} from local front matter",
    "config": "Show the current configuration",
}

# Commands that need the private key, for signing or for the author pubkey
KEY_COMMANDS = ("publish", "delete", "delete-all", "sync", "debug")


def main(argv: list[str] | None = None) -> int:
    """Main CLI entrypoint.

    CONTRACT:
      Inputs:
        - argv: list of command-line argument strings (or None to use sys.argv)

      Outputs:
        - exit_code: 0 success, 1 partial failure, 2 total failure,
          3 configuration or unexpected error

      Invariants:
        - With --all every configured site runs, and the highest exit code wins
        - A configuration error for one site does not stop the other sites
        - Relay workers are released after each site, on every exit path

      Error Handling:
        - Top-level errors are printed to stderr as "ERROR: {error_type}: {message}"
    """
    load_dotenv()
    args = parse_arguments(argv if argv is not None else sys.argv[1:])
    options = build_options(args)
    configure_logging(options)

    try:
        if args.command == "config":
            return show_config(options)

        sites = [options.site]
        if options.all_sites:
            sites = get_site_names()
            if not sites:
                raise ConfigurationError("--all requires sites in config.yaml")

        result = EXIT_OK
        for site in sites:
            if len(sites) > 1:
                print(f"== {site} ==")
            result = max(result, run_site(args.command, site, options))
        return result

    except Hugo2NostrError as e:
        sys.stderr.write(f"ERROR: {type(e).__name__}: {str(e)}\n")
        return EXIT_ERROR
    except KeyboardInterrupt:
        sys.stderr.write("ERROR: Interrupted\n")
        return EXIT_ERROR
    except SystemExit:
        raise
    except Exception as e:
        sys.stderr.write(f"ERROR: {type(e).__name__}: {str(e)}\n")
        return EXIT_ERROR


def parse_arguments(argv: list[str]) -> argparse.Namespace:
    epilog = "commands:\n" + "\n".join(f"  {name:<12}{text}" for name, text in COMMANDS.items())
    parser = argparse.ArgumentParser(
        prog="hugo2nostr",
        description="Publish Hugo posts to Nostr as long-form articles",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", choices=list(COMMANDS), metavar="command", help="One of the commands below")
    parser.add_argument("--site", dest="site", default=None, help="Site from config.yaml (default: default_site)")
    parser.add_argument("--all", dest="all_sites", action="store_true", help="Run the command for every site")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show progress and per-relay detail")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only show errors and the summary")
    parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation prompts")
    parser.add_argument(
        "--delay",
        dest="delay",
        type=int,
        default=DEFAULT_DELAY_MS,
        help=f"Delay between posts in milliseconds (default: {DEFAULT_DELAY_MS})",
    )
    parser.add_argument(
        "--dry-run", dest="dry_run", action="store_true", help="Show what would happen without publishing"
    )
    parser.add_argument("--json", dest="json_output", action="store_true", help="Print the summary as JSON")
    parser.add_argument(
        "--timeout",
        dest="timeout",
        type=int,
        default=30,
        help="Timeout in seconds for each nak invocation (default: 30)",
    )

    parsed = parser.parse_args(argv)

    if parsed.all_sites and parsed.site:
        parser.error("--site and --all are mutually exclusive")
    if parsed.delay < 0:
        parser.error("--delay must not be negative")
    if parsed.timeout <= 0:
        parser.error("--timeout must be a positive integer")

    return parsed


def build_options(args: argparse.Namespace, env: dict | None = None) -> RunOptions:
    env = os.environ if env is None else env
    return RunOptions(
        verbose=args.verbose,
        quiet=args.quiet,
        yes=args.yes,
        delay=args.delay,
        dry_run=args.dry_run or env.get("DRY_RUN") == "1",
        json_output=args.json_output,
        site=args.site,
        all_sites=args.all_sites,
        timeout=args.timeout,
    )


def configure_logging(options: RunOptions) -> None:
    """Send package logs to stderr: DEBUG with --verbose, ERROR with --quiet, WARNING otherwise."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    package_logger = logging.getLogger("hugo2nostr")
    package_logger.handlers = [handler]
    if options.verbose:
        package_logger.setLevel(logging.DEBUG)
    elif options.quiet:
        package_logger.setLevel(logging.ERROR)
    else:
        package_logger.setLevel(logging.WARNING)
    package_logger.propagate = False


def prompt_confirm(message: str) -> bool:
    try:
        answer = input(f"{message} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def run_site(command: str, site: str | None, options: RunOptions) -> int:
    """Run one command for one site and print its summary.

    Configuration errors are reported and mapped to EXIT_ERROR here so that
    --all carries on with the next site.
    """
    if command == "index":
        try:
            return write_index(site)
        except ConfigurationError as e:
            sys.stderr.write(f"ERROR: {type(e).__name__}: {str(e)}\n")
            return EXIT_ERROR

    try:
        ctx = create_context(site, options, confirm=prompt_confirm, require_key=command in KEY_COMMANDS)
    except ConfigurationError as e:
        sys.stderr.write(f"ERROR: {type(e).__name__}: {str(e)}\n")
        return EXIT_ERROR

    with ctx:
        if command == "debug":
            return show_remote(ctx)
        try:
            summary = run_command(command, ctx)
        except NakInvocationError as e:
            logger.error("Failed to fetch from relays: %s", e)
            return EXIT_FAILED

    report(summary, options, ctx.site.name)
    return summary.exit_code()


def run_command(command: str, ctx: RunContext) -> BatchSummary:
    if command == "publish":
        return publish_documents(ctx)
    if command == "delete":
        return delete_marked(ctx)
    if command == "delete-all":
        return delete_all(ctx)
    if command == "update":
        return update_references(ctx)
    if command == "sync":
        return sync_documents(ctx)
    raise ValueError(f"unknown command: {command}")


def report(summary: BatchSummary, options: RunOptions, site: str) -> None:
    if options.json_output:
        print(format_summary_json(summary, site))
    else:
        print(format_summary(summary))


def show_remote(ctx: RunContext) -> int:
    try:
        articles = list_remote(ctx)
    except NakInvocationError as e:
        logger.error("Failed to fetch: %s", e)
        return EXIT_FAILED

    if not articles:
        print("No articles found")
        return EXIT_OK

    print(f"Found {len(articles)} articles:\n")
    for event_id, title in articles:
        print(f"  - {title}")
        print(f"    {event_id}\n")
    return EXIT_OK


def write_index(site: str | None) -> int:
    site_config = get_site_config(site)
    if not site_config.posts_dir.is_dir():
        raise ConfigurationError(f"Posts directory not found: {site_config.posts_dir}")
    index = index_posts_dir(site_config.posts_dir)
    write_published_index(index, Path(PUBLISHED_FILE))
    print(f"Saved {len(index.posts)} posts to {PUBLISHED_FILE}")
    return EXIT_OK


def show_config(options: RunOptions) -> int:
    """Print where configuration comes from and the resolved settings per site.

    The private key itself is never printed.
    """
    directory = config_dir()
    config = load_config(directory)
    print(f"Config directory: {directory}")
    if config is None:
        print("No config.yaml found, using environment variables")

    names = get_site_names(directory) if options.all_sites or not options.site else [options.site]
    for name in names or [None]:
        site = get_site_config(name, directory)
        default = " (default)" if config and config.get("default_site") == site.name else ""
        print(f"\nSite: {site.name}{default}")
        print(f"  posts_dir:  {site.posts_dir}")
        print(f"  blog_url:   {site.blog_url or '-'}")
        print(f"  author_id:  {site.author_id or '-'}")
        print(f"  image_host: {site.image_host}")
        print(f"  relays:     {', '.join(site.relays) or '-'}")

    print(f"\nPrivate key: {'configured' if load_private_key(directory) else 'not configured'}")
    return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
