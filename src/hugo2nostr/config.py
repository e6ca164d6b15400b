"""Configuration loading and the per-run context.

Configuration comes from ``~/.config/hugo2nostr/config.yaml`` (one or more
sites plus global defaults), a ``secrets`` file holding the private key, and
environment variables (``.env`` is loaded by the CLI). Without a config file
the environment variables POSTS_DIR, BLOG_URL, AUTHOR_ID, RELAY_LIST and
IMAGE_HOST describe a single ``default`` site.
"""

import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import yaml

from .errors import ConfigurationError, DecodeError
from .nak import NakClient
from .nip19 import decode_private_key
from .relay import RelayPool, normalize_relays, warn_insecure_relays

logger = logging.getLogger(__name__)

DEFAULT_DELAY_MS = 3000
DEFAULT_IMAGE_HOST = "nostr.build"
CONFIG_DIR_ENV = "HUGO2NOSTR_CONFIG_DIR"


def config_dir(env: dict | None = None) -> Path:
    env = os.environ if env is None else env
    override = env.get(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "hugo2nostr"


@dataclass
class SiteConfig:
    """Settings for one Hugo site."""

    name: str
    posts_dir: Path
    blog_url: str = ""
    author_id: str = ""
    relays: list[str] = field(default_factory=list)
    image_host: str = DEFAULT_IMAGE_HOST


@dataclass
class RunOptions:
    """Command-line options shared by every command."""

    verbose: bool = False
    quiet: bool = False
    yes: bool = False
    delay: int = DEFAULT_DELAY_MS
    dry_run: bool = False
    json_output: bool = False
    site: str | None = None
    all_sites: bool = False
    timeout: int = 30


def load_config(directory: Path | None = None) -> dict | None:
    """Load config.yaml, or None when it does not exist.

    Raises:
        - ConfigurationError: file is not valid YAML or not a mapping
    """
    path = (directory or config_dir()) / "config.yaml"
    if not path.exists():
        return None

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid config file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")
    return data


def get_site_names(directory: Path | None = None) -> list[str]:
    config = load_config(directory)
    if not config or not isinstance(config.get("sites"), dict):
        return []
    return list(config["sites"])


def get_site_config(site_name: str | None = None, directory: Path | None = None, env: dict | None = None) -> SiteConfig:
    """Resolve settings for a site, falling back to global defaults.

    Raises:
        - ConfigurationError: the requested (or default) site does not exist
    """
    env = os.environ if env is None else env
    config = load_config(directory or config_dir(env))

    if config is None:
        return SiteConfig(
            name="default",
            posts_dir=Path(env.get("POSTS_DIR") or "./posts").expanduser(),
            blog_url=env.get("BLOG_URL", ""),
            author_id=env.get("AUTHOR_ID", ""),
            relays=_split_relays(env.get("RELAY_LIST", "")),
            image_host=env.get("IMAGE_HOST") or DEFAULT_IMAGE_HOST,
        )

    sites = config.get("sites") or {}
    target = site_name or config.get("default_site")
    if not target or target not in sites:
        available = ", ".join(sites) or "none"
        raise ConfigurationError(f'Site "{target}" not found. Available sites: {available}')

    site = sites[target] or {}
    if not site.get("posts_dir"):
        raise ConfigurationError(f'Site "{target}" has no posts_dir')

    relays = site.get("relays") or config.get("relays") or []
    if isinstance(relays, str):
        relays = _split_relays(relays)

    return SiteConfig(
        name=target,
        posts_dir=Path(site["posts_dir"]).expanduser(),
        blog_url=site.get("blog_url") or config.get("blog_url") or "",
        author_id=site.get("author_id") or config.get("author_id") or "",
        relays=list(relays),
        image_host=site.get("image_host") or config.get("image_host") or DEFAULT_IMAGE_HOST,
    )


def _split_relays(value: str) -> list[str]:
    return [relay.strip() for relay in value.split(",") if relay.strip()]


def load_private_key(directory: Path | None = None, env: dict | None = None) -> str | None:
    """Return the configured private key as hex, or None if none is configured.

    NOSTR_PRIVATE_KEY wins over the secrets file. The secrets file holds either
    a bare nsec or a NOSTR_PRIVATE_KEY=... line.

    Raises:
        - ConfigurationError: a key is configured but cannot be decoded
    """
    env = os.environ if env is None else env
    raw = env.get("NOSTR_PRIVATE_KEY")

    if not raw:
        secrets_file = (directory or config_dir(env)) / "secrets"
        if secrets_file.exists():
            content = secrets_file.read_text(encoding="utf-8").strip()
            if content.startswith("nsec1"):
                raw = content
            else:
                match = re.search(r"^NOSTR_PRIVATE_KEY=(.+)$", content, re.MULTILINE)
                if match:
                    raw = match.group(1).strip().strip("\"'")

    if not raw:
        return None

    try:
        return decode_private_key(raw)
    except DecodeError as e:
        raise ConfigurationError(f"Invalid private key: {e}") from None


def validate_site(
    site: SiteConfig, options: RunOptions, secret_key: str | None, *, require_key: bool = True
) -> SiteConfig:
    """Check everything a batch needs before it starts.

    Returns the site with its relay list normalized.

    Raises:
        - ConfigurationError: missing posts directory, no relays, or no key
          outside dry-run mode when require_key is set
    """
    if not site.posts_dir.is_dir():
        raise ConfigurationError(f"Posts directory not found: {site.posts_dir}")

    relays = normalize_relays(site.relays)
    if not relays:
        raise ConfigurationError(f'No relays configured for site "{site.name}"')
    warn_insecure_relays(relays)

    if require_key and not options.dry_run and not secret_key:
        raise ConfigurationError("No private key found. Set NOSTR_PRIVATE_KEY or add it to the secrets file.")

    site.relays = relays
    return site


class RunContext:
    """Everything one batch run needs, passed explicitly to each engine.

    Owns the relay pool: it is opened lazily by the first fan-out and closed
    when the context exits, whatever the exit path.
    """

    def __init__(
        self,
        site: SiteConfig,
        options: RunOptions,
        client,
        *,
        pool: RelayPool | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.time,
        confirm: Callable[[str], bool] | None = None,
        emit: Callable[[str], None] = print,
    ):
        self.site = site
        self.options = options
        self.client = client
        self.pool = pool or RelayPool()
        self.sleep = sleep
        self.clock = clock
        self.confirm = confirm or (lambda message: False)
        self.emit = emit

    @property
    def relays(self) -> list[str]:
        return self.site.relays

    def now(self) -> int:
        return int(self.clock())

    def pause(self) -> None:
        """Wait the configured inter-item delay."""
        if self.options.delay > 0:
            self.sleep(self.options.delay / 1000)

    def close(self) -> None:
        self.pool.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def create_context(
    site_name: str | None,
    options: RunOptions,
    *,
    directory: Path | None = None,
    env: dict | None = None,
    confirm: Callable[[str], bool] | None = None,
    require_key: bool = True,
) -> RunContext:
    """Load and validate configuration and build a RunContext backed by nak.

    Raises:
        - ConfigurationError: see get_site_config, load_private_key, validate_site
    """
    site = get_site_config(site_name, directory, env)
    secret_key = load_private_key(directory, env)
    site = validate_site(site, options, secret_key, require_key=require_key)
    logger.debug("Using site %s with relays: %s", site.name, ", ".join(site.relays))
    return RunContext(site, options, NakClient(secret_key, options.timeout), confirm=confirm)
