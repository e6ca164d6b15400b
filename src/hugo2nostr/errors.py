"""Exception hierarchy for hugo2nostr.

Per-document errors are caught at the batch loop and turned into counters.
ConfigurationError aborts a run before any batch work starts.
"""


class Hugo2NostrError(Exception):
    """Base class for all hugo2nostr errors."""


class FrontmatterParseError(Hugo2NostrError):
    """Document front matter is malformed or cannot be serialized."""


class DecodeError(Hugo2NostrError):
    """NIP-19 reference is malformed or of an unexpected type."""


class RelayError(Hugo2NostrError):
    """A single relay did not accept an event."""

    def __init__(self, relay: str, reason: str):
        super().__init__(f"{relay}: {reason}")
        self.relay = relay
        self.reason = reason

    @property
    def is_rate_limited(self) -> bool:
        return "rate" in self.reason.lower()


class RelayRejectedError(RelayError):
    """Relay answered and refused the event."""


class RelayUnreachableError(RelayError):
    """Relay could not be contacted."""


class AllRelaysFailedError(Hugo2NostrError):
    """No configured relay accepted an event."""


class ConfigurationError(Hugo2NostrError):
    """Required configuration is missing or invalid."""


class NakInvocationError(Hugo2NostrError):
    """The nak subprocess failed or produced unusable output."""


class SigningError(NakInvocationError):
    """Signing the event was rejected."""


class PublishTimeoutError(NakInvocationError):
    """nak did not complete within the timeout."""
