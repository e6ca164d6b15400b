"""hugo2nostr: publish and reconcile Hugo articles with Nostr relays."""

__version__ = "0.4.0"
