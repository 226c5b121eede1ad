"""Nostr Linkr: verified, one-to-one links between accounts and Nostr keys."""

__version__ = "0.1.0"
