# Canonical Schemas for the Identity Linking Protocol
# These define the wire contract between Link Builders and the registry.

from .identity import (
    LINKING_KIND,
    normalize_account,
    normalize_pubkey,
    account_content,
)
from .events import (
    LinkingEvent,
    LinkRecord,
    LinkNotification,
    NotificationType,
)

__all__ = [
    # Identity
    "LINKING_KIND",
    "normalize_account",
    "normalize_pubkey",
    "account_content",
    # Events
    "LinkingEvent",
    "LinkRecord",
    "LinkNotification",
    "NotificationType",
]
