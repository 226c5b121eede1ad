"""
Linking Event Schema

A linking event is a NIP-01 event whose content names an account.
It is a claim, not a fact: the event id is recomputed and the
signature re-verified before anything is committed.

Wire names (id, pubkey, sig) follow NIP-01 so events signed by any
Nostr agent can be posted as-is.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .identity import LINKING_KIND, normalize_account, normalize_pubkey


class LinkingEvent(BaseModel):
    """
    The claim being verified.

    The signature length is not checked here; the verifier raises
    InvalidSignatureLength for it.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    schnorr_pubkey: str = Field(
        ...,
        alias="pubkey",
        description="x-only Schnorr public key, 64 hex chars",
    )

    created_at: int = Field(
        ...,
        ge=0,
        strict=True,
        description="Unix timestamp (seconds) asserted by the claimant",
    )

    kind: int = Field(
        default=LINKING_KIND,
        ge=0,
        strict=True,
        description="Event kind; must equal LINKING_KIND to be accepted",
    )

    tags: list[list[str]] = Field(default_factory=list)

    content: str = Field(
        ...,
        description="Lowercase hex account address, no prefix",
    )

    event_id: str = Field(
        ...,
        alias="id",
        description="Claimed SHA-256 of the canonical serialization",
    )

    signature: str = Field(
        ...,
        alias="sig",
        description="Hex-encoded BIP-340 signature over event_id",
    )

    @field_validator("schnorr_pubkey")
    @classmethod
    def _normalize_pubkey(cls, v: str) -> str:
        return normalize_pubkey(v)

    @field_validator("event_id")
    @classmethod
    def _normalize_event_id(cls, v: str) -> str:
        if len(v) != 64:
            raise ValueError("event id must be 64 hex characters")
        try:
            bytes.fromhex(v)
        except ValueError:
            raise ValueError("event id must be hex") from None
        return v.lower()

    @field_validator("signature")
    @classmethod
    def _check_signature_hex(cls, v: str) -> str:
        try:
            bytes.fromhex(v)
        except ValueError:
            raise ValueError("signature must be an even-length hex string") from None
        return v.lower()

    @property
    def signature_bytes(self) -> bytes:
        return bytes.fromhex(self.signature)

    @property
    def event_id_bytes(self) -> bytes:
        return bytes.fromhex(self.event_id)

    def to_nostr(self) -> dict[str, Any]:
        """Dump with NIP-01 wire names."""
        return self.model_dump(by_alias=True)


class LinkRecord(BaseModel):
    """One edge of the bidirectional mapping."""
    model_config = ConfigDict(frozen=True)

    account: str
    pubkey: str

    @field_validator("account")
    @classmethod
    def _normalize_account(cls, v: str) -> str:
        return normalize_account(v)

    @field_validator("pubkey")
    @classmethod
    def _normalize_pubkey(cls, v: str) -> str:
        return normalize_pubkey(v)


class NotificationType(str, Enum):
    """Events the registry emits. Fire-and-forget."""
    LINK_CREATED = "LINK_CREATED"
    LINK_REMOVED = "LINK_REMOVED"


class LinkNotification(BaseModel):
    """Emitted after a successful commit."""
    notification_type: NotificationType
    account: str
    pubkey: str
    emitted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def created(cls, account: str, pubkey: str) -> "LinkNotification":
        return cls(
            notification_type=NotificationType.LINK_CREATED,
            account=account,
            pubkey=pubkey,
        )

    @classmethod
    def removed(cls, account: str, pubkey: str) -> "LinkNotification":
        return cls(
            notification_type=NotificationType.LINK_REMOVED,
            account=account,
            pubkey=pubkey,
        )
