"""
Canonical Event Serialization (NIP-01)

Handles deterministic serialization and SHA-256 event ids.
Same input → same id. Always. Forever.

This is SACRED GROUND.

The id we compute must match, byte for byte, what every Nostr client
computes independently. A single stray space and no signature verifies.

CANONICAL SERIALIZATION RULES:
1. Shape: [0,"<pubkey>",<created_at>,<kind>,<tags>,"<content>"]
2. Pubkey: 64 lowercase hex characters, no prefix
3. Integers: plain decimal, non-negative (bool and float BANNED)
4. Tags: list of lists of strings, in the order given
5. JSON output: no whitespace, UTF-8, non-ASCII left unescaped
   (matches JSON.stringify, which is what NIP-01 clients use)
6. Digest: SHA-256 of the UTF-8 bytes, lowercase hex
"""

import hashlib
import hmac
import json
from typing import Any, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..schemas import LinkingEvent


class CanonicalSerializationError(Exception):
    """Raised when fields cannot be canonically serialized."""
    pass


class Canonicalizer:
    """
    NIP-01 canonical serialization and hashing.

    IMMUTABLE CONTRACT:
    - Same logical input → same bytes
    - Identical to the client-side construction
    - Never a convenience serialization

    The leading 0 is the NIP-01 reserved slot, not a version marker.
    """

    @staticmethod
    def _require_int(value: Any, name: str) -> int:
        # bool is an int subclass; reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int):
            raise CanonicalSerializationError(
                f"{name} must be an integer, got {type(value).__name__}"
            )
        if value < 0:
            raise CanonicalSerializationError(
                f"{name} must be non-negative, got {value}"
            )
        return value

    @staticmethod
    def _require_pubkey(pubkey: Any) -> str:
        if not isinstance(pubkey, str) or len(pubkey) != 64:
            raise CanonicalSerializationError(
                "pubkey must be 64 hex characters"
            )
        try:
            bytes.fromhex(pubkey)
        except ValueError:
            raise CanonicalSerializationError(
                f"pubkey is not hex: {pubkey!r}"
            ) from None
        return pubkey.lower()

    @staticmethod
    def _require_tags(tags: Any) -> list[list[str]]:
        if not isinstance(tags, (list, tuple)):
            raise CanonicalSerializationError(
                f"tags must be a list, got {type(tags).__name__}"
            )
        result = []
        for i, tag in enumerate(tags):
            if not isinstance(tag, (list, tuple)):
                raise CanonicalSerializationError(
                    f"tags[{i}] must be a list, got {type(tag).__name__}"
                )
            for j, item in enumerate(tag):
                if not isinstance(item, str):
                    raise CanonicalSerializationError(
                        f"tags[{i}][{j}] must be a string, got {type(item).__name__}"
                    )
            result.append(list(tag))
        return result

    @classmethod
    def serialize_tags(cls, tags: Sequence[Sequence[str]]) -> str:
        """Render a tag sequence exactly as it appears inside the event."""
        return json.dumps(
            cls._require_tags(tags),
            separators=(",", ":"),
            ensure_ascii=False,
        )

    @classmethod
    def serialize(
        cls,
        pubkey: str,
        created_at: int,
        kind: int,
        tags: Sequence[Sequence[str]],
        content: str,
    ) -> str:
        """
        Produce the canonical NIP-01 serialization.

        This is THE critical function.

        Raises:
            CanonicalSerializationError: If any field cannot be rendered exactly
        """
        if not isinstance(content, str):
            raise CanonicalSerializationError(
                f"content must be a string, got {type(content).__name__}"
            )

        payload = [
            0,
            cls._require_pubkey(pubkey),
            cls._require_int(created_at, "created_at"),
            cls._require_int(kind, "kind"),
            cls._require_tags(tags),
            content,
        ]

        return json.dumps(
            payload,
            separators=(",", ":"),   # No whitespace
            ensure_ascii=False,      # UTF-8, like JSON.stringify
            allow_nan=False,
        )

    @classmethod
    def event_id_bytes(
        cls,
        pubkey: str,
        created_at: int,
        kind: int,
        tags: Sequence[Sequence[str]],
        content: str,
    ) -> bytes:
        """SHA-256 of the canonical serialization, as 32 big-endian bytes."""
        canonical = cls.serialize(pubkey, created_at, kind, tags, content)
        try:
            encoded = canonical.encode("utf-8")
        except UnicodeEncodeError as e:
            # Lone surrogates cannot be hashed the way a client would
            raise CanonicalSerializationError(
                f"content is not valid UTF-8 text: {e.reason}"
            ) from e
        return hashlib.sha256(encoded).digest()

    @classmethod
    def compute_event_id(
        cls,
        pubkey: str,
        created_at: int,
        kind: int,
        tags: Sequence[Sequence[str]],
        content: str,
    ) -> str:
        """
        Compute the event id.

        Returns:
            Hex-encoded SHA-256 (64 characters, lowercase)
        """
        return cls.event_id_bytes(pubkey, created_at, kind, tags, content).hex()

    @classmethod
    def for_event(cls, event: "LinkingEvent") -> str:
        """Recompute the id of a LinkingEvent from its own fields."""
        return cls.compute_event_id(
            event.schnorr_pubkey,
            event.created_at,
            event.kind,
            event.tags,
            event.content,
        )

    @classmethod
    def verify_event_id(cls, event: "LinkingEvent") -> bool:
        """
        Check that the claimed id matches the recomputed one.

        Returns:
            True if ids match, False otherwise (including unserializable events)
        """
        try:
            computed = cls.for_event(event)
        except CanonicalSerializationError:
            return False
        return cls._constant_time_compare(computed, event.event_id.lower())

    @staticmethod
    def _constant_time_compare(a: str, b: str) -> bool:
        """
        Compare two strings in constant time.

        The claimed id is attacker-controlled.
        """
        return hmac.compare_digest(a.encode("ascii"), b.encode("ascii"))
