"""
Linking Event Validator

Enforces the structural contract of a linking event before any
signature work happens. Every check here is cheap; they run in a
fixed order and the first failure wins.

Rules (enforced in code):
- kind must be LINKING_KIND
- tags must serialize to []
- content must be the claimed account, lowercase hex, no prefix
- created_at may not run ahead of our clock by more than the skew window
- the claimed event id must equal the recomputed one

There is NO lower bound on created_at. Identity linking is not
time-sensitive, so an old signed event stays valid.
"""

import time
from typing import Optional

from ..errors import (
    ContentMismatchError,
    EventIdMismatchError,
    InvalidKindError,
    TagsNotEmptyError,
    TimestampInFutureError,
)
from ..config import DEFAULT_SKEW_TOLERANCE_SECONDS
from ..schemas import LINKING_KIND, LinkingEvent, account_content
from .canonical import Canonicalizer, CanonicalSerializationError


class EventValidator:
    """Validates linking events against a claimed account."""

    def __init__(self, skew_tolerance_seconds: int = DEFAULT_SKEW_TOLERANCE_SECONDS):
        if skew_tolerance_seconds < 0:
            raise ValueError("skew_tolerance_seconds must be non-negative")
        self.skew_tolerance_seconds = skew_tolerance_seconds

    def validate(
        self,
        event: LinkingEvent,
        claimed_account: str,
        now: Optional[int] = None,
    ) -> None:
        """
        Validate an event for the given account.

        Args:
            event: The linking event
            claimed_account: Account the caller is linking from
            now: Current unix time (defaults to the wall clock)

        Raises:
            InvalidKindError, TagsNotEmptyError, ContentMismatchError,
            TimestampInFutureError, EventIdMismatchError
        """
        if event.kind != LINKING_KIND:
            raise InvalidKindError(
                f"Event kind {event.kind} is not a linking event. "
                f"Expected kind {LINKING_KIND}."
            )

        try:
            tags_json = Canonicalizer.serialize_tags(event.tags)
        except CanonicalSerializationError as e:
            raise TagsNotEmptyError(f"Tags are not serializable: {e}") from e
        if tags_json != "[]":
            raise TagsNotEmptyError(
                f"Linking events must carry no tags, got {tags_json[:64]}"
            )

        expected_content = account_content(claimed_account)
        if event.content != expected_content:
            raise ContentMismatchError(
                f"Event content {event.content[:48]!r} does not name account "
                f"{expected_content}. Content must be the lowercase hex "
                "address without 0x prefix."
            )

        if now is None:
            now = int(time.time())
        if event.created_at > now + self.skew_tolerance_seconds:
            raise TimestampInFutureError(
                f"Event created_at {event.created_at} is more than "
                f"{self.skew_tolerance_seconds}s ahead of now ({now})"
            )

        if not Canonicalizer.verify_event_id(event):
            raise EventIdMismatchError(
                f"Event id {event.event_id[:16]}... does not match the "
                "canonical serialization of the event"
            )
