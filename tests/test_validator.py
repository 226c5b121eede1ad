"""
Tests for linking event validation

Checks run in a fixed order; the first failing rule decides the error.
"""

import pytest

from linkr.core import (
    ContentMismatchError,
    EventIdMismatchError,
    EventValidator,
    InvalidKindError,
    LinkBuilder,
    TagsNotEmptyError,
    TimestampInFutureError,
)
from linkr.errors import EventValidationError, InvalidIdentifierError, LinkrError
from linkr.schemas import LINKING_KIND, LinkingEvent


NOW = 1_700_000_000
ACCOUNT = "0x5AAEB6053F3E94C9B9A09F33669435E7EF1BEAED"


class TestEventValidator:

    @pytest.fixture
    def validator(self):
        return EventValidator()

    @pytest.fixture
    def private_key(self, nostr_keys):
        return nostr_keys[0]

    def test_valid_event_passes(self, validator, private_key):
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=NOW)
        validator.validate(event, ACCOUNT, now=NOW)

    def test_content_is_lowercase_without_prefix(self, private_key):
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=NOW)
        assert event.content == ACCOUNT[2:].lower()

    def test_claimed_account_case_and_prefix_ignored(self, validator, private_key):
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=NOW)
        validator.validate(event, ACCOUNT[2:].lower(), now=NOW)

    def test_wrong_kind_rejected(self, validator, private_key):
        event = LinkBuilder.sign_event(private_key, NOW, 1, [], ACCOUNT[2:].lower())
        with pytest.raises(InvalidKindError):
            validator.validate(event, ACCOUNT, now=NOW)

    def test_kind_checked_before_everything_else(self, validator, private_key):
        """Wrong kind, tags, content and id all at once: kind wins."""
        event = LinkBuilder.sign_event(private_key, NOW + 10_000, 1, [["e", "x"]], "nope")
        broken = event.model_copy(update={"event_id": "0" * 64})
        with pytest.raises(InvalidKindError):
            validator.validate(broken, ACCOUNT, now=NOW)

    def test_tags_rejected(self, validator, private_key):
        event = LinkBuilder.sign_event(
            private_key, NOW, LINKING_KIND, [["p", "abc"]], ACCOUNT[2:].lower()
        )
        with pytest.raises(TagsNotEmptyError):
            validator.validate(event, ACCOUNT, now=NOW)

    def test_empty_inner_tag_still_rejected(self, validator, private_key):
        event = LinkBuilder.sign_event(private_key, NOW, LINKING_KIND, [[]], ACCOUNT[2:].lower())
        with pytest.raises(TagsNotEmptyError):
            validator.validate(event, ACCOUNT, now=NOW)

    def test_content_for_other_account_rejected(self, validator, private_key):
        event = LinkBuilder.build_event(private_key, "0x" + "1" * 40, created_at=NOW)
        with pytest.raises(ContentMismatchError):
            validator.validate(event, ACCOUNT, now=NOW)

    def test_prefixed_content_rejected(self, validator, private_key):
        event = LinkBuilder.sign_event(private_key, NOW, LINKING_KIND, [], ACCOUNT.lower())
        with pytest.raises(ContentMismatchError):
            validator.validate(event, ACCOUNT, now=NOW)

    def test_uppercase_content_rejected(self, validator, private_key):
        event = LinkBuilder.sign_event(private_key, NOW, LINKING_KIND, [], ACCOUNT[2:].upper())
        with pytest.raises(ContentMismatchError):
            validator.validate(event, ACCOUNT, now=NOW)

    def test_future_within_skew_accepted(self, validator, private_key):
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=NOW + 300)
        validator.validate(event, ACCOUNT, now=NOW)

    def test_future_beyond_skew_rejected(self, validator, private_key):
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=NOW + 301)
        with pytest.raises(TimestampInFutureError):
            validator.validate(event, ACCOUNT, now=NOW)

    def test_old_event_accepted(self, validator, private_key):
        """No lower bound: linking is not time-sensitive."""
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=0)
        validator.validate(event, ACCOUNT, now=NOW)

    def test_custom_skew(self, private_key):
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=NOW + 10)
        with pytest.raises(TimestampInFutureError):
            EventValidator(skew_tolerance_seconds=5).validate(event, ACCOUNT, now=NOW)

    def test_negative_skew_not_allowed(self):
        with pytest.raises(ValueError):
            EventValidator(skew_tolerance_seconds=-1)

    def test_tampered_content_gives_id_mismatch(self, validator, private_key):
        """Content edited to name the victim after signing."""
        event = LinkBuilder.build_event(private_key, "0x" + "1" * 40, created_at=NOW)
        tampered = event.model_copy(update={"content": ACCOUNT[2:].lower()})
        with pytest.raises(EventIdMismatchError):
            validator.validate(tampered, ACCOUNT, now=NOW)

    def test_tampered_created_at_gives_id_mismatch(self, validator, private_key):
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=NOW)
        tampered = event.model_copy(update={"created_at": NOW - 1})
        with pytest.raises(EventIdMismatchError):
            validator.validate(tampered, ACCOUNT, now=NOW)

    def test_errors_share_a_base(self, validator, private_key):
        event = LinkBuilder.sign_event(private_key, NOW, 1, [], ACCOUNT[2:].lower())
        with pytest.raises(EventValidationError) as exc_info:
            validator.validate(event, ACCOUNT, now=NOW)
        assert isinstance(exc_info.value, LinkrError)
        assert exc_info.value.code == "InvalidKind"

    def test_malformed_claimed_account(self, validator, private_key):
        event = LinkBuilder.build_event(private_key, ACCOUNT, created_at=NOW)
        with pytest.raises(InvalidIdentifierError):
            validator.validate(event, "0x1234", now=NOW)


class TestLinkingEventSchema:
    """Wire format of the event model."""

    def test_nip01_names_round_trip(self, nostr_keys):
        event = LinkBuilder.build_event(nostr_keys[0], ACCOUNT, created_at=NOW)
        wire = event.to_nostr()
        assert set(wire) == {"pubkey", "created_at", "kind", "tags", "content", "id", "sig"}
        assert LinkingEvent.model_validate(wire) == event

    def test_uppercase_hex_normalized(self, nostr_keys):
        event = LinkBuilder.build_event(nostr_keys[0], ACCOUNT, created_at=NOW)
        wire = event.to_nostr()
        upper = dict(wire, pubkey=wire["pubkey"].upper(), id=wire["id"].upper(), sig=wire["sig"].upper())
        assert LinkingEvent.model_validate(upper) == event

    def test_malformed_pubkey_is_a_validation_error(self, nostr_keys):
        from pydantic import ValidationError

        wire = LinkBuilder.build_event(nostr_keys[0], ACCOUNT, created_at=NOW).to_nostr()
        with pytest.raises(ValidationError):
            LinkingEvent.model_validate(dict(wire, pubkey="zz" * 32))

    def test_string_created_at_rejected(self, nostr_keys):
        from pydantic import ValidationError

        wire = LinkBuilder.build_event(nostr_keys[0], ACCOUNT, created_at=NOW).to_nostr()
        with pytest.raises(ValidationError):
            LinkingEvent.model_validate(dict(wire, created_at=str(NOW)))
