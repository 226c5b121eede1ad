# Core linking services
from ..errors import (
    LinkrError,
    InvalidIdentifierError,
    EventValidationError,
    InvalidKindError,
    TagsNotEmptyError,
    ContentMismatchError,
    TimestampInFutureError,
    EventIdMismatchError,
    VerificationError,
    InvalidSignatureLengthError,
    InvalidSignatureError,
    RegistryError,
    NoLinkFoundError,
    ConflictingLinkError,
)
from .canonical import Canonicalizer, CanonicalSerializationError
from .validator import EventValidator
from .verifier import (
    SignatureVerifier,
    AuthorizationAction,
    authorization_message,
    checksum_account,
    personal_message_hash,
)
from .notifications import (
    NotificationSink,
    LoggingNotificationSink,
    InMemoryNotificationSink,
)
from .registry import LinkRegistry
from .builder import LinkBuilder

__all__ = [
    "LinkrError",
    "InvalidIdentifierError",
    "EventValidationError",
    "InvalidKindError",
    "TagsNotEmptyError",
    "ContentMismatchError",
    "TimestampInFutureError",
    "EventIdMismatchError",
    "VerificationError",
    "InvalidSignatureLengthError",
    "InvalidSignatureError",
    "RegistryError",
    "NoLinkFoundError",
    "ConflictingLinkError",
    "Canonicalizer",
    "CanonicalSerializationError",
    "EventValidator",
    "SignatureVerifier",
    "AuthorizationAction",
    "authorization_message",
    "checksum_account",
    "personal_message_hash",
    "NotificationSink",
    "LoggingNotificationSink",
    "InMemoryNotificationSink",
    "LinkRegistry",
    "LinkBuilder",
]
