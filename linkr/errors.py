"""
Linking Protocol Errors

Every failure in the write path is one of these.
Each carries a stable ``code`` that equals its taxonomy name, so the
HTTP layer and any Link Builder can branch on it without parsing text.

Nothing here is retried or masked. Errors go straight back to the caller.
"""


class LinkrError(Exception):
    """Base exception for identity-linking errors."""
    code = "LinkrError"


class InvalidIdentifierError(LinkrError, ValueError):
    """An account address or Schnorr key is malformed."""
    code = "InvalidIdentifier"


# ------------------------------------------------------------
# Event validation (cheap, structural checks)
# ------------------------------------------------------------

class EventValidationError(LinkrError):
    """Raised when a linking event breaks the event contract."""
    code = "EventValidation"


class InvalidKindError(EventValidationError):
    code = "InvalidKind"


class TagsNotEmptyError(EventValidationError):
    code = "TagsNotEmpty"


class ContentMismatchError(EventValidationError):
    code = "ContentMismatch"


class TimestampInFutureError(EventValidationError):
    code = "TimestampInFuture"


class EventIdMismatchError(EventValidationError):
    code = "EventIdMismatch"


# ------------------------------------------------------------
# Signature verification
# ------------------------------------------------------------

class VerificationError(LinkrError):
    """Raised when a signature cannot be accepted."""
    code = "Verification"


class InvalidSignatureLengthError(VerificationError):
    code = "InvalidSignatureLength"


class InvalidSignatureError(VerificationError):
    """Range failure, cryptographic failure, or wrong signer."""
    code = "InvalidSignature"


# ------------------------------------------------------------
# Registry state
# ------------------------------------------------------------

class RegistryError(LinkrError):
    """Raised when a registry operation cannot be applied."""
    code = "Registry"


class NoLinkFoundError(RegistryError):
    code = "NoLinkFound"


class ConflictingLinkError(RegistryError):
    """The Schnorr key is held by another account and the policy is REJECT."""
    code = "ConflictingLink"
