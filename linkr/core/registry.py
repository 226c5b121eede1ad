"""
Link Registry - The Heart of the System

A bidirectional, one-to-one mapping between accounts and Nostr keys.
Every write is a verified claim: a linking event signed by the key,
naming the account, optionally co-signed by the account itself.

The registry:
- Validates the event's structure
- Verifies the Schnorr signature (and the account authorization when required)
- Decides which edges a write supersedes
- Commits through the LinkStore
- Emits notifications after commit

Rules (enforced in code):
- forward[a] == p  <=>  reverse[p] == a, at every commit boundary
- An account holds at most one key and a key at most one account
- Re-linking an account removes its old key's reverse edge
- Claiming a key held by another account either supersedes that
  account's edge (LAST_WRITER_WINS) or is refused (REJECT)
- Pulling a missing link fails; reading a missing link returns None

ARCHITECTURE NOTE:
- LinkRegistry: validation, verification, bijection rules, notifications
- LinkStore: serialized writes, atomic apply, persistence

Validation and verification are pure and run BEFORE the store lock is
taken.
"""

import time
from typing import TYPE_CHECKING, Optional, Union

from ..config import ConflictPolicy, LinkrSettings
from ..errors import (
    ConflictingLinkError,
    InvalidSignatureError,
    LinkrError,
    NoLinkFoundError,
)
from ..observability import get_logger, get_metrics
from ..schemas import (
    LinkingEvent,
    LinkNotification,
    LinkRecord,
    normalize_account,
    normalize_pubkey,
)
from .notifications import LoggingNotificationSink, NotificationSink, dispatch
from .validator import EventValidator
from .verifier import AuthorizationAction, SignatureVerifier

if TYPE_CHECKING:
    from ..db.store import LinkStore


logger = get_logger(__name__)

AccountSignature = Union[bytes, str]


def _signature_bytes(signature: AccountSignature) -> bytes:
    """Accept raw bytes or hex (with or without 0x)."""
    if isinstance(signature, bytes):
        return signature
    raw = signature[2:] if signature[:2].lower() == "0x" else signature
    try:
        return bytes.fromhex(raw)
    except ValueError:
        raise InvalidSignatureError("Account signature is not valid hex") from None


class LinkRegistry:
    """
    The core link registry.

    BIJECTION GUARANTEES:
    - Both maps change together or not at all
    - Superseded edges are removed in the same commit that adds the new one
    - verify_bijection() checks the invariant against the store

    FAILURE SEMANTICS:
    - Every failure is a typed LinkrError (or a StoreError from the backend)
    - A failed write leaves the store exactly as it was
    - Nothing is retried
    - Notification sinks cannot fail a write
    """

    def __init__(
        self,
        store: Optional["LinkStore"] = None,
        settings: Optional[LinkrSettings] = None,
        sinks: Optional[list[NotificationSink]] = None,
        verifier: Optional[SignatureVerifier] = None,
        validator: Optional[EventValidator] = None,
    ):
        """
        Initialize LinkRegistry.

        Args:
            store: LinkStore implementation. Defaults to InMemoryLinkStore.
            settings: Behavior knobs. Defaults to LinkrSettings().
            sinks: Notification consumers. Defaults to a logging sink.
            verifier: Signature verifier. Built from settings if None.
            validator: Event validator. Built from settings if None.
        """
        # Import here to avoid circular imports
        if store is None:
            from ..db.store import InMemoryLinkStore
            store = InMemoryLinkStore()

        self._store = store
        self.settings = settings or LinkrSettings()
        self.sinks = list(sinks) if sinks is not None else [LoggingNotificationSink()]
        self.verifier = verifier or SignatureVerifier(self.settings.schnorr_verification)
        self.validator = validator or EventValidator(self.settings.skew_tolerance_seconds)

    @property
    def store(self) -> "LinkStore":
        return self._store

    @property
    def link_count(self) -> int:
        return self._store.get_link_count()

    # ================================================================
    # WRITES
    # ================================================================

    def push(
        self,
        account: str,
        event: LinkingEvent,
        account_signature: Optional[AccountSignature] = None,
        now: Optional[int] = None,
    ) -> LinkRecord:
        """
        Create or replace the link for an account.

        Args:
            account: The account being linked (the authenticated sender)
            event: Linking event signed by the Nostr key
            account_signature: 65-byte personal_sign over the link message.
                Required when settings.require_account_signature is set.
            now: Current unix time, for the future-skew check

        Returns:
            The committed LinkRecord

        Raises:
            InvalidIdentifierError, EventValidationError subclasses,
            VerificationError subclasses, ConflictingLinkError
        """
        start = time.perf_counter()
        try:
            account = normalize_account(account)
            self.validator.validate(event, account, now=now)
            self.verifier.verify_event_signature(event)
            pubkey = event.schnorr_pubkey

            if self.settings.require_account_signature:
                self._require_authorization(
                    AuthorizationAction.LINK, account, pubkey, account_signature
                )

            superseded = self._commit_link(account, pubkey)
        except LinkrError as e:
            get_metrics().record_rejection(e.code)
            logger.info(
                "Push rejected",
                account=account,
                code=e.code,
                error=str(e),
            )
            raise

        latency_ms = (time.perf_counter() - start) * 1000
        get_metrics().record_push(latency_ms, superseded=len(superseded))
        logger.debug(
            "Push committed",
            account=account,
            pubkey=pubkey,
            superseded=len(superseded),
            latency_ms=round(latency_ms, 2),
        )

        for old_account, old_pubkey in superseded:
            dispatch(self.sinks, LinkNotification.removed(old_account, old_pubkey))
        dispatch(self.sinks, LinkNotification.created(account, pubkey))

        return LinkRecord(account=account, pubkey=pubkey)

    def _commit_link(self, account: str, pubkey: str) -> list[tuple[str, str]]:
        """
        Apply the bijection rules for account -> pubkey in one write.

        Returns the (account, pubkey) pairs that were superseded.
        """
        superseded = []
        with self._store.begin_write() as ctx:
            old_pubkey = ctx.get_pubkey(account)
            old_account = ctx.get_account(pubkey)

            if old_account is not None and old_account != account:
                if self.settings.conflict_policy == ConflictPolicy.REJECT:
                    raise ConflictingLinkError(
                        f"Key {pubkey[:16]}... is already linked to "
                        f"{old_account}. Pull that link first."
                    )
                ctx.delete_account(old_account)
                superseded.append((old_account, pubkey))

            if old_pubkey is not None and old_pubkey != pubkey:
                ctx.delete_pubkey(old_pubkey)
                superseded.append((account, old_pubkey))

            ctx.put(account, pubkey)
            ctx.commit()

        return superseded

    def pull(
        self,
        account: str,
        account_signature: Optional[AccountSignature] = None,
    ) -> LinkRecord:
        """
        Remove the account's link, both directions.

        The unlink authorization names the current key, so it is read and
        checked before the write lock; the write then re-reads the key and
        refuses if it moved in between.

        Raises:
            NoLinkFoundError: If the account has no link
            InvalidSignatureError: If a required authorization is missing, wrong,
                or covers a key the account no longer holds
        """
        try:
            account = normalize_account(account)
            authorized_pubkey = None
            if self.settings.require_account_signature:
                authorized_pubkey = self._store.get_pubkey(account)
                if authorized_pubkey is None:
                    raise NoLinkFoundError(f"No link found for {account}")
                self._require_authorization(
                    AuthorizationAction.UNLINK, account, authorized_pubkey, account_signature
                )

            pubkey = self._commit_unlink(account, authorized_pubkey)
        except LinkrError as e:
            get_metrics().record_rejection(e.code)
            logger.info("Pull rejected", account=account, code=e.code, error=str(e))
            raise

        get_metrics().record_pull()
        dispatch(self.sinks, LinkNotification.removed(account, pubkey))
        return LinkRecord(account=account, pubkey=pubkey)

    def _commit_unlink(self, account: str, authorized_pubkey: Optional[str]) -> str:
        """Delete both edges of the account's link; returns the removed key."""
        with self._store.begin_write() as ctx:
            pubkey = ctx.get_pubkey(account)
            if pubkey is None:
                raise NoLinkFoundError(f"No link found for {account}")
            if authorized_pubkey is not None and pubkey != authorized_pubkey:
                raise InvalidSignatureError(
                    f"Link for {account} moved to {pubkey[:16]}... while the "
                    "unlink was being authorized; sign for the current key"
                )

            ctx.delete_account(account)
            ctx.delete_pubkey(pubkey)
            ctx.commit()
        return pubkey

    def _require_authorization(
        self,
        action: AuthorizationAction,
        account: str,
        pubkey: str,
        account_signature: Optional[AccountSignature],
    ) -> None:
        if account_signature is None:
            raise InvalidSignatureError(
                f"An account signature over the {action.value} authorization "
                "message is required"
            )
        self.verifier.verify_authorization(
            action, account, pubkey, _signature_bytes(account_signature)
        )

    # ================================================================
    # READS
    # ================================================================

    def lookup_by_account(self, account: str) -> Optional[str]:
        """Key linked to an account, or None."""
        return self._store.get_pubkey(normalize_account(account))

    def lookup_by_key(self, pubkey: str) -> Optional[str]:
        """Account linked to a key, or None."""
        return self._store.get_account(normalize_pubkey(pubkey))

    def list_links(self) -> list[LinkRecord]:
        return self._store.list_links()

    def verify_bijection(self) -> bool:
        """
        Check forward and reverse are exact inverses.

        Returns:
            True if consistent, False otherwise (logged)
        """
        forward, reverse = self._store.snapshot()

        if len(forward) != len(reverse):
            logger.error(
                "Bijection broken: map sizes differ",
                forward_size=len(forward),
                reverse_size=len(reverse),
            )
            return False

        for account, pubkey in forward.items():
            if reverse.get(pubkey) != account:
                logger.error(
                    "Bijection broken: forward edge has no matching reverse",
                    account=account,
                    pubkey=pubkey,
                    reverse_account=reverse.get(pubkey),
                )
                return False

        return True
