"""
Link Builder

Client-side half of the protocol: generates keys, builds and signs
linking events, and produces the account's personal_sign authorization.
The registry never calls this; tests and the CLI do.

Keys are hex strings throughout:
- Schnorr private keys: 32 bytes (64 hex)
- Schnorr public keys: x-only, 32 bytes (64 hex)
- Account private keys: 32 bytes (64 hex), address is 0x + 40 hex
"""

import os
import time
from typing import Optional, Tuple

from coincurve import PrivateKey

from ..schemas import LINKING_KIND, LinkingEvent, account_content, normalize_account
from .canonical import Canonicalizer
from .verifier import (
    AuthorizationAction,
    account_from_public_key,
    authorization_message,
    personal_message_hash,
)


class LinkBuilder:
    """
    Builds linking events the way a Nostr agent would.

    All methods are static; there is no state.
    """

    @staticmethod
    def generate_schnorr_keypair() -> Tuple[str, str]:
        """
        Generate a new Nostr keypair.

        Returns:
            Tuple of (private_key_hex, xonly_pubkey_hex)
        """
        private_key = PrivateKey()
        return private_key.to_hex(), private_key.public_key_xonly.format().hex()

    @staticmethod
    def generate_account_keypair() -> Tuple[str, str]:
        """
        Generate a new account keypair.

        Returns:
            Tuple of (private_key_hex, account_address)
        """
        private_key = PrivateKey()
        return private_key.to_hex(), account_from_public_key(private_key.public_key)

    @staticmethod
    def schnorr_pubkey_from_private_key(private_key_hex: str) -> str:
        return PrivateKey.from_hex(private_key_hex).public_key_xonly.format().hex()

    @staticmethod
    def account_from_private_key(private_key_hex: str) -> str:
        return account_from_public_key(PrivateKey.from_hex(private_key_hex).public_key)

    @staticmethod
    def sign_event(
        private_key_hex: str,
        created_at: int,
        kind: int,
        tags: list,
        content: str,
    ) -> LinkingEvent:
        """
        Sign arbitrary event fields. Useful for building invalid events too.

        The id is always computed honestly from the given fields.
        """
        private_key = PrivateKey.from_hex(private_key_hex)
        pubkey = private_key.public_key_xonly.format().hex()

        digest = Canonicalizer.event_id_bytes(pubkey, created_at, kind, tags, content)
        signature = private_key.sign_schnorr(digest, os.urandom(32))

        return LinkingEvent(
            pubkey=pubkey,
            created_at=created_at,
            kind=kind,
            tags=tags,
            content=content,
            id=digest.hex(),
            sig=signature.hex(),
        )

    @classmethod
    def build_event(
        cls,
        private_key_hex: str,
        account: str,
        created_at: Optional[int] = None,
    ) -> LinkingEvent:
        """
        Build a valid linking event for an account.

        Args:
            private_key_hex: Nostr private key
            account: Account to link (any case, optional 0x)
            created_at: Unix seconds; defaults to now
        """
        if created_at is None:
            created_at = int(time.time())
        return cls.sign_event(
            private_key_hex,
            created_at=created_at,
            kind=LINKING_KIND,
            tags=[],
            content=account_content(account),
        )

    @staticmethod
    def sign_authorization(
        account_private_key_hex: str,
        action: AuthorizationAction,
        pubkey: str,
    ) -> str:
        """
        personal_sign the link/unlink message with the account key.

        Returns:
            0x-prefixed 65-byte signature, v in {27, 28}
        """
        private_key = PrivateKey.from_hex(account_private_key_hex)
        account = normalize_account(account_from_public_key(private_key.public_key))
        message = authorization_message(action, account, pubkey)

        signature = private_key.sign_recoverable(
            personal_message_hash(message), hasher=None
        )
        return "0x" + (signature[:64] + bytes([signature[64] + 27])).hex()
