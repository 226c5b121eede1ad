"""
Identity Normalization

Two identities meet in this system:
- Account: ECDSA / Ethereum-style address (20 bytes)
- SchnorrKey: BIP-340 x-only public key (32 bytes)

Both are carried as lowercase hex strings. Accounts keep the 0x prefix,
Schnorr keys never have one (NIP-01 wire format).
"""

import re

from ..errors import InvalidIdentifierError


# Fixed kind tag for linking events
LINKING_KIND = 27235

_ACCOUNT_RE = re.compile(r"^(0x)?[0-9a-fA-F]{40}$")
_PUBKEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def normalize_account(account: str) -> str:
    """
    Normalize an account address to lowercase ``0x``-prefixed hex.

    Accepts checksummed (EIP-55) or unprefixed input.

    Raises:
        InvalidIdentifierError: If the address is not 20 bytes of hex
    """
    if not isinstance(account, str) or not _ACCOUNT_RE.match(account):
        raise InvalidIdentifierError(
            f"Invalid account address: {account!r}. "
            "Expected 40 hex characters with optional 0x prefix."
        )
    if account[:2] in ("0x", "0X"):
        account = account[2:]
    return "0x" + account.lower()


def account_content(account: str) -> str:
    """The 40-char lowercase hex form (no prefix) a linking event must carry."""
    return normalize_account(account)[2:]


def normalize_pubkey(pubkey: str) -> str:
    """
    Normalize a Schnorr public key to 64 lowercase hex characters.

    Raises:
        InvalidIdentifierError: If the key is not 32 bytes of hex
    """
    if not isinstance(pubkey, str) or not _PUBKEY_RE.match(pubkey):
        raise InvalidIdentifierError(
            f"Invalid Schnorr public key: {pubkey!r}. "
            "Expected 64 hex characters without prefix."
        )
    return pubkey.lower()
