"""
Signature Verification

Two schemes meet here:
- BIP-340 Schnorr: proves the Nostr identity signed the linking event
- ECDSA (secp256k1, recoverable): proves the account authorized the write

Curve arithmetic is delegated to libsecp256k1 via coincurve.
Address derivation uses keccak-256 from pycryptodome.

SCHNORR VERIFICATION MODES:
- FULL (default): range checks, then the BIP-340 equation s·G = R + e·P
- RANGE_ONLY: range checks only, then accept. This matches
  legacy on-chain verifiers and is INSECURE: anyone can
  forge an in-range (r, s). It exists only so legacy deployments can be
  reproduced, and is never selected implicitly.
"""

from enum import Enum

from coincurve import PublicKey, PublicKeyXOnly
from Crypto.Hash import keccak

from ..config import SchnorrVerificationMode
from ..errors import InvalidSignatureError, InvalidSignatureLengthError
from ..observability import get_logger
from ..schemas import LinkingEvent, normalize_account, normalize_pubkey


logger = get_logger(__name__)

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

SCHNORR_SIGNATURE_LENGTH = 64
ACCOUNT_SIGNATURE_LENGTH = 65


class AuthorizationAction(str, Enum):
    """Mutating operations an account can authorize."""
    LINK = "link"
    UNLINK = "unlink"


def keccak256(data: bytes) -> bytes:
    k = keccak.new(digest_bits=256)
    k.update(data)
    return k.digest()


def checksum_account(account: str) -> str:
    """
    EIP-55 mixed-case form of an account, as wallets display it.

    A hex letter is uppercased when the matching nibble of
    keccak256(lowercase hex) is 8 or more.
    """
    digits = normalize_account(account)[2:]
    digest = keccak256(digits.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if int(nibble, 16) >= 8 else c
        for c, nibble in zip(digits, digest)
    )


def authorization_message(
    action: AuthorizationAction,
    account: str,
    pubkey: str,
    checksum: bool = True,
) -> str:
    """
    The text a wallet personal_signs to authorize a write.

    Link:   "Link Ethereum 0x... with Nostr <pubkey>"
    Unlink: "Unlink Ethereum 0x... from Nostr <pubkey>"

    The account is rendered EIP-55 checksummed, the way a connected wallet
    reports its address; checksum=False gives the all-lowercase variant.
    """
    action = AuthorizationAction(action)
    account = checksum_account(account) if checksum else normalize_account(account)
    pubkey = normalize_pubkey(pubkey)
    if action == AuthorizationAction.LINK:
        return f"Link Ethereum {account} with Nostr {pubkey}"
    return f"Unlink Ethereum {account} from Nostr {pubkey}"


def personal_message_hash(message: str) -> bytes:
    """EIP-191 hash, as produced by eth personal_sign."""
    body = message.encode("utf-8")
    prefix = f"\x19Ethereum Signed Message:\n{len(body)}".encode("utf-8")
    return keccak256(prefix + body)


def account_from_public_key(public_key: PublicKey) -> str:
    """Address = last 20 bytes of keccak256(uncompressed pubkey without 0x04)."""
    uncompressed = public_key.format(compressed=False)
    return "0x" + keccak256(uncompressed[1:])[-20:].hex()


class SignatureVerifier:
    """
    Verifies both halves of the dual-identity proof.

    Pure and side-effect free; safe to share across threads.
    """

    def __init__(self, mode: SchnorrVerificationMode = SchnorrVerificationMode.FULL):
        self.mode = SchnorrVerificationMode(mode)
        if self.mode == SchnorrVerificationMode.RANGE_ONLY:
            logger.warning(
                "Schnorr verification running in RANGE_ONLY mode; "
                "signatures are NOT cryptographically checked",
                schnorr_mode=self.mode.value,
            )

    # ================================================================
    # SCHNORR (BIP-340)
    # ================================================================

    def verify_schnorr(
        self,
        pubkey: bytes,
        message_digest: bytes,
        signature: bytes,
    ) -> bool:
        """
        Verify a BIP-340 signature.

        Args:
            pubkey: 32-byte x-only public key
            message_digest: 32-byte message (the event id)
            signature: 64-byte r || s

        Returns:
            True if the signature verifies, False if the curve check fails

        Raises:
            InvalidSignatureLengthError: If signature is not 64 bytes
            InvalidSignatureError: If r or s is outside (0, n)
        """
        if len(signature) != SCHNORR_SIGNATURE_LENGTH:
            raise InvalidSignatureLengthError(
                f"Schnorr signature must be {SCHNORR_SIGNATURE_LENGTH} bytes, "
                f"got {len(signature)}"
            )
        if len(message_digest) != 32:
            raise ValueError("message_digest must be 32 bytes")

        r = int.from_bytes(signature[:32], "big")
        s = int.from_bytes(signature[32:], "big")
        if not 0 < r < CURVE_ORDER:
            raise InvalidSignatureError("Schnorr signature r is out of range")
        if not 0 < s < CURVE_ORDER:
            raise InvalidSignatureError("Schnorr signature s is out of range")

        if self.mode == SchnorrVerificationMode.RANGE_ONLY:
            return True

        if len(pubkey) != 32:
            return False
        try:
            xonly = PublicKeyXOnly(pubkey)
        except ValueError:
            # x does not lift to a curve point
            return False
        return xonly.verify(signature, message_digest)

    def require_schnorr(
        self,
        pubkey: bytes,
        message_digest: bytes,
        signature: bytes,
    ) -> None:
        """Like verify_schnorr, but a failed curve check raises."""
        if not self.verify_schnorr(pubkey, message_digest, signature):
            raise InvalidSignatureError(
                "Schnorr signature verification failed for "
                f"pubkey {pubkey.hex()[:16]}..."
            )

    def verify_event_signature(self, event: LinkingEvent) -> None:
        """Check the event was signed by the key it names."""
        self.require_schnorr(
            bytes.fromhex(event.schnorr_pubkey),
            event.event_id_bytes,
            event.signature_bytes,
        )

    # ================================================================
    # ECDSA (account authorization)
    # ================================================================

    @staticmethod
    def recover_account(message_hash: bytes, signature: bytes) -> str:
        """
        Recover the signing account from a recoverable ECDSA signature.

        Args:
            message_hash: 32-byte digest that was signed
            signature: 65 bytes r || s || v, with v in {0, 1, 27, 28}

        Returns:
            Lowercase 0x-prefixed account address
        """
        if len(signature) != ACCOUNT_SIGNATURE_LENGTH:
            raise InvalidSignatureLengthError(
                f"Account signature must be {ACCOUNT_SIGNATURE_LENGTH} bytes, "
                f"got {len(signature)}"
            )
        if len(message_hash) != 32:
            raise ValueError("message_hash must be 32 bytes")

        v = signature[64]
        if v >= 27:
            v -= 27
        if v not in (0, 1):
            raise InvalidSignatureError(f"Invalid recovery id {signature[64]}")

        r = int.from_bytes(signature[:32], "big")
        s = int.from_bytes(signature[32:64], "big")
        if not (0 < r < CURVE_ORDER and 0 < s < CURVE_ORDER):
            raise InvalidSignatureError("Account signature r or s is out of range")

        try:
            public_key = PublicKey.from_signature_and_message(
                signature[:64] + bytes([v]), message_hash, hasher=None
            )
        except ValueError as e:
            raise InvalidSignatureError(
                f"Could not recover signer from account signature: {e}"
            ) from e
        return account_from_public_key(public_key)

    def verify_account_signature(
        self,
        account: str,
        message_hash: bytes,
        signature: bytes,
    ) -> None:
        """
        Require that ``account`` produced ``signature`` over ``message_hash``.

        Raises:
            InvalidSignatureError: If the recovered signer is someone else
        """
        expected = normalize_account(account)
        recovered = self.recover_account(message_hash, signature)
        if recovered != expected:
            raise InvalidSignatureError(
                f"Account signature was produced by {recovered}, "
                f"not the declared authorizer {expected}"
            )

    def verify_authorization(
        self,
        action: AuthorizationAction,
        account: str,
        pubkey: str,
        signature: bytes,
    ) -> None:
        """
        Check a personal_sign authorization for a link or unlink.

        The checksummed message is tried first, then the lowercase one, so
        signatures from wallets and from tooling that lowercases addresses
        both verify.
        """
        expected = normalize_account(account)
        first_signer = None
        for checksum in (True, False):
            message = authorization_message(action, account, pubkey, checksum=checksum)
            signer = self.recover_account(personal_message_hash(message), signature)
            if signer == expected:
                return
            first_signer = first_signer or signer

        raise InvalidSignatureError(
            f"Account signature was produced by {first_signer}, "
            f"not the declared authorizer {expected}"
        )
