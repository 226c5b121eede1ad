"""
Tests for signature verification and the Link Builder

Schnorr (BIP-340) for the Nostr key, recoverable ECDSA for the account.
"""

import pytest
from coincurve import PrivateKey

from linkr.config import SchnorrVerificationMode
from linkr.core import (
    AuthorizationAction,
    InvalidSignatureError,
    InvalidSignatureLengthError,
    LinkBuilder,
    SignatureVerifier,
    authorization_message,
    checksum_account,
    personal_message_hash,
)
from linkr.core.verifier import CURVE_ORDER, keccak256


ACCOUNT = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
ACCOUNT_EIP55 = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
PRIVATE_KEY_ONE = "00" * 31 + "01"


def _personal_sign(private_key_hex: str, message: str) -> bytes:
    signature = PrivateKey.from_hex(private_key_hex).sign_recoverable(
        personal_message_hash(message), hasher=None
    )
    return signature[:64] + bytes([signature[64] + 27])


class TestKeyDerivation:
    """Known-answer checks against the secp256k1 generator."""

    def test_schnorr_pubkey_of_key_one_is_generator_x(self):
        assert LinkBuilder.schnorr_pubkey_from_private_key(PRIVATE_KEY_ONE) == (
            "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
        )

    def test_account_of_key_one(self):
        assert LinkBuilder.account_from_private_key(PRIVATE_KEY_ONE) == (
            "0x7e5f4552091a69125d5dfcb7b8c2659029395bdf"
        )

    def test_keccak_of_empty_input(self):
        assert keccak256(b"").hex() == (
            "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"
        )

    def test_generated_keys_have_wire_shape(self, nostr_keys, account_keys):
        assert len(nostr_keys[1]) == 64
        assert account_keys[1].startswith("0x") and len(account_keys[1]) == 42


class TestSchnorrVerification:

    @pytest.fixture
    def verifier(self):
        return SignatureVerifier()

    @pytest.fixture
    def event(self, nostr_keys):
        return LinkBuilder.build_event(nostr_keys[0], ACCOUNT, created_at=1_700_000_000)

    def test_valid_signature(self, verifier, event):
        verifier.verify_event_signature(event)
        assert verifier.verify_schnorr(
            bytes.fromhex(event.schnorr_pubkey), event.event_id_bytes, event.signature_bytes
        )

    def test_signature_by_other_key_fails(self, verifier, event):
        other_private, _ = LinkBuilder.generate_schnorr_keypair()
        other = LinkBuilder.build_event(other_private, ACCOUNT, created_at=event.created_at)
        forged = event.model_copy(update={"signature": other.signature})
        with pytest.raises(InvalidSignatureError):
            verifier.verify_event_signature(forged)

    def test_flipped_signature_bit_fails(self, verifier, event):
        sig = bytearray(event.signature_bytes)
        sig[40] ^= 0x01
        tampered = event.model_copy(update={"signature": sig.hex()})
        with pytest.raises(InvalidSignatureError):
            verifier.verify_event_signature(tampered)

    def test_signature_over_other_message_fails(self, verifier, event):
        assert not verifier.verify_schnorr(
            bytes.fromhex(event.schnorr_pubkey), b"\x00" * 32, event.signature_bytes
        )

    def test_63_byte_signature_rejected_without_curve_math(self, verifier, event, monkeypatch):
        def boom(*args, **kwargs):
            raise AssertionError("curve arithmetic attempted")

        monkeypatch.setattr("linkr.core.verifier.PublicKeyXOnly", boom)
        short = event.model_copy(update={"signature": event.signature[:126]})
        with pytest.raises(InvalidSignatureLengthError):
            verifier.verify_event_signature(short)

    def test_65_byte_signature_rejected(self, verifier, event):
        long_sig = event.model_copy(update={"signature": event.signature + "00"})
        with pytest.raises(InvalidSignatureLengthError):
            verifier.verify_event_signature(long_sig)

    def test_zero_r_rejected(self, verifier, event):
        sig = bytes(32) + event.signature_bytes[32:]
        with pytest.raises(InvalidSignatureError, match="r is out of range"):
            verifier.verify_schnorr(bytes.fromhex(event.schnorr_pubkey), event.event_id_bytes, sig)

    def test_s_equal_to_order_rejected(self, verifier, event):
        sig = event.signature_bytes[:32] + CURVE_ORDER.to_bytes(32, "big")
        with pytest.raises(InvalidSignatureError, match="s is out of range"):
            verifier.verify_schnorr(bytes.fromhex(event.schnorr_pubkey), event.event_id_bytes, sig)

    def test_digest_must_be_32_bytes(self, verifier, event):
        with pytest.raises(ValueError):
            verifier.verify_schnorr(
                bytes.fromhex(event.schnorr_pubkey), b"short", event.signature_bytes
            )


class TestRangeOnlyMode:
    """Legacy mode: range checks only. INSECURE, opt-in."""

    @pytest.fixture
    def forged_signature(self):
        # r = 1, s = 1: in range, not a signature of anything
        return (1).to_bytes(32, "big") + (1).to_bytes(32, "big")

    def test_range_only_accepts_forgery(self, nostr_keys, forged_signature):
        verifier = SignatureVerifier(SchnorrVerificationMode.RANGE_ONLY)
        assert verifier.verify_schnorr(bytes.fromhex(nostr_keys[1]), b"\x11" * 32, forged_signature)

    def test_full_mode_rejects_same_forgery(self, nostr_keys, forged_signature):
        verifier = SignatureVerifier(SchnorrVerificationMode.FULL)
        assert not verifier.verify_schnorr(bytes.fromhex(nostr_keys[1]), b"\x11" * 32, forged_signature)

    def test_range_only_still_checks_range(self, nostr_keys):
        verifier = SignatureVerifier(SchnorrVerificationMode.RANGE_ONLY)
        with pytest.raises(InvalidSignatureError):
            verifier.verify_schnorr(bytes.fromhex(nostr_keys[1]), b"\x11" * 32, bytes(64))

    def test_range_only_logs_a_warning(self, caplog):
        with caplog.at_level("WARNING", logger="linkr.core.verifier"):
            SignatureVerifier("range_only")
        assert "RANGE_ONLY" in caplog.text


class TestAccountSignatures:

    @pytest.fixture
    def verifier(self):
        return SignatureVerifier()

    def test_authorization_messages(self, nostr_keys):
        pubkey = nostr_keys[1]
        assert authorization_message("link", ACCOUNT.upper().replace("0X", "0x"), pubkey) == (
            f"Link Ethereum {ACCOUNT_EIP55} with Nostr {pubkey}"
        )
        assert authorization_message(AuthorizationAction.UNLINK, ACCOUNT, pubkey) == (
            f"Unlink Ethereum {ACCOUNT_EIP55} from Nostr {pubkey}"
        )
        assert authorization_message("link", ACCOUNT_EIP55, pubkey, checksum=False) == (
            f"Link Ethereum {ACCOUNT} with Nostr {pubkey}"
        )

    @pytest.mark.parametrize("checksummed", [
        "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
        "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359",
        "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB",
        "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb",
    ])
    def test_checksum_account_vectors(self, checksummed):
        assert checksum_account(checksummed.lower()) == checksummed

    def test_wallet_style_checksummed_signature_accepted(self, verifier, account_keys, nostr_keys):
        """A wallet signs the message with its address as it displays it."""
        private_key, account = account_keys
        message = f"Link Ethereum {checksum_account(account)} with Nostr {nostr_keys[1]}"
        verifier.verify_authorization(
            AuthorizationAction.LINK, account, nostr_keys[1], _personal_sign(private_key, message)
        )

    def test_verify_account_signature_over_raw_hash(self, verifier, account_keys):
        private_key, account = account_keys
        message = "any personal_sign payload"
        signature = _personal_sign(private_key, message)
        verifier.verify_account_signature(account, personal_message_hash(message), signature)

        _, someone_else = LinkBuilder.generate_account_keypair()
        with pytest.raises(InvalidSignatureError, match="not the declared authorizer"):
            verifier.verify_account_signature(
                someone_else, personal_message_hash(message), signature
            )

    def test_lowercase_signature_accepted(self, verifier, account_keys, nostr_keys):
        private_key, account = account_keys
        message = f"Unlink Ethereum {account} from Nostr {nostr_keys[1]}"
        verifier.verify_authorization(
            AuthorizationAction.UNLINK, account, nostr_keys[1], _personal_sign(private_key, message)
        )

    def test_recover_signer(self, verifier, account_keys, nostr_keys):
        private_key, account = account_keys
        signature = LinkBuilder.sign_authorization(private_key, AuthorizationAction.LINK, nostr_keys[1])
        message_hash = personal_message_hash(
            authorization_message(AuthorizationAction.LINK, account, nostr_keys[1])
        )
        assert verifier.recover_account(message_hash, bytes.fromhex(signature[2:])) == account

    def test_v_as_zero_or_one_accepted(self, verifier, account_keys, nostr_keys):
        private_key, account = account_keys
        raw = bytes.fromhex(
            LinkBuilder.sign_authorization(private_key, AuthorizationAction.LINK, nostr_keys[1])[2:]
        )
        normalized = raw[:64] + bytes([raw[64] - 27])
        verifier.verify_authorization(AuthorizationAction.LINK, account, nostr_keys[1], normalized)

    def test_verify_authorization(self, verifier, account_keys, nostr_keys):
        private_key, account = account_keys
        signature = LinkBuilder.sign_authorization(private_key, AuthorizationAction.LINK, nostr_keys[1])
        verifier.verify_authorization(
            AuthorizationAction.LINK, account, nostr_keys[1], bytes.fromhex(signature[2:])
        )

    def test_wrong_signer_rejected(self, verifier, account_keys, nostr_keys):
        _, account = account_keys
        other_private, _ = LinkBuilder.generate_account_keypair()
        signature = LinkBuilder.sign_authorization(other_private, AuthorizationAction.LINK, nostr_keys[1])
        with pytest.raises(InvalidSignatureError, match="not the declared authorizer"):
            verifier.verify_authorization(
                AuthorizationAction.LINK, account, nostr_keys[1], bytes.fromhex(signature[2:])
            )

    def test_link_signature_does_not_authorize_unlink(self, verifier, account_keys, nostr_keys):
        private_key, account = account_keys
        signature = LinkBuilder.sign_authorization(private_key, AuthorizationAction.LINK, nostr_keys[1])
        with pytest.raises(InvalidSignatureError):
            verifier.verify_authorization(
                AuthorizationAction.UNLINK, account, nostr_keys[1], bytes.fromhex(signature[2:])
            )

    def test_wrong_length_rejected(self, verifier):
        with pytest.raises(InvalidSignatureLengthError):
            verifier.recover_account(b"\x00" * 32, b"\x01" * 64)

    def test_bad_recovery_id_rejected(self, verifier):
        sig = (1).to_bytes(32, "big") + (1).to_bytes(32, "big") + bytes([5])
        with pytest.raises(InvalidSignatureError, match="recovery id"):
            verifier.recover_account(b"\x00" * 32, sig)

    def test_out_of_range_rs_rejected(self, verifier):
        with pytest.raises(InvalidSignatureError, match="out of range"):
            verifier.recover_account(b"\x00" * 32, bytes(64) + bytes([27]))
