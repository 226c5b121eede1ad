"""
Registry Settings

Environment Variables:
    LINKR_SKEW_TOLERANCE_SECONDS: How far created_at may run ahead (default 300)
    LINKR_SCHNORR_VERIFICATION: full | range_only (default full)
    LINKR_CONFLICT_POLICY: last_writer_wins | reject (default last_writer_wins)
    LINKR_REQUIRE_ACCOUNT_SIGNATURE: Require an ECDSA authorization on writes
        (default true when read from the environment)

The dataclass default for require_account_signature is False: a host that
already authenticates the sender (like a transaction executing one call at a
time) passes the account itself. The HTTP service has no such sender, so
from_env() turns it on unless explicitly disabled.
"""

import os
from dataclasses import dataclass
from enum import Enum

DEFAULT_SKEW_TOLERANCE_SECONDS = 300


class SchnorrVerificationMode(str, Enum):
    """How much of BIP-340 the verifier enforces. See linkr.core.verifier."""
    FULL = "full"
    RANGE_ONLY = "range_only"  # legacy, INSECURE


class ConflictPolicy(str, Enum):
    """What push does when the key is already claimed by another account."""
    LAST_WRITER_WINS = "last_writer_wins"  # newer valid claim wins, old edge removed
    REJECT = "reject"                      # raise ConflictingLinkError


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class LinkrSettings:
    """Registry behavior knobs."""
    skew_tolerance_seconds: int = DEFAULT_SKEW_TOLERANCE_SECONDS
    schnorr_verification: SchnorrVerificationMode = SchnorrVerificationMode.FULL
    conflict_policy: ConflictPolicy = ConflictPolicy.LAST_WRITER_WINS
    require_account_signature: bool = False

    @classmethod
    def from_env(cls) -> "LinkrSettings":
        """Load settings from LINKR_* environment variables."""
        mode = os.getenv("LINKR_SCHNORR_VERIFICATION", "full").lower()
        policy = os.getenv("LINKR_CONFLICT_POLICY", "last_writer_wins").lower()

        try:
            schnorr_verification = SchnorrVerificationMode(mode)
        except ValueError:
            raise ValueError(
                f"Unknown LINKR_SCHNORR_VERIFICATION: {mode}. "
                "Valid values: full, range_only"
            ) from None

        try:
            conflict_policy = ConflictPolicy(policy)
        except ValueError:
            raise ValueError(
                f"Unknown LINKR_CONFLICT_POLICY: {policy}. "
                "Valid values: last_writer_wins, reject"
            ) from None

        return cls(
            skew_tolerance_seconds=int(os.getenv(
                "LINKR_SKEW_TOLERANCE_SECONDS", str(DEFAULT_SKEW_TOLERANCE_SECONDS)
            )),
            schnorr_verification=schnorr_verification,
            conflict_policy=conflict_policy,
            require_account_signature=_env_bool("LINKR_REQUIRE_ACCOUNT_SIGNATURE", True),
        )
