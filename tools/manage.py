#!/usr/bin/env python3
"""
Nostr Linkr Management CLI

Commands for building, checking and inspecting links:
- keygen: Generate a Schnorr (Nostr) or account keypair
- build-event: Build and sign a linking event for an account
- sign-authorization: personal_sign the link/unlink message with an account key
- verify-event: Validate and verify a linking event offline
- lookup: Look up a link by account or by key
- check-registry: Store connectivity, link count and bijection check

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage keygen --type schnorr
    python -m tools.manage build-event --private-key <hex> --account 0xabc... > event.json
    python -m tools.manage verify-event --account 0xabc... event.json
    python -m tools.manage lookup --pubkey <hex>
"""

import argparse
import json
import sys
from pathlib import Path


def _load_registry():
    from linkr.config import LinkrSettings
    from linkr.core import LinkRegistry
    from linkr.db import create_link_store

    return LinkRegistry(store=create_link_store(), settings=LinkrSettings.from_env(), sinks=[])


def cmd_keygen(args):
    """Generate a keypair."""
    from linkr.core import LinkBuilder

    if args.type == "schnorr":
        private_key, public_key = LinkBuilder.generate_schnorr_keypair()
        print(json.dumps({"private_key": private_key, "pubkey": public_key}, indent=2))
    else:
        private_key, account = LinkBuilder.generate_account_keypair()
        print(json.dumps({"private_key": private_key, "account": account}, indent=2))
    print("\n[WARN] Private key printed above. KEEP SECRET!", file=sys.stderr)


def cmd_build_event(args):
    """Build a signed linking event."""
    from linkr.core import LinkBuilder

    event = LinkBuilder.build_event(
        args.private_key,
        args.account,
        created_at=args.created_at,
    )
    print(json.dumps(event.to_nostr(), indent=2))


def cmd_sign_authorization(args):
    """Sign the link/unlink authorization message."""
    from linkr.core import AuthorizationAction, LinkBuilder, authorization_message

    action = AuthorizationAction(args.action)
    account = LinkBuilder.account_from_private_key(args.private_key)
    signature = LinkBuilder.sign_authorization(args.private_key, action, args.pubkey)

    print(json.dumps({
        "account": account,
        "message": authorization_message(action, account, args.pubkey),
        "account_signature": signature,
    }, indent=2))


def cmd_verify_event(args):
    """Validate and verify a linking event without touching the registry."""
    from pydantic import ValidationError

    from linkr.config import DEFAULT_SKEW_TOLERANCE_SECONDS, SchnorrVerificationMode
    from linkr.core import EventValidator, LinkrError, SignatureVerifier
    from linkr.schemas import LinkingEvent

    raw = Path(args.file).read_text() if args.file != "-" else sys.stdin.read()

    try:
        event = LinkingEvent.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        print(f"[FAIL] Malformed event: {e}")
        return 1

    mode = SchnorrVerificationMode.RANGE_ONLY if args.range_only else SchnorrVerificationMode.FULL
    validator = EventValidator(
        args.skew if args.skew is not None else DEFAULT_SKEW_TOLERANCE_SECONDS
    )
    verifier = SignatureVerifier(mode)

    try:
        validator.validate(event, args.account)
        print("[OK] Event structure valid")
        print(f"  Kind: {event.kind}")
        print(f"  Content: {event.content}")
        print(f"  Event id: {event.event_id[:16]}...")

        verifier.verify_event_signature(event)
        print(f"[OK] Signature valid for {event.schnorr_pubkey[:16]}... ({mode.value})")
    except LinkrError as e:
        print(f"[FAIL] {e.code}: {e}")
        return 1

    return 0


def cmd_lookup(args):
    """Look up a link in the configured store."""
    registry = _load_registry()

    if args.account:
        pubkey = registry.lookup_by_account(args.account)
        print(json.dumps({"account": args.account.lower(), "pubkey": pubkey}, indent=2))
        return 0 if pubkey else 1

    account = registry.lookup_by_key(args.pubkey)
    print(json.dumps({"pubkey": args.pubkey.lower(), "account": account}, indent=2))
    return 0 if account else 1


def cmd_check_registry(args):
    """Run registry health checks."""
    from linkr.db import DatabaseConfig, LinkStoreDriver, get_database_url, get_linkstore_driver

    driver = get_linkstore_driver()

    print("=== Nostr Linkr Registry Check ===\n")

    print("Store:")
    if driver != LinkStoreDriver.MEMORY:
        url = get_database_url()
        config = DatabaseConfig.from_url(url) if url else DatabaseConfig.from_env()
        print(f"  Type: PostgreSQL ({driver.value})")
        print(f"  Host: {config.host}:{config.port}")
    else:
        print("  Type: In-Memory (empty on every start)")

    registry = _load_registry()
    try:
        count = registry.link_count
        print("  Status: [OK] Reachable")
    except Exception as e:
        print(f"  Status: [FAIL] Failed - {e}")
        return 1

    print("\nLinks:")
    print(f"  Count: {count}")
    if registry.verify_bijection():
        print("  Bijection: [OK] forward and reverse agree")
    else:
        print("  Bijection: [FAIL] forward and reverse DISAGREE")
        return 1

    print("\nSettings:")
    print(f"  Conflict policy: {registry.settings.conflict_policy.value}")
    print(f"  Schnorr verification: {registry.settings.schnorr_verification.value}")
    print(f"  Account signature required: {registry.settings.require_account_signature}")
    print(f"  Skew tolerance: {registry.settings.skew_tolerance_seconds}s")

    print("\n=== Registry Check Complete ===")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Nostr Linkr Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # keygen
    p_keygen = subparsers.add_parser("keygen", help="Generate a keypair")
    p_keygen.add_argument(
        "--type", choices=["schnorr", "account"], default="schnorr",
        help="Key type (default: schnorr)"
    )

    # build-event
    p_build = subparsers.add_parser("build-event", help="Build a signed linking event")
    p_build.add_argument("--private-key", required=True, help="Nostr private key (hex)")
    p_build.add_argument("--account", required=True, help="Account to link")
    p_build.add_argument("--created-at", type=int, help="Unix timestamp (default: now)")

    # sign-authorization
    p_auth = subparsers.add_parser(
        "sign-authorization",
        help="Sign the link/unlink message with an account key"
    )
    p_auth.add_argument("--private-key", required=True, help="Account private key (hex)")
    p_auth.add_argument("--action", choices=["link", "unlink"], default="link")
    p_auth.add_argument("--pubkey", required=True, help="Nostr public key (hex)")

    # verify-event
    p_verify = subparsers.add_parser("verify-event", help="Verify a linking event offline")
    p_verify.add_argument("file", nargs="?", default="-", help="Event JSON file (default: stdin)")
    p_verify.add_argument("--account", required=True, help="Account the event should name")
    p_verify.add_argument("--skew", type=int, help="Future-skew tolerance in seconds")
    p_verify.add_argument(
        "--range-only", action="store_true",
        help="Legacy range-only Schnorr check (INSECURE)"
    )

    # lookup
    p_lookup = subparsers.add_parser("lookup", help="Look up a link")
    group = p_lookup.add_mutually_exclusive_group(required=True)
    group.add_argument("--account", help="Account address")
    group.add_argument("--pubkey", help="Nostr public key (hex)")

    # check-registry
    subparsers.add_parser("check-registry", help="Run registry health checks")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "keygen": cmd_keygen,
        "build-event": cmd_build_event,
        "sign-authorization": cmd_sign_authorization,
        "verify-event": cmd_verify_event,
        "lookup": cmd_lookup,
        "check-registry": cmd_check_registry,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
