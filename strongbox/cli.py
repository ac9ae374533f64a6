"""
Strongbox CLI — operator entry point.

Usage:
    strongbox version                         # Show version
    strongbox migrate [--dry-run|--status]    # Apply database migrations
    strongbox gen-key [--path P] [--print]    # Create the local encryption key
    strongbox encryption-status               # Which backend seals new values
    strongbox policy seed|list|check          # Inspect the policy graph
    strongbox sweep grants|secrets|notifications   # Run one sweep now
"""

from __future__ import annotations

import argparse
import base64
import logging
import secrets
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="strongbox",
        description="Strongbox — secrets vault with approval-gated access.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("version", help="Show version")

    # migrate
    migrate_parser = subparsers.add_parser("migrate", help="Apply database migrations")
    migrate_parser.add_argument("--dry-run", action="store_true", help="List pending without applying")
    migrate_parser.add_argument("--status", action="store_true", help="Show applied vs pending")

    # gen-key
    key_parser = subparsers.add_parser("gen-key", help="Create the local encryption key file")
    key_parser.add_argument("--path", type=str, help="Key file (default: STRONGBOX_KEY_FILE)")
    key_parser.add_argument(
        "--print", dest="print_only", action="store_true",
        help="Print a base64 key for STRONGBOX_ENCRYPTION_KEY instead of writing a file",
    )

    subparsers.add_parser("encryption-status", help="Show encryption backend status")

    # policy
    policy_parser = subparsers.add_parser("policy", help="Inspect the policy graph")
    policy_sub = policy_parser.add_subparsers(dest="policy_command")
    policy_sub.add_parser("seed", help="Seed default rules if the table is empty")
    list_parser = policy_sub.add_parser("list", help="List rules")
    list_parser.add_argument("--role", type=str, help="Only this role")
    check_parser = policy_sub.add_parser("check", help="Evaluate one request")
    check_parser.add_argument("role")
    check_parser.add_argument("resource")
    check_parser.add_argument("action")

    # sweep
    sweep_parser = subparsers.add_parser("sweep", help="Run one background sweep now")
    sweep_parser.add_argument("job", choices=["grants", "secrets", "notifications"])

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.version or args.command == "version":
        from strongbox import __version__

        print(f"strongbox {__version__}")
        return 0

    if args.command == "migrate":
        return _cmd_migrate(args)
    elif args.command == "gen-key":
        return _cmd_gen_key(args)
    elif args.command == "encryption-status":
        return _cmd_encryption_status()
    elif args.command == "policy":
        return _cmd_policy(args, policy_parser)
    elif args.command == "sweep":
        return _cmd_sweep(args)
    else:
        parser.print_help()
        return 0


def _cmd_migrate(args: argparse.Namespace) -> int:
    from strongbox.db import migrate

    try:
        if args.status:
            return migrate.main(["status"])
        migrate.apply(dry_run=args.dry_run)
        return 0
    except Exception as e:
        print(f"Error: Migration failed: {e}", file=sys.stderr)
        print("Check STRONGBOX_DB_* environment variables and ensure PostgreSQL is running.")
        return 1


def _cmd_gen_key(args: argparse.Namespace) -> int:
    from pathlib import Path

    from strongbox.config import get_config
    from strongbox.encryption.local import KEY_SIZE, init_master_key

    if args.print_only:
        print(base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode())
        return 0

    path = Path(args.path) if args.path else get_config().security.key_file
    existed = path.exists()
    init_master_key(path)
    if existed:
        print(f"Key already exists at {path}, left unchanged.")
    else:
        print(f"Wrote new key to {path} (mode 600).")
    return 0


def _cmd_encryption_status() -> int:
    from strongbox.encryption.service import EncryptionService
    from strongbox.errors import ConfigError

    try:
        info = EncryptionService.from_config().describe()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    for key, value in info.items():
        print(f"{key:<15} {value}")
    return 0 if info["transit"] != "unavailable" else 1


def _cmd_policy(args: argparse.Namespace, policy_parser: argparse.ArgumentParser) -> int:
    from strongbox.policy.dal import PostgresPolicyStore
    from strongbox.policy.engine import PolicyEngine

    if args.policy_command is None:
        policy_parser.print_help()
        return 0

    from strongbox.config import get_config

    engine = PolicyEngine(PostgresPolicyStore(), super_role=get_config().security.super_role)
    try:
        engine.load()
    except Exception as e:
        print(f"Error: Cannot load policy: {e}", file=sys.stderr)
        return 1

    if args.policy_command == "seed":
        print(f"{len(engine.list_rules())} rules loaded.")
        return 0
    if args.policy_command == "list":
        for rule in engine.list_rules(args.role):
            print(f"{rule.role:<15} {rule.resource:<18} {rule.action}")
        return 0
    allowed = engine.check(args.role, args.resource, args.action)
    print("allow" if allowed else "deny")
    return 0 if allowed else 1


def _cmd_sweep(args: argparse.Namespace) -> int:
    from strongbox.audit.logger import LoggingAuditor
    from strongbox.runtime import Runtime

    try:
        rt = Runtime.from_config(auditor=LoggingAuditor())
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    try:
        if args.job == "grants":
            print(f"Expired {rt.sweeps.sweep_grants()} grant(s).")
        elif args.job == "secrets":
            warned, alerted = rt.sweeps.sweep_secret_expiry()
            print(f"Warned {warned} owner(s), alerted on {alerted} expired secret(s).")
        else:
            print(f"Removed {rt.sweeps.cleanup_notifications()} notification(s).")
    finally:
        rt.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
