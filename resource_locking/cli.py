"""Command-line inspector for resource locks.

Examples:
    resource-locks holders Order 42
    resource-locks acquire Order 42 7 --ttl 600
    resource-locks locked Order --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional, Sequence

from resource_locking.core.config import Settings, get_settings
from resource_locking.core.errors import ResourceLockError
from resource_locking.core.logging.structured import setup_logging_from_settings
from resource_locking.core.resource_locks import (
    LockEntry,
    LockRegistry,
    RedisOrderedStore,
    create_lock_registry,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resource-locks",
        description="Inspect and manage advisory resource locks.",
    )
    parser.add_argument("--redis-url", default=None, help="Override REDIS_URL.")
    parser.add_argument(
        "--backend",
        choices=["redis", "memory"],
        default=None,
        help="Override LOCK_STORE_BACKEND.",
    )
    parser.add_argument("--prefix", default=None, help="Override LOCK_KEY_PREFIX.")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL.")
    parser.add_argument("--json", action="store_true", help="Print results as JSON.")

    sub = parser.add_subparsers(dest="command", required=True)

    acquire = sub.add_parser("acquire", help="Register a user as holder of a resource.")
    acquire.add_argument("resource_type")
    acquire.add_argument("resource_id")
    acquire.add_argument("user_id")
    acquire.add_argument("--ttl", type=float, default=None, help="Lock TTL in seconds.")

    release = sub.add_parser("release", help="Release a user's lock early.")
    release.add_argument("resource_type")
    release.add_argument("resource_id")
    release.add_argument("user_id")

    force = sub.add_parser("force-release", help="Release every holder of a resource.")
    force.add_argument("resource_type")
    force.add_argument("resource_id")

    holders = sub.add_parser("holders", help="List users holding a resource.")
    holders.add_argument("resource_type")
    holders.add_argument("resource_id")

    locked = sub.add_parser("locked", help="List locked resources of a type.")
    locked.add_argument("resource_type")

    expiry = sub.add_parser("expiry", help="Show when a user's lock expires.")
    expiry.add_argument("resource_type")
    expiry.add_argument("resource_id")
    expiry.add_argument("user_id")

    return parser


def _settings_from_args(args: argparse.Namespace, base: Settings) -> Settings:
    overrides: Dict[str, Any] = {}
    if args.redis_url:
        overrides["REDIS_URL"] = args.redis_url
    if args.backend:
        overrides["LOCK_STORE_BACKEND"] = args.backend
    if args.prefix is not None:
        overrides["LOCK_KEY_PREFIX"] = args.prefix
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level
    return base.model_copy(update=overrides)


def _format_entries(entries: List[LockEntry], as_json: bool) -> str:
    if as_json:
        return json.dumps([entry.to_dict() for entry in entries])
    return "\n".join(f"{entry.member}\t{entry.expires_at_datetime.isoformat()}" for entry in entries)


async def run_command(registry: LockRegistry, args: argparse.Namespace) -> str:
    """Execute one sub-command and return its printable output."""
    command = args.command

    if command == "acquire":
        await registry.acquire(args.resource_type, args.resource_id, args.user_id, ttl=args.ttl)
        expires = await registry.expiry_of(args.resource_type, args.resource_id, args.user_id)
        if args.json:
            return json.dumps({"acquired": True, "expires_at": expires.isoformat() if expires else None})
        return f"acquired until {expires.isoformat() if expires else '-'}"

    if command == "release":
        await registry.release(args.resource_type, args.resource_id, args.user_id)
        return json.dumps({"released": True}) if args.json else "released"

    if command == "force-release":
        await registry.force_release(args.resource_type, args.resource_id)
        return json.dumps({"released": True}) if args.json else "released"

    if command == "holders":
        entries = await registry.holder_entries(args.resource_type, args.resource_id)
        return _format_entries(entries, args.json)

    if command == "locked":
        entries = await registry.locked_resource_entries(args.resource_type)
        return _format_entries(entries, args.json)

    if command == "expiry":
        expires = await registry.expiry_of(args.resource_type, args.resource_id, args.user_id)
        value = expires.isoformat() if expires else None
        if args.json:
            return json.dumps({"expires_at": value})
        return value or "not locked"

    raise ValueError(f"Unknown command: {command}")


async def _main_async(args: argparse.Namespace, settings: Settings) -> str:
    registry = create_lock_registry(settings)
    try:
        return await run_command(registry, args)
    finally:
        if isinstance(registry.store, RedisOrderedStore):
            await registry.store.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = _settings_from_args(args, get_settings())
    setup_logging_from_settings(settings)

    try:
        output = asyncio.run(_main_async(args, settings))
    except ResourceLockError as e:
        print(f"error [{e.code.value}]: {e.message}", file=sys.stderr)
        return 1

    if output:
        print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
