#!/usr/bin/env python3
"""
GiveCore Management CLI

Commands:
- init-remote-store: Create the off-chain tables in PostgreSQL
- status: Ledger readiness and off-chain store health
- list-campaigns: Campaigns with derived state
- list-resources: Resources with claimed totals
- notifications: Show (or mark read) an identity's notifications
- platform-report: Aggregate donation report

Configuration comes from the environment (see givecore.config).

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage status
    python -m tools.manage list-campaigns --active-only
    python -m tools.manage notifications --account 0xabc... --mark-read
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _fail(result) -> int:
    print(f"[FAIL] {result.kind.value if result.kind else 'error'}: {result.reason}")
    return 1


async def cmd_init_remote_store(args):
    """Create the off-chain tables in the configured PostgreSQL database."""
    from givecore.config import RemoteStoreConfig
    from givecore.store.postgres import PostgresRemoteBackend

    config = RemoteStoreConfig.from_env()
    if config is None:
        print("Error: no remote store configured (set REMOTE_STORE_URL or REMOTE_STORE_HOST)")
        return 1

    print(f"Connecting to {config.to_url(include_password=False)}...")
    backend = PostgresRemoteBackend(config)
    try:
        await backend.init_schema()
    finally:
        await backend.close()
    print("[OK] Remote store schema ready")
    return 0


async def cmd_status(args):
    """Run health checks against the configured ledger and store."""
    from givecore.observability import check_health
    from givecore.services import build_services

    services = await build_services()
    try:
        health = await check_health(ledger=services.ledger, store=services.store)
    finally:
        await services.close()

    print("=== GiveCore Status ===\n")
    for name, check in health.checks.items():
        marker = "[OK]" if check.get("status") == "healthy" else "[FAIL]"
        print(f"{name}: {marker}")
        for key, value in check.items():
            if key != "status":
                print(f"  {key}: {value}")
    if not services.ledger.is_ready:
        print(f"\nLedger not ready: {services.ledger.not_ready_reason}")
    print(f"\nOverall: {'healthy' if health.healthy else 'unhealthy'} ({health.duration_ms}ms)")
    return 0 if health.healthy else 1


async def cmd_list_campaigns(args):
    """List campaigns with progress and days left."""
    from givecore.services import build_services

    services = await build_services()
    try:
        result = await services.catalog.campaigns(active_only=args.active_only)
    finally:
        await services.close()
    if not result.ok:
        return _fail(result)

    print(f"Found {len(result.value)} campaigns\n")
    for view in result.value:
        c = view.campaign
        state = "funded" if view.is_fully_funded else "ended" if view.is_expired else "active"
        print(f"  #{c.id} {c.title} [{view.category}] ({state})")
        print(f"      {c.amount_collected} / {c.target} ETH  {view.progress}%  {view.days_left} days left")
    return 0


async def cmd_list_resources(args):
    """List resources with available and claimed quantities."""
    from givecore.services import build_services

    services = await build_services()
    try:
        result = await services.catalog.resources(active_only=args.active_only, category=args.category)
    finally:
        await services.close()
    if not result.ok:
        return _fail(result)

    print(f"Found {len(result.value)} resources\n")
    for view in result.value:
        r = view.resource
        print(f"  #{r.id} {r.image} {r.title} [{r.category}] {'active' if r.is_active else 'inactive'}")
        print(
            f"      {r.quantity_available}/{r.quantity_original} {r.unit} available, "
            f"{view.total_claimed} claimed, posted {view.posted_ago}"
        )
    return 0


async def cmd_notifications(args):
    """Show an identity's notifications, newest first."""
    from givecore.services import build_services

    services = await build_services()
    try:
        entries = await services.journal.list(args.account)
        if args.mark_read:
            marked = await services.journal.mark_all_read(args.account)
            print(f"[OK] Marked {marked} notifications read\n")
    finally:
        await services.close()

    if not entries:
        print("No notifications")
        return 0
    for n in entries:
        flag = " " if n.read else "*"
        print(f"{flag} {n.id:>3} {n.created_at:%Y-%m-%d %H:%M} [{n.type.value}] {n.title}: {n.message}")
    return 0


async def cmd_platform_report(args):
    """Print the platform donation report as JSON."""
    from givecore.services import build_services

    services = await build_services()
    try:
        result = await services.catalog.platform_report()
    finally:
        await services.close()
    if not result.ok:
        return _fail(result)

    report = result.value.model_dump(mode="json")
    if args.output:
        with open(args.output, "w") as f:
            json.dump(report, f, indent=2)
        print(f"[OK] Report written to {args.output}")
    else:
        print(json.dumps(report, indent=2))
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="GiveCore Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser(
        "init-remote-store",
        help="Create the off-chain tables in PostgreSQL"
    )

    subparsers.add_parser(
        "status",
        help="Ledger readiness and store health"
    )

    p_campaigns = subparsers.add_parser(
        "list-campaigns",
        help="List campaigns"
    )
    p_campaigns.add_argument("--active-only", action="store_true", help="Only campaigns still accepting donations")

    p_resources = subparsers.add_parser(
        "list-resources",
        help="List resources"
    )
    p_resources.add_argument("--active-only", action="store_true", help="Only active resources")
    p_resources.add_argument("--category", help="Filter by category")

    p_notifications = subparsers.add_parser(
        "notifications",
        help="Show an identity's notifications"
    )
    p_notifications.add_argument("--account", required=True, help="Wallet identity")
    p_notifications.add_argument("--mark-read", action="store_true", help="Mark all as read after listing")

    p_report = subparsers.add_parser(
        "platform-report",
        help="Aggregate donation report"
    )
    p_report.add_argument("--output", "-o", help="Write JSON to this file instead of stdout")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "init-remote-store": cmd_init_remote_store,
        "status": cmd_status,
        "list-campaigns": cmd_list_campaigns,
        "list-resources": cmd_list_resources,
        "notifications": cmd_notifications,
        "platform-report": cmd_platform_report,
    }

    from givecore.observability import setup_logging
    setup_logging()

    return asyncio.run(commands[args.command](args)) or 0


if __name__ == "__main__":
    sys.exit(main())
