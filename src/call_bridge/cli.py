#!/usr/bin/env python3
"""Operator CLI for Call Bridge.

Usage:
    call-bridge serve                  # Run the webhook server
    call-bridge init-db                # Create database tables
    call-bridge resolve +18005551234   # Show which tenant a number reaches
    call-bridge verify-chain           # Check the compliance checksum chain
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from call_bridge.config import get_settings
from call_bridge.core.logging import setup_logging


def serve(args: argparse.Namespace) -> int:
    """Run the API server with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "call_bridge.main:app",
        host=args.host or settings.api_host,
        port=args.port or settings.api_port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def init_database(args: argparse.Namespace) -> int:
    """Create all tables on the configured database."""
    from call_bridge.db import close_db, init_db

    async def _run() -> None:
        try:
            await init_db()
        finally:
            await close_db()

    asyncio.run(_run())
    print(f"Database initialized: {get_settings().database.url}")
    return 0


def resolve_number(args: argparse.Namespace) -> int:
    """Print the tenant resolution for a dialed number."""
    from call_bridge.db import close_db, get_db_context
    from call_bridge.services.tenant_resolver import TenantResolver

    async def _run() -> list[dict]:
        try:
            async with get_db_context() as session:
                resolver = TenantResolver.from_session(session)
                if args.all:
                    hits = await resolver.find_all_bindings(args.number)
                else:
                    hit = await resolver.resolve(args.number)
                    hits = [hit] if hit else []
        finally:
            await close_db()
        return [
            {
                "method": hit.method.value,
                "business_id": str(hit.business_id),
                "business_name": hit.business_name,
                "agent_id": hit.agent_id,
                "escalation_phone": hit.escalation_phone,
                "dialed_number": hit.dialed_number,
            }
            for hit in hits
        ]

    results = asyncio.run(_run())
    if not results:
        print(f"No tenant for {args.number}")
        return 1

    print(json.dumps(results if args.all else results[0], indent=2))
    return 0


def verify_chain(args: argparse.Namespace) -> int:
    """Verify the compliance event checksum chain."""
    from call_bridge.db import close_db, get_db_context
    from call_bridge.db.repositories.compliance import ComplianceEventRepository

    async def _run() -> list[str]:
        try:
            async with get_db_context() as session:
                return await ComplianceEventRepository(session).verify_chain(limit=args.limit)
        finally:
            await close_db()

    broken = asyncio.run(_run())
    if broken:
        print(f"Checksum chain broken at {len(broken)} entries:")
        for entry_id in broken:
            print(f"  {entry_id}")
        return 1

    print("Compliance chain intact")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Call Bridge CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the webhook server")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # init-db
    subparsers.add_parser("init-db", help="Create database tables")

    # resolve
    resolve_parser = subparsers.add_parser("resolve", help="Resolve a dialed number to a tenant")
    resolve_parser.add_argument("number", type=str, help="Dialed number in any format")
    resolve_parser.add_argument(
        "--all", action="store_true",
        help="Evaluate every lookup path instead of stopping at the first hit"
    )

    # verify-chain
    chain_parser = subparsers.add_parser("verify-chain", help="Verify compliance checksums")
    chain_parser.add_argument(
        "--limit", type=int, default=1000, help="Number of entries to check"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    settings = get_settings()
    setup_logging(level=settings.log_level, json_output=settings.log_json)

    commands = {
        "serve": serve,
        "init-db": init_database,
        "resolve": resolve_number,
        "verify-chain": verify_chain,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
