"""Operator CLI for inspecting and driving the local session."""

from __future__ import annotations

import argparse
import asyncio
import getpass
import json
import sys
from typing import TYPE_CHECKING, Any

import structlog

from rentline.app import build_session_manager
from rentline.config.logging import setup_logging
from rentline.config.settings import get_settings
from rentline.exceptions import AuthFailure, TenantAccessError
from rentline.storage.database import init_db

if TYPE_CHECKING:
    from rentline.identity.context import SessionContext

logger = structlog.get_logger(__name__)


def describe(context: SessionContext) -> dict[str, Any]:
    """JSON-friendly summary of a session context."""
    user_type = context.entitlement.user_type
    return {
        "state": context.state.value,
        "identity": context.identity.email if context.identity else None,
        "effective_identity": (
            context.effective_identity.email if context.effective_identity else None
        ),
        "impersonating": context.is_impersonating,
        "tenant": context.current_tenant.name if context.current_tenant else None,
        "tenants": [{"id": t.id, "name": t.name} for t in context.tenants],
        "role": context.role.value if context.role else None,
        "capabilities": sorted(c.value for c in context.capabilities.capabilities),
        "tier": context.entitlement.tier_slug,
        "client_type": context.client_type.value,
        "user_type": user_type.value if user_type else None,
    }


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rentline")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create database tables")
    sub.add_parser("whoami", help="show the current session")
    login = sub.add_parser("login", help="sign in with email and password")
    login.add_argument("email")
    sub.add_parser("logout", help="sign out and clear local session state")
    switch = sub.add_parser("switch", help="make a tenant current")
    switch.add_argument("tenant_id")
    return parser


async def _run(args: argparse.Namespace) -> int:
    if args.command == "init-db":
        await init_db()
        logger.info("database_initialized")
        return 0

    manager = build_session_manager()
    try:
        context = await manager.initialize()
        if args.command == "login":
            context = await manager.login(args.email, getpass.getpass("Password: "))
        elif args.command == "logout":
            context = await manager.logout()
        elif args.command == "switch":
            context = await manager.switch_tenant(args.tenant_id)
    except (AuthFailure, TenantAccessError) as exc:
        logger.warning("command_failed", command=args.command, error=str(exc))
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        await manager.aclose()
    print(json.dumps(describe(context), indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)
    args = _parser().parse_args(argv)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
