"""
Admin command line.

Runs the same gate and content service as the API against the configured
backend (SUPABASE_URL / SUPABASE_ANON_KEY).

Usage:
    portfolio-admin status --email me@example.com
    portfolio-admin claim --email me@example.com
    portfolio-admin bootstrap --email me@example.com --token <token>
    portfolio-admin seed --email me@example.com
    portfolio-admin health
    portfolio-admin hash-token <token>
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys
from typing import List, Optional

from admin_gate import AdminGate, GateState
from config import AppConfig
from content import ContentService
from database import BackendGateway, create_backend
from logging_config import setup_logging
from security import hash_bootstrap_token

logger = logging.getLogger("portfolio.cli")


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = '\033[92m'
    RED = '\033[91m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    BOLD = '\033[1m'
    END = '\033[0m'


def print_success(message: str) -> None:
    print(f"{Colors.GREEN}✓{Colors.END} {message}")


def print_error(message: str) -> None:
    print(f"{Colors.RED}✗{Colors.END} {message}")


def print_warning(message: str) -> None:
    print(f"{Colors.YELLOW}⚠{Colors.END} {message}")


def print_info(message: str) -> None:
    print(f"{Colors.BLUE}ℹ{Colors.END} {message}")


def print_section(title: str) -> None:
    print(f"\n{Colors.BOLD}{title}{Colors.END}")
    print("─" * len(title))


def print_state(gate: AdminGate) -> None:
    if gate.state == GateState.AUTHORIZED:
        print_success(f"{gate.state.value}: {gate.message}")
    elif gate.state in (GateState.ENV_MISSING, GateState.SCHEMA_MISSING, GateState.NOT_AUTHORIZED):
        print_error(f"{gate.state.value}: {gate.message}")
    else:
        print_info(f"{gate.state.value}: {gate.message}")


async def open_gate(config: AppConfig, args: argparse.Namespace, sign_in: bool = True) -> AdminGate:
    gateway = BackendGateway(config, create_backend(config))
    gate = AdminGate(gateway)
    await gate.start()
    email = getattr(args, "email", None)
    if not sign_in or not email or gate.state in (GateState.ENV_MISSING, GateState.SCHEMA_MISSING):
        return gate
    password = args.password or os.getenv("PORTFOLIO_ADMIN_PASSWORD") or getpass.getpass("Password: ")
    result = await gate.sign_in(email, password)
    if not result.success:
        print_error(f"Sign-in failed: {result.message}")
    return gate


async def close_gate(gate: AdminGate) -> None:
    gate.stop()
    if gate.gateway.backend is not None:
        await gate.gateway.backend.aclose()


async def cmd_status(config: AppConfig, args: argparse.Namespace) -> int:
    gate = await open_gate(config, args)
    try:
        print_section("Admin gate")
        print_state(gate)
        return 0 if gate.state not in (GateState.ENV_MISSING, GateState.SCHEMA_MISSING) else 1
    finally:
        await close_gate(gate)


async def cmd_claim(config: AppConfig, args: argparse.Namespace) -> int:
    gate = await open_gate(config, args)
    try:
        if gate.state == GateState.AUTHORIZED:
            print_success("Already the site admin")
            return 0
        if args.token:
            result = await gate.bootstrap(args.token)
        else:
            result = await gate.claim()
        if not result.success:
            print_error(result.message)
            print_state(gate)
            return 1
        print_success(result.message)
        print_state(gate)
        return 0
    finally:
        await close_gate(gate)


async def cmd_seed(config: AppConfig, args: argparse.Namespace) -> int:
    gate = await open_gate(config, args)
    try:
        if gate.state != GateState.AUTHORIZED:
            print_state(gate)
            print_error("Seeding requires the site admin")
            return 1
        result = await ContentService(gate.gateway).seed_demo_content()
        if not result.ok:
            print_error(result.error)
            return 1
        summary = result.data
        print_success("Demo content seeded")
        print_info(f"Settings updated: {summary.settings_updated}")
        print_info(f"Projects inserted: {summary.projects_inserted}")
        print_info(f"Categories inserted: {summary.categories_inserted}")
        print_info(f"Writing items inserted: {summary.items_inserted}")
        return 0
    finally:
        await close_gate(gate)


async def cmd_health(config: AppConfig, args: argparse.Namespace) -> int:
    gate = await open_gate(config, args)
    try:
        report = await ContentService(gate.gateway).admin_health_check()
        print_section("Backend health")
        checks = [("Environment", report.env), ("Schema", report.schema_), ("Auth", report.auth), ("RLS", report.rls)]
        for label, check in checks:
            (print_success if check.ok else print_warning)(f"{label}: {check.message}")
        if report.tables:
            print_section("Tables")
            for table, check in report.tables.items():
                (print_success if check.ok else print_error)(f"{table}: {check.message}")
        return 0 if report.env.ok and report.schema_.ok else 1
    finally:
        await close_gate(gate)


def cmd_hash_token(args: argparse.Namespace) -> int:
    print(hash_bootstrap_token(args.token))
    print_info("Store this value in site_settings.bootstrap_token_hash")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="portfolio-admin", description="Portfolio admin tools")
    sub = parser.add_subparsers(dest="command", required=True)

    def with_credentials(p: argparse.ArgumentParser, required: bool) -> None:
        p.add_argument("--email", required=required, default=os.getenv("PORTFOLIO_ADMIN_EMAIL"))
        p.add_argument("--password", help="Defaults to PORTFOLIO_ADMIN_PASSWORD, else prompts")

    with_credentials(sub.add_parser("status", help="Show the admin gate state"), required=False)
    claim = sub.add_parser("claim", help="Claim admin for the signed-in user")
    with_credentials(claim, required=True)
    claim.add_argument("--token", help="Bootstrap token, when one is configured")
    bootstrap = sub.add_parser("bootstrap", help="Become admin by presenting the bootstrap token")
    with_credentials(bootstrap, required=True)
    bootstrap.add_argument("--token", required=True)
    with_credentials(sub.add_parser("seed", help="Insert demo content (admin only)"), required=True)
    with_credentials(sub.add_parser("health", help="Check env, schema, auth and policies"), required=False)
    hash_token = sub.add_parser("hash-token", help="Hash a bootstrap token for storage")
    hash_token.add_argument("token")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "hash-token":
        return cmd_hash_token(args)

    config = AppConfig.from_env()
    setup_logging(config.log_level if config.log_level != "INFO" else "WARNING", config.log_file)
    commands = {
        "status": cmd_status,
        "claim": cmd_claim,
        "bootstrap": cmd_claim,
        "seed": cmd_seed,
        "health": cmd_health,
    }
    try:
        return asyncio.run(commands[args.command](config, args))
    except KeyboardInterrupt:
        print_warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
