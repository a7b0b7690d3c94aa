"""Command-line entry point: ``rulebook generate`` and ``rulebook init``."""

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from datetime import date

from rulebook_engine.config import configure_logging, get_logger
from rulebook_engine.generation import GenerationOptions
from rulebook_engine.runner import TenantRunReport, init_for_tenants, run_for_tenants
from rulebook_engine.store import PostgrestRulebookStore
from rulebook_engine.versioning import InitOptions


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got {value!r}") from e


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rulebook",
        description="Rulebook task generation engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s init --tenant <uuid>                     # Seed and activate the default rulebook
  %(prog)s generate --from 2026-03-01 --to 2026-03-31
  %(prog)s generate --tenant <uuid> --dry-run       # Evaluate without writing anything
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Generate tasks from the active rulebook")
    generate.add_argument("--tenant", help="Run for one tenant (default: all active tenants)")
    generate.add_argument("--from", dest="from_date", type=_iso_date, help="Start of generation window")
    generate.add_argument("--to", dest="to_date", type=_iso_date, help="End of generation window")
    generate.add_argument(
        "--holiday",
        dest="holidays",
        action="append",
        default=[],
        type=_iso_date,
        help="Extra non-business day (repeatable)",
    )
    generate.add_argument(
        "--client", dest="client_id", help="Restrict generation to a single client"
    )
    generate.add_argument(
        "--dry-run", action="store_true", help="Evaluate without creating records or tasks"
    )
    generate.add_argument(
        "--force-retry-without-linked-task",
        action="store_true",
        help="Retry generation records with missing linked task",
    )

    init = subparsers.add_parser("init", help="Seed the default rulebook version")
    init.add_argument("--tenant", help="Init one tenant (default: all active tenants)")
    init.add_argument("--version-code", help="Version code (default: ua-core-2026)")
    init.add_argument("--version-name", help="Version display name")
    init.add_argument("--version-description", help="Version description")
    init.add_argument("--effective-from", type=_iso_date, help="Version effective date")
    init.add_argument(
        "--replace-rules",
        action="store_true",
        help="Delete existing rules of the version before seeding",
    )
    init.add_argument(
        "--no-activate",
        dest="activate",
        action="store_false",
        help="Do not make this version the active one",
    )
    return parser


async def _run(args: argparse.Namespace) -> TenantRunReport:
    async with PostgrestRulebookStore() as store:
        if args.command == "generate":
            options = GenerationOptions(
                from_date=args.from_date,
                to_date=args.to_date,
                client_id=args.client_id,
                holidays=[day.isoformat() for day in args.holidays] or None,
                dry_run=args.dry_run,
                force_retry_without_linked_task=args.force_retry_without_linked_task,
            )
            return await run_for_tenants(store, args.tenant, options)

        init_options = InitOptions(
            version_code=args.version_code,
            version_name=args.version_name,
            version_description=args.version_description,
            effective_from=args.effective_from,
            activate_version=args.activate,
            replace_rules=args.replace_rules,
        )
        return await init_for_tenants(store, args.tenant, init_options)


async def main(argv: Sequence[str] | None = None) -> int:
    """Parse arguments, run the command and print the JSON report to stdout.

    Returns:
        0 when every tenant succeeded, 1 otherwise.
    """
    configure_logging()
    logger = get_logger(__name__, component="cli")
    args = build_parser().parse_args(argv)
    logger.info("rulebook_command_started", command=args.command, tenant=args.tenant)

    try:
        report = await _run(args)
    except Exception as e:
        logger.exception("rulebook_command_failed", command=args.command, error=str(e))
        return 1

    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False, default=str))
    return 0 if all(result.status == "ok" for result in report.results) else 1


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
