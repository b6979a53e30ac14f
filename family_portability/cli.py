#!/usr/bin/env python3
"""
Family Portability CLI - operator interface to the portability engine.

Every command prints a JSON document on stdout; logs go to stderr.

Usage:
    family-portability setup-schema                    Create missing tables
    family-portability export <family_id> [-o FILE]    Export a family snapshot
    family-portability import <file> [--into ID]       Import a snapshot archive
    family-portability erase <family_id> --yes         Permanently erase a family
    family-portability verify <family_id>              Check referential integrity
    family-portability summary <family_id>             Count a family's rows
"""

import argparse
import asyncio
import json
import sys
from typing import Any

import structlog

from family_portability.config.settings import Settings, get_settings
from family_portability.observability.logging import configure_logging
from family_portability.portability import (
    DataSummarizer,
    FamilyEraser,
    FamilyExporter,
    FamilyImporter,
    IntegrityVerifier,
    PortabilityError,
    read_snapshot,
    write_snapshot,
)
from family_portability.store.client import PortabilityStore, StoreError

logger = structlog.get_logger(__name__)


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


async def cmd_setup_schema(args, store: PortabilityStore, settings: Settings) -> int:
    """Create the family data tables."""
    tables = await store.setup_schema()
    _emit({"tables": tables})
    return 0


async def cmd_export(args, store: PortabilityStore, settings: Settings) -> int:
    """Export a family to stdout or to an archive file."""
    snapshot = await FamilyExporter(store=store).export(args.family_id)
    if args.output:
        compress = True if args.compress or settings.portability.compress_archives else None
        info = write_snapshot(snapshot, args.output, compress=compress)
        _emit({"archive": info.to_dict(), "counts": snapshot.counts()})
    else:
        _emit(snapshot.to_dict())
    return 0


async def cmd_import(args, store: PortabilityStore, settings: Settings) -> int:
    """Import a snapshot archive."""
    portability = settings.portability
    if args.external_references:
        portability = portability.model_copy(update={"external_references": args.external_references})

    snapshot = read_snapshot(args.path, expected_checksum=args.checksum)
    importer = FamilyImporter(store=store, settings=portability)
    summary = await importer.import_snapshot(snapshot, target_family_id=args.into)
    _emit(summary.to_dict())
    return 0


async def cmd_erase(args, store: PortabilityStore, settings: Settings) -> int:
    """Permanently erase a family."""
    if not args.yes:
        print(
            json.dumps({"error": "Refusing to erase without --yes"}),
            file=sys.stderr,
        )
        return 2
    summary = await FamilyEraser(store=store).erase(args.family_id)
    _emit(summary.to_dict())
    return 0


async def cmd_verify(args, store: PortabilityStore, settings: Settings) -> int:
    """Verify a family's referential integrity."""
    report = await IntegrityVerifier(store=store).verify(args.family_id)
    _emit(report.to_dict())
    return 0 if report.valid else 1


async def cmd_summary(args, store: PortabilityStore, settings: Settings) -> int:
    """Count a family's rows."""
    summary = await DataSummarizer(store=store).summarize(args.family_id)
    _emit({"family_id": args.family_id, **summary.to_dict()})
    return 0


COMMANDS = {
    "setup-schema": cmd_setup_schema,
    "export": cmd_export,
    "import": cmd_import,
    "erase": cmd_erase,
    "verify": cmd_verify,
    "summary": cmd_summary,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="family-portability",
        description="Export, import, erase and verify family data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy async database URL (overrides DATABASE_URL)",
    )
    subparsers = parser.add_subparsers(dest="command", title="commands", required=True)

    subparsers.add_parser("setup-schema", help="Create missing tables")

    export = subparsers.add_parser("export", help="Export a family snapshot")
    export.add_argument("family_id")
    export.add_argument("-o", "--output", help="Write the snapshot to this archive file")
    export.add_argument("--compress", action="store_true", help="Gzip the archive")

    import_ = subparsers.add_parser("import", help="Import a snapshot archive")
    import_.add_argument("path")
    import_.add_argument("--into", metavar="FAMILY_ID", help="Merge into an existing family")
    import_.add_argument("--checksum", help="Expected SHA256 of the archive")
    import_.add_argument(
        "--external-references",
        choices=["allow", "nullify", "reject"],
        help="Policy for references outside the snapshot",
    )

    erase = subparsers.add_parser("erase", help="Permanently erase a family")
    erase.add_argument("family_id")
    erase.add_argument("--yes", action="store_true", help="Confirm the erasure")

    verify = subparsers.add_parser("verify", help="Check referential integrity")
    verify.add_argument("family_id")

    summary = subparsers.add_parser("summary", help="Count a family's rows")
    summary.add_argument("family_id")

    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    database = settings.database
    if args.database_url:
        database = database.model_copy(update={"url": args.database_url})

    store = PortabilityStore(settings=database)
    try:
        return await COMMANDS[args.command](args, store, settings)
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, settings.observability.log_format)

    try:
        return asyncio.run(_run(args, settings))
    except (PortabilityError, StoreError) as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
