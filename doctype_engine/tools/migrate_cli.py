"""
Migration CLI tool for the DocType engine.

This tool drives schema migrations from the command line:
- migrate: Apply pending schema changes
- dry-run: Print the SQL a migration would run
- rollback: Undo an applied migration
- status: Show which DocType tables are out of sync
- history: List recorded migrations
- validate: Check a DocType record file

Usage:
    doctype-migrate --db site.db --doctypes ./doctypes migrate
    doctype-migrate --db site.db dry-run User
    doctype-migrate --db site.db rollback 3f2c...
    doctype-migrate validate doctypes/user.json

Invariants:
    - A failed migration or rollback causes a non-zero exit code
    - JSON output is stable for CI parsing

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep text and JSON output in step
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
import time
from typing import Any, Dict, List, Optional

from ..config import EngineConfig
from ..errors import DocTypeEngineError, MigrationFailedError, NotFoundError
from ..main import Engine, setup_logging
from ..migration import MigrationOptions, MigrationResult
from ..schema.loader import load_doctype_file
from ..schema.validator import ValidationResult, validate_doctype

logger = logging.getLogger(__name__)


class MigrateCLI:
    """CLI commands over a started Engine.

    Example:
        >>> async with Engine(config) as engine:
        ...     cli = MigrateCLI(engine)
        ...     ok, results = await cli.migrate(["User"], dry_run=True)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    async def migrate(
        self, names: Optional[List[str]] = None, dry_run: bool = False
    ) -> tuple[bool, Dict[str, MigrationResult]]:
        """Migrate DocTypes (all registered ones when names is empty).

        Returns:
            Tuple of (all_succeeded, results by DocType)
        """
        options = self.engine.workflow.options(dry_run=dry_run)
        results = await self.engine.migrate_all(names or None, options)
        return all(r.success for r in results.values()), results

    async def rollback(self, migration_id: str) -> MigrationResult:
        return await self.engine.workflow.rollback_migration(migration_id)

    async def status(self, doctype: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.engine.workflow.migration_status(doctype)

    async def history(
        self, doctype: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        migrations = await self.engine.history.get_history(doctype, limit)
        return [m.to_dict() for m in migrations]

    @staticmethod
    def validate(path: str) -> ValidationResult:
        """Validate one DocType record file.

        Raises:
            ValidationFailedError: If the file cannot be read as a record
        """
        return validate_doctype(load_doctype_file(path))


def _print_result(result: MigrationResult, verbose_sql: bool) -> None:
    status = "OK" if result.success else "FAILED"
    if result.migration is not None and result.success:
        detail = f"migration {result.migration.id} v{result.migration.version}"
    else:
        detail = result.state.value
    print(f"[{status}] {result.doctype}: {len(result.sql)} statement(s) ({detail})")
    if verbose_sql:
        for statement in result.sql:
            print(f"    {statement};")
    for warning in result.warnings:
        print(f"  warning: {warning}")
    for error in result.errors:
        print(f"  error: {error}")


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--db", help="Database path (default: DOCTYPE_DB_PATH)")
    common.add_argument("--doctypes", help="DocType directory (default: DOCTYPE_DIR)")
    common.add_argument(
        "--allow-destructive",
        action="store_true",
        default=None,
        help="Apply column/index drops and lossy type changes",
    )
    common.add_argument(
        "--no-validate-data",
        action="store_true",
        help="Skip row-level checks before risky changes",
    )
    common.add_argument(
        "--format", choices=["text", "json"], default="text", help="Output format"
    )

    parser = argparse.ArgumentParser(
        prog="doctype-migrate", description="DocType schema migration tool"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser(
        "migrate", parents=[common], help="Apply pending schema changes"
    )
    migrate_parser.add_argument("doctypes_to_migrate", nargs="*", metavar="DOCTYPE")

    dry_run_parser = subparsers.add_parser(
        "dry-run", parents=[common], help="Print the SQL a migration would run"
    )
    dry_run_parser.add_argument("doctypes_to_migrate", nargs="*", metavar="DOCTYPE")

    rollback_parser = subparsers.add_parser(
        "rollback", parents=[common], help="Undo an applied migration"
    )
    rollback_parser.add_argument("migration_id")

    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Show DocType tables out of sync"
    )
    status_parser.add_argument("doctype", nargs="?")

    history_parser = subparsers.add_parser(
        "history", parents=[common], help="List recorded migrations"
    )
    history_parser.add_argument("doctype", nargs="?")
    history_parser.add_argument("--limit", type=int, help="Maximum records to show")

    validate_parser = subparsers.add_parser(
        "validate", parents=[common], help="Validate a DocType record file"
    )
    validate_parser.add_argument("file")

    return parser


def _config_from_args(args: argparse.Namespace) -> EngineConfig:
    config = EngineConfig.from_env()
    database = config.database
    if args.db:
        database = dataclasses.replace(database, path=args.db)
    meta = config.meta
    if args.doctypes:
        meta = dataclasses.replace(meta, doctype_dir=args.doctypes)
    migration = config.migration
    if args.allow_destructive:
        migration = dataclasses.replace(migration, allow_destructive=True)
    if args.no_validate_data:
        migration = dataclasses.replace(migration, validate_data=False)
    return dataclasses.replace(
        config, database=database, meta=meta, migration=migration
    )


def _validate_command(args: argparse.Namespace) -> int:
    try:
        result = MigrateCLI.validate(args.file)
    except DocTypeEngineError as e:
        print(f"Cannot validate {args.file}: {e.message}")
        return 1

    if args.format == "json":
        _print_json(
            {
                "file": args.file,
                "valid": result.valid,
                "findings": [f.to_dict() for f in result.findings],
            }
        )
    elif result.valid and not result.findings:
        print(f"{args.file} is valid")
    else:
        label = "valid" if result.valid else "invalid"
        print(f"{args.file} is {label} ({len(result.errors)} error(s), {len(result.warnings)} warning(s)):")
        for finding in result.findings:
            print(f"  - {finding}")
    return 0 if result.valid else 1


async def _run(args: argparse.Namespace, engine: Engine) -> int:
    async with engine:
        cli = MigrateCLI(engine)

        if args.command in ("migrate", "dry-run"):
            ok, results = await cli.migrate(
                args.doctypes_to_migrate, dry_run=args.command == "dry-run"
            )
            if args.format == "json":
                _print_json({"success": ok, "results": [r.to_dict() for r in results.values()]})
            else:
                if not results:
                    print("No DocTypes registered")
                for result in results.values():
                    _print_result(result, verbose_sql=args.command == "dry-run")
            return 0 if ok else 1

        if args.command == "rollback":
            try:
                result = await cli.rollback(args.migration_id)
            except (NotFoundError, MigrationFailedError) as e:
                print(f"Rollback refused: {e.message}")
                return 1
            if args.format == "json":
                _print_json(result.to_dict())
            else:
                _print_result(result, verbose_sql=True)
            return 0 if result.success else 1

        if args.command == "status":
            try:
                statuses = await cli.status(args.doctype)
            except NotFoundError as e:
                print(e.message)
                return 1
            if args.format == "json":
                _print_json(statuses)
            else:
                for status in statuses:
                    if status["in_sync"]:
                        state = "in sync"
                    else:
                        state = f"pending ({len(status['pending_sql'])} statement(s))"
                        if status["destructive"]:
                            state += " [DESTRUCTIVE]"
                    print(f"{status['doctype']:<30} {status['table']:<34} {state}")
            return 0

        if args.command == "history":
            records = await cli.history(args.doctype, args.limit)
            if args.format == "json":
                _print_json(records)
            elif not records:
                print("No migrations recorded")
            else:
                for record in records:
                    when = time.strftime(
                        "%Y-%m-%d %H:%M:%S", time.localtime(record["timestamp"] / 1000)
                    )
                    print(
                        f"{record['id']}  {record['doctype']} v{record['version']}  "
                        f"{record['status']:<11} {when}  by {record['applied_by']}"
                    )
            return 0

    raise ValueError(f"Unknown command {args.command}")


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for the migration tool."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command == "validate":
        sys.exit(_validate_command(args))

    try:
        config = _config_from_args(args)
        engine = Engine(config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config)
    try:
        code = asyncio.run(_run(args, engine))
    except DocTypeEngineError as e:
        logger.error(f"{e.code}: {e.message}")
        print(f"Error: {e.message}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
