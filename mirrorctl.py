#!/usr/bin/env python3
"""
TreeMirror - Command Line Entry Point
=====================================
Replicate a record tree and its blobs between two backends, then verify
and repair the copy.

Usage Examples:
    # Migrate everything, or a single project subtree
    python mirrorctl.py --config profile.yaml migrate --all
    python mirrorctl.py --config profile.yaml migrate --project p1

    # Verify and repair
    python mirrorctl.py --config profile.yaml verify
    python mirrorctl.py --config profile.yaml verify --project p1 --json

    # Show the resolved configuration (secrets omitted)
    python mirrorctl.py --config profile.yaml show-config
"""

import argparse
import asyncio
import json
import logging
import sys

from rich.console import Console
from rich.table import Table

from treemirror.config import TreeMirrorConfig, load_config
from treemirror.errors import NotFound
from treemirror.replication import MigrationProgress, MigrationResult, MigrationScope
from treemirror.service import create_engines
from treemirror.stores import create_blob_store, create_record_store
from treemirror.utils import format_duration, format_file_size

logger = logging.getLogger("mirrorctl")
console = Console()


class MirrorCLI:
    """Builds the backends from a profile and runs one command against them."""

    def __init__(self, args, config: TreeMirrorConfig):
        self.args = args
        self.config = config
        self.source_records = create_record_store(config.source)
        self.source_blobs = create_blob_store(config.source)
        self.target_records = create_record_store(config.target)
        self.target_blobs = create_blob_store(config.target)
        self.orchestrator, self.repair_engine = create_engines(
            self.source_records, self.source_blobs,
            self.target_records, self.target_blobs,
            layout=config.layout,
            config=config.replication,
            progress_callback=self._log_progress,
        )

    async def run(self) -> int:
        try:
            if self.args.command == 'migrate':
                return await self.migrate()
            if self.args.command == 'verify':
                return await self.verify()
            if self.args.command == 'show-config':
                return self.show_config()
            logger.error(f"Unknown command: {self.args.command}")
            return 1
        finally:
            await self.close()

    async def close(self) -> None:
        for store in (self.source_records, self.source_blobs, self.target_records, self.target_blobs):
            await store.close()

    def _scope(self) -> MigrationScope:
        if getattr(self.args, 'project', None):
            return MigrationScope.project(self.args.project)
        return MigrationScope.full()

    async def migrate(self) -> int:
        try:
            result = await self.orchestrator.migrate(self._scope())
        except NotFound as e:
            self._fail(str(e))
            return 1

        if self.args.json:
            print(json.dumps(result.to_dict(), indent=2))
        else:
            self._print_result(result)
        return 0 if result.success else 1

    async def verify(self) -> int:
        try:
            report = await self.repair_engine.verify_and_repair(self._scope())
        except NotFound as e:
            self._fail(str(e))
            return 1

        if self.args.json:
            print(json.dumps(report.to_dict(), indent=2))
        else:
            report.print_report(console)
        return 0 if report.repairs_failed == 0 else 1

    def show_config(self) -> int:
        print(json.dumps(self.config.to_dict(), indent=2))
        return 0

    def _log_progress(self, progress: MigrationProgress) -> None:
        done = progress.blobs_copied + progress.blobs_skipped + progress.blobs_failed
        logger.info(f"[{progress.job_id}] blobs {done}/{progress.blobs_total}")

    def _fail(self, message: str) -> None:
        if self.args.json:
            print(json.dumps({'success': False, 'message': message}, indent=2))
        else:
            console.print(f"[red]✗ {message}[/red]")

    def _print_result(self, result: MigrationResult) -> None:
        progress = result.progress
        style = "green" if result.success else "red"
        console.print(f"[{style}]{result.status.value.upper()}[/{style}] {progress.scope}: {result.message}")

        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column(style="bold cyan", width=16)
        table.add_column()
        table.add_row("Job", progress.job_id)
        table.add_row("Duration", format_duration(result.duration_seconds))
        table.add_row("Blobs", str(progress.blobs_total))
        table.add_row("  copied", f"{progress.blobs_copied} ({format_file_size(progress.bytes_copied)})")
        table.add_row("  unchanged", str(progress.blobs_skipped))
        table.add_row("  failed", str(progress.blobs_failed))
        table.add_row("Records written", str(progress.records_written))
        console.print(table)

        for key, cause in progress.failed_keys.items():
            console.print(f"  [red]✗[/red] {key}: {cause}")
        for gap in result.gaps:
            console.print(f"  [yellow]![/yellow] {gap.path}: {gap.reason.value} ({gap.detail})")


def create_parser():
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="TreeMirror - replicate, verify and repair a record tree and its blobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python mirrorctl.py --config profile.yaml migrate --all
  python mirrorctl.py --config profile.yaml migrate --project p1
  python mirrorctl.py --config profile.yaml verify --json
        """
    )

    # Global options
    parser.add_argument('--config', help='Profile YAML path (default: $TREEMIRROR_CONFIG)')
    parser.add_argument('--json', action='store_true', help='Output as JSON')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    migrate_parser = subparsers.add_parser('migrate', help='Replicate records and blobs to the target')
    scope_group = migrate_parser.add_mutually_exclusive_group(required=True)
    scope_group.add_argument('--all', action='store_true', help='Migrate the whole tree')
    scope_group.add_argument('--project', metavar='ID', help='Migrate a single project subtree')

    verify_parser = subparsers.add_parser('verify', help='Verify the target and repair divergence')
    verify_parser.add_argument('--project', metavar='ID', help='Limit to a single project subtree')

    subparsers.add_parser('show-config', help='Print the resolved configuration')

    return parser


async def async_main(args, config: TreeMirrorConfig) -> int:
    """Async entry point."""
    cli = MirrorCLI(args, config)
    return await cli.run()


def main(argv=None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]❌ {e}[/red]")
        return 1

    try:
        return asyncio.run(async_main(args, config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        return 130


if __name__ == "__main__":
    sys.exit(main())
