"""
CLI main entry point.
"""

import argparse
import csv
import json
import logging
import sys
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..matching import DuplicateDetector
from ..review import BatchGrid, BatchImporter, IssueFilter
from ..review.export import RENDERERS, render
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="tidybatch",
        description="Clean, review and export payroll batches",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    # clean command
    clean_parser = subparsers.add_parser("clean", help="Run the field rules over a CSV file")
    clean_parser.add_argument("file", type=Path, help="CSV file to clean")
    clean_parser.add_argument(
        "--map",
        dest="mapping",
        action="append",
        default=[],
        metavar="SRC=DST",
        help="Map a source column to a field key (repeatable)",
    )
    clean_parser.add_argument(
        "--json",
        action="store_true",
        help="Print rows and statuses as JSON",
    )
    clean_parser.add_argument(
        "--save",
        action="store_true",
        help="Save the batch to the state store",
    )

    # export command
    export_parser = subparsers.add_parser("export", help="Clean a CSV file and export it")
    export_parser.add_argument("file", type=Path, help="CSV file to export")
    export_parser.add_argument(
        "--format",
        dest="export_format",
        choices=sorted(RENDERERS),
        default="csv",
        help="Export layout (default: csv)",
    )
    export_parser.add_argument(
        "--map",
        dest="mapping",
        action="append",
        default=[],
        metavar="SRC=DST",
        help="Map a source column to a field key (repeatable)",
    )
    export_parser.add_argument(
        "--apply-fixes",
        action="store_true",
        help="Accept every suggested fix before exporting",
    )
    export_parser.add_argument(
        "--payable-only",
        action="store_true",
        help="Leave out rows with skipped cells",
    )
    export_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        help="Write to this file instead of stdout",
    )

    # status command
    subparsers.add_parser("status", help="Show state store statistics")

    return parser


def parse_mapping(pairs: list[str]) -> dict[str, str] | None:
    """Parse repeated SRC=DST options into a column mapping."""
    if not pairs:
        return None
    mapping = {}
    for pair in pairs:
        source, sep, target = pair.partition("=")
        if not sep or not source.strip():
            raise ValueError(f"Invalid mapping '{pair}' (expected SRC=DST)")
        mapping[source.strip()] = target.strip()
    return mapping


def read_csv_rows(path: Path) -> list[dict[str, str]]:
    with open(path, newline="", encoding="utf-8-sig") as f:
        return [dict(row) for row in csv.DictReader(f)]


def create_detector(config: Config, store: StateStore | None = None) -> DuplicateDetector | None:
    """Duplicate detector seeded with the stored transactions (None if disabled)."""
    if not config.duplicates.enabled:
        return None
    detector = DuplicateDetector(partial_similarity=config.duplicates.partial_similarity)
    if store is not None:
        detector.seed(store.get_transactions())
    return detector


def build_grid(
    config: Config,
    path: Path,
    mapping: dict[str, str] | None,
    detector: DuplicateDetector | None = None,
) -> BatchGrid:
    """Import a CSV file into a grid, checking rows against the detector's history."""
    importer = BatchImporter(
        config.build_rule_set(),
        detector=detector,
        suggestion_confidence=config.rules.suggestion_confidence,
        check_column=config.duplicates.check_column,
    )
    return importer.build_grid(
        read_csv_rows(path),
        mapping=mapping,
        name=path.stem,
        register_history=detector is not None,
    )


def save_transactions(store: StateStore, grid: BatchGrid, detector: DuplicateDetector) -> int:
    """Store the batch's checked rows as transactions for later duplicate checks."""
    row_ids = {row.id for row in grid.rows}
    return sum(
        store.add_transaction(record) for record in detector.records if record.id in row_ids
    )


def cmd_init_config(config_path: Path, force: bool) -> int:
    """Write the default config file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_clean(
    config: Config,
    path: Path,
    mapping: dict[str, str] | None,
    as_json: bool = False,
    save: bool = False,
) -> int:
    """Clean a CSV file and report the cells needing review."""
    if not path.exists():
        print(f"❌ File not found: {path}")
        return 1

    store = StateStore(config.state_db_path)
    detector = create_detector(config, store)
    grid = build_grid(config, path, mapping, detector)

    if save:
        store.save_batch(grid)
        added = save_transactions(store, grid, detector) if detector is not None else 0
        logger.info("Saved batch %s (%d rows, %d new transactions)", grid.name, len(grid), added)

    summary = grid.summary()
    if as_json:
        print(
            json.dumps(
                {
                    "batch": grid.name,
                    "summary": summary.to_dict(),
                    "rows": [row.to_dict() for row in grid.rows],
                },
                indent=2,
            )
        )
        return 0

    print(f"\n🧹 {grid.name}: {summary.total_rows} rows, {summary.needs_review} cell(s) need review")
    print("=" * 60)
    for ref, status in grid.issues(IssueFilter.ALL):
        row = grid.get_row(ref.row_id)
        value = grid.get_value(ref.row_id, ref.column_key)
        print(f"  [{row.row_index}] {ref.column_key}: {status.state.value}")
        print(f"      value:   {value!r}")
        suggestion = getattr(status, "suggestion", None)
        if suggestion is not None:
            print(f"      suggest: {suggestion!r}")
        if status.message:
            print(f"      {status.message}")
    print(f"\n✓ Completion: {summary.completion:.0%}")
    return 0


def cmd_export(
    config: Config,
    path: Path,
    export_format: str,
    mapping: dict[str, str] | None,
    apply_fixes: bool = False,
    payable_only: bool = False,
    output: Path | None = None,
) -> int:
    """Clean a CSV file and write it in an export layout."""
    if not path.exists():
        print(f"❌ File not found: {path}")
        return 1

    grid = build_grid(config, path, mapping, create_detector(config))
    if apply_fixes:
        applied = sum(len(grid.apply_column_fix(key)) for key in grid.columns)
        logger.info("Applied %d suggested fixes", applied)

    content = render(grid, export_format, payable_only=payable_only)
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(content, encoding="utf-8")
        print(f"✓ Exported {len(grid)} rows to {output} ({export_format})")
    else:
        print(content)
    return 0


def cmd_status(config: Config) -> int:
    """Show state store statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Batch Status")
    print("=" * 40)
    print(f"  Saved batches:          {stats['batches']}")
    print(f"  Rows:                   {stats['rows']}")
    print(f"  History entries:        {stats['history_entries']}")
    print(f"  Pending requests:       {stats['pending_requests']}")
    print(f"  Known transactions:     {stats['transactions']}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
        errors = config.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))
    except (OSError, ValueError, ConfigValidationError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    try:
        mapping = parse_mapping(getattr(parsed, "mapping", []))
    except ValueError as e:
        print(f"❌ {e}")
        return 1

    # Route to command
    if parsed.command == "clean":
        return cmd_clean(config, parsed.file, mapping, as_json=parsed.json, save=parsed.save)
    elif parsed.command == "export":
        return cmd_export(
            config,
            parsed.file,
            parsed.export_format,
            mapping,
            apply_fixes=parsed.apply_fixes,
            payable_only=parsed.payable_only,
            output=parsed.output,
        )
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
