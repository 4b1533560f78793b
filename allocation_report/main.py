from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Tuple

from . import engine
from .engine import AllocationTable, ReportDataError
from .io_utils import ensure_directory, load_config, load_schedule
from .models import OUTPUT_FORMATS, ReportConfig
from .render import write_reports


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Export resource allocation per external project (HTML, XML, CSV)."
    )
    parser.add_argument(
        "--project-dir",
        help="Report directory containing input/ and output/ subfolders",
    )
    parser.add_argument("--resources", help="Path to resources JSON (overrides project-dir default)")
    parser.add_argument("--tasks", help="Path to tasks JSON (overrides project-dir default)")
    parser.add_argument("--bookings", help="Path to bookings CSV (overrides project-dir default)")
    parser.add_argument("--config", help="Path to configuration JSON file (overrides project-dir default)")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated reports (default: <project-dir>/output or ./out)",
    )
    parser.add_argument(
        "--format",
        dest="formats",
        action="append",
        choices=OUTPUT_FORMATS,
        help="Output format to write; repeat for several (default: config.formats)",
    )
    parser.add_argument(
        "--scenario",
        type=int,
        help="Override config.scenario_index",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Compute and print the allocation table without writing files",
    )
    return parser.parse_args(argv)


def _resolve_io_paths(args: argparse.Namespace) -> Tuple[Path, Path, Path, Path, Path]:
    project_dir = Path(args.project_dir).resolve() if args.project_dir else None
    if project_dir and not project_dir.exists():
        raise ValueError(f"project directory not found: {project_dir}")
    input_dir = project_dir / "input" if project_dir else None

    def _pick(path_value: Optional[str], default_name: str) -> Optional[Path]:
        if path_value:
            return Path(path_value)
        if input_dir:
            return input_dir / default_name
        return None

    resources_path = _pick(args.resources, "resources.json")
    tasks_path = _pick(args.tasks, "tasks.json")
    bookings_path = _pick(args.bookings, "bookings.csv")
    config_path = _pick(args.config, "config.json")

    named = (
        ("resources", resources_path),
        ("tasks", tasks_path),
        ("bookings", bookings_path),
        ("config", config_path),
    )
    missing = [name for name, value in named if value is None]
    if missing:
        joined = ", ".join(f"--{name}" for name in missing)
        raise ValueError(f"missing required input paths: {joined} (or provide --project-dir)")

    for label, path in named:
        if not path.exists():
            raise ValueError(f"{label} file not found at {path}")

    if args.outdir:
        outdir = Path(args.outdir)
    elif project_dir:
        outdir = project_dir / "output"
    else:
        outdir = Path("out")

    return resources_path, tasks_path, bookings_path, config_path, outdir


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _print_dry_run_summary(table: AllocationTable, config: ReportConfig) -> None:
    number_format = config.number_format
    print(f"{config.report_name}: {config.start} → {config.end}")
    frame = table.to_frame()
    frame.index = [table.resource_label(resource_id) for resource_id in frame.index]
    frame["Total"] = [table.resource_total(resource_id) for resource_id in table.resource_ids()]
    print(frame.to_string(float_format=number_format.format))
    print(f"\nGrand total: {number_format.format(table.grand_total())}")


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    try:
        resources_path, tasks_path, bookings_path, config_path, outdir = _resolve_io_paths(args)
        cfg = load_config(config_path)
        if args.scenario is not None:
            cfg = replace(cfg, scenario_index=args.scenario)
            cfg.scenario_id()
        _configure_logging(cfg.logging_level)
        schedule = load_schedule(resources_path, tasks_path, bookings_path, cfg)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    try:
        table = engine.build_allocation_table(schedule, cfg)
    except ReportDataError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    if args.dry_run:
        _print_dry_run_summary(table, cfg)
        return

    outdir_path = ensure_directory(outdir)
    for path in write_reports(table, cfg, outdir_path, args.formats):
        print(f"Wrote {path}")


if __name__ == "__main__":
    main()
