#!/usr/bin/env python3
"""
SPIDAcalc QC command line.

Parses a SPIDAcalc export, runs the per-pole QC rules, compares the PROPOSED
and REMEDY spans, reconciles Gigapower fiber against KMZ features and
optionally writes an Excel report and a corrected JSON export.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from .compare import compare_designs, layer_data, span_changes_frame
from .config import load_settings
from .exceptions import InputFileError, SpidaQCError
from .fiber_compare import (fiber_comparison_frame, kmz_features_to_fiber_data,
                            match_kmz_to_poles, process_fiber_comparison_data)
from .models import PROPOSED, REMEDY, FiberMatchStatus, KmzFiberData, SpanStatus
from .parsers import parse_spida, validate_pole_data
from .qc_checks import run_all_qc_checks
from .report import export_xlsx, kmz_matches_frame, qc_details_frame, qc_results_frame
from .spida_writer import build_corrected_export, write_corrected_json

log = logging.getLogger(__name__)


def load_json(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise InputFileError(f"File not found: {path}")
    except (OSError, UnicodeDecodeError) as e:
        raise InputFileError(f"Could not read {path}: {e}")
    except json.JSONDecodeError as e:
        raise InputFileError(f"{path} is not valid JSON: {e}")


def load_kmz_features(path: Optional[Path]) -> List[KmzFiberData]:
    """KMZ placemarks as GeoJSON (a FeatureCollection or a bare feature list)."""
    if path is None:
        return []
    return kmz_features_to_fiber_data(load_json(path))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spidaqc",
        description="SPIDAcalc QC assistant - design checks, span diff and KMZ fiber reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # QC a SPIDAcalc export
  %(prog)s job.json

  # Reconcile fiber counts against KMZ features exported to GeoJSON
  %(prog)s job.json --kmz fiber.geojson --xlsx qc_report.xlsx

  # Write the corrected export with REMEDY wire end points re-ordered
  %(prog)s job.json --export-dir out --fix-wep-order
        """
    )
    parser.add_argument("input_file", type=Path, help="SPIDAcalc JSON export")
    parser.add_argument("-k", "--kmz", type=Path, help="KMZ fiber features as GeoJSON")
    parser.add_argument("-c", "--config", type=Path, help="QC settings YAML file (default: built-in settings)")
    parser.add_argument("-x", "--xlsx", type=Path, help="Write a multi-sheet Excel report")
    parser.add_argument("--export-dir", type=Path, help="Directory for the corrected JSON export")
    parser.add_argument("--fix-wep-order", action="store_true",
                        help="Re-order REMEDY wire end points to match PROPOSED in the export")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    log.debug("Settings: %s", settings)
    data = load_json(args.input_file)

    parsed = parse_spida(data)
    if not parsed.poles:
        print(f"⚠️ No poles found in {args.input_file}")
        return 1
    parsed.poles = validate_pole_data(parsed.poles)
    print(f"✅ Parsed {len(parsed.poles)} poles ({parsed.shape} layout)")
    for reason, count in parsed.dropped.items():
        print(f"   ⚠️ dropped {count}: {reason}")

    kmz = load_kmz_features(args.kmz)
    if args.kmz:
        print(f"✅ Loaded {len(kmz)} KMZ features")

    # QC rules
    summary = run_all_qc_checks(parsed, kmz, settings)
    print(f"📊 QC: {summary.valid_poles}/{summary.total_poles} poles valid "
          f"({summary.pass_count} pass, {summary.fail_count} fail, {summary.warning_count} warning)")
    for pole_id, ok in summary.pole_results.items():
        if not ok:
            print(f"   ❌ {pole_id}")

    # PROPOSED vs REMEDY spans
    comparison = compare_designs(layer_data(parsed, PROPOSED), layer_data(parsed, REMEDY), settings)
    by_status = {s: sum(r.span_status is s for r in comparison.span_results) for s in SpanStatus}
    print(f"📊 {comparison.comparison_description}: {len(comparison.span_results)} spans")
    for status, count in by_status.items():
        if count:
            print(f"   {status.value}: {count}")

    # KMZ fiber reconciliation
    spans = process_fiber_comparison_data(data, kmz, parsed.poles, settings)
    matches = match_kmz_to_poles(kmz, parsed.poles, settings) if kmz else []
    if kmz:
        mismatched = sum(s.status is FiberMatchStatus.MISMATCH for s in spans)
        print(f"📊 Fiber spans: {len(spans)} ({mismatched} mismatched), "
              f"KMZ pole matches: {len(matches)}")

    if args.xlsx:
        path = export_xlsx(args.xlsx, {
            "QC Summary": qc_results_frame(parsed.poles),
            "QC Details": qc_details_frame(parsed.poles),
            "Span Changes": span_changes_frame(comparison),
            "Fiber Spans": fiber_comparison_frame(spans),
            "KMZ Matches": kmz_matches_frame(matches),
        })
        print(f"✅ Report written to {path}")

    if args.export_dir:
        corrected, order_summary = build_corrected_export(data, fix_wep_order=args.fix_wep_order)
        reordered = sum(c.status == "Reordered" for c in order_summary)
        path = write_corrected_json(corrected, args.export_dir)
        print(f"✅ Corrected JSON written to {path} ({reordered} locations re-ordered)")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    print("🚀 Starting SPIDAcalc QC...")
    try:
        return run(args)
    except SpidaQCError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
