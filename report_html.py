#!/usr/bin/env python3
import argparse
import os
import sys
from typing import Any, Dict, List, Optional

from dominate import document, tags
from dominate.util import raw

from moveinv import logging as slog
from moveinv.reporting.reporting import (
    count_rows,
    iter_problems,
    load_summary,
    mismatch_rows,
    problem_row,
    run_state,
    summary_rows,
)
from moveinv.reporting.table import render_table_block, state_badge

# ----------------------------
# Texts & small helpers
# ----------------------------
RESULT_TEXT = {
    "MATCH": lambda x: "All processed packages produced identical local and RPC interfaces.",
    "WARN": lambda x: f"{x} package(s) need checking; the share of problems is below the threshold.",
    "SUSPICIOUS": lambda x: (
        f"{x} package(s) failed or disagree with the fullnode. "
        "The local extractor may be misreading part of the corpus."
    ),
}

STYLE = """
body { font-family: sans-serif; margin: 2em; color: #222; }
h1 { margin-bottom: 0.2em; }
.table-container { margin: 0.8em 0 1.6em 0; overflow-x: auto; }
.report-table { border-collapse: collapse; min-width: 40%; }
.report-table th, .report-table td { border: 1px solid #ccc; padding: 4px 8px; text-align: left; vertical-align: top; }
.report-table th { background: #f0f0f0; }
.badge { padding: 2px 8px; border-radius: 8px; font-weight: bold; }
.badge-ok { background: #c8e6c9; }
.badge-neutral { background: #fff3c4; }
.badge-bad { background: #ffcdd2; }
details { margin: 0.4em 0; }
summary { cursor: pointer; font-family: monospace; }
.note { color: #666; }
"""

PROBLEM_HEADERS = ["Package", "Stage", "Modules with diffs", "Detail"]
MISMATCH_HEADERS = ["Category", "Kind", "Where", "Local", "RPC"]


def render_intro(summary: Dict[str, Any], *, state: str, run_dir: str) -> None:
    tags.h1("Move interface verification")
    with tags.p():
        tags.span("Result: ")
        state_badge(state)
    tags.p(RESULT_TEXT[state](summary.get("problems") or 0))
    tags.p(f"Run directory: {run_dir}", cls="note")
    if summary.get("interrupted"):
        tags.p("The run was interrupted; figures cover the packages processed before the stop.", cls="note")
    if not summary.get("rpc_enabled", True):
        tags.p("RPC comparison was disabled for this run.", cls="note")


def render_counts(title: str, counts: Optional[Dict[str, int]], key_label: str) -> None:
    tags.h2(title)
    rows = count_rows(counts)
    if not rows:
        tags.p("None.", cls="note")
        return
    render_table_block([key_label, "Count"], rows)


def render_problems(records: List[Dict[str, Any]], *, limit: Optional[int]) -> None:
    tags.h2("Problem packages")
    if not records:
        tags.p("No problems recorded.", cls="note")
        return
    if limit is not None and len(records) >= limit:
        tags.p(f"Showing the first {limit} problem packages.", cls="note")
    render_table_block(PROBLEM_HEADERS, [problem_row(r) for r in records])

    detailed = [r for r in records if r.get("mismatches")]
    if not detailed:
        return
    tags.h2("Mismatch details")
    for rec in detailed:
        with tags.details():
            tags.summary(f"{rec.get('package_id')} ({rec.get('mismatch_count')} mismatches)")
            render_table_block(MISMATCH_HEADERS, mismatch_rows(rec))


def build_report(run_dir: str, *, problems_limit: Optional[int] = 500, threshold_ratio: float = 0.05) -> document:
    summary = load_summary(run_dir)
    records = list(iter_problems(run_dir, limit=problems_limit))
    state = run_state(summary, threshold_ratio)

    doc = document(title="Move interface verification")
    with doc.head:
        tags.style(raw(STYLE))

    with doc:
        render_intro(summary, state=state, run_dir=run_dir)
        tags.h2("Summary")
        render_table_block(["Metric", "Value"], summary_rows(summary))
        render_counts("Errors by stage", summary.get("errors_by_stage"), "Stage")
        render_counts("Mismatches by category", summary.get("mismatch_by_category"), "Category")
        render_problems(records, limit=problems_limit)
    return doc


def _ratio(value: str) -> float:
    try:
        ratio = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")
    if not 0 <= ratio <= 1:
        raise argparse.ArgumentTypeError(f"must be within [0, 1], got {value}")
    return ratio


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render an HTML page for a corpus verification run.")
    parser.add_argument("-r", "--run-dir",
                        help="Directory holding summary.json and problems.jsonl",
                        action="store", metavar="dir", required=True)
    parser.add_argument("-o", "--output-file",
                        help="Output HTML path (default: <run-dir>/report.html)",
                        action="store", metavar="outfile")
    parser.add_argument("--problems-limit", type=int, default=500,
                        help="Maximum number of problem packages rendered (default: 500)")
    parser.add_argument("--threshold-ratio", type=_ratio, default=0.05,
                        help="Problem share at which the run is flagged SUSPICIOUS (default: 0.05)")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    slog.setup_logging(1)
    doc = build_report(args.run_dir, problems_limit=args.problems_limit, threshold_ratio=args.threshold_ratio)

    out_path = args.output_file or os.path.join(args.run_dir, "report.html")
    parent = os.path.dirname(out_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(out_path, "w", encoding="utf-8") as f:
        f.write(str(doc))
    slog.log_ok(f"HTML report written to {out_path}")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except (OSError, ValueError) as e:
        slog.log_err(f"Error: {e}")
        sys.exit(1)
