# moveinv/reporting/reporting.py
from __future__ import annotations
import json
import os
from typing import Any, Dict, Iterator, List, Optional

from moveinv.aggregate import PROBLEMS_FILE, SUMMARY_FILE


# --------------------------- run artifacts ---------------------------

def load_summary(out_dir: str) -> Dict[str, Any]:
    with open(os.path.join(out_dir, SUMMARY_FILE), "r", encoding="utf-8") as f:
        summary = json.load(f)
    if not isinstance(summary, dict):
        raise ValueError(f"{SUMMARY_FILE} is not a JSON object")
    return summary


def iter_problems(out_dir: str, limit: Optional[int] = None) -> Iterator[Dict[str, Any]]:
    """Problem records in file order; a truncated last line (interrupted run) is ignored."""
    path = os.path.join(out_dir, PROBLEMS_FILE)
    if not os.path.isfile(path):
        return
    n = 0
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if limit is not None and n >= limit:
                return
            line = line.strip()
            if not line:
                continue
            try:
                rec = json.loads(line)
            except ValueError:
                continue
            n += 1
            yield rec


def run_state(summary: Dict[str, Any], threshold_ratio: float = 0.05) -> str:
    """MATCH without problems, SUSPICIOUS once the problem share reaches ``threshold_ratio``, WARN below it."""
    if not 0 <= threshold_ratio <= 1:
        raise ValueError(f"threshold ratio must be within [0, 1], got {threshold_ratio}")
    changed = int(summary.get("problems") or 0)
    compared = int(summary.get("packages_total") or 0)
    if compared == 0 or changed == 0:
        return "MATCH"
    return "SUSPICIOUS" if changed / compared >= threshold_ratio else "WARN"


def summary_rows(summary: Dict[str, Any]) -> List[List[Any]]:
    labels = [
        ("packages_input", "Package ids read"),
        ("sample_size", "Sample size"),
        ("packages_total", "Packages processed"),
        ("local_ok", "Local extraction OK"),
        ("local_failed", "Local extraction failed"),
        ("rpc_ok", "RPC OK"),
        ("rpc_failed", "RPC failed"),
        ("interfaces_match", "Interfaces matching"),
        ("interfaces_mismatch", "Interfaces mismatching"),
        ("mismatch_total", "Mismatches (all packages)"),
        ("problems", "Problem packages"),
    ]
    rows: List[List[Any]] = []
    for key, label in labels:
        v = summary.get(key)
        rows.append([label, "n/a" if v is None else v])
    return rows


def count_rows(counts: Optional[Dict[str, int]]) -> List[List[Any]]:
    """Mapping -> rows sorted by count (desc), then name."""
    items = sorted((counts or {}).items(), key=lambda kv: (-int(kv[1]), kv[0]))
    return [[k, v] for k, v in items]


def problem_row(rec: Dict[str, Any]) -> List[Any]:
    if rec.get("error"):
        detail = rec["error"]
    else:
        detail = ", ".join(f"{k}: {v}" for k, v in (rec.get("diff_summary") or {}).items())
    modules = rec.get("modules") or {}
    return [
        rec.get("package_id", ""),
        rec.get("error_stage") or "diff",
        ", ".join(modules.get("with_diffs") or []),
        detail,
    ]


def mismatch_rows(rec: Dict[str, Any], limit: int = 50) -> List[List[Any]]:
    rows: List[List[Any]] = []
    for m in (rec.get("mismatches") or [])[:limit]:
        where = f"{m.get('module')}::{m.get('entity')}" if m.get("kind") != "module" else str(m.get("module"))
        if m.get("slot"):
            where += f" [{m['slot']}" + (f" #{m['position']}" if m.get("position") is not None else "") + "]"
        rows.append([m.get("category"), m.get("kind"), where,
                     json.dumps(m.get("left"), sort_keys=True), json.dumps(m.get("right"), sort_keys=True)])
    return rows
