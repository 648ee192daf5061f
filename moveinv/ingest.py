# moveinv/ingest.py
from __future__ import annotations
import json
import re
from typing import Any, Dict, Iterable, List, Optional

from moveinv import logging as slog
from moveinv.errors import InputError

_ID_RE = re.compile(r"^[0-9a-fA-F]{1,64}$")

MVR_ID_FIELDS = {
    "mainnet": "mainnet_package_info_id",
    "testnet": "testnet_package_info_id",
}


def canonical_object_id(package_id: str) -> str:
    """'0x2' -> '0x000...002'; raises InputError on anything that is not a hex object id."""
    s = (package_id or "").strip()
    body = s[2:] if s[:2].lower() == "0x" else s
    if not _ID_RE.match(body):
        raise InputError(f"expected up to 64 hex digits (optionally 0x-prefixed), got '{package_id}'")
    return "0x" + body.lower().rjust(64, "0")


def read_ids_file(path: str) -> List[str]:
    """One id per line; blank lines and '#' comments are skipped."""
    ids: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            ids.append(line)
    return ids


def read_ids_from_summary_jsonl(path: str) -> List[str]:
    """Ids from a previous run's JSONL (resolved_package_id, else package_id)."""
    ids: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                row = json.loads(line)
            except ValueError:
                slog.log_warn(f"{path}:{lineno}: skipping unparseable line")
                continue
            if not isinstance(row, dict):
                continue
            pid = row.get("resolved_package_id") or row.get("package_id")
            if isinstance(pid, str) and pid.strip():
                ids.append(pid.strip())
    return ids


def read_ids_from_mvr_catalog(path: str, network: str = "mainnet") -> List[str]:
    field = MVR_ID_FIELDS.get((network or "").strip().lower())
    if field is None:
        raise ValueError(f"Unknown MVR network '{network}'. Allowed: {sorted(MVR_ID_FIELDS)}")

    with open(path, "r", encoding="utf-8") as f:
        catalog = json.load(f)
    names = catalog.get("names") if isinstance(catalog, dict) else None
    if not isinstance(names, list):
        raise ValueError("mvr catalog missing 'names' array")

    ids: List[str] = []
    for item in names:
        if not isinstance(item, dict):
            continue
        pid = item.get(field)
        if isinstance(pid, str) and pid.strip():
            ids.append(pid.strip())
    return ids


def dedupe(ids: Iterable[str]) -> List[str]:
    """First occurrence wins; input order is kept."""
    seen = set()
    out: List[str] = []
    for pid in ids:
        if pid in seen:
            continue
        seen.add(pid)
        out.append(pid)
    return out


def collect_package_ids(
    *,
    package_ids: Optional[Iterable[str]] = None,
    ids_file: Optional[str] = None,
    summary_jsonl: Optional[str] = None,
    mvr_catalog: Optional[str] = None,
    mvr_network: str = "mainnet",
    max_packages: Optional[int] = None,
) -> List[str]:
    """
    Gather ids from every configured source, in this order: explicit ids,
    ids file, summary JSONL, MVR catalog. Invalid ids are kept; they are
    reported per package by the aggregator rather than dropped here.
    """
    gathered: List[str] = [p.strip() for p in (package_ids or []) if p and p.strip()]
    sources: Dict[str, Any] = {
        "ids file": ids_file,
        "summary jsonl": summary_jsonl,
        "mvr catalog": mvr_catalog,
    }
    for label, path in sources.items():
        if not path:
            continue
        slog.log_step(f"Reading package ids from {label}:", path)
        if label == "ids file":
            found = read_ids_file(path)
        elif label == "summary jsonl":
            found = read_ids_from_summary_jsonl(path)
        else:
            found = read_ids_from_mvr_catalog(path, mvr_network)
        slog.log_ok(f"{len(found)} id(s) read.")
        gathered.extend(found)

    ids = dedupe(gathered)
    if max_packages is not None:
        ids = ids[: max(0, int(max_packages))]
    return ids
