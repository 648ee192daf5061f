# moveinv/aggregate.py
"""
Corpus driver: per-package verification, record projections, output streams.

Every package goes through the same computation (``Aggregator.verify_package``)
and yields one ``PackageOutcome``; the detailed report, index, problems and
legacy streams are projections of that outcome. Outcomes are consumed and
written by the calling thread in input order, which is also the only place
the running summary is updated.
"""
from __future__ import annotations
import json
import os
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Generator, List, Optional, Sequence, TextIO, Tuple, Type

from moveinv import logging as slog
from moveinv.differ import DiffReport, diff_packages
from moveinv.errors import (
    DiffInternalError,
    ExtractionError,
    MalformedInterface,
    RpcError,
    VerifyError,
)
from moveinv.ingest import canonical_object_id
from moveinv.model import PackageInterface
from moveinv.normalize import normalize_local, normalize_rpc
from moveinv.sampler import sample_ids
from moveinv.sources.interface import LocalExtractor, RemoteSource

REPORT_FILE = "report.jsonl"
INDEX_FILE = "index.jsonl"
PROBLEMS_FILE = "problems.jsonl"
SUMMARY_FILE = "summary.json"

MODE_CORPUS = "corpus"
MODE_LEGACY = "legacy"


# --------------------------- per-package outcome ---------------------------

@dataclass
class SideResult:
    ok: bool = False
    counts: Optional[Dict[str, int]] = None
    error: Optional[VerifyError] = None

    def to_json(self) -> Dict[str, Any]:
        counts = self.counts or {}
        return {
            "ok": self.ok,
            "modules": counts.get("modules"),
            "structs": counts.get("structs"),
            "functions": counts.get("functions"),
            "error": None if self.error is None else str(self.error),
        }


@dataclass
class PackageOutcome:
    package_id: str
    rpc_enabled: bool
    local: SideResult = field(default_factory=SideResult)
    rpc: Optional[SideResult] = None
    diff: Optional[DiffReport] = None
    error: Optional[VerifyError] = None

    @property
    def ok(self) -> bool:
        if self.error is not None:
            return False
        if self.diff is not None:
            return self.diff.ok
        return not self.rpc_enabled and self.local.ok

    @property
    def problem(self) -> bool:
        return not self.ok


def _guard(fn: Callable[[], Any], wrap: Type[VerifyError], kind: str) -> Tuple[Any, Optional[VerifyError]]:
    """
    Run one stage; typed errors pass through, anything else a collaborator
    throws (crash, bug, unexpected payload) becomes ``wrap(kind=...)``.
    """
    try:
        return fn(), None
    except VerifyError as e:
        return None, e
    except Exception as e:
        return None, wrap(f"{type(e).__name__}: {e}", kind=kind)


# --------------------------- projections ---------------------------

def detailed_record(o: PackageOutcome) -> Dict[str, Any]:
    d = o.diff
    return {
        "package_id": o.package_id,
        "ok": o.ok,
        "error": None if o.error is None else str(o.error),
        "error_stage": None if o.error is None else o.error.stage,
        "local": o.local.to_json(),
        "rpc": None if o.rpc is None else o.rpc.to_json(),
        "modules": None if d is None else {
            "missing_in_rpc": list(d.missing_in_right),
            "missing_in_local": list(d.extra_in_right),
            "with_diffs": list(d.modules_with_diffs),
        },
        "diff_summary": None if d is None else dict(d.diff_summary),
        "mismatch_count": None if d is None else d.mismatch_count,
        "mismatches": None if d is None else [m.to_json() for m in d.mismatches],
    }


def legacy_record(o: PackageOutcome) -> Dict[str, Any]:
    d = o.diff
    return {
        "resolved_package_id": o.package_id,
        "ok": o.ok,
        "error": None if o.error is None else str(o.error),
        "modules_missing_local": [] if d is None else list(d.extra_in_right),
        "modules_missing_rpc": [] if d is None else list(d.missing_in_right),
        "modules_with_diffs": [] if d is None else list(d.modules_with_diffs),
        "diff_summary": {} if d is None else dict(d.diff_summary),
    }


def index_record(o: PackageOutcome, line: int) -> Dict[str, Any]:
    return {"package_id": o.package_id, "line": line, "ok": o.ok, "problem": o.problem}


# --------------------------- running summary ---------------------------

@dataclass
class RunSummary:
    rpc_enabled: bool
    packages_input: int = 0
    sample_size: Optional[int] = None
    packages_total: int = 0
    local_ok: int = 0
    local_failed: int = 0
    rpc_ok: int = 0
    rpc_failed: int = 0
    interfaces_match: int = 0
    interfaces_mismatch: int = 0
    mismatch_total: int = 0
    problems: int = 0
    mismatch_by_category: Dict[str, int] = field(default_factory=dict)
    errors_by_stage: Dict[str, int] = field(default_factory=dict)
    interrupted: bool = False

    def update(self, o: PackageOutcome) -> None:
        self.packages_total += 1
        if o.local.ok:
            self.local_ok += 1
        elif o.local.error is not None:
            self.local_failed += 1
        if o.rpc is not None:
            if o.rpc.ok:
                self.rpc_ok += 1
            elif o.rpc.error is not None:
                self.rpc_failed += 1
        if o.diff is not None:
            if o.diff.ok:
                self.interfaces_match += 1
            else:
                self.interfaces_mismatch += 1
            self.mismatch_total += o.diff.mismatch_count
            for cat, n in o.diff.diff_summary.items():
                self.mismatch_by_category[cat] = self.mismatch_by_category.get(cat, 0) + n
        if o.error is not None:
            self.errors_by_stage[o.error.stage] = self.errors_by_stage.get(o.error.stage, 0) + 1
        if o.problem:
            self.problems += 1

    def to_json(self) -> Dict[str, Any]:
        compared = self.rpc_enabled
        return {
            "packages_total": self.packages_total,
            "packages_input": self.packages_input,
            "sample_size": self.sample_size,
            "local_ok": self.local_ok,
            "local_failed": self.local_failed,
            "rpc_enabled": self.rpc_enabled,
            "rpc_ok": self.rpc_ok if compared else None,
            "rpc_failed": self.rpc_failed if compared else None,
            "interfaces_match": self.interfaces_match if compared else None,
            "interfaces_mismatch": self.interfaces_mismatch if compared else None,
            "mismatch_total": self.mismatch_total if compared else None,
            "mismatch_by_category": dict(sorted(self.mismatch_by_category.items())) if compared else None,
            "problems": self.problems,
            "errors_by_stage": dict(sorted(self.errors_by_stage.items())),
            "interrupted": self.interrupted,
        }


# --------------------------- output streams ---------------------------

class JsonlWriter:
    """Append-only JSONL stream; each record is flushed as a whole line."""

    def __init__(self, path: str):
        self.path = path
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)
        self._f: Optional[TextIO] = open(path, "w", encoding="utf-8")
        self.lines = 0

    def write(self, record: Dict[str, Any]) -> int:
        if self._f is None:
            raise ValueError(f"{self.path}: writer is closed")
        self._f.write(json.dumps(record, ensure_ascii=False) + "\n")
        self._f.flush()
        self.lines += 1
        return self.lines

    def close(self) -> None:
        if self._f is not None:
            self._f.close()
            self._f = None


def write_json_atomic(path: str, obj: Any) -> None:
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
        f.write("\n")
    os.replace(tmp, path)


class _Streams:
    def __init__(self, mode: str, out_dir: str, legacy_out: Optional[str]):
        self.report = self.index = self.problems = self.legacy = None
        self.out_dir = out_dir
        opened: List[JsonlWriter] = []
        try:
            if mode == MODE_CORPUS:
                os.makedirs(out_dir, exist_ok=True)
                self.report = JsonlWriter(os.path.join(out_dir, REPORT_FILE))
                opened.append(self.report)
                self.index = JsonlWriter(os.path.join(out_dir, INDEX_FILE))
                opened.append(self.index)
                self.problems = JsonlWriter(os.path.join(out_dir, PROBLEMS_FILE))
                opened.append(self.problems)
            if legacy_out:
                self.legacy = JsonlWriter(legacy_out)
                opened.append(self.legacy)
        except OSError:
            for w in opened:
                w.close()
            raise
        self._all = opened

    def write(self, o: PackageOutcome) -> None:
        if self.report is not None:
            rec = detailed_record(o)
            line = self.report.write(rec)
            self.index.write(index_record(o, line))
            if o.problem:
                self.problems.write(rec)
        if self.legacy is not None:
            self.legacy.write(legacy_record(o))

    def close(self) -> None:
        for w in self._all:
            w.close()


# --------------------------- aggregator ---------------------------

class Aggregator:
    """
    Drives extraction -> normalization -> diff over a package list.

    ``remote=None`` disables the interface comparison: only local extraction
    is run and counted, comparison fields stay null.
    """

    def __init__(
        self,
        extractor: LocalExtractor,
        remote: Optional[RemoteSource] = None,
        *,
        mode: str = MODE_CORPUS,
        out_dir: str = "results",
        legacy_out: Optional[str] = None,
        workers: int = 1,
        sample_size: Optional[int] = None,
        exposed_only: bool = True,
        filter_self_address: bool = True,
        progress_every: int = 100,
        stop_event: Optional[threading.Event] = None,
    ):
        if mode not in (MODE_CORPUS, MODE_LEGACY):
            raise ValueError(f"unknown output mode '{mode}'")
        if mode == MODE_LEGACY and not legacy_out:
            raise ValueError("legacy mode needs legacy_out")
        self.extractor = extractor
        self.remote = remote
        self.mode = mode
        self.out_dir = out_dir
        self.legacy_out = legacy_out
        self.workers = max(1, int(workers))
        self.sample_size = sample_size
        self.exposed_only = exposed_only
        self.filter_self_address = filter_self_address
        self.progress_every = max(1, int(progress_every))
        self.stop_event = stop_event or threading.Event()

    @property
    def rpc_enabled(self) -> bool:
        return self.remote is not None

    # --- one package ---

    def _local(self, package_id: str, object_id: str) -> Tuple[Optional[PackageInterface], SideResult]:
        side = SideResult()
        extraction, side.error = _guard(lambda: self.extractor.extract(object_id), ExtractionError, "translation_panic")
        if side.error is not None:
            return None, side

        def normalize() -> PackageInterface:
            self_address = extraction.get("self_address") if self.filter_self_address else None
            return normalize_local(
                package_id,
                extraction.get("modules"),
                exposed_only=self.exposed_only,
                self_address=self_address,
            )

        model, side.error = _guard(normalize, MalformedInterface, "malformed_interface")
        if side.error is None:
            side.ok = True
            side.counts = model.counts()
        return model, side

    def _remote(self, package_id: str, object_id: str) -> Tuple[Optional[PackageInterface], SideResult]:
        side = SideResult()
        raw, side.error = _guard(lambda: self.remote.fetch(object_id), RpcError, "client_error")
        if side.error is not None:
            return None, side
        model, side.error = _guard(lambda: normalize_rpc(package_id, raw), MalformedInterface, "malformed_interface")
        if side.error is None:
            side.ok = True
            side.counts = model.counts()
        return model, side

    def verify_package(self, package_id: str) -> PackageOutcome:
        """Never raises for per-package failures; they end up in ``outcome.error``."""
        outcome = PackageOutcome(package_id=package_id, rpc_enabled=self.rpc_enabled)

        object_id, outcome.error = _guard(lambda: canonical_object_id(package_id), ExtractionError, "invalid_object_id")
        if outcome.error is not None:
            if self.rpc_enabled:
                outcome.rpc = SideResult()
            return outcome

        local_model, outcome.local = self._local(package_id, object_id)
        remote_model = None
        if self.rpc_enabled:
            remote_model, outcome.rpc = self._remote(package_id, object_id)

        outcome.error = outcome.local.error or (outcome.rpc.error if outcome.rpc is not None else None)
        if outcome.error is not None or not self.rpc_enabled:
            return outcome

        outcome.diff, outcome.error = _guard(
            lambda: diff_packages(local_model, remote_model), DiffInternalError, "internal_error"
        )
        if isinstance(outcome.error, DiffInternalError):
            slog.log_err(f"{package_id}: differ failed on canonical input: {outcome.error}")
        return outcome

    # --- the corpus ---

    def stop(self) -> None:
        self.stop_event.set()

    def _ordered_outcomes(
        self, ids: Sequence[str], pool: Optional[ThreadPoolExecutor]
    ) -> Generator[PackageOutcome, None, None]:
        if pool is None:
            for pid in ids:
                if self.stop_event.is_set():
                    return
                yield self.verify_package(pid)
            return

        pending: Deque[Future] = deque()
        it = iter(ids)
        window = 2 * self.workers
        try:
            for pid in it:
                pending.append(pool.submit(self.verify_package, pid))
                if len(pending) >= window:
                    break
            while pending:
                yield pending.popleft().result()
                if self.stop_event.is_set():
                    return
                nxt = next(it, None)
                if nxt is not None:
                    pending.append(pool.submit(self.verify_package, nxt))
        finally:
            for fut in pending:
                fut.cancel()

    def run(self, ids: Sequence[str]) -> RunSummary:
        ids = list(ids)
        selected = sample_ids(ids, self.sample_size)
        summary = RunSummary(
            rpc_enabled=self.rpc_enabled,
            packages_input=len(ids),
            sample_size=self.sample_size,
        )
        slog.log_step(
            "Verifying packages:",
            f"{len(selected)} of {len(ids)} (mode={self.mode}, workers={self.workers}, rpc={'on' if self.rpc_enabled else 'off'})",
        )

        streams = _Streams(self.mode, self.out_dir, self.legacy_out)
        pool = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="verify") if self.workers > 1 else None
        outcomes = self._ordered_outcomes(selected, pool)
        try:
            for o in outcomes:
                streams.write(o)
                summary.update(o)
                if o.error is not None:
                    slog.log_warn(f"{o.package_id}: {o.error}")
                elif o.problem:
                    slog.log_debug(f"{o.package_id}: {o.diff.diff_summary}")
                if summary.packages_total % self.progress_every == 0:
                    slog.log_progress(summary.packages_total, len(selected), summary.problems)
        except KeyboardInterrupt:
            slog.log_warn("Interrupted; closing output streams.")
            self.stop_event.set()
        finally:
            outcomes.close()
            if pool is not None:
                pool.shutdown(wait=True, cancel_futures=True)
            streams.close()

        summary.interrupted = self.stop_event.is_set() and summary.packages_total < len(selected)
        if self.mode == MODE_CORPUS:
            write_json_atomic(os.path.join(self.out_dir, SUMMARY_FILE), summary.to_json())
        slog.log_ok(
            f"{summary.packages_total} package(s): local_ok={summary.local_ok}"
            + (f", rpc_ok={summary.rpc_ok}, match={summary.interfaces_match},"
               f" mismatch={summary.interfaces_mismatch}, mismatches={summary.mismatch_total}"
               if self.rpc_enabled else "")
            + f", problems={summary.problems}"
        )
        return summary
