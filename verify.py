#!/usr/bin/env python3
import sys
import argparse
import signal
from typing import Any, Dict, Optional

from moveinv.config import ConfigLoader
from moveinv.ingest import collect_package_ids
from moveinv import logging as slog

from moveinv.sources.registry import create as create_extractor
import moveinv.sources.dataset_extractor
import moveinv.sources.command_extractor
from moveinv.sources.interface import LocalExtractor, RemoteSource
from moveinv.sources.rpc_client import JsonRpcSource

from moveinv.aggregate import Aggregator


def build_extractor(cfg: Dict[str, Any]) -> LocalExtractor:
    return create_extractor(cfg["dataset"])


def build_remote(cfg: Dict[str, Any]) -> Optional[RemoteSource]:
    rpc = cfg["rpc"]
    if not rpc["enabled"]:
        return None
    return JsonRpcSource(
        rpc["url"],
        timeout_s=float(rpc["timeout_s"]),
        retries=int(rpc["retries"]),
        backoff_initial_s=float(rpc.get("backoff_initial_s") or 0.5),
        backoff_max_s=float(rpc.get("backoff_max_s") or 8.0),
    )


def build_aggregator(cfg: Dict[str, Any], extractor: LocalExtractor, remote: Optional[RemoteSource]) -> Aggregator:
    run = cfg["run"]
    norm = cfg["normalize"]
    return Aggregator(
        extractor,
        remote,
        mode=run["mode"],
        out_dir=run["out_dir"],
        legacy_out=run.get("legacy_out"),
        workers=run["workers"],
        sample_size=run.get("sample_size"),
        exposed_only=bool(norm.get("exposed_only", True)),
        filter_self_address=bool(norm.get("filter_self_address", True)),
        progress_every=run["progress_every"],
    )


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Verify local Move bytecode interfaces against RPC normalized modules."
    )
    p.add_argument("-c", "--config", help="Path to a YAML run configuration")

    ids = p.add_argument_group("package ids")
    ids.add_argument("--package-id", action="append", default=[], metavar="ID",
                     help="On-chain package id (0x...). Can be given multiple times.")
    ids.add_argument("--package-ids-file", metavar="PATH",
                     help="File with one id per line ('#' comments allowed)")
    ids.add_argument("--summary-jsonl", metavar="PATH",
                     help="Previous run JSONL; ids taken from resolved_package_id/package_id")
    ids.add_argument("--mvr-catalog", metavar="PATH",
                     help="MVR catalog.json (uses *_package_info_id fields)")
    ids.add_argument("--mvr-network", choices=["mainnet", "testnet"], default="mainnet",
                     help="Which MVR catalog id field to use (default: mainnet)")
    ids.add_argument("--max-packages", type=int, metavar="N",
                     help="Truncate the id list to its first N entries")

    run = p.add_argument_group("run")
    run.add_argument("--mode", choices=["corpus", "legacy"],
                     help="corpus: report/index/problems/summary; legacy: one JSONL")
    run.add_argument("--sample-size", type=int, metavar="N",
                     help="Deterministic sample of N packages (default: all)")
    run.add_argument("-o", "--out-dir", help="Output directory for corpus mode")
    run.add_argument("--legacy-out", metavar="PATH", help="Legacy JSONL path (also written in corpus mode)")
    run.add_argument("-j", "--workers", type=int, help="Parallel packages (default: 4)")

    src = p.add_argument_group("sources")
    src.add_argument("--dataset-root", help="Dataset root (default: $SUI_PACKAGES_DIR or ../sui-packages)")
    src.add_argument("--rpc-url", help="Fullnode JSON-RPC URL")
    src.add_argument("--no-rpc", action="store_true",
                     help="Skip the remote comparison; only local extraction is counted")

    p.add_argument("-v", "--verbose", action="count", default=0,
                   help="Increase log verbosity (-v, -vv)")
    p.add_argument("--log-file", help="Also write the log to this file")
    return p.parse_args(argv)


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    return {
        "dataset": {"root": args.dataset_root},
        "rpc": {"url": args.rpc_url, "enabled": False if args.no_rpc else None},
        "run": {
            "mode": args.mode,
            "sample_size": args.sample_size,
            "out_dir": args.out_dir,
            "legacy_out": args.legacy_out,
            "workers": args.workers,
        },
    }


def main(argv=None) -> int:
    args = parse_args(argv)
    slog.setup_logging(args.verbose, args.log_file)

    slog.log_step("Loading configuration:", args.config or "(defaults)")
    cfg = ConfigLoader(args.config).load(overrides_from_args(args))

    ids = collect_package_ids(
        package_ids=args.package_id,
        ids_file=args.package_ids_file,
        summary_jsonl=args.summary_jsonl,
        mvr_catalog=args.mvr_catalog,
        mvr_network=args.mvr_network,
        max_packages=args.max_packages,
    )
    if not ids:
        slog.log_err("No package ids provided. Use --package-id, --package-ids-file, --summary-jsonl or --mvr-catalog.")
        return 2

    extractor = build_extractor(cfg)
    remote = build_remote(cfg)
    aggregator = build_aggregator(cfg, extractor, remote)
    if not remote:
        slog.log_warn("RPC comparison disabled; only local extraction is verified.")

    previous = signal.signal(signal.SIGTERM, lambda *_: aggregator.stop())
    try:
        summary = aggregator.run(ids)
    finally:
        signal.signal(signal.SIGTERM, previous)
        extractor.close()
        if remote is not None:
            remote.close()

    if cfg["run"]["mode"] == "corpus":
        slog.log_ok(f"Artifacts written to {cfg['run']['out_dir']}")
    if cfg["run"].get("legacy_out"):
        slog.log_ok(f"Legacy JSONL written to {cfg['run']['legacy_out']}")
    slog.log_ok("Done.")
    return 130 if summary.interrupted else 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        slog.log_err(f"Error: {e}")
        sys.exit(1)
