# moveinv/config.py
from __future__ import annotations
import os
from copy import deepcopy
from typing import Any, Dict, Optional
import yaml
from moveinv import logging as slog

_SUPPORTED_CONFIG_VERSIONS = {"1"}
_ALLOWED_MODES = {"corpus", "legacy"}
_ALLOWED_EXTRACTORS = {"dataset", "command"}

DEFAULTS: Dict[str, Any] = {
    "config_version": "1",
    "dataset": {
        "root": None,
        "subdir": "packages/mainnet_most_used",
        "extractor": "dataset",
        "command": None,
        "timeout_s": 120,
    },
    "rpc": {
        "enabled": True,
        "url": "https://fullnode.mainnet.sui.io:443",
        "timeout_s": 30,
        "retries": 3,
        "backoff_initial_s": 0.5,
        "backoff_max_s": 8.0,
    },
    "normalize": {
        "exposed_only": True,
        "filter_self_address": True,
    },
    "run": {
        "mode": "corpus",
        "sample_size": None,
        "workers": 4,
        "out_dir": "results",
        "legacy_out": None,
        "progress_every": 100,
    },
}

def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep-merge dicts with 'explicit null clears default' semantics."""
    out = deepcopy(base) if base else {}
    for k, v in (override or {}).items():
        if v is None:
            out[k] = None
        elif isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out

class ConfigLoader:
    """
    Loads a YAML run configuration:
      config_version: "1"
      dataset:   { root, subdir, extractor: dataset|command, command, timeout_s }
      rpc:       { enabled, url, timeout_s, retries, backoff_initial_s, backoff_max_s }
      normalize: { exposed_only, filter_self_address }
      run:       { mode: corpus|legacy, sample_size, workers, out_dir, legacy_out, progress_every }

    Missing keys take the built-in DEFAULTS. ``overrides`` (e.g. from the
    command line) are merged last; None values in overrides are ignored so
    unset flags do not clear the file's values.
    """

    def __init__(self, yaml_path: Optional[str] = None, *, strict: bool = True):
        self.yaml_path = yaml_path
        self.strict = strict

    def _warn_or_raise(self, msg: str, *, fatal: bool = False) -> None:
        if fatal or self.strict:
            slog.log_err(msg)
            raise ValueError(msg)
        slog.log_warn(msg)

    def _read(self) -> Dict[str, Any]:
        if not self.yaml_path:
            return {}
        with open(self.yaml_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            self._warn_or_raise(f"{self.yaml_path}: configuration root must be a mapping.", fatal=True)
        return raw

    def _positive(self, cfg: Dict[str, Any], section: str, key: str, *, integer: bool = False,
                  allow_none: bool = False, allow_zero: bool = False) -> None:
        v = cfg[section].get(key)
        if v is None and allow_none:
            return
        ok = isinstance(v, (int, float)) and not isinstance(v, bool) and (v >= 0 if allow_zero else v > 0)
        if integer:
            ok = ok and isinstance(v, int)
        if not ok:
            what = f"{'non-negative' if allow_zero else 'positive'} {'integer' if integer else 'number'}"
            self._warn_or_raise(f"{section}.{key} must be a {what}, got {v!r}.", fatal=True)

    def validate(self, cfg: Dict[str, Any]) -> Dict[str, Any]:
        for section in ("dataset", "rpc", "normalize", "run"):
            if not isinstance(cfg.get(section), dict):
                self._warn_or_raise(f"Section '{section}' must be a mapping.", fatal=True)

        version = str(cfg.get("config_version", "")).strip()
        if version not in _SUPPORTED_CONFIG_VERSIONS:
            self._warn_or_raise(
                f"Unsupported or missing config_version '{version}'. Supported: {sorted(_SUPPORTED_CONFIG_VERSIONS)}",
                fatal=True,
            )

        unknown = set(cfg) - set(DEFAULTS)
        if unknown:
            self._warn_or_raise(f"Unknown top-level configuration key(s): {sorted(unknown)}", fatal=False)

        # --- dataset ---
        ds = cfg["dataset"]
        ds["extractor"] = str(ds.get("extractor") or "").strip().lower()
        if ds["extractor"] not in _ALLOWED_EXTRACTORS:
            self._warn_or_raise(
                f"dataset.extractor '{ds['extractor']}' unknown. Allowed: {sorted(_ALLOWED_EXTRACTORS)}", fatal=True
            )
        if ds["extractor"] == "command" and not ds.get("command"):
            self._warn_or_raise("dataset.command is mandatory with the 'command' extractor.", fatal=True)
        if not ds.get("root"):
            ds["root"] = os.environ.get("SUI_PACKAGES_DIR", "../sui-packages")
        self._positive(cfg, "dataset", "timeout_s", allow_none=True)

        # --- rpc ---
        rpc = cfg["rpc"]
        rpc["enabled"] = bool(rpc.get("enabled"))
        if rpc["enabled"] and not str(rpc.get("url") or "").strip():
            self._warn_or_raise("rpc.url is mandatory when rpc.enabled is true.", fatal=True)
        self._positive(cfg, "rpc", "timeout_s")
        self._positive(cfg, "rpc", "retries", integer=True, allow_zero=True)

        # --- run ---
        run = cfg["run"]
        run["mode"] = str(run.get("mode") or "").strip().lower()
        if run["mode"] not in _ALLOWED_MODES:
            self._warn_or_raise(f"run.mode must be one of {sorted(_ALLOWED_MODES)}, got '{run['mode']}'.", fatal=True)
        if run["mode"] == "legacy" and not run.get("legacy_out"):
            run["legacy_out"] = os.path.join(str(run.get("out_dir") or "."), "verify_inventory.jsonl")
        size = run.get("sample_size")
        if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
            self._warn_or_raise(f"run.sample_size must be a non-negative integer or null, got {size!r}.", fatal=True)
        self._positive(cfg, "run", "workers", integer=True)
        self._positive(cfg, "run", "progress_every", integer=True)
        if not run.get("out_dir"):
            self._warn_or_raise("run.out_dir must not be empty.", fatal=True)
        return cfg

    def load(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        cfg = _deep_merge(DEFAULTS, self._read())
        for section, values in (overrides or {}).items():
            if not isinstance(values, dict):
                continue
            set_values = {k: v for k, v in values.items() if v is not None}
            if set_values:
                cfg[section] = _deep_merge(cfg.get(section) or {}, set_values)
        return self.validate(cfg)
