# moveinv/sources/dataset_extractor.py
from __future__ import annotations
import json
import os
from typing import Any, Optional

from moveinv import logging as slog
from moveinv.errors import ExtractionError
from moveinv.ingest import canonical_object_id

from .interface import LocalExtraction, LocalExtractor
from .registry import register

INTERFACE_FILE = "interface.json"
METADATA_FILE = "metadata.json"
BYTECODE_DIR = "bytecode_modules"


def artifact_dir_for_package_id(root: str, subdir: str, package_id: str) -> str:
    """
    Dataset layout: <root>/<subdir>/0x<2 hex>/<62 hex>, after left-padding the
    id to 64 hex digits (handles short ids like 0x2).
    """
    full = canonical_object_id(package_id)[2:]
    return os.path.join(root, subdir, f"0x{full[:2]}", full[2:])


def read_original_package_id(artifact_dir: str) -> Optional[str]:
    """originalPackageId from metadata.json; upgraded packages still embed that address."""
    meta_path = os.path.join(artifact_dir, METADATA_FILE)
    if not os.path.isfile(meta_path):
        return None
    try:
        with open(meta_path, "r", encoding="utf-8") as f:
            meta = json.load(f)
    except (OSError, ValueError) as e:
        slog.log_warn(f"Ignoring unreadable {meta_path}: {e}")
        return None
    orig = meta.get("originalPackageId") if isinstance(meta, dict) else None
    return str(orig) if orig else None


class DatasetExtractor(LocalExtractor):
    """
    Reads the pre-dumped local extractor output (interface.json) of each
    package from an on-disk dataset.
    """

    def __init__(self, root: str, subdir: str = "packages/mainnet_most_used", **_: Any):
        self.root = root
        self.subdir = subdir

    def resolve(self, package_id: str) -> str:
        artifact_dir = artifact_dir_for_package_id(self.root, self.subdir, package_id)
        if not os.path.isdir(artifact_dir):
            raise ExtractionError(f"artifact dir not found: {artifact_dir}", kind="not_found")
        return os.path.realpath(artifact_dir)

    def _load_modules(self, artifact_dir: str) -> Any:
        path = os.path.join(artifact_dir, INTERFACE_FILE)
        if not os.path.isfile(path):
            raise ExtractionError(f"{INTERFACE_FILE} not found in {artifact_dir}", kind="not_found")
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except ValueError as e:
            raise ExtractionError(f"cannot decode {path}: {e}", kind="decode_error") from e
        except OSError as e:
            raise ExtractionError(f"cannot read {path}: {e}", kind="decode_error") from e

    def extract(self, package_id: str) -> LocalExtraction:
        artifact_dir = self.resolve(package_id)
        modules = self._load_modules(artifact_dir)
        return LocalExtraction(
            package_id=package_id,
            modules=modules,
            self_address=read_original_package_id(artifact_dir) or package_id,
            artifact_dir=artifact_dir,
        )


register("dataset", DatasetExtractor)
