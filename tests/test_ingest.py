# moveinv/tests/test_ingest.py
from __future__ import annotations
import json
from pathlib import Path
import pytest
from moveinv.errors import InputError
from moveinv.ingest import (
    canonical_object_id,
    collect_package_ids,
    dedupe,
    read_ids_file,
    read_ids_from_mvr_catalog,
    read_ids_from_summary_jsonl,
)


# Short and prefixed ids are left-padded to 64 lowercase hex digits.
def test_canonical_object_id():
    assert canonical_object_id("0x2") == "0x" + "0" * 63 + "2"
    assert canonical_object_id("AB") == "0x" + "0" * 62 + "ab"


# Anything that is not up to 64 hex digits is an invalid object id.
@pytest.mark.parametrize("bad", ["", "0x", "0xg1", "0x" + "1" * 65, "hello"])
def test_canonical_object_id_rejects(bad: str):
    with pytest.raises(InputError) as ei:
        canonical_object_id(bad)
    assert ei.value.code == "invalid_object_id"
    assert str(ei.value).startswith("invalid_object_id: ")
    assert ei.value.stage == "input"


# Ids files skip blank lines and comments.
def test_read_ids_file(tmp_path: Path):
    p = tmp_path / "ids.txt"
    p.write_text("# header\n0x1\n\n  0x2  \n# 0x3\n", encoding="utf-8")
    assert read_ids_file(str(p)) == ["0x1", "0x2"]


# Summary JSONL prefers resolved_package_id, falls back to package_id, and skips broken lines.
def test_read_ids_from_summary_jsonl(tmp_path: Path):
    p = tmp_path / "prev.jsonl"
    p.write_text("\n".join([
        json.dumps({"resolved_package_id": "0xa", "package_id": "0xignored"}),
        json.dumps({"package_id": "0xb"}),
        "{not json",
        json.dumps({"other": 1}),
        json.dumps([1, 2]),
    ]) + "\n", encoding="utf-8")
    assert read_ids_from_summary_jsonl(str(p)) == ["0xa", "0xb"]


# MVR catalogs provide ids per network.
def test_read_ids_from_mvr_catalog(tmp_path: Path):
    p = tmp_path / "catalog.json"
    p.write_text(json.dumps({"names": [
        {"name": "@a/x", "mainnet_package_info_id": "0x11", "testnet_package_info_id": "0x21"},
        {"name": "@a/y", "mainnet_package_info_id": None, "testnet_package_info_id": "0x22"},
        "junk",
    ]}), encoding="utf-8")
    assert read_ids_from_mvr_catalog(str(p)) == ["0x11"]
    assert read_ids_from_mvr_catalog(str(p), "testnet") == ["0x21", "0x22"]


# A catalog without a names array, or an unknown network, is an error.
def test_mvr_catalog_errors(tmp_path: Path):
    p = tmp_path / "catalog.json"
    p.write_text(json.dumps({"packages": []}), encoding="utf-8")
    with pytest.raises(ValueError, match="names"):
        read_ids_from_mvr_catalog(str(p))
    with pytest.raises(ValueError, match="devnet"):
        read_ids_from_mvr_catalog(str(p), "devnet")


# Duplicates are dropped keeping the first occurrence.
def test_dedupe_keeps_order():
    assert dedupe(["0x3", "0x1", "0x3", "0x2", "0x1"]) == ["0x3", "0x1", "0x2"]


# All sources are concatenated in a fixed order, de-duplicated, then truncated.
def test_collect_package_ids(tmp_path: Path):
    ids_file = tmp_path / "ids.txt"
    ids_file.write_text("0x2\n0x3\n", encoding="utf-8")
    summary = tmp_path / "prev.jsonl"
    summary.write_text(json.dumps({"package_id": "0x4"}) + "\n", encoding="utf-8")

    ids = collect_package_ids(package_ids=["0x1", "0x2", " "], ids_file=str(ids_file), summary_jsonl=str(summary))
    assert ids == ["0x1", "0x2", "0x3", "0x4"]

    capped = collect_package_ids(package_ids=["0x1", "0x2"], ids_file=str(ids_file), max_packages=2)
    assert capped == ["0x1", "0x2"]


# Invalid ids are kept at collection time; they are reported per package later.
def test_collect_keeps_invalid_ids():
    assert collect_package_ids(package_ids=["nope", "0x1"]) == ["nope", "0x1"]
