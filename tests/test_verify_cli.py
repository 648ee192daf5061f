# moveinv/tests/test_verify_cli.py
from __future__ import annotations
from pathlib import Path
import pytest
import verify
from moveinv.aggregate import REPORT_FILE, SUMMARY_FILE
from utility import PKG, FakeRemote, load_json, local_package, read_jsonl, rpc_package, write_dataset_package


@pytest.fixture
def dataset(tmp_path: Path) -> Path:
    root = tmp_path / "sui-packages"
    write_dataset_package(root, PKG, local_package())
    return root


# A local-only run over the on-disk dataset writes the corpus artifacts and exits 0.
def test_cli_local_only_run(tmp_path: Path, dataset: Path):
    out = tmp_path / "out"
    rc = verify.main(["--package-id", PKG, "--dataset-root", str(dataset), "--no-rpc", "-o", str(out)])

    assert rc == 0
    (rec,) = read_jsonl(out / REPORT_FILE)
    assert rec["ok"] is True
    assert rec["local"]["modules"] == 2
    assert load_json(out / SUMMARY_FILE)["rpc_enabled"] is False


# With a remote source the CLI compares both sides; ids can come from a file.
def test_cli_with_remote(tmp_path: Path, dataset: Path, monkeypatch):
    monkeypatch.setattr(verify, "build_remote", lambda cfg: FakeRemote({PKG: rpc_package(value_visibility="Friend")}))
    ids = tmp_path / "ids.txt"
    ids.write_text(f"# corpus\n{PKG}\n{PKG}\n", encoding="utf-8")
    out = tmp_path / "out"

    rc = verify.main(["--package-ids-file", str(ids), "--dataset-root", str(dataset), "-o", str(out), "-j", "2"])

    assert rc == 0
    (rec,) = read_jsonl(out / REPORT_FILE)
    assert rec["diff_summary"] == {"VisibilityMismatch": 1}
    assert load_json(out / SUMMARY_FILE)["interfaces_mismatch"] == 1


# Legacy mode writes the compact JSONL only.
def test_cli_legacy_mode(tmp_path: Path, dataset: Path):
    legacy = tmp_path / "legacy.jsonl"
    rc = verify.main(["--package-id", PKG, "--dataset-root", str(dataset), "--no-rpc",
                      "--mode", "legacy", "--legacy-out", str(legacy), "-o", str(tmp_path / "out")])

    assert rc == 0
    (row,) = read_jsonl(legacy)
    assert row["resolved_package_id"] == PKG
    assert not (tmp_path / "out" / SUMMARY_FILE).exists()


# Without any package id the CLI refuses to run.
def test_cli_without_ids(tmp_path: Path):
    assert verify.main(["--no-rpc", "-o", str(tmp_path / "out")]) == 2


# A YAML configuration is honoured and validated.
def test_cli_config_file(tmp_path: Path, dataset: Path):
    cfg = tmp_path / "run.yml"
    cfg.write_text(
        "config_version: '1'\n"
        f"dataset:\n  root: {dataset.as_posix()}\n"
        "rpc:\n  enabled: false\n"
        f"run:\n  out_dir: {(tmp_path / 'from-yaml').as_posix()}\n",
        encoding="utf-8",
    )
    assert verify.main(["-c", str(cfg), "--package-id", PKG]) == 0
    assert (tmp_path / "from-yaml" / SUMMARY_FILE).is_file()

    bad = tmp_path / "bad.yml"
    bad.write_text("run:\n  mode: fast\n", encoding="utf-8")
    with pytest.raises(ValueError):
        verify.main(["-c", str(bad), "--package-id", PKG])
