# moveinv/sources/command_extractor.py
from __future__ import annotations
import json
import os
import shlex
import subprocess
from typing import Any, List, Optional, Sequence, Union

from moveinv import logging as slog
from moveinv.errors import ExtractionError

from .dataset_extractor import BYTECODE_DIR, DatasetExtractor
from .registry import register

# exit status of a panicking Rust binary
_PANIC_EXIT_CODE = 101


class CommandExtractor(DatasetExtractor):
    """
    Runs an external bytecode-to-interface extractor on the package's
    bytecode_modules directory and parses its stdout (local encoding JSON).

    The extractor is known to crash or hang on some inputs, so every run is
    bounded by ``timeout_s`` and every way it can die maps to an
    ExtractionError kind:
      - timeout            -> timeout
      - killed / panicked  -> translation_panic
      - other non-zero     -> decode_error
      - bad stdout JSON    -> decode_error
    """

    def __init__(
        self,
        root: str,
        subdir: str = "packages/mainnet_most_used",
        *,
        command: Union[str, Sequence[str], None] = None,
        timeout_s: Optional[float] = 120,
        **_: Any,
    ):
        super().__init__(root, subdir)
        if not command:
            raise ValueError("command extractor requires dataset.command")
        self.command: List[str] = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout_s = timeout_s

    def _load_modules(self, artifact_dir: str) -> Any:
        bytecode_dir = os.path.join(artifact_dir, BYTECODE_DIR)
        if not os.path.isdir(bytecode_dir):
            raise ExtractionError(f"{BYTECODE_DIR} not found in {artifact_dir}", kind="not_found")

        cmd = [*self.command, bytecode_dir]
        slog.log_debug(f"running extractor: {' '.join(cmd)}")
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise ExtractionError(f"extractor timed out after {self.timeout_s}s", kind="timeout") from e
        except OSError as e:
            raise ExtractionError(f"cannot run extractor {self.command[0]}: {e}", kind="extractor_unavailable") from e

        stderr_tail = (proc.stderr or "").strip().splitlines()[-1:]
        detail = stderr_tail[0] if stderr_tail else ""
        if proc.returncode < 0 or proc.returncode == _PANIC_EXIT_CODE:
            raise ExtractionError(f"extractor crashed (status {proc.returncode}): {detail}", kind="translation_panic")
        if proc.returncode != 0:
            raise ExtractionError(f"extractor failed (status {proc.returncode}): {detail}", kind="decode_error")

        try:
            return json.loads(proc.stdout)
        except ValueError as e:
            raise ExtractionError(f"extractor produced invalid JSON: {e}", kind="decode_error") from e


register("command", CommandExtractor)
