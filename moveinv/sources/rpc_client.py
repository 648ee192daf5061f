# moveinv/sources/rpc_client.py
"""
Sui fullnode JSON-RPC source for normalized Move modules.

- One shared ``httpx.Client`` (thread-safe, pooled) for all worker threads.
- Every request is bounded by ``timeout_s``.
- Connect errors, timeouts, 429 and 5xx are retried with exponential backoff;
  ``retries`` counts the extra attempts after the first one; whatever is
  left after the retry budget becomes a typed ``RpcError``.
"""
from __future__ import annotations
import json
import time
import uuid
from typing import Any, Callable, Dict, Optional

import httpx

from moveinv import logging as slog
from moveinv.errors import RpcError

from .interface import RemoteSource

GET_NORMALIZED_MODULES = "sui_getNormalizedMoveModulesByPackage"

_NOT_FOUND_HINTS = ("not found", "does not exist", "notexists", "deleted")
# "Invalid params" is what the fullnode answers for an id that names no package
_INVALID_PARAMS = -32602


def _ok(resp_json: Any) -> Any:
    if not isinstance(resp_json, dict):
        raise RpcError(f"malformed JSON-RPC response: {resp_json!r:.200}", kind="malformed_response")
    err = resp_json.get("error")
    if err:
        message = str(err.get("message", "unknown error")) if isinstance(err, dict) else str(err)
        code = err.get("code", -1) if isinstance(err, dict) else -1
        absent = code == _INVALID_PARAMS or any(h in message.lower() for h in _NOT_FOUND_HINTS)
        kind = "not_found" if absent else "malformed_response"
        raise RpcError(f"RPC error {code}: {message}", kind=kind)
    if "result" not in resp_json:
        raise RpcError("malformed JSON-RPC response (no result)", kind="malformed_response")
    return resp_json["result"]


class JsonRpcSource(RemoteSource):

    def __init__(
        self,
        url: str,
        *,
        timeout_s: float = 30.0,
        retries: int = 3,
        backoff_initial_s: float = 0.5,
        backoff_max_s: float = 8.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url
        self.timeout_s = timeout_s
        self.retries = max(0, int(retries))
        self.backoff_initial_s = backoff_initial_s
        self.backoff_max_s = backoff_max_s
        self._sleep = sleep
        self._http = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self._http.close()

    def call(self, method: str, params: Any) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": uuid.uuid4().hex,
            "method": method,
            "params": params,
        }
        return _ok(self._post_with_retries(payload))

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_initial_s * (2 ** (attempt - 1)), self.backoff_max_s)

    def _post_with_retries(self, payload: Dict[str, Any]) -> Any:
        last: Optional[RpcError] = None

        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                resp = self._http.post(self.url, json=payload)
            except httpx.TimeoutException as e:
                last = RpcError(f"timed out after {self.timeout_s}s: {e}", kind="timeout")
            except httpx.TransportError as e:
                last = RpcError(f"{type(e).__name__}: {e}", kind="network_error")
            else:
                if resp.status_code == 429:
                    last = RpcError("HTTP 429 Too Many Requests", kind="rate_limited")
                elif resp.status_code >= 500:
                    last = RpcError(f"HTTP {resp.status_code}", kind="network_error")
                elif resp.status_code >= 400:
                    raise RpcError(f"HTTP {resp.status_code}: {resp.text[:200]}", kind="malformed_response")
                else:
                    try:
                        return resp.json()
                    except json.JSONDecodeError as e:
                        raise RpcError(f"invalid JSON in response: {e}", kind="malformed_response") from e

            if attempt < attempts:
                sleep_s = self._backoff(attempt)
                slog.log_debug(f"RPC POST failed (attempt {attempt}/{attempts}): {last}; sleeping {sleep_s:.2f}s")
                self._sleep(sleep_s)

        raise last

    def fetch(self, package_id: str) -> Dict[str, Any]:
        result = self.call(GET_NORMALIZED_MODULES, [package_id])
        if not isinstance(result, dict):
            raise RpcError(f"expected an object of modules, got {type(result).__name__}", kind="malformed_response")
        return result
