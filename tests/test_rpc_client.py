# moveinv/tests/test_rpc_client.py
from __future__ import annotations
import json
from typing import Callable, List, Optional
import httpx
import pytest
from moveinv.errors import RpcError
from moveinv.sources.rpc_client import GET_NORMALIZED_MODULES, JsonRpcSource
from utility import PKG, rpc_package

URL = "http://fullnode.test:9000"


def _source(handler: Callable[[httpx.Request], httpx.Response], *, retries: int = 3, sleeps: Optional[List[float]] = None) -> JsonRpcSource:
    sleeps = sleeps if sleeps is not None else []
    return JsonRpcSource(
        URL,
        timeout_s=5,
        retries=retries,
        backoff_initial_s=0.5,
        backoff_max_s=1.0,
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
    )


def _result(request: httpx.Request, result) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


# fetch() posts one JSON-RPC request for the package and returns its module map.
def test_fetch_success():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return _result(request, rpc_package())

    src = _source(handler)
    try:
        modules = src.fetch(PKG)
    finally:
        src.close()

    assert set(modules) == {"coin", "vault"}
    assert seen[0]["method"] == GET_NORMALIZED_MODULES
    assert seen[0]["params"] == [PKG]
    assert seen[0]["jsonrpc"] == "2.0"


# 5xx and 429 responses are retried with capped exponential backoff.
def test_retries_then_succeeds():
    statuses = iter([503, 429])
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses, 200)
        if status != 200:
            return httpx.Response(status)
        return _result(request, {})

    assert _source(handler, sleeps=sleeps).fetch(PKG) == {}
    assert sleeps == [0.5, 1.0]


# When the retry budget runs out the last failure becomes the package's RPC error; retries come on top of the first attempt.
@pytest.mark.parametrize("status,kind", [(429, "rate_limited"), (502, "network_error")])
def test_retry_budget_exhausted(status: int, kind: str):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(status)

    sleeps: List[float] = []
    with pytest.raises(RpcError) as ei:
        _source(handler, retries=3, sleeps=sleeps).fetch(PKG)
    assert ei.value.kind == kind
    assert len(calls) == 4
    assert sleeps == [0.5, 1.0, 1.0]


# With no retries a failing request is tried exactly once.
def test_zero_retries_single_attempt():
    calls = []
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(503)

    with pytest.raises(RpcError) as ei:
        _source(handler, retries=0, sleeps=sleeps).fetch(PKG)
    assert ei.value.kind == "network_error"
    assert len(calls) == 1 and sleeps == []


# Timeouts and connection failures map to timeout / network_error.
@pytest.mark.parametrize("exc,kind", [
    (httpx.ReadTimeout("read timed out"), "timeout"),
    (httpx.ConnectError("connection refused"), "network_error"),
])
def test_transport_errors(exc: Exception, kind: str):
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc

    with pytest.raises(RpcError) as ei:
        _source(handler, retries=2).fetch(PKG)
    assert ei.value.code == f"rpc_{kind}"


# Other 4xx responses are not retried.
def test_client_error_not_retried():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(400, text="bad request")

    with pytest.raises(RpcError) as ei:
        _source(handler).fetch(PKG)
    assert ei.value.kind == "malformed_response"
    assert len(calls) == 1


# JSON-RPC errors about unknown objects, by message or by the invalid-params code, are not_found; others are malformed_response.
@pytest.mark.parametrize("code,message,kind", [
    (-32000, "Package object does not exist with ID 0xab", "not_found"),
    (-32602, "Invalid params", "not_found"),
    (-32600, "Invalid Request", "malformed_response"),
    (-32603, "Internal error", "malformed_response"),
])
def test_jsonrpc_error_classification(code: int, message: str, kind: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": code, "message": message}})

    with pytest.raises(RpcError) as ei:
        _source(handler).fetch(PKG)
    assert ei.value.kind == kind


# Bodies that are not JSON, or results that are not module maps, are malformed responses.
@pytest.mark.parametrize("response", [
    httpx.Response(200, text="<html>oops</html>"),
    httpx.Response(200, json={"jsonrpc": "2.0", "id": 1}),
    httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": ["coin"]}),
])
def test_malformed_responses(response: httpx.Response):
    with pytest.raises(RpcError) as ei:
        _source(lambda request: response).fetch(PKG)
    assert ei.value.kind == "malformed_response"
