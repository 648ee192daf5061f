# moveinv/errors.py
"""
Per-package failure taxonomy.

Every error carries the pipeline ``stage`` it belongs to and a short ``kind``;
``str(err)`` is what lands in a report's ``error`` field, e.g.
``rpc_timeout: read timed out after 30s``.
"""
from __future__ import annotations


class VerifyError(Exception):
    stage = "verify"
    kind = "error"

    def __init__(self, message: str, *, kind: str | None = None):
        if kind is not None:
            self.kind = kind
        self.message = message
        super().__init__(message)

    @property
    def code(self) -> str:
        return f"{self.stage}_{self.kind}"

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ExtractionError(VerifyError):
    """Local interface extraction failed (kinds: not_found, decode_error, translation_panic, timeout, extractor_unavailable)."""
    stage = "local"
    kind = "decode_error"


class RpcError(VerifyError):
    """Remote normalized modules could not be obtained (kinds: not_found, network_error, timeout, rate_limited, malformed_response)."""
    stage = "rpc"
    kind = "network_error"


class NormalizationError(VerifyError):
    stage = "normalize"
    kind = "error"

    def __init__(self, message: str, *, source: str | None = None, kind: str | None = None):
        self.source = source
        if source:
            message = f"[{source}] {message}"
        super().__init__(message, kind=kind)


class UnknownAbilityToken(NormalizationError):
    kind = "unknown_ability_token"


class UnknownVisibilityToken(NormalizationError):
    kind = "unknown_visibility_token"


class MalformedInterface(NormalizationError):
    kind = "malformed_interface"


class DiffInternalError(VerifyError):
    """The differ was handed something that is not a pair of canonical models for one package."""
    stage = "diff"
    kind = "internal_error"


class InputError(VerifyError):
    """The package identifier itself is unusable (kind: invalid_object_id)."""
    stage = "input"
    kind = "invalid_object_id"

    @property
    def code(self) -> str:
        # legacy consumers match on the bare kind
        return self.kind
