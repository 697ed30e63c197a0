"""Domain-specific exceptions and the JSON-RPC error taxonomy."""

from __future__ import annotations

from typing import Any, Mapping, NamedTuple, Optional


class ErrorKind(NamedTuple):
    code: int
    message: str
    http_status: int


ERROR_KINDS: dict[str, ErrorKind] = {
    "parse_error": ErrorKind(-32700, "Parse error", 400),
    "invalid_request": ErrorKind(-32600, "Invalid request", 400),
    "method_not_found": ErrorKind(-32601, "Method not found", 400),
    "invalid_params": ErrorKind(-32602, "Invalid params", 400),
    "client_rejected": ErrorKind(1, "Client rejected", 401),
    "option_mismatch": ErrorKind(100, "Option mismatch", 400),
    "order_not_found": ErrorKind(101, "Order not found", 404),
    "internal_error": ErrorKind(-32603, "Internal error", 500),
}


class JsonRpcError(Exception):
    """Protocol error carrying a code, message, HTTP status and structured data.

    Unknown kinds fold to ``internal_error``.
    """

    def __init__(self, kind: str, data: Optional[Mapping[str, Any]] = None):
        if kind not in ERROR_KINDS:
            kind = "internal_error"
        code, message, http_status = ERROR_KINDS[kind]
        super().__init__(message)
        self.kind = kind
        self.code = code
        self.message = message
        self.http_status = http_status
        self.data: dict[str, Any] = dict(data) if data else {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "data": self.data}


class LightningNodeError(Exception):
    """Raised when a call to the Lightning node fails.

    ``rejected`` is True when the node is known not to have acted on the
    call (it answered with an error, or was never reached). Otherwise the
    outcome is unknown.
    """

    def __init__(self, operation: str, detail: str, *, rejected: bool = False):
        super().__init__(f"Lightning node call {operation} failed: {detail}")
        self.operation = operation
        self.detail = detail
        self.rejected = rejected


class LspConfigurationError(ValueError):
    """Raised when LSP policy options are invalid."""
