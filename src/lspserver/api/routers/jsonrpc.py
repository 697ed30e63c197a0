"""JSON-RPC endpoint for LSPS0/LSPS1 requests."""

from __future__ import annotations

import json
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram

from ...application.jsonrpc.dispatcher import JsonRpcDispatcher
from ...domain.errors import JsonRpcError
from ..dependencies import get_dispatcher

router = APIRouter(tags=["jsonrpc"])


jsonrpc_requests_total = Counter(
    "jsonrpc_requests_total",
    "Total JSON-RPC requests processed",
    ["method", "status"],
)

jsonrpc_request_duration_seconds = Histogram(
    "jsonrpc_request_duration_seconds",
    "Wall time to process a JSON-RPC request",
    ["method"],
)


def _metric_method(body: object, dispatcher: JsonRpcDispatcher) -> str:
    # Bound label cardinality to registered methods
    method = body.get("method") if isinstance(body, dict) else None
    if isinstance(method, str) and method in dispatcher.methods:
        return method
    return "unknown"


@router.post("/", response_class=JSONResponse)
async def handle_jsonrpc(
    request: Request,
    dispatcher: JsonRpcDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    """Handle a single JSON-RPC 2.0 request."""
    start_time = time.perf_counter()
    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError:
        jsonrpc_requests_total.labels(method="unknown", status="400").inc()
        return JSONResponse(
            status_code=400,
            content=JsonRpcDispatcher.error_envelope(None, JsonRpcError("parse_error")),
        )

    status_code, envelope = await dispatcher.handle(body)

    method = _metric_method(body, dispatcher)
    jsonrpc_requests_total.labels(method=method, status=str(status_code)).inc()
    elapsed = time.perf_counter() - start_time
    jsonrpc_request_duration_seconds.labels(method=method).observe(elapsed)
    return JSONResponse(status_code=status_code, content=envelope)
