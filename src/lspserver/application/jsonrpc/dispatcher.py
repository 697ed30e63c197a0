"""JSON-RPC 2.0 request dispatching for the LSP endpoint."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from ...domain.errors import JsonRpcError
from ..lsp.use_cases.info import LspInfoService
from ..lsp.use_cases.order import OrderService

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

Handler = Callable[[Mapping[str, Any]], Awaitable[Any]]

CREATE_ORDER_PARAMS = (
    "lsp_balance_sat",
    "client_balance_sat",
    "client_node_pubkey",
    "required_channel_confirmations",
    "funding_confirms_within_blocks",
    "channel_expiry_blocks",
    "token",
    "refund_onchain_address",
    "announce_channel",
)


@dataclass(frozen=True)
class MethodSpec:
    handler: Handler
    known_params: frozenset[str]


def build_lsp_methods(
    info_service: LspInfoService, order_service: OrderService
) -> dict[str, MethodSpec]:
    """Method registry of the LSPS0/LSPS1 endpoint."""

    async def list_protocols(params: Mapping[str, Any]) -> list[int]:
        return await info_service.list_protocols()

    async def get_info(params: Mapping[str, Any]) -> dict[str, Any]:
        return await info_service.get_info()

    return {
        "lsps0.list_protocols": MethodSpec(list_protocols, frozenset()),
        "lsps1.get_info": MethodSpec(get_info, frozenset()),
        "lsps1.create_order": MethodSpec(
            order_service.create_order, frozenset(CREATE_ORDER_PARAMS)
        ),
        "lsps1.get_order": MethodSpec(
            order_service.get_order, frozenset({"order_id"})
        ),
    }


class JsonRpcDispatcher:
    """Validates JSON-RPC envelopes, routes them, and builds response envelopes."""

    def __init__(
        self,
        methods: Mapping[str, MethodSpec],
        *,
        request_timeout: Optional[float] = None,
    ):
        self.methods = dict(methods)
        self.request_timeout = request_timeout

    async def handle(self, body: Any) -> tuple[int, dict[str, Any]]:
        """Handle one parsed request body. Returns ``(http_status, envelope)``."""
        request_id = body.get("id") if isinstance(body, dict) else None
        method = body.get("method") if isinstance(body, dict) else None
        try:
            result = await self._dispatch(body)
        except JsonRpcError as e:
            return e.http_status, self.error_envelope(request_id, e)
        except Exception:
            logger.exception("Unhandled error in JSON-RPC method %r", method)
            return 500, self.error_envelope(request_id, JsonRpcError("internal_error"))
        return 200, {"id": request_id, "jsonrpc": JSONRPC_VERSION, "result": result}

    @staticmethod
    def error_envelope(request_id: Any, error: JsonRpcError) -> dict[str, Any]:
        return {
            "id": request_id,
            "jsonrpc": JSONRPC_VERSION,
            "error": error.to_dict(),
        }

    async def _dispatch(self, body: Any) -> Any:
        if not isinstance(body, dict):
            raise JsonRpcError("invalid_request")
        request_id = body.get("id")
        method = body.get("method")
        params = body.get("params")
        if params is None:
            params = {}
        if not request_id:
            raise JsonRpcError("invalid_request")
        if not method or not isinstance(method, str):
            raise JsonRpcError("invalid_request")
        if body.get("jsonrpc") != JSONRPC_VERSION:
            raise JsonRpcError("invalid_request")
        if not isinstance(params, dict):
            raise JsonRpcError("invalid_request")

        spec = self.methods.get(method)
        if spec is None:
            raise JsonRpcError("method_not_found")

        unrecognized = sorted(key for key in params if key not in spec.known_params)
        if unrecognized:
            raise JsonRpcError("invalid_params", {"unrecognized": unrecognized})

        if self.request_timeout is None:
            return await spec.handler(params)
        return await asyncio.wait_for(spec.handler(params), self.request_timeout)
