"""LND REST implementation of the Lightning client protocol."""

from __future__ import annotations

import base64
import ssl
from typing import Any, Awaitable, Callable, Optional, Type, TypeVar, Union
from types import TracebackType

import httpx
from pydantic import BaseModel, ValidationError

from ...application.lightning.dtos import (
    AddHoldInvoiceResponseDTO,
    ChannelPointDTO,
    InvoiceDTO,
    NewAddressResponseDTO,
    PeerDTO,
    TransactionDTO,
)
from ...domain.errors import LightningNodeError
from ..http.http_client import AsyncHttpClient

MACAROON_HEADER = "Grpc-Metadata-macaroon"

T = TypeVar("T", bound=BaseModel)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _txid_from_bytes_b64(value: str) -> str:
    # LND returns funding txid bytes in internal (reversed) byte order
    return base64.b64decode(value)[::-1].hex()


class AsyncLndClient:
    """Asynchronous client for the LND REST API.

    Bytes fields are sent base64-encoded. Requests authenticate with the
    admin macaroon in the ``Grpc-Metadata-macaroon`` header.
    """

    def __init__(
        self,
        base_url: str,
        macaroon_hex: str,
        *,
        tls_cert_path: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        verify: Union[bool, ssl.SSLContext] = True
        if tls_cert_path:
            verify = ssl.create_default_context(cafile=tls_cert_path)
        self._http = AsyncHttpClient(
            base_url,
            timeout=timeout,
            headers={MACAROON_HEADER: macaroon_hex},
            verify=verify,
            transport=transport,
        )

    async def _call(
        self, operation: str, request: Callable[[], Awaitable[httpx.Response]]
    ) -> Any:
        try:
            resp = await request()
        except httpx.HTTPStatusError as e:
            raise LightningNodeError(
                operation,
                f"HTTP {e.response.status_code}: {e.response.text}",
                rejected=True,
            ) from e
        except httpx.RequestError as e:
            # Read timeouts and dropped connections leave the outcome unknown
            raise LightningNodeError(
                operation,
                f"could not reach node: {e!r}",
                rejected=isinstance(e, (httpx.ConnectError, httpx.ConnectTimeout)),
            ) from e
        try:
            return resp.json()
        except ValueError as e:
            raise LightningNodeError(operation, "response is not JSON") from e

    @staticmethod
    def _parse(operation: str, model: Type[T], data: Any) -> T:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise LightningNodeError(operation, f"unexpected response: {e}") from e

    # Peers

    async def list_peers(self) -> list[PeerDTO]:
        data = await self._call("ListPeers", lambda: self._http.get("/v1/peers"))
        return [self._parse("ListPeers", PeerDTO, p) for p in data.get("peers") or []]

    # Invoices

    async def add_hold_invoice(
        self,
        *,
        memo: str,
        payment_hash: bytes,
        value_sat: int,
        expiry: int,
        private: bool,
    ) -> AddHoldInvoiceResponseDTO:
        body = {
            "memo": memo,
            "hash": _b64(payment_hash),
            "value": str(value_sat),
            "expiry": str(expiry),
            "private": private,
        }
        data = await self._call(
            "AddHoldInvoice", lambda: self._http.post("/v2/invoices/hodl", json=body)
        )
        return self._parse("AddHoldInvoice", AddHoldInvoiceResponseDTO, data)

    async def lookup_invoice(self, payment_hash: bytes) -> InvoiceDTO:
        path = f"/v1/invoice/{payment_hash.hex()}"
        data = await self._call("LookupInvoice", lambda: self._http.get(path))
        return self._parse("LookupInvoice", InvoiceDTO, data)

    async def settle_invoice(self, preimage: bytes) -> None:
        body = {"preimage": _b64(preimage)}
        await self._call(
            "SettleInvoice",
            lambda: self._http.post("/v2/invoices/settle", json=body),
        )

    async def cancel_invoice(self, payment_hash: bytes) -> None:
        body = {"payment_hash": _b64(payment_hash)}
        await self._call(
            "CancelInvoice",
            lambda: self._http.post("/v2/invoices/cancel", json=body),
        )

    # On-chain wallet

    async def new_address(self) -> NewAddressResponseDTO:
        data = await self._call(
            "NewAddress",
            lambda: self._http.get(
                "/v1/newaddress", params={"type": "WITNESS_PUBKEY_HASH"}
            ),
        )
        return self._parse("NewAddress", NewAddressResponseDTO, data)

    async def get_transactions(self) -> list[TransactionDTO]:
        data = await self._call(
            "GetTransactions", lambda: self._http.get("/v1/transactions")
        )
        if "transactions" not in data:
            raise LightningNodeError("GetTransactions", "missing transactions list")
        return [
            self._parse("GetTransactions", TransactionDTO, tx)
            for tx in data["transactions"] or []
        ]

    # Channels

    async def open_channel_sync(
        self,
        *,
        node_pubkey: str,
        local_funding_amount: int,
        push_sat: int,
        private: bool,
        sat_per_vbyte: int,
    ) -> ChannelPointDTO:
        try:
            pubkey_bytes = bytes.fromhex(node_pubkey)
        except ValueError as e:
            raise LightningNodeError(
                "OpenChannelSync", "node pubkey is not hex", rejected=True
            ) from e
        body = {
            "node_pubkey": _b64(pubkey_bytes),
            "local_funding_amount": str(local_funding_amount),
            "push_sat": str(push_sat),
            "private": private,
            "sat_per_vbyte": str(sat_per_vbyte),
        }
        data = await self._call(
            "OpenChannelSync", lambda: self._http.post("/v1/channels", json=body)
        )
        funding_txid = data.get("funding_txid_str")
        if not funding_txid and data.get("funding_txid_bytes"):
            funding_txid = _txid_from_bytes_b64(data["funding_txid_bytes"])
        if not funding_txid:
            raise LightningNodeError("OpenChannelSync", "missing funding txid")
        return self._parse(
            "OpenChannelSync",
            ChannelPointDTO,
            {
                "funding_txid": funding_txid,
                "output_index": data.get("output_index", 0),
            },
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "AsyncLndClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()
