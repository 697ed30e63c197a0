"""Use cases for LSPS1 order creation and payment reconciliation."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Mapping

from pydantic import ValidationError

from ....domain.errors import JsonRpcError, LightningNodeError
from ....domain.lsp.entities import (
    Channel,
    HoldInvoiceSecret,
    OnchainPayment,
    Order,
    Payment,
    PaymentState,
)
from ....domain.lsp.order_repository import OrderRepository
from ....domain.shared import LightningClientProtocol
from ..dtos import CreateOrderDTO, GetOrderDTO
from .fees import (
    channel_expiry,
    compute_fee_sat,
    compute_order_total_sat,
    meets_payment_threshold,
)
from .info import LspInfoService

logger = logging.getLogger(__name__)

PREIMAGE_BYTES = 20
HOLD_INVOICE_EXPIRY_SECONDS = 3600
CHANNEL_OPEN_SAT_PER_VBYTE = 1


def _validation_errors(e: ValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
        for err in e.errors()
    ]


class OrderService:
    """Service for creating LSPS1 orders and reconciling their payment status."""

    def __init__(
        self,
        order_repository: OrderRepository,
        lightning_client: LightningClientProtocol,
        info_service: LspInfoService,
    ):
        self.order_repository = order_repository
        self.lightning_client = lightning_client
        self.info_service = info_service

    # ------------------------------------------------------------------
    # lsps1.create_order
    # ------------------------------------------------------------------

    async def create_order(self, params: Mapping[str, Any]) -> dict[str, Any]:
        if not params.get("client_node_pubkey"):
            raise JsonRpcError(
                "invalid_params",
                {"message": 'Missing required parameter: "client_node_pubkey"'},
            )
        try:
            dto = CreateOrderDTO.model_validate(dict(params))
        except ValidationError as e:
            raise JsonRpcError("invalid_params", {"errors": _validation_errors(e)})

        order = await self.create(dto)
        return order.model_dump(mode="json")

    async def create(self, dto: CreateOrderDTO) -> Order:
        """Provision invoice and address for a new order and persist it."""
        # 1) Only open channels to nodes we can reach
        peers = await self.lightning_client.list_peers()
        if not any(peer.pub_key == dto.client_node_pubkey for peer in peers):
            logger.warning(
                "Rejecting order for unconnected node %s", dto.client_node_pubkey
            )
            raise JsonRpcError(
                "client_rejected",
                {
                    "message": 'Node specified by "client_node_pubkey" is not a connected peer'
                },
            )

        # 2) Price the order
        fee_sat = compute_fee_sat(dto.client_balance_sat)
        order_total_sat = compute_order_total_sat(dto.client_balance_sat)

        # 3) Fresh hold-invoice secret
        preimage = secrets.token_bytes(PREIMAGE_BYTES)
        payment_hash = hashlib.sha256(preimage).digest()

        created_at = datetime.now(timezone.utc)
        draft = Order(
            lsp_balance_sat=dto.lsp_balance_sat,
            client_balance_sat=dto.client_balance_sat,
            client_node_pubkey=dto.client_node_pubkey,
            required_channel_confirmations=dto.required_channel_confirmations,
            funding_confirms_within_blocks=dto.funding_confirms_within_blocks,
            channel_expiry_blocks=dto.channel_expiry_blocks,
            token=dto.token,
            created_at=created_at,
            announce_channel=dto.announce_channel,
            payment=Payment(
                fee_total_sat=fee_sat,
                order_total_sat=order_total_sat,
                bolt11_invoice="",
                onchain_address="",
                min_onchain_payment_confirmations=(
                    self.info_service.options.min_onchain_payment_confirmations
                ),
            ),
        )

        # 4) Hold invoice for the order total
        invoice = await self.lightning_client.add_hold_invoice(
            memo=f"lsp-order-{draft.order_id}",
            payment_hash=payment_hash,
            value_sat=order_total_sat,
            expiry=HOLD_INVOICE_EXPIRY_SECONDS,
            private=not dto.announce_channel,
        )

        try:
            # 5) On-chain fallback rail
            address = await self.lightning_client.new_address()

            # 6) Persist secret and order
            draft.payment.bolt11_invoice = invoice.payment_request
            draft.payment.onchain_address = address.address
            secret = HoldInvoiceSecret(
                order_id=draft.order_id,
                preimage_hex=preimage.hex(),
                payment_hash_hex=payment_hash.hex(),
            )
            order = await self.order_repository.create(draft, secret)
        except BaseException:
            # Also runs when the request deadline cancels this task
            await asyncio.shield(
                self._cancel_orphaned_invoice(draft.order_id, payment_hash)
            )
            raise

        logger.info(
            "Created order %s: total=%s sat, fee=%s sat",
            order.order_id,
            order_total_sat,
            fee_sat,
        )
        return order

    async def _cancel_orphaned_invoice(
        self, order_id: str, payment_hash: bytes
    ) -> None:
        try:
            await self.lightning_client.cancel_invoice(payment_hash)
            logger.info("Cancelled hold invoice of abandoned order %s", order_id)
        except Exception:
            logger.exception(
                "Failed to cancel hold invoice %s of abandoned order %s",
                payment_hash.hex(),
                order_id,
            )

    # ------------------------------------------------------------------
    # lsps1.get_order
    # ------------------------------------------------------------------

    async def get_order(self, params: Mapping[str, Any]) -> dict[str, Any]:
        try:
            dto = GetOrderDTO.model_validate(dict(params))
        except ValidationError:
            raise JsonRpcError("order_not_found")

        order = await self.get(dto.order_id)
        return order.model_dump(mode="json")

    async def get(self, order_id: str) -> Order:
        """Reconcile an order against the node and return its current state."""
        if await self.order_repository.get_by_id(order_id) is None:
            raise JsonRpcError("order_not_found")

        async with self.order_repository.lock(order_id):
            order = await self.order_repository.get_by_id(order_id)
            if order is None:
                raise JsonRpcError("order_not_found")
            await self.reconcile(order)

        reloaded = await self.order_repository.get_by_id(order_id)
        if reloaded is None:
            raise JsonRpcError("order_not_found")
        return reloaded

    async def reconcile(self, order: Order) -> Order:
        """Run one reconciliation pass. Each completed step is persisted.

        Callers hold ``order_repository.lock(order.order_id)``.
        """
        if order.payment.state == PaymentState.EXPECT_PAYMENT:
            await self._check_hold_invoice(order)
        if (
            order.payment.state == PaymentState.EXPECT_PAYMENT
            and order.payment.onchain_payment is None
        ):
            await self._find_onchain_payment(order)
        if (
            order.payment.state == PaymentState.EXPECT_PAYMENT
            and order.payment.onchain_payment is not None
            and not order.payment.onchain_payment.confirmed
        ):
            await self._check_onchain_confirmation(order)
        if order.is_paid_or_held and order.channel is None:
            channel = await self._open_channel_once(order)
            order.set_channel(channel)
            await self.order_repository.update(order)
            logger.info(
                "Opened channel %s for order %s",
                channel.funding_outpoint,
                order.order_id,
            )
        if order.payment.state == PaymentState.HOLD and order.channel is not None:
            await self._settle_hold_invoice(order)
        return order

    async def _open_channel_once(self, order: Order) -> Channel:
        """Open the order's channel unless an earlier attempt may have funded one.

        An attempt is recorded before calling the node and only forgotten
        when the node refused it. An attempt with unknown outcome blocks
        further opens until an operator resolves it.
        """
        if not await self.order_repository.begin_channel_open(order.order_id):
            logger.error(
                "Order %s has a channel open of unknown outcome; not retrying",
                order.order_id,
            )
            raise JsonRpcError(
                "internal_error",
                {"message": "Channel open pending operator review"},
            )
        try:
            return await self.open_channel_for_order(order)
        except LightningNodeError as e:
            if e.rejected:
                await self.order_repository.clear_channel_open(order.order_id)
            raise

    async def _secret_for(self, order: Order) -> HoldInvoiceSecret:
        secret = await self.order_repository.get_hold_invoice_secret(order.order_id)
        if secret is None:
            raise RuntimeError(
                f"Hold invoice secret missing for order {order.order_id}"
            )
        return secret

    async def _check_hold_invoice(self, order: Order) -> None:
        secret = await self._secret_for(order)
        invoice = await self.lightning_client.lookup_invoice(secret.payment_hash)
        if invoice.is_accepted:
            order.payment.advance_to(PaymentState.HOLD)
            await self.order_repository.update(order)
            logger.info("Order %s hold invoice accepted", order.order_id)

    async def _find_onchain_payment(self, order: Order) -> None:
        address = order.payment.onchain_address
        txs = [
            tx
            for tx in await self.lightning_client.get_transactions()
            if address in tx.dest_addresses
        ]
        if not txs:
            return
        tx = txs[0]
        output = tx.own_output_for(address)
        if output is None:
            return

        confirmed = meets_payment_threshold(
            amount_sat=tx.amount,
            num_confirmations=tx.num_confirmations,
            order_total_sat=order.payment.order_total_sat,
            min_confirmations=order.payment.min_onchain_payment_confirmations,
        )
        order.payment.onchain_payment = OnchainPayment(
            outpoint=f"{tx.tx_hash}:{output.output_index}",
            sat=max(tx.amount, 0),
            confirmed=confirmed,
        )
        if confirmed:
            order.payment.advance_to(PaymentState.PAID)
        await self.order_repository.update(order)
        logger.info(
            "Order %s on-chain payment %s seen (confirmed=%s)",
            order.order_id,
            order.payment.onchain_payment.outpoint,
            confirmed,
        )

    async def _check_onchain_confirmation(self, order: Order) -> None:
        onchain_payment = order.payment.onchain_payment
        if onchain_payment is None:
            return
        txid = onchain_payment.txid
        tx = next(
            (
                t
                for t in await self.lightning_client.get_transactions()
                if t.tx_hash == txid
            ),
            None,
        )
        if tx is None:
            logger.warning(
                "Transaction %s of order %s is no longer reported by the node",
                txid,
                order.order_id,
            )
            return
        if meets_payment_threshold(
            amount_sat=tx.amount,
            num_confirmations=tx.num_confirmations,
            order_total_sat=order.payment.order_total_sat,
            min_confirmations=order.payment.min_onchain_payment_confirmations,
        ):
            onchain_payment.confirm()
            order.payment.advance_to(PaymentState.PAID)
            await self.order_repository.update(order)
            logger.info("Order %s paid on-chain", order.order_id)

    async def _settle_hold_invoice(self, order: Order) -> None:
        secret = await self._secret_for(order)
        await self.lightning_client.settle_invoice(secret.preimage)
        order.payment.advance_to(PaymentState.PAID)
        await self.order_repository.update(order)
        logger.info("Order %s hold invoice settled", order.order_id)

    async def open_channel_for_order(self, order: Order) -> Channel:
        """Fund a channel to the client sized by the order balances."""
        channel_point = await self.lightning_client.open_channel_sync(
            node_pubkey=order.client_node_pubkey,
            local_funding_amount=order.lsp_balance_sat + order.client_balance_sat,
            push_sat=order.client_balance_sat,
            private=not order.announce_channel,
            sat_per_vbyte=CHANNEL_OPEN_SAT_PER_VBYTE,
        )
        funded_at = datetime.now(timezone.utc)
        expiry_blocks = order.channel_expiry_blocks
        if expiry_blocks is None:
            expiry_blocks = self.info_service.options.max_channel_expiry_blocks
        return Channel(
            funded_at=funded_at,
            funding_outpoint=channel_point.outpoint,
            expires_at=channel_expiry(funded_at, expiry_blocks),
        )
