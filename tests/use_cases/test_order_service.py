"""Use case tests for OrderService - fast tests using in-memory implementations."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from lspserver.application.jsonrpc.dispatcher import (
    JsonRpcDispatcher,
    build_lsp_methods,
)
from lspserver.application.lsp.use_cases.info import LspInfoService
from lspserver.application.lsp.use_cases.order import OrderService
from lspserver.domain.errors import JsonRpcError, LightningNodeError
from lspserver.domain.lsp.entities import PaymentState
from lspserver.domain.lsp.options import LspOptions
from tests.fixtures import FakeLightningClient, InMemoryOrderRepository


def _create_params(pubkey: str, **overrides) -> dict:
    params = {
        "lsp_balance_sat": "1000000",
        "client_balance_sat": "0",
        "client_node_pubkey": pubkey,
        "required_channel_confirmations": 0,
        "funding_confirms_within_blocks": 6,
        "channel_expiry_blocks": 144,
        "announce_channel": True,
    }
    params.update(overrides)
    return params


async def _payment_hash(repo: InMemoryOrderRepository, order_id: str) -> bytes:
    secret = await repo.get_hold_invoice_secret(order_id)
    assert secret is not None
    return secret.payment_hash


# ============================================================================
# lsps1.create_order
# ============================================================================


@pytest.mark.asyncio
async def test_create_order_with_zero_client_balance(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """
    Given a connected client node
    When it orders a channel with no pushed balance
    Then the order costs the flat fee and is persisted awaiting payment
    """
    result = await order_service.create_order(_create_params(client_node_pubkey))

    assert result["lsp_balance_sat"] == "1000000"
    assert result["client_balance_sat"] == "0"
    assert result["order_state"] == "CREATED"
    assert result["channel"] is None
    payment = result["payment"]
    assert payment["state"] == "EXPECT_PAYMENT"
    assert payment["fee_total_sat"] == "5000"
    assert payment["order_total_sat"] == "5000"
    assert payment["min_onchain_payment_confirmations"] == 1
    assert payment["min_fee_for_0conf"] == 253
    assert payment["bolt11_invoice"].startswith("lnbcrt")
    assert payment["onchain_address"].startswith("bcrt1")
    assert payment["onchain_payment"] is None

    stored = await order_repository.get_by_id(result["order_id"])
    assert stored is not None
    assert stored.model_dump(mode="json") == result


@pytest.mark.asyncio
async def test_create_order_provisions_hold_invoice(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """The hold invoice is locked to the stored secret and sized to the total."""
    result = await order_service.create_order(
        _create_params(client_node_pubkey, client_balance_sat="1000000")
    )

    payment_hash = await _payment_hash(order_repository, result["order_id"])
    invoice = lightning_client.invoices[payment_hash]
    assert invoice["value_sat"] == 1_006_000
    assert invoice["expiry"] == 3600
    assert invoice["private"] is False
    assert result["payment"]["order_total_sat"] == "1006000"

    secret = await order_repository.get_hold_invoice_secret(result["order_id"])
    assert len(secret.preimage) == 20


@pytest.mark.asyncio
async def test_create_order_expires_after_24_hours(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    client_node_pubkey: str,
) -> None:
    result = await order_service.create_order(_create_params(client_node_pubkey))

    order = await order_repository.get_by_id(result["order_id"])
    assert order.expires_at - order.created_at == timedelta(hours=24)


@pytest.mark.asyncio
async def test_create_order_rejects_unconnected_node(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
) -> None:
    """
    Given a node that is not a peer of the LSP
    When it orders a channel
    Then the request is rejected and nothing is provisioned or stored
    """
    stranger = "03" + "cd" * 32

    with pytest.raises(JsonRpcError) as exc_info:
        await order_service.create_order(_create_params(stranger))

    assert exc_info.value.kind == "client_rejected"
    assert exc_info.value.http_status == 401
    assert "client_node_pubkey" in exc_info.value.data["message"]
    assert lightning_client.call_names() == ["list_peers"]
    assert order_repository._store.keys() == []


@pytest.mark.asyncio
async def test_create_order_requires_pubkey(order_service: OrderService) -> None:
    with pytest.raises(JsonRpcError) as exc_info:
        await order_service.create_order({"lsp_balance_sat": "1000"})

    assert exc_info.value.kind == "invalid_params"
    assert exc_info.value.data == {
        "message": 'Missing required parameter: "client_node_pubkey"'
    }


@pytest.mark.asyncio
async def test_create_order_rejects_malformed_amount(
    order_service: OrderService, client_node_pubkey: str
) -> None:
    with pytest.raises(JsonRpcError) as exc_info:
        await order_service.create_order(
            _create_params(client_node_pubkey, lsp_balance_sat="lots")
        )

    assert exc_info.value.kind == "invalid_params"
    assert exc_info.value.data["errors"][0]["field"] == "lsp_balance_sat"


@pytest.mark.asyncio
async def test_address_failure_cancels_hold_invoice(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """
    Given the node fails to provide an on-chain address
    When an order is created
    Then the already issued hold invoice is cancelled and nothing is stored
    """
    lightning_client.fail("new_address")

    with pytest.raises(LightningNodeError):
        await order_service.create_order(_create_params(client_node_pubkey))

    issued = [
        kwargs["payment_hash"]
        for name, kwargs in lightning_client.calls
        if name == "add_hold_invoice"
    ]
    assert lightning_client.cancelled == issued
    assert order_repository._store.keys() == []


@pytest.mark.asyncio
async def test_cancel_failure_does_not_mask_original_error(
    order_service: OrderService,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    lightning_client.fail(
        "new_address", LightningNodeError("NewAddress", "wallet locked")
    )
    lightning_client.fail("cancel_invoice")

    with pytest.raises(LightningNodeError, match="wallet locked"):
        await order_service.create_order(_create_params(client_node_pubkey))


@pytest.mark.asyncio
async def test_request_deadline_during_create_cancels_hold_invoice(
    info_service: LspInfoService,
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """
    Given a node that is slow to provide an on-chain address
    When the request deadline expires while the order is being created
    Then the already issued hold invoice is cancelled and nothing is stored
    """
    lightning_client.delay("new_address", 1)
    dispatcher = JsonRpcDispatcher(
        build_lsp_methods(info_service, order_service), request_timeout=0.05
    )

    status, envelope = await dispatcher.handle(
        {
            "jsonrpc": "2.0",
            "id": "1",
            "method": "lsps1.create_order",
            "params": _create_params(client_node_pubkey),
        }
    )

    assert status == 500
    assert envelope["error"]["code"] == -32603
    issued = [
        kwargs["payment_hash"]
        for name, kwargs in lightning_client.calls
        if name == "add_hold_invoice"
    ]
    assert len(issued) == 1
    assert lightning_client.cancelled == issued
    assert order_repository._store.keys() == []


# ============================================================================
# lsps1.get_order
# ============================================================================


@pytest.mark.asyncio
async def test_get_order_unknown_id(order_service: OrderService) -> None:
    with pytest.raises(JsonRpcError) as exc_info:
        await order_service.get_order({"order_id": "does-not-exist"})

    assert exc_info.value.kind == "order_not_found"
    assert exc_info.value.http_status == 404


@pytest.mark.asyncio
async def test_get_order_missing_id(order_service: OrderService) -> None:
    with pytest.raises(JsonRpcError) as exc_info:
        await order_service.get_order({})

    assert exc_info.value.kind == "order_not_found"


@pytest.mark.asyncio
async def test_get_order_without_payment_is_unchanged(
    order_service: OrderService,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(_create_params(client_node_pubkey))

    result = await order_service.get_order({"order_id": created["order_id"]})

    assert result == created


@pytest.mark.asyncio
async def test_lightning_payment_opens_channel_and_settles(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """
    Given an order whose hold invoice has been accepted
    When the client polls the order
    Then the channel is opened, the invoice settled and the order is PAID
    """
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    lightning_client.accept_invoice(await _payment_hash(order_repository, order_id))

    result = await order_service.get_order({"order_id": order_id})

    assert result["payment"]["state"] == "PAID"
    assert result["channel"] is not None
    assert result["channel"]["funding_outpoint"] == "01" * 32 + ":0"

    opened = lightning_client.opened_channels
    assert opened == [
        {
            "node_pubkey": client_node_pubkey,
            "local_funding_amount": 1_000_000,
            "push_sat": 0,
            "private": False,
        }
    ]
    secret = await order_repository.get_hold_invoice_secret(order_id)
    assert lightning_client.settled == [secret.preimage]

    names = lightning_client.call_names()
    assert names.index("open_channel_sync") < names.index("settle_invoice")


@pytest.mark.asyncio
async def test_channel_expiry_follows_requested_blocks(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(
        _create_params(client_node_pubkey, channel_expiry_blocks=144)
    )
    order_id = created["order_id"]
    lightning_client.accept_invoice(await _payment_hash(order_repository, order_id))

    await order_service.get_order({"order_id": order_id})

    order = await order_repository.get_by_id(order_id)
    assert order.channel.expires_at - order.channel.funded_at == timedelta(days=1)


@pytest.mark.asyncio
async def test_channel_expiry_defaults_to_max_option(
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    info_service = LspInfoService(
        LspOptions.from_overrides({"max_channel_expiry_blocks": 288})
    )
    service = OrderService(order_repository, lightning_client, info_service)
    params = _create_params(client_node_pubkey)
    del params["channel_expiry_blocks"]
    created = await service.create_order(params)
    order_id = created["order_id"]
    lightning_client.accept_invoice(await _payment_hash(order_repository, order_id))

    await service.get_order({"order_id": order_id})

    order = await order_repository.get_by_id(order_id)
    assert order.channel.expires_at - order.channel.funded_at == timedelta(days=2)


@pytest.mark.asyncio
async def test_onchain_payment_opens_channel_without_settling(
    order_service: OrderService,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """
    Given a confirmed on-chain payment covering the order total
    When the client polls the order
    Then the order is PAID, the payment recorded and a channel opened
    """
    created = await order_service.create_order(_create_params(client_node_pubkey))
    address = created["payment"]["onchain_address"]
    lightning_client.add_onchain_payment(
        address=address, amount=5000, num_confirmations=1, tx_hash="cd" * 32
    )

    result = await order_service.get_order({"order_id": created["order_id"]})

    assert result["payment"]["state"] == "PAID"
    assert result["payment"]["onchain_payment"] == {
        "outpoint": "cd" * 32 + ":1",
        "sat": "5000",
        "confirmed": True,
    }
    assert result["channel"] is not None
    assert lightning_client.settled == []


@pytest.mark.asyncio
async def test_unconfirmed_onchain_payment_confirms_on_later_poll(
    order_service: OrderService,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    lightning_client.add_onchain_payment(
        address=created["payment"]["onchain_address"],
        amount=5000,
        num_confirmations=0,
        tx_hash="ef" * 32,
    )

    first = await order_service.get_order({"order_id": order_id})
    assert first["payment"]["state"] == "EXPECT_PAYMENT"
    assert first["payment"]["onchain_payment"]["confirmed"] is False
    assert first["channel"] is None

    lightning_client.set_confirmations("ef" * 32, 2)
    second = await order_service.get_order({"order_id": order_id})

    assert second["payment"]["state"] == "PAID"
    assert second["payment"]["onchain_payment"]["confirmed"] is True
    assert second["channel"] is not None


@pytest.mark.asyncio
async def test_underpaying_onchain_payment_is_recorded_but_unconfirmed(
    order_service: OrderService,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(_create_params(client_node_pubkey))
    lightning_client.add_onchain_payment(
        address=created["payment"]["onchain_address"],
        amount=4000,
        num_confirmations=6,
    )

    result = await order_service.get_order({"order_id": created["order_id"]})

    assert result["payment"]["state"] == "EXPECT_PAYMENT"
    assert result["payment"]["onchain_payment"]["sat"] == "4000"
    assert result["payment"]["onchain_payment"]["confirmed"] is False
    assert result["channel"] is None


@pytest.mark.asyncio
async def test_vanished_transaction_leaves_order_unchanged(
    order_service: OrderService,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    lightning_client.add_onchain_payment(
        address=created["payment"]["onchain_address"], amount=5000
    )
    first = await order_service.get_order({"order_id": order_id})

    lightning_client.transactions = []
    second = await order_service.get_order({"order_id": order_id})

    assert second == first


@pytest.mark.asyncio
async def test_paid_order_polling_is_idempotent(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """Once PAID with a channel, polling returns the same order and calls nothing."""
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    lightning_client.accept_invoice(await _payment_hash(order_repository, order_id))
    first = await order_service.get_order({"order_id": order_id})
    calls_before = len(lightning_client.calls)

    second = await order_service.get_order({"order_id": order_id})
    third = await order_service.get_order({"order_id": order_id})

    assert second == first
    assert third == first
    assert len(lightning_client.calls) == calls_before


@pytest.mark.asyncio
async def test_payment_state_never_regresses(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    payment_hash = await _payment_hash(order_repository, order_id)
    lightning_client.accept_invoice(payment_hash)
    await order_service.get_order({"order_id": order_id})

    # Node later reports the invoice as open again
    lightning_client.invoice_states[payment_hash] = "OPEN"
    result = await order_service.get_order({"order_id": order_id})

    assert result["payment"]["state"] == "PAID"


@pytest.mark.asyncio
async def test_failed_channel_open_is_retried_on_next_poll(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """
    Given an accepted hold invoice and a node that fails to open the channel
    When the node refuses the open and the client polls twice
    Then the first poll fails leaving the order HOLD without channel
    And the second poll opens the channel and settles
    """
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    lightning_client.accept_invoice(await _payment_hash(order_repository, order_id))
    lightning_client.fail(
        "open_channel_sync",
        LightningNodeError("OpenChannelSync", "HTTP 500: busy", rejected=True),
    )

    with pytest.raises(LightningNodeError):
        await order_service.get_order({"order_id": order_id})

    stored = await order_repository.get_by_id(order_id)
    assert stored.payment.state == PaymentState.HOLD
    assert stored.channel is None
    assert lightning_client.settled == []

    lightning_client.recover("open_channel_sync")
    result = await order_service.get_order({"order_id": order_id})

    assert result["payment"]["state"] == "PAID"
    assert result["channel"] is not None
    assert len(lightning_client.opened_channels) == 1


@pytest.mark.asyncio
async def test_channel_open_with_unknown_outcome_is_not_repeated(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    """
    Given an accepted hold invoice
    When the node times out after it may have funded the channel
    Then later polls do not open another channel
    And report an internal error until an operator resolves the order
    """
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    lightning_client.accept_invoice(await _payment_hash(order_repository, order_id))
    lightning_client.fail(
        "open_channel_sync",
        LightningNodeError("OpenChannelSync", "could not reach node: ReadTimeout"),
    )

    with pytest.raises(LightningNodeError):
        await order_service.get_order({"order_id": order_id})

    lightning_client.recover("open_channel_sync")
    with pytest.raises(JsonRpcError) as exc_info:
        await order_service.get_order({"order_id": order_id})

    assert exc_info.value.kind == "internal_error"
    assert lightning_client.call_names().count("open_channel_sync") == 1
    stored = await order_repository.get_by_id(order_id)
    assert stored.payment.state == PaymentState.HOLD
    assert stored.channel is None
    assert lightning_client.settled == []

    # Operator confirmed no channel was funded
    await order_repository.clear_channel_open(order_id)
    result = await order_service.get_order({"order_id": order_id})

    assert result["payment"]["state"] == "PAID"
    assert len(lightning_client.opened_channels) == 1


@pytest.mark.asyncio
async def test_failed_settlement_is_retried_without_reopening(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    lightning_client.accept_invoice(await _payment_hash(order_repository, order_id))
    lightning_client.fail("settle_invoice")

    with pytest.raises(LightningNodeError):
        await order_service.get_order({"order_id": order_id})

    stored = await order_repository.get_by_id(order_id)
    assert stored.payment.state == PaymentState.HOLD
    assert stored.channel is not None

    lightning_client.recover("settle_invoice")
    result = await order_service.get_order({"order_id": order_id})

    assert result["payment"]["state"] == "PAID"
    assert result["channel"] == stored.model_dump(mode="json")["channel"]
    assert len(lightning_client.opened_channels) == 1
    assert len(lightning_client.settled) == 1


@pytest.mark.asyncio
async def test_concurrent_polls_open_one_channel(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order_id = created["order_id"]
    lightning_client.accept_invoice(await _payment_hash(order_repository, order_id))

    results = await asyncio.gather(
        *(order_service.get_order({"order_id": order_id}) for _ in range(5))
    )

    assert all(r["payment"]["state"] == "PAID" for r in results)
    assert len(lightning_client.opened_channels) == 1
    assert len(lightning_client.settled) == 1


@pytest.mark.asyncio
async def test_confirmation_check_without_onchain_payment_is_noop(
    order_service: OrderService,
    order_repository: InMemoryOrderRepository,
    lightning_client: FakeLightningClient,
    client_node_pubkey: str,
) -> None:
    created = await order_service.create_order(_create_params(client_node_pubkey))
    order = await order_repository.get_by_id(created["order_id"])
    lightning_client.calls.clear()

    await order_service._check_onchain_confirmation(order)

    assert lightning_client.calls == []
    assert order.payment.onchain_payment is None
