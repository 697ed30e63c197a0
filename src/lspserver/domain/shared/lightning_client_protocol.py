"""Protocol interface for Lightning node client implementations.

This protocol defines the contract that all Lightning node clients must satisfy.
It enables dependency injection and makes the order services testable by
allowing fake implementations in place of a real node.
"""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    # Avoid circular imports by only importing types during type checking
    from ...application.lightning.dtos import (
        AddHoldInvoiceResponseDTO,
        ChannelPointDTO,
        InvoiceDTO,
        NewAddressResponseDTO,
        PeerDTO,
        TransactionDTO,
    )


class LightningClientProtocol(Protocol):
    """Protocol defining the remote node operations used by the LSP.

    Implementations should provide async methods for:
    - Peer listing
    - Hold invoice creation, lookup, settlement and cancellation
    - On-chain address generation and wallet transaction listing
    - Channel opening
    """

    # Peers

    async def list_peers(self) -> list["PeerDTO"]:
        """List peers currently connected to the node."""
        ...

    # Invoices

    async def add_hold_invoice(
        self,
        *,
        memo: str,
        payment_hash: bytes,
        value_sat: int,
        expiry: int,
        private: bool,
    ) -> "AddHoldInvoiceResponseDTO":
        """Create a hold invoice for ``payment_hash``.

        Returns:
            Response carrying the BOLT11 payment request
        """
        ...

    async def lookup_invoice(self, payment_hash: bytes) -> "InvoiceDTO":
        """Look up an invoice by its payment hash."""
        ...

    async def settle_invoice(self, preimage: bytes) -> None:
        """Settle an accepted hold invoice by revealing its preimage."""
        ...

    async def cancel_invoice(self, payment_hash: bytes) -> None:
        """Cancel an open or accepted hold invoice."""
        ...

    # On-chain wallet

    async def new_address(self) -> "NewAddressResponseDTO":
        """Generate a fresh receiving address."""
        ...

    async def get_transactions(self) -> list["TransactionDTO"]:
        """List all transactions known to the node's wallet."""
        ...

    # Channels

    async def open_channel_sync(
        self,
        *,
        node_pubkey: str,
        local_funding_amount: int,
        push_sat: int,
        private: bool,
        sat_per_vbyte: int,
    ) -> "ChannelPointDTO":
        """Open a channel to ``node_pubkey`` and wait for the funding outpoint."""
        ...

    async def aclose(self) -> None:
        """Release underlying resources."""
        ...
