"""Data Transfer Objects for Lightning node responses.

Field names follow the LND REST API. Integer fields reported as strings by
LND are coerced by pydantic.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _NodeDTO(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PeerDTO(_NodeDTO):
    pub_key: str


class AddHoldInvoiceResponseDTO(_NodeDTO):
    payment_request: str = Field(..., min_length=1)


class NewAddressResponseDTO(_NodeDTO):
    address: str = Field(..., min_length=1)


class InvoiceDTO(_NodeDTO):
    state: str = "OPEN"

    @property
    def is_accepted(self) -> bool:
        return self.state == "ACCEPTED"


class OutputDetailDTO(_NodeDTO):
    address: Optional[str] = None
    output_index: int = 0
    amount: int = 0
    is_our_address: bool = False


class TransactionDTO(_NodeDTO):
    tx_hash: str
    amount: int = 0
    num_confirmations: int = 0
    output_details: list[OutputDetailDTO] = Field(default_factory=list)
    dest_addresses: list[str] = Field(default_factory=list)

    def own_output_for(self, address: str) -> Optional[OutputDetailDTO]:
        """Return the wallet-owned output paying ``address``.

        Falls back to the first wallet-owned output when the node does not
        report per-output addresses.
        """
        own = [out for out in self.output_details if out.is_our_address]
        for out in own:
            if out.address == address:
                return out
        if own and all(out.address is None for out in own):
            return own[0]
        return None


class ChannelPointDTO(_NodeDTO):
    funding_txid: str
    output_index: int = 0

    @property
    def outpoint(self) -> str:
        return f"{self.funding_txid}:{self.output_index}"
