"""Data Transfer Objects for the LSPS0/LSPS1 application layer."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _parse_sat(value: Any) -> Any:
    """Accept satoshi amounts given as integers or base-10 integer strings."""
    if isinstance(value, bool):
        raise ValueError("Satoshi amount must be an integer")
    if isinstance(value, str):
        stripped = value.strip()
        if not (stripped.isascii() and stripped.isdigit()):
            raise ValueError("Satoshi amount must be a non-negative integer string")
        return int(stripped)
    return value


class CreateOrderDTO(BaseModel):
    """Parameters of ``lsps1.create_order``."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "lsp_balance_sat": "1000000",
                "client_balance_sat": "0",
                "client_node_pubkey": "02" + "ab" * 32,
                "required_channel_confirmations": 0,
                "funding_confirms_within_blocks": 6,
                "channel_expiry_blocks": 144,
                "token": "",
                "announce_channel": True,
            }
        }
    )

    lsp_balance_sat: int = Field(0, ge=0)
    client_balance_sat: int = Field(0, ge=0)
    client_node_pubkey: str = Field(..., min_length=1)
    required_channel_confirmations: Optional[int] = Field(None, ge=0)
    funding_confirms_within_blocks: Optional[int] = Field(None, ge=0)
    channel_expiry_blocks: Optional[int] = Field(None, ge=0)
    token: Optional[str] = None
    refund_onchain_address: Optional[str] = None
    announce_channel: bool = False

    @field_validator("lsp_balance_sat", "client_balance_sat", mode="before")
    @classmethod
    def validate_sat(cls, v: Any) -> Any:
        return _parse_sat(v)


class GetOrderDTO(BaseModel):
    """Parameters of ``lsps1.get_order``."""

    order_id: str = Field(..., min_length=1)
