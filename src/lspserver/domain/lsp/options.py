"""LSP policy options advertised by ``lsps1.get_info``."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    model_validator,
)

from ..errors import LspConfigurationError


class LspOptions(BaseModel):
    """Channel purchase policy of this LSP.

    Every ``min_<name>`` that has a ``max_<name>`` counterpart must not exceed it.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    min_required_channel_confirmations: int = Field(0, ge=0)
    min_funding_confirms_within_blocks: int = Field(6, ge=0)
    min_onchain_payment_confirmations: int = Field(1, ge=0)
    supports_zero_channel_reserve: bool = True
    min_onchain_payment_size_sat: Optional[int] = Field(None, ge=0)
    max_channel_expiry_blocks: int = Field(20160, ge=0)
    min_initial_client_balance_sat: int = Field(20_000, ge=0)
    max_initial_client_balance_sat: int = Field(100_000_000, ge=0)
    min_initial_lsp_balance_sat: int = Field(0, ge=0)
    max_initial_lsp_balance_sat: int = Field(100_000_000, ge=0)
    min_channel_balance_sat: int = Field(50_000, ge=0)
    max_channel_balance_sat: int = Field(100_000_000, ge=0)

    @field_serializer(
        "min_onchain_payment_size_sat",
        "min_initial_client_balance_sat",
        "max_initial_client_balance_sat",
        "min_initial_lsp_balance_sat",
        "max_initial_lsp_balance_sat",
        "min_channel_balance_sat",
        "max_channel_balance_sat",
    )
    def serialize_sat(self, value: Optional[int]) -> Optional[str]:
        return str(value) if value is not None else None

    @model_validator(mode="after")
    def check_min_max_pairs(self) -> "LspOptions":
        values = self.__dict__
        for key, min_value in values.items():
            if not key.startswith("min_"):
                continue
            max_key = "max_" + key[len("min_") :]
            max_value = values.get(max_key)
            if min_value is None or max_value is None:
                continue
            if min_value > max_value:
                raise ValueError(f"{key} must be <= {max_key}")
        return self

    @classmethod
    def from_overrides(
        cls, overrides: Optional[Mapping[str, Any]] = None
    ) -> "LspOptions":
        """Build options from defaults plus ``overrides``."""
        return cls().merged(overrides or {})

    def merged(self, overrides: Mapping[str, Any]) -> "LspOptions":
        """Return a new validated instance with ``overrides`` applied."""
        unknown = sorted(set(overrides) - set(type(self).model_fields))
        if unknown:
            raise LspConfigurationError(f"Unknown LSP option: {', '.join(unknown)}")
        try:
            return type(self).model_validate({**self.model_dump(), **overrides})
        except ValidationError as e:
            raise LspConfigurationError(f"Invalid LSP options: {e}") from e
