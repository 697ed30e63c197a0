"""Use cases for protocol discovery and LSP policy options."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ....domain.lsp.options import LspOptions

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOLS: tuple[int, ...] = (1,)


class LspInfoService:
    """Service exposing supported protocols and the current policy options."""

    def __init__(self, options: LspOptions):
        self._options = options

    @property
    def options(self) -> LspOptions:
        return self._options

    async def list_protocols(self) -> list[int]:
        return list(SUPPORTED_PROTOCOLS)

    async def get_info(self) -> dict[str, Any]:
        return {"options": self._options.model_dump(mode="json")}

    def set_options(self, overrides: Mapping[str, Any]) -> LspOptions:
        """Apply option overrides. Invalid overrides leave the options unchanged."""
        self._options = self._options.merged(overrides)
        logger.info("LSP options updated: %s", ", ".join(sorted(overrides)))
        return self._options

    def set_option(self, key: str, value: Any) -> LspOptions:
        return self.set_options({key: value})
