from __future__ import annotations

import json
import os
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ..domain.errors import LspConfigurationError
from ..domain.lsp.options import LspOptions


class Settings(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    database_url: str

    api_host: str
    api_port: int
    api_debug: bool
    api_workers: int = 1
    api_cors_origins: list[str]

    app_name: str
    app_version: str

    lnd_rest_url: str
    lnd_macaroon_hex: str
    lnd_tls_cert_path: Optional[str] = None
    lnd_timeout_seconds: float = 30.0

    request_timeout_seconds: Optional[float] = 60.0

    lsp_options: LspOptions = LspOptions()

    @field_validator("lnd_macaroon_hex")
    @classmethod
    def validate_lnd_macaroon_hex(cls, v: str) -> str:
        """Validate that the macaroon was loaded and is hex encoded."""
        if not v:
            raise ValueError("LND macaroon cannot be empty")
        try:
            bytes.fromhex(v)
        except ValueError as e:
            raise ValueError(f"Invalid LND macaroon: {e}") from e
        return v

    @field_validator("lnd_tls_cert_path")
    @classmethod
    def validate_lnd_tls_cert_path(cls, v: Optional[str]) -> Optional[str]:
        if v and not os.path.isfile(v):
            raise ValueError(f"LND TLS certificate not found: {v}")
        return v


def load_macaroon_hex(path: Optional[str]) -> str:
    """Read an LND macaroon file and return its hex encoding."""
    if not path:
        raise LspConfigurationError("LND_MACAROON_PATH is not set")
    try:
        with open(path, "rb") as f:
            return f.read().hex()
    except OSError as e:
        raise LspConfigurationError(f"Cannot read LND macaroon {path}: {e}") from e


def parse_lsp_options(raw: Optional[str]) -> LspOptions:
    """Build LSP options from a JSON object of overrides."""
    if not raw:
        return LspOptions()
    try:
        overrides: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise LspConfigurationError(f"LSP_OPTIONS is not valid JSON: {e}") from e
    if not isinstance(overrides, dict):
        raise LspConfigurationError("LSP_OPTIONS must be a JSON object")
    return LspOptions.from_overrides(overrides)


def get_settings() -> Settings:
    api_debug_str = os.environ.get("LSP_API_DEBUG")
    api_cors_origins_str = os.environ.get("LSP_API_CORS_ORIGINS")
    api_port_str = os.environ.get("LSP_API_PORT")
    api_workers_str = os.environ.get("LSP_API_WORKERS")
    lnd_timeout_str = os.environ.get("LND_TIMEOUT_SECONDS")
    request_timeout_str = os.environ.get("REQUEST_TIMEOUT_SECONDS")

    return Settings(
        database_url=os.environ.get("LSP_DATABASE_URL"),
        api_host=os.environ.get("LSP_API_HOST", "0.0.0.0"),
        api_port=int(api_port_str) if api_port_str is not None else 8000,
        api_debug=api_debug_str.lower() == "true"
        if api_debug_str is not None
        else False,
        api_workers=int(api_workers_str) if api_workers_str is not None else 1,
        api_cors_origins=api_cors_origins_str.split(",")
        if api_cors_origins_str is not None
        else ["*"],
        app_name=os.environ.get("LSP_APP_NAME", "LSP Server"),
        app_version=os.environ.get("LSP_APP_VERSION", "0.1.0"),
        lnd_rest_url=os.environ.get("LND_REST_URL", "https://localhost:8080"),
        lnd_macaroon_hex=load_macaroon_hex(os.environ.get("LND_MACAROON_PATH")),
        lnd_tls_cert_path=os.environ.get("LND_TLS_CERT_PATH"),
        lnd_timeout_seconds=float(lnd_timeout_str)
        if lnd_timeout_str is not None
        else 30.0,
        # 0 disables the request deadline
        request_timeout_seconds=(float(request_timeout_str) or None)
        if request_timeout_str is not None
        else 60.0,
        lsp_options=parse_lsp_options(os.environ.get("LSP_OPTIONS")),
    )
