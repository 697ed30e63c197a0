"""FastAPI dependencies for the LSP API."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends

from ..application.jsonrpc.dispatcher import JsonRpcDispatcher, build_lsp_methods
from ..application.lsp.use_cases.info import LspInfoService
from ..application.lsp.use_cases.order import OrderService
from ..domain.lsp.order_repository import OrderRepository
from ..domain.shared import LightningClientProtocol
from ..envs.lsp_env import Settings, get_settings as load_settings
from ..infrastructure.database import DatabaseClient, get_database_client
from ..infrastructure.lightning.lnd_client import AsyncLndClient
from ..infrastructure.lsp.order_repository_impl import OrderRepositoryImpl
from ..infrastructure.storage import KeyValueStore, RedisKeyValueStore

# Process-wide instances; options changed at runtime must survive requests
_settings: Optional[Settings] = None
_lightning_client: Optional[AsyncLndClient] = None
_info_service: Optional[LspInfoService] = None


def get_settings() -> Settings:
    """Get settings, loading them from the environment once."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_database_client_with_settings(
    settings: Settings = Depends(get_settings),
) -> DatabaseClient:
    """Get database client with settings."""
    return get_database_client(settings)


def get_key_value_store(
    db_client: DatabaseClient = Depends(get_database_client_with_settings),
) -> KeyValueStore:
    """Get key-value store."""
    return RedisKeyValueStore(db_client)


def get_order_repository(
    store: KeyValueStore = Depends(get_key_value_store),
) -> OrderRepository:
    """Get order repository."""
    return OrderRepositoryImpl(store)


def get_lightning_client(
    settings: Settings = Depends(get_settings),
) -> LightningClientProtocol:
    """Get the LND client singleton."""
    global _lightning_client
    if _lightning_client is None:
        _lightning_client = AsyncLndClient(
            settings.lnd_rest_url,
            settings.lnd_macaroon_hex,
            tls_cert_path=settings.lnd_tls_cert_path,
            timeout=settings.lnd_timeout_seconds,
        )
    return _lightning_client


def get_info_service(settings: Settings = Depends(get_settings)) -> LspInfoService:
    """Get the LSP info service singleton."""
    global _info_service
    if _info_service is None:
        _info_service = LspInfoService(settings.lsp_options)
    return _info_service


def get_order_service(
    order_repository: OrderRepository = Depends(get_order_repository),
    lightning_client: LightningClientProtocol = Depends(get_lightning_client),
    info_service: LspInfoService = Depends(get_info_service),
) -> OrderService:
    """Get order service."""
    return OrderService(order_repository, lightning_client, info_service)


def get_dispatcher(
    info_service: LspInfoService = Depends(get_info_service),
    order_service: OrderService = Depends(get_order_service),
    settings: Settings = Depends(get_settings),
) -> JsonRpcDispatcher:
    """Get the JSON-RPC dispatcher for the LSPS0/LSPS1 methods."""
    return JsonRpcDispatcher(
        build_lsp_methods(info_service, order_service),
        request_timeout=settings.request_timeout_seconds,
    )


async def close_resources() -> None:
    """Close the LND client and the database connection, if opened."""
    global _lightning_client
    if _lightning_client is not None:
        await _lightning_client.aclose()
        _lightning_client = None
    if _settings is not None:
        await get_database_client(_settings).close()
