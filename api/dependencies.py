"""Shared services for API routes.

create_app() installs one AppServices instance; routes receive it through
FastAPI dependencies so tests can pass their own.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import HTTPException, Request

from channel_mapping.db import init_settings_db
from connectors.salesdrive.salesdrive_client import SalesDriveApiClient, SalesDriveApiConfig
from core.config import AppConfig
from core.observability import get_logger
from export_engine.runtime import ExportRuntime, build_runtime
from orders.db import init_orders_db


logger = get_logger(__name__)


@dataclass
class AppServices:
    """What the routes need.

    runtime is None when the ERP connection is not configured; settings
    routes still work, order routes answer 503.
    """
    db_path: Path
    runtime: Optional[ExportRuntime] = None
    storefront: Optional[SalesDriveApiClient] = None


def build_services(config: AppConfig) -> AppServices:
    init_settings_db(config.db_path)
    init_orders_db(config.db_path)

    runtime = None
    try:
        runtime = build_runtime(config)
    except ValueError as e:
        logger.warning(f"Order export disabled: {e}")

    storefront = None
    if config.salesdrive_api_url and config.salesdrive_api_key:
        storefront = SalesDriveApiClient(SalesDriveApiConfig(
            api_url=config.salesdrive_api_url,
            api_key=config.salesdrive_api_key,
        ))

    return AppServices(db_path=config.db_path, runtime=runtime, storefront=storefront)


def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_runtime(request: Request) -> ExportRuntime:
    runtime = get_services(request).runtime
    if runtime is None:
        raise HTTPException(status_code=503, detail="Dilovod connection is not configured")
    return runtime


def get_storefront(request: Request) -> SalesDriveApiClient:
    storefront = get_services(request).storefront
    if storefront is None:
        raise HTTPException(status_code=503, detail="SalesDrive connection is not configured")
    return storefront
