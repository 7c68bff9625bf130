"""SalesDrive HTTP Client.

Read-only client for the SalesDrive storefront API. Orders come from
GET /api/order/list/ authenticated with the Form-Api-Key header.
Payment methods, shipping methods, statuses and sales channels are the
storefront's fixed catalogs.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import date
import asyncio
import json
import logging

import aiohttp

from connectors.salesdrive.salesdrive_models import (
    ORDER_STATUSES,
    PAYMENT_METHODS,
    SALES_CHANNELS,
    SHIPPING_METHODS,
    OrderPage,
    PaymentMethodRef,
    SalesChannelRef,
    ShippingMethodRef,
    StatusRef,
)

logger = logging.getLogger(__name__)


ORDER_LIST_PATH = "/api/order/list/"
MAX_PAGES = 100


class SalesDriveApiError(Exception):
    """Base exception for SalesDrive API errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class SalesDriveRateLimitError(SalesDriveApiError):
    """Rate limit exceeded (429) after all retries."""
    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, 429)
        self.retry_after = retry_after


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 2.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0

    def get_delay(self, attempt: int) -> float:
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class SalesDriveApiConfig:
    """Configuration for the SalesDrive API client."""
    api_url: str = ""
    api_key: Optional[str] = None
    page_size: int = 200
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    timeout_seconds: int = 30

    def base_url(self) -> str:
        # Accept the full order-list URL as well as the bare host
        url = self.api_url.rstrip("/")
        suffix = ORDER_LIST_PATH.rstrip("/")
        if url.endswith(suffix):
            url = url[: -len(suffix)]
        return url


class SalesDriveApiClient:
    """HTTP client for the SalesDrive API.

    Usage:
        client = SalesDriveApiClient(SalesDriveApiConfig(api_url="https://x.salesdrive.me", api_key="..."))
        await client.connect()
        orders = await client.list_all_orders(date(2025, 7, 1), date.today())
    """

    def __init__(self, api_config: SalesDriveApiConfig):
        self.api_config = api_config
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> bool:
        if not self.api_config.api_url or not self.api_config.api_key:
            raise SalesDriveApiError("SalesDrive API credentials not configured")
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return True

    async def disconnect(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "SalesDriveApiClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def _get(self, path: str, params: Dict[str, str]) -> Dict[str, Any]:
        """GET with retries on 429, 5xx and transport errors.

        Raises:
            SalesDriveRateLimitError: Still rate limited after retries
            SalesDriveApiError: Any other failure, including status != "success"
        """
        if not self._session:
            raise SalesDriveApiError("Not connected. Call connect() first.")

        retry_config = self.api_config.retry_config
        url = f"{self.api_config.base_url()}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(retry_config.max_retries + 1):
            try:
                timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)
                async with self._session.get(
                    url,
                    params=params,
                    headers={"Form-Api-Key": self.api_config.api_key, "Content-Type": "application/json"},
                    timeout=timeout,
                ) as response:
                    response_text = await response.text()

                    if response.status == 429:
                        if attempt < retry_config.max_retries:
                            delay = retry_config.get_delay(attempt)
                            logger.warning(f"SalesDrive rate limited, waiting {delay:.1f}s...")
                            await asyncio.sleep(delay)
                            continue
                        raise SalesDriveRateLimitError("Rate limit exceeded after all retries")

                    if response.status >= 500 and attempt < retry_config.max_retries:
                        delay = retry_config.get_delay(attempt)
                        logger.warning(f"SalesDrive returned {response.status}, retrying in {delay:.1f}s")
                        await asyncio.sleep(delay)
                        continue

                    if response.status >= 400:
                        raise SalesDriveApiError(
                            f"SalesDrive API error: {response.status}",
                            response.status,
                            response_text,
                        )

                    data = json.loads(response_text) if response_text else {}
                    if data.get("status") != "success":
                        raise SalesDriveApiError(
                            f"SalesDrive API error: {data.get('message') or 'Unknown error'}",
                            response.status,
                            response_text,
                        )
                    return data

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if attempt < retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.warning(f"SalesDrive request failed with {type(e).__name__}, retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
                    continue
                raise SalesDriveApiError(f"Request to SalesDrive failed: {type(e).__name__}: {e}") from e
            except json.JSONDecodeError as e:
                raise SalesDriveApiError(f"Invalid JSON from SalesDrive: {e}") from e

        raise SalesDriveApiError(f"Request failed: {last_error}")

    # =========================================================================
    # Orders
    # =========================================================================

    async def list_orders(
        self,
        date_from: date,
        date_to: date,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> OrderPage:
        """One page of orders created in [date_from, date_to], all statuses."""
        limit = limit or self.api_config.page_size
        data = await self._get(ORDER_LIST_PATH, {
            "page": str(page),
            "limit": str(limit),
            "filter[orderTime][from]": date_from.isoformat(),
            "filter[orderTime][to]": date_to.isoformat(),
            "filter[statusId]": "__ALL__",
        })
        orders = data.get("data") or []
        totals = data.get("totals") or {}
        return OrderPage(
            orders=orders,
            total_count=int(totals.get("count") or len(orders)),
            page=page,
            limit=limit,
        )

    async def list_all_orders(self, date_from: date, date_to: date) -> List[Dict[str, Any]]:
        """Every order in the date range, page by page (at most MAX_PAGES pages)."""
        first = await self.list_orders(date_from, date_to, page=1)
        orders = list(first.orders)
        last_page = min(first.total_pages, MAX_PAGES)

        for page in range(2, last_page + 1):
            result = await self.list_orders(date_from, date_to, page=page, limit=first.limit)
            if not result.orders:
                break
            orders.extend(result.orders)

        logger.info(f"Fetched {len(orders)} SalesDrive orders from {date_from} to {date_to}")
        return orders

    # =========================================================================
    # Catalogs
    # =========================================================================

    async def list_payment_methods(self) -> List[PaymentMethodRef]:
        return [PaymentMethodRef(id=key, name=name) for key, name in PAYMENT_METHODS.items()]

    async def list_shipping_methods(self) -> List[ShippingMethodRef]:
        return [ShippingMethodRef(id=key, name=name) for key, name in SHIPPING_METHODS.items()]

    async def list_statuses(self) -> List[StatusRef]:
        return [StatusRef(id=key, name=name) for key, name in ORDER_STATUSES.items()]

    async def list_sales_channels(self) -> List[SalesChannelRef]:
        return [SalesChannelRef(id=key, name=name) for key, name in SALES_CHANNELS.items()]
