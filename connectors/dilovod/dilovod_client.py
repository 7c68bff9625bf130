"""Dilovod HTTP Client.

Low-level HTTP client for the Dilovod JSON API. Every call is a POST of
{"version", "key", "action", "params"} to a single endpoint.
Handles retries, response normalization and error translation.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass, field
import asyncio
import json
import logging
import re

import aiohttp

logger = logging.getLogger(__name__)


API_VERSION = "0.25"
FILTER_CHUNK_SIZE = 25


class DilovodApiError(Exception):
    """Base exception for Dilovod API errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class DilovodAuthenticationError(DilovodApiError):
    """API key rejected (401/403)."""
    pass


class DilovodRateLimitError(DilovodApiError):
    """Rate limit exceeded (429)."""
    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, 429)
        self.retry_after = retry_after


class DilovodValidationError(DilovodApiError):
    """The API answered with an error body (bad request or refused object)."""
    pass


class DilovodConnectionError(DilovodApiError):
    """Transport failure: timeout, refused connection, or 5xx after retries."""
    pass


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0
    retry_on_status: Tuple[int, ...] = (429, 500, 502, 503, 504)

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for retry attempt (exponential backoff)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


@dataclass
class DilovodApiConfig:
    """Configuration for the Dilovod API client."""
    api_url: str = "https://api.dilovod.ua"
    api_key: Optional[str] = None
    api_version: str = API_VERSION
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    timeout_seconds: int = 30


def chunked(values: List[Any], size: int = FILTER_CHUNK_SIZE) -> Iterable[List[Any]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def normalize_to_array(data: Any) -> List[Dict[str, Any]]:
    """Dilovod list responses arrive bare or wrapped in data/rows/result/items."""
    if isinstance(data, list):
        return data
    if data is None:
        return []
    if isinstance(data, dict):
        for key in ("data", "rows", "result", "items"):
            if isinstance(data.get(key), list):
                return data[key]
    return []


def digits_only(phone: Optional[str]) -> str:
    return re.sub(r"\D+", "", phone or "")


class DilovodApiClient:
    """HTTP client for the Dilovod API.

    Provides:
    - request / saveObject / getObject actions
    - Chunked IL-filter lookups
    - Error handling and retries (reads only; saveObject is never
      retried after a transport failure)

    Usage:
        client = DilovodApiClient(DilovodApiConfig(api_key="..."))
        await client.connect()
        forms = await client.request("catalogs.paymentForms", {"id": "id", "id__pr": "name"})
    """

    def __init__(self, api_config: DilovodApiConfig):
        self.api_config = api_config
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> bool:
        """Initialize HTTP session."""
        if not self.api_config.api_key:
            raise DilovodAuthenticationError("Dilovod API key is not configured")
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return True

    async def disconnect(self) -> None:
        """Close HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    def _build_body(self, action: str, params: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "version": self.api_config.api_version,
            "key": self.api_config.api_key,
            "action": action,
            "params": params,
        }

    async def _call(self, action: str, params: Dict[str, Any], retry_transport: bool = True) -> Any:
        """POST one action with automatic retries.

        Args:
            action: request, saveObject or getObject
            params: Action parameters
            retry_transport: Retry after timeouts / connection errors / 5xx

        Returns:
            Decoded response JSON

        Raises:
            DilovodAuthenticationError: API key rejected
            DilovodRateLimitError: Rate limit exceeded after retries
            DilovodValidationError: API returned an error body
            DilovodConnectionError: Transport failure
            DilovodApiError: Other API errors
        """
        if not self._session:
            raise DilovodApiError("Not connected. Call connect() first.")

        retry_config = self.api_config.retry_config
        body = self._build_body(action, params)
        last_error: Optional[Exception] = None

        for attempt in range(retry_config.max_retries + 1):
            try:
                timeout = aiohttp.ClientTimeout(total=self.api_config.timeout_seconds)

                async with self._session.post(
                    self.api_config.api_url,
                    json=body,
                    headers={"Content-Type": "application/json", "Accept": "application/json"},
                    timeout=timeout,
                ) as response:
                    response_text = await response.text()

                    if response.status < 400:
                        data = json.loads(response_text) if response_text else {}
                        if isinstance(data, dict) and data.get("error"):
                            raise DilovodValidationError(
                                f"Dilovod error: {data['error']}",
                                response.status,
                                response_text,
                            )
                        return data

                    if response.status in (401, 403):
                        raise DilovodAuthenticationError(
                            f"Authentication failed: {response_text}",
                            response.status,
                            response_text,
                        )

                    if response.status == 429:
                        retry_after = int(response.headers.get("Retry-After", 60))
                        if attempt < retry_config.max_retries:
                            logger.warning(f"Rate limited, waiting {retry_after}s...")
                            await asyncio.sleep(retry_after)
                            continue
                        raise DilovodRateLimitError("Rate limit exceeded", retry_after)

                    if response.status == 400:
                        raise DilovodValidationError(
                            f"Validation error: {response_text}",
                            response.status,
                            response_text,
                        )

                    if response.status in retry_config.retry_on_status:
                        if retry_transport and attempt < retry_config.max_retries:
                            delay = retry_config.get_delay(attempt)
                            logger.warning(
                                f"Request failed with {response.status}, "
                                f"retrying in {delay:.1f}s (attempt {attempt + 1}/{retry_config.max_retries})"
                            )
                            await asyncio.sleep(delay)
                            continue
                        raise DilovodConnectionError(
                            f"Dilovod unavailable ({response.status}): {response_text}",
                            response.status,
                            response_text,
                        )

                    raise DilovodApiError(
                        f"API error {response.status}: {response_text}",
                        response.status,
                        response_text,
                    )

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                last_error = e
                if retry_transport and attempt < retry_config.max_retries:
                    delay = retry_config.get_delay(attempt)
                    logger.warning(
                        f"Request failed with {type(e).__name__}: {e}, "
                        f"retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise DilovodConnectionError(f"Request to Dilovod failed: {type(e).__name__}: {e}") from e
            except json.JSONDecodeError as e:
                raise DilovodApiError(f"Invalid JSON from Dilovod: {e}") from e

        raise DilovodConnectionError(f"Request failed: {last_error}")

    # =========================================================================
    # Actions
    # =========================================================================

    async def request(
        self,
        source: str,
        fields: Dict[str, str],
        filters: Optional[List[Dict[str, Any]]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Run a "request" (select) action.

        Args:
            source: Catalog or document name, e.g. "catalogs.firms"
            fields: Source field -> output alias
            filters: [{"alias", "operator", "value"}]
            limit: Optional row limit

        Returns:
            Rows keyed by output alias
        """
        params: Dict[str, Any] = {"from": source, "fields": fields, "filters": filters or []}
        if limit:
            params["limit"] = limit
        return normalize_to_array(await self._call("request", params))

    async def request_in(
        self,
        source: str,
        fields: Dict[str, str],
        alias: str,
        values: List[str],
    ) -> List[Dict[str, Any]]:
        """Select rows whose alias is IN values, batching the IL filter."""
        rows: List[Dict[str, Any]] = []
        for chunk in chunked([v for v in values if v]):
            rows.extend(await self.request(
                source,
                fields,
                filters=[{"alias": alias, "operator": "IL", "value": chunk}],
            ))
        return rows

    async def save_object(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Run a "saveObject" action; never retried after transport failure."""
        result = await self._call("saveObject", payload, retry_transport=False)
        return result if isinstance(result, dict) else {}

    async def get_object(self, object_id: str) -> Dict[str, Any]:
        result = await self._call("getObject", {"id": object_id})
        return result if isinstance(result, dict) else {}

    async def test_connection(self) -> bool:
        await self.request("catalogs.firms", {"id": "id"}, limit=1)
        return True

    # =========================================================================
    # Persons (contacts)
    # =========================================================================

    async def find_person_by_phone(self, phone: str) -> List[Dict[str, Any]]:
        clean_phone = digits_only(phone)
        if not clean_phone:
            return []
        return await self.request(
            "catalogs.persons",
            {"id": "id", "name": "name", "phone": "phone"},
            filters=[{"alias": "phone", "operator": "=", "value": clean_phone}],
        )

    async def create_person(
        self,
        name: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        address: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Create a catalogs.persons entry; returns {"id", "code"}."""
        multilang_name = {"ru": name, "uk": name}
        details: Dict[str, Any] = {"names": [{"pr": multilang_name, "kind": "fullName"}]}

        if phone and digits_only(phone):
            details["phones"] = [{"pr": digits_only(phone), "kind": "phone"}]
        if email:
            details["emails"] = [{"pr": email, "kind": "email"}]
        if address:
            clean_address = re.sub(r"[:&<>\"'\\]", "", address).strip()
            if clean_address:
                details["addresses"] = [
                    {"pr": {"uk": clean_address}, "kind": "legalAddress", "detalize": ""}
                ]

        return await self.save_object({
            "header": {
                "id": "catalogs.persons",
                "name": multilang_name,
                "address": address or "",
                "details": json.dumps(details, ensure_ascii=False),
            }
        })

    async def find_goods_by_sku(self, skus: List[str]) -> Dict[str, str]:
        """Map SKU (productNum) -> catalogs.goods id."""
        rows = await self.request_in(
            "catalogs.goods",
            {"id": "id", "productNum": "productNum"},
            "productNum",
            list(dict.fromkeys(skus)),
        )
        return {str(row["productNum"]): str(row["id"]) for row in rows if row.get("id")}
