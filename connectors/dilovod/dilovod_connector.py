"""Dilovod ERP Connector.

Implements the ERPConnector interface for the Dilovod accounting API.

Token protocol:
- validate_order finds or creates the customer contact and returns a
  token for it
- export_order consumes that token (no second contact lookup) and returns
  a sale token for the same contact
- create_shipment consumes the sale token

Tokens are bound to the order they were issued for; a token presented for
another order is ignored.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from connectors.erp_base import (
    ERPConnector,
    ERPConfig,
    ERPConnectionStatus,
    ERPConnectionError,
    ERPRejectionError,
    ERPDocumentKind,
    ERPDocumentRef,
    DocumentRequest,
    ValidationResponse,
    ExportResponse,
    ShipmentResponse,
    register_connector,
    # Normalized types
    PaymentFormRef,
    CashAccountRef,
    TradeChannelRef,
    DeliveryMethodRef,
    FirmRef,
    StorageRef,
)
from connectors.dilovod.dilovod_client import (
    DilovodApiClient,
    DilovodApiConfig,
    DilovodApiError,
    DilovodConnectionError,
    DilovodRateLimitError,
    RetryConfig,
)
from connectors.dilovod.dilovod_payloads import (
    CASH_IN,
    SALE,
    SALE_ORDER,
    build_goods_rows,
    build_sale_order_payload,
    build_sale_payload,
)
from connectors.dilovod.dilovod_token_cache import PayloadCache
from core.observability import get_logger, mask_token


logger = get_logger(__name__)

UNKNOWN_CUSTOMER_NAME = "Невідомий клієнт"

_BASE_DOC_SOURCES = {
    ERPDocumentKind.SALE: SALE,
    ERPDocumentKind.CASH_IN: CASH_IN,
}


def parse_dilovod_date(value: Any) -> Optional[datetime]:
    """Parse 'YYYY-MM-DD HH:MM:SS' (or ISO) dates; None if unparseable."""
    if not value:
        return None
    text = str(value).strip()
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


@contextmanager
def _translate_api_errors(action: str):
    """Map Dilovod client errors onto the ERP-neutral error types."""
    try:
        yield
    except (DilovodConnectionError, DilovodRateLimitError) as e:
        raise ERPConnectionError(f"{action}: {e}", raw_message=e.response_body or str(e)) from e
    except DilovodApiError as e:
        raise ERPRejectionError(f"{action}: {e}", raw_message=e.response_body or str(e)) from e


@dataclass
class PreparedOrder:
    """Contact and goods rows resolved for one order."""
    person_id: Optional[str] = None
    person_created: bool = False
    goods_rows: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@register_connector("dilovod")
class DilovodConnector(ERPConnector):
    """Dilovod connector implementation.

    Required configuration:
    - api_key: Dilovod API key

    Optional configuration:
    - base_url: API endpoint (default: https://api.dilovod.ua)
    - token_ttl_seconds: Lifetime of contact / sale tokens
    """

    def __init__(
        self,
        config: ERPConfig,
        api_client: Optional[DilovodApiClient] = None,
        token_cache: Optional[PayloadCache] = None,
    ):
        super().__init__(config)

        self._api_client = api_client or DilovodApiClient(DilovodApiConfig(
            api_url=config.base_url or "https://api.dilovod.ua",
            api_key=config.api_key,
            timeout_seconds=config.timeout_seconds,
            retry_config=RetryConfig(max_retries=config.max_retries),
        ))
        self._tokens = token_cache or PayloadCache(default_ttl_seconds=config.token_ttl_seconds)

    # =========================================================================
    # Connection Management
    # =========================================================================

    async def connect(self) -> bool:
        try:
            await self._api_client.connect()
        except DilovodApiError as e:
            logger.error(f"Dilovod connection failed: {e}")
            self._connection_status = ERPConnectionStatus.FAILED
            return False
        self._connection_status = ERPConnectionStatus.CONNECTED
        return True

    async def disconnect(self) -> None:
        await self._api_client.disconnect()
        self._connection_status = ERPConnectionStatus.DISCONNECTED

    async def test_connection(self) -> bool:
        try:
            return await self._api_client.test_connection()
        except DilovodApiError as e:
            logger.warning(f"Dilovod connection test failed: {e}")
            return False

    # =========================================================================
    # Directories
    # =========================================================================

    async def _select(self, source: str, fields: Dict[str, str]) -> List[Dict[str, Any]]:
        with _translate_api_errors(f"Reading {source}"):
            return await self._api_client.request(source, fields)

    async def list_payment_forms(self) -> List[PaymentFormRef]:
        rows = await self._select("catalogs.paymentForms", {"id": "id", "id__pr": "name"})
        return [PaymentFormRef(id=str(r["id"]), name=r.get("name") or "") for r in rows if r.get("id")]

    async def list_cash_accounts(self) -> List[CashAccountRef]:
        rows = await self._select(
            "catalogs.cashAccounts",
            {"id": "id", "code": "code", "id__pr": "name", "owner": "owner"},
        )
        return [
            CashAccountRef(
                id=str(r["id"]),
                name=r.get("name") or "",
                code=r.get("code") or None,
                owner=str(r["owner"]) if r.get("owner") else None,
            )
            for r in rows if r.get("id")
        ]

    async def list_trade_channels(self) -> List[TradeChannelRef]:
        rows = await self._select("catalogs.tradeChanels", {"id": "id", "code": "code", "id__pr": "id__pr"})
        return [
            TradeChannelRef(id=str(r["id"]), code=r.get("code") or None, name=r.get("id__pr") or None)
            for r in rows if r.get("id")
        ]

    async def list_delivery_methods(self) -> List[DeliveryMethodRef]:
        rows = await self._select("catalogs.deliveryMethods", {"id": "id", "code": "code", "id__pr": "id__pr"})
        return [
            DeliveryMethodRef(id=str(r["id"]), code=r.get("code") or None, name=r.get("id__pr") or None)
            for r in rows if r.get("id")
        ]

    async def list_firms(self) -> List[FirmRef]:
        rows = await self._select("catalogs.firms", {"id": "id", "id__pr": "name"})
        return [FirmRef(id=str(r["id"]), name=r.get("name") or "") for r in rows if r.get("id")]

    async def list_storages(self) -> List[StorageRef]:
        rows = await self._select("catalogs.storages", {"id": "id", "code": "code", "id__pr": "name"})
        return [
            StorageRef(id=str(r["id"]), name=r.get("name") or "", code=r.get("code") or None)
            for r in rows if r.get("id")
        ]

    # =========================================================================
    # Contacts, goods and tokens
    # =========================================================================

    async def _find_or_create_person(self, request: DocumentRequest) -> PreparedOrder:
        order = request.order
        prepared = PreparedOrder()

        if order.customer_phone:
            with _translate_api_errors("Looking up customer"):
                found = await self._api_client.find_person_by_phone(order.customer_phone)
            if found:
                prepared.person_id = str(found[0]["id"])
                return prepared

        name = order.customer_name or UNKNOWN_CUSTOMER_NAME
        with _translate_api_errors("Creating customer"):
            created = await self._api_client.create_person(
                name=name,
                phone=order.customer_phone,
                email=order.customer_email or order.raw_data.get("email"),
                address=order.resolve_delivery_address(),
            )
        if not created.get("id"):
            raise ERPRejectionError("Dilovod did not return an id for the new customer", raw_message=str(created))

        prepared.person_id = str(created["id"])
        prepared.person_created = True
        prepared.warnings.append(f"Customer created: {name} ({order.customer_phone or 'no phone'})")
        return prepared

    def _consume_token(self, token: Optional[str], request: DocumentRequest) -> Optional[str]:
        """Person id carried by a token, if the token is live and issued for this order."""
        data = self._tokens.get(token)
        if data is None:
            if token:
                logger.info(f"Token {mask_token(token)} expired or already used")
            return None
        if data.get("order_id") != request.order.id:
            logger.warning(
                f"Token {mask_token(token)} was issued for another order; ignoring it",
                extra_fields={"token_order_id": data.get("order_id")},
            )
            return None
        return data.get("person_id")

    def _issue_token(self, request: DocumentRequest, person_id: str, **extra) -> str:
        data = {"order_id": request.order.id, "person_id": person_id}
        data.update(extra)
        return self._tokens.save(data)

    async def _goods_rows(self, request: DocumentRequest, prepared: PreparedOrder) -> None:
        skus = [item.sku for item in request.order.items if item.sku]
        goods_by_sku: Dict[str, str] = {}
        if skus:
            with _translate_api_errors("Looking up goods"):
                goods_by_sku = await self._api_client.find_goods_by_sku(skus)
        rows, warnings = build_goods_rows(request.order.items, goods_by_sku)
        prepared.goods_rows = rows
        prepared.warnings.extend(warnings)

    async def _prepare(self, request: DocumentRequest, token: Optional[str] = None) -> PreparedOrder:
        person_id = self._consume_token(token, request)
        if person_id:
            prepared = PreparedOrder(person_id=person_id)
        else:
            prepared = await self._find_or_create_person(request)
        await self._goods_rows(request, prepared)
        return prepared

    # =========================================================================
    # Documents (write path)
    # =========================================================================

    async def validate_order(self, request: DocumentRequest) -> ValidationResponse:
        critical_errors: List[str] = []
        if not request.storage_id:
            critical_errors.append("Storage for goods write-off is not configured")
        if critical_errors:
            return ValidationResponse(success=False, critical_errors=critical_errors)

        try:
            prepared = await self._prepare(request)
        except ERPRejectionError as e:
            return ValidationResponse(success=False, errors=[e.raw_message])

        if not prepared.goods_rows:
            return ValidationResponse(
                success=False,
                warnings=prepared.warnings,
                errors=["Export blocked: no goods mapped to Dilovod"],
            )

        token = self._issue_token(request, prepared.person_id)
        logger.info(
            f"Sale order {request.composed_order_number} validated",
            extra_fields={"goods": len(prepared.goods_rows), "token": mask_token(token)},
        )
        return ValidationResponse(success=True, token=token, warnings=prepared.warnings)

    async def export_order(
        self,
        request: DocumentRequest,
        contact_token: Optional[str] = None,
    ) -> ExportResponse:
        existing = await self.find_sale_orders([request.composed_order_number])
        if existing:
            document = existing[0]
            # Single-use contract: a token presented for an existing document is spent too
            self._tokens.get(contact_token)
            return ExportResponse(
                success=True,
                exported=False,
                document_id=document.id,
                export_date=document.date,
                message=f"Sale order {request.composed_order_number} already exists in Dilovod",
            )

        if not request.storage_id:
            raise ERPRejectionError("Storage for goods write-off is not configured")

        prepared = await self._prepare(request, contact_token)
        if not prepared.goods_rows:
            raise ERPRejectionError("Export blocked: no goods mapped to Dilovod")

        payload = build_sale_order_payload(request, prepared.person_id, prepared.goods_rows)
        with _translate_api_errors("Saving sale order"):
            result = await self._api_client.save_object(payload)

        document_id = result.get("id")
        if not document_id:
            raise ERPRejectionError("Dilovod did not return a sale order id", raw_message=str(result))

        sale_token = self._issue_token(request, prepared.person_id, base_doc=str(document_id))
        return ExportResponse(
            success=True,
            exported=True,
            document_id=str(document_id),
            export_date=datetime.utcnow(),
            sale_token=sale_token,
            message=f"Sale order {request.composed_order_number} created",
            warnings=prepared.warnings,
        )

    async def create_shipment(
        self,
        request: DocumentRequest,
        base_doc_id: str,
        sale_token: Optional[str] = None,
    ) -> ShipmentResponse:
        shipped = await self.find_documents_by_base_doc(ERPDocumentKind.SALE, [base_doc_id])
        if shipped:
            self._tokens.get(sale_token)
            return ShipmentResponse(
                success=False,
                created=False,
                document_id=shipped[0].id,
                message=f"Shipment for sale order {base_doc_id} already exists",
            )

        prepared = await self._prepare(request, sale_token)
        if not prepared.goods_rows:
            raise ERPRejectionError("Shipment blocked: no goods mapped to Dilovod")

        payload = build_sale_payload(request, prepared.person_id, base_doc_id, prepared.goods_rows)
        with _translate_api_errors("Saving shipment"):
            result = await self._api_client.save_object(payload)

        document_id = result.get("id")
        if not document_id:
            return ShipmentResponse(
                success=False,
                created=False,
                message=f"Dilovod did not create the shipment: {result}",
            )

        return ShipmentResponse(
            success=True,
            created=True,
            document_id=str(document_id),
            message=f"Shipment for {request.composed_order_number} created",
        )

    # =========================================================================
    # Documents (read path)
    # =========================================================================

    async def find_sale_orders(self, order_numbers: List[str]) -> List[ERPDocumentRef]:
        with _translate_api_errors("Looking up sale orders"):
            rows = await self._api_client.request_in(
                SALE_ORDER,
                {"id": "id", "number": "number", "date": "date"},
                "number",
                list(dict.fromkeys(order_numbers)),
            )
        return [
            ERPDocumentRef(
                id=str(r["id"]),
                kind=ERPDocumentKind.SALE_ORDER,
                number=str(r["number"]) if r.get("number") is not None else None,
                date=parse_dilovod_date(r.get("date")),
            )
            for r in rows if r.get("id")
        ]

    async def find_documents_by_base_doc(
        self,
        kind: ERPDocumentKind,
        base_doc_ids: List[str],
    ) -> List[ERPDocumentRef]:
        source = _BASE_DOC_SOURCES.get(kind)
        if source is None:
            raise ValueError(f"Documents of kind {kind} have no base document")

        with _translate_api_errors(f"Looking up {source}"):
            rows = await self._api_client.request_in(
                source,
                {"id": "id", "date": "date", "baseDoc": "baseDoc"},
                "baseDoc",
                list(dict.fromkeys(base_doc_ids)),
            )
        return [
            ERPDocumentRef(
                id=str(r["id"]),
                kind=kind,
                date=parse_dilovod_date(r.get("date")),
                base_doc=str(r["baseDoc"]) if r.get("baseDoc") else None,
            )
            for r in rows if r.get("id")
        ]
