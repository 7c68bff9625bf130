"""Abstract ERP Connector Interface.

This module defines the abstract interface that ERP connectors must implement.
It is intentionally ERP-agnostic - no Dilovod request shapes here.

Connectors implement this interface to:
1. Read directories (payment forms, cash accounts, trade channels, ...)
2. Validate, export and ship storefront orders as ERP documents
3. Look documents up by order number or base document for reconciliation

Key Design Principles:
- All methods return NORMALIZED objects (PaymentFormRef, ERPDocumentRef, ...)
- The export engine, Temporal activities and API routes depend ONLY on this interface
- Idempotency tokens cross this boundary as opaque strings
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from orders.models import StorefrontOrder


# =============================================================================
# Enums
# =============================================================================

class ERPConnectionStatus(str, Enum):
    """Connection status to ERP system."""
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    FAILED = "FAILED"


class ERPDocumentKind(str, Enum):
    """Documents the export pipeline creates or looks up."""
    SALE_ORDER = "SALE_ORDER"   # customer order
    SALE = "SALE"               # shipment
    CASH_IN = "CASH_IN"         # payment receipt


# =============================================================================
# Errors
# =============================================================================

class ERPConnectorError(Exception):
    """Base exception for connector failures.

    Attributes:
        raw_message: Upstream error text, kept for operator diagnosis
    """
    def __init__(self, message: str, raw_message: Optional[str] = None):
        super().__init__(message)
        self.raw_message = raw_message or message


class ERPConnectionError(ERPConnectorError):
    """Transport-level failure (timeout, refused connection, 5xx after retries)."""
    pass


class ERPRejectionError(ERPConnectorError):
    """The ERP answered and refused the request."""
    pass


# =============================================================================
# Normalized Directory References (ERP-Agnostic)
# =============================================================================

class PaymentFormRef(BaseModel):
    """ERP payment form."""
    id: str = Field(..., description="ERP internal id")
    name: str = Field(default="", description="Display name; drives cash classification")

    class Config:
        frozen = True


class CashAccountRef(BaseModel):
    """ERP cash/bank account.

    owner is the id of the firm the account belongs to.
    """
    id: str = Field(..., description="ERP internal id")
    name: str = Field(default="")
    code: Optional[str] = None
    owner: Optional[str] = Field(default=None, description="Owning firm id")

    class Config:
        frozen = True


class TradeChannelRef(BaseModel):
    """ERP trade channel ("id__pr" in the raw directory is its display name)."""
    id: str
    code: Optional[str] = None
    name: Optional[str] = None

    class Config:
        frozen = True


class DeliveryMethodRef(BaseModel):
    id: str
    code: Optional[str] = None
    name: Optional[str] = None

    class Config:
        frozen = True


class FirmRef(BaseModel):
    id: str
    name: str = ""

    class Config:
        frozen = True


class StorageRef(BaseModel):
    id: str
    name: str = ""
    code: Optional[str] = None

    class Config:
        frozen = True


class ERPDirectories(BaseModel):
    """All directories the resolver and validator need, fetched together."""
    payment_forms: List[PaymentFormRef] = Field(default_factory=list)
    cash_accounts: List[CashAccountRef] = Field(default_factory=list)
    trade_channels: List[TradeChannelRef] = Field(default_factory=list)
    delivery_methods: List[DeliveryMethodRef] = Field(default_factory=list)
    firms: List[FirmRef] = Field(default_factory=list)
    storages: List[StorageRef] = Field(default_factory=list)
    fetched_at: Optional[datetime] = None

    @staticmethod
    def _find(items: Iterable, ref_id: Optional[str]):
        if not ref_id:
            return None
        for item in items:
            if item.id == ref_id:
                return item
        return None

    def payment_form(self, ref_id: Optional[str]) -> Optional[PaymentFormRef]:
        return self._find(self.payment_forms, ref_id)

    def cash_account(self, ref_id: Optional[str]) -> Optional[CashAccountRef]:
        return self._find(self.cash_accounts, ref_id)

    def trade_channel(self, ref_id: Optional[str]) -> Optional[TradeChannelRef]:
        return self._find(self.trade_channels, ref_id)

    def delivery_method(self, ref_id: Optional[str]) -> Optional[DeliveryMethodRef]:
        return self._find(self.delivery_methods, ref_id)

    def firm(self, ref_id: Optional[str]) -> Optional[FirmRef]:
        return self._find(self.firms, ref_id)

    def storage(self, ref_id: Optional[str]) -> Optional[StorageRef]:
        return self._find(self.storages, ref_id)


# =============================================================================
# Document Requests and Responses
# =============================================================================

class DocumentRequest(BaseModel):
    """An order plus the ERP identifiers it resolved to.

    composed_order_number is the identifier the ERP stores and searches.
    None ids mean "let the ERP decide" (firm, trade channel) or "not applicable".
    """
    order: StorefrontOrder
    composed_order_number: str
    payment_form_id: Optional[str] = None
    cash_account_id: Optional[str] = None
    trade_channel_id: Optional[str] = None
    firm_id: Optional[str] = None
    delivery_method_id: Optional[str] = None
    storage_id: Optional[str] = None


class ValidationResponse(BaseModel):
    """Result of an ERP-side dry run of the sale-order payload.

    token, when present, refers to a contact the ERP call found or created.
    """
    success: bool
    token: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    critical_errors: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ExportResponse(BaseModel):
    """Result of submitting a sale order.

    exported is False when an identical document already existed; that case
    is a success with no changes.
    """
    success: bool
    exported: bool = False
    document_id: Optional[str] = None
    export_date: Optional[datetime] = None
    sale_token: Optional[str] = None
    message: str = ""
    warnings: List[str] = Field(default_factory=list)


class ShipmentResponse(BaseModel):
    """Result of creating the shipment (sale) document."""
    success: bool
    created: bool = False
    document_id: Optional[str] = None
    message: str = ""


class ERPDocumentRef(BaseModel):
    """A document found by number or by base document."""
    id: str
    kind: ERPDocumentKind
    number: Optional[str] = None
    date: Optional[datetime] = None
    base_doc: Optional[str] = None

    class Config:
        frozen = True


# =============================================================================
# Connector Configuration
# =============================================================================

@dataclass
class ERPConfig:
    """Configuration for an ERP connector.

    Generic configuration that can be extended by specific connectors.
    """
    connector_type: str                     # "dilovod"
    base_url: Optional[str] = None          # ERP API endpoint
    api_key: Optional[str] = None
    timeout_seconds: int = 30
    max_retries: int = 3
    token_ttl_seconds: int = 600            # lifetime of idempotency tokens

    # ERP-specific settings
    custom_settings: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Abstract Connector Interface
# =============================================================================

class ERPConnector(ABC):
    """Abstract base class for ERP connectors.

    DESIGN PRINCIPLE:
    - The export engine and API routes depend ONLY on this interface
    - All methods return NORMALIZED objects
    - Transport failures raise ERPConnectionError, refusals raise ERPRejectionError

    Implementations:
    - connectors/dilovod/connector.py
    """

    def __init__(self, config: ERPConfig):
        self.config = config
        self._connection_status = ERPConnectionStatus.DISCONNECTED

    # =========================================================================
    # Connection Management
    # =========================================================================

    @abstractmethod
    async def connect(self) -> bool:
        """Open the HTTP session. Returns True on success."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check that the ERP answers an authenticated request."""
        pass

    @property
    def connection_status(self) -> ERPConnectionStatus:
        return self._connection_status

    async def __aenter__(self) -> "ERPConnector":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    # =========================================================================
    # Directories
    # =========================================================================

    @abstractmethod
    async def list_payment_forms(self) -> List[PaymentFormRef]:
        pass

    @abstractmethod
    async def list_cash_accounts(self) -> List[CashAccountRef]:
        pass

    @abstractmethod
    async def list_trade_channels(self) -> List[TradeChannelRef]:
        pass

    @abstractmethod
    async def list_delivery_methods(self) -> List[DeliveryMethodRef]:
        pass

    @abstractmethod
    async def list_firms(self) -> List[FirmRef]:
        pass

    @abstractmethod
    async def list_storages(self) -> List[StorageRef]:
        pass

    async def get_directories(self) -> ERPDirectories:
        """Fetch every directory concurrently (read-only calls)."""
        (
            payment_forms,
            cash_accounts,
            trade_channels,
            delivery_methods,
            firms,
            storages,
        ) = await asyncio.gather(
            self.list_payment_forms(),
            self.list_cash_accounts(),
            self.list_trade_channels(),
            self.list_delivery_methods(),
            self.list_firms(),
            self.list_storages(),
        )
        return ERPDirectories(
            payment_forms=payment_forms,
            cash_accounts=cash_accounts,
            trade_channels=trade_channels,
            delivery_methods=delivery_methods,
            firms=firms,
            storages=storages,
            fetched_at=datetime.utcnow(),
        )

    # =========================================================================
    # Documents (write path)
    # =========================================================================

    @abstractmethod
    async def validate_order(self, request: DocumentRequest) -> ValidationResponse:
        """Build the sale-order payload without saving it.

        May find or create the customer contact and return a token for it.
        """
        pass

    @abstractmethod
    async def export_order(
        self,
        request: DocumentRequest,
        contact_token: Optional[str] = None,
    ) -> ExportResponse:
        """Create the sale order unless one with this number already exists.

        Args:
            request: Order and resolved identifiers
            contact_token: Token from validate_order, consumed if present
        """
        pass

    @abstractmethod
    async def create_shipment(
        self,
        request: DocumentRequest,
        base_doc_id: str,
        sale_token: Optional[str] = None,
    ) -> ShipmentResponse:
        """Create the shipment document based on an existing sale order.

        Args:
            request: Order and resolved identifiers
            base_doc_id: Sale-order document id
            sale_token: Token from export_order, consumed if present
        """
        pass

    # =========================================================================
    # Documents (read path)
    # =========================================================================

    @abstractmethod
    async def find_sale_orders(self, order_numbers: List[str]) -> List[ERPDocumentRef]:
        """Look sale orders up by composed order number."""
        pass

    @abstractmethod
    async def find_documents_by_base_doc(
        self,
        kind: ERPDocumentKind,
        base_doc_ids: List[str],
    ) -> List[ERPDocumentRef]:
        """Look shipment or cash-in documents up by their base sale order."""
        pass

    def get_connector_name(self) -> str:
        return self.config.connector_type


# =============================================================================
# Connector Factory
# =============================================================================

_connector_registry: Dict[str, type] = {}


def register_connector(connector_type: str):
    """Decorator to register a connector implementation."""
    def decorator(cls):
        _connector_registry[connector_type] = cls
        return cls
    return decorator


def create_connector(config: ERPConfig) -> ERPConnector:
    """Create a connector instance from configuration.

    Raises:
        ValueError: If connector_type is not registered
    """
    connector_type = config.connector_type.lower()

    if connector_type not in _connector_registry:
        available = list(_connector_registry.keys())
        raise ValueError(
            f"Unknown connector type: {connector_type}. "
            f"Available: {available}"
        )

    connector_class = _connector_registry[connector_type]
    return connector_class(config)


def list_available_connectors() -> List[str]:
    """List all registered connector types."""
    return list(_connector_registry.keys())
