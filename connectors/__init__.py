"""Connectors - ERP and storefront integrations.

This package contains the abstract ERP interface, the Dilovod implementation
and the SalesDrive storefront client.

Key Design Principle:
- The export engine and API routes depend ONLY on the ERPConnector interface
- All methods return NORMALIZED types (PaymentFormRef, ERPDocumentRef, ...)
- No Dilovod request shapes leak through the interface

To add a new ERP:
1. Create a new folder (e.g., sap/)
2. Implement ERPConnector interface
3. Register using @register_connector decorator
"""

from connectors.erp_base import (
    # Core interface
    ERPConnector,
    ERPConfig,
    ERPConnectionStatus,
    ERPDocumentKind,

    # Errors
    ERPConnectorError,
    ERPConnectionError,
    ERPRejectionError,

    # Normalized reference types
    PaymentFormRef,
    CashAccountRef,
    TradeChannelRef,
    DeliveryMethodRef,
    FirmRef,
    StorageRef,
    ERPDirectories,

    # Document types
    DocumentRequest,
    ValidationResponse,
    ExportResponse,
    ShipmentResponse,
    ERPDocumentRef,

    # Factory functions
    create_connector,
    register_connector,
    list_available_connectors,
)

__all__ = [
    "ERPConnector",
    "ERPConfig",
    "ERPConnectionStatus",
    "ERPDocumentKind",
    "ERPConnectorError",
    "ERPConnectionError",
    "ERPRejectionError",
    "PaymentFormRef",
    "CashAccountRef",
    "TradeChannelRef",
    "DeliveryMethodRef",
    "FirmRef",
    "StorageRef",
    "ERPDirectories",
    "DocumentRequest",
    "ValidationResponse",
    "ExportResponse",
    "ShipmentResponse",
    "ERPDocumentRef",
    "create_connector",
    "register_connector",
    "list_available_connectors",
]
