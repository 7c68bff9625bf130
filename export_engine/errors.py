"""Export Engine error taxonomy.

Every error carries the raw upstream message for operator diagnosis and a
recoverable flag:

- CriticalConfigurationError: the Mapping Store (or ERP-side setup) is
  missing something; nothing is retried until an operator fixes it
- RecoverableValidationError / ExportError / ShipmentError: the ERP
  refused the request; retry after the data or the ERP changes
- NetworkError: transport failure, always safe to retry
- ConcurrentRunError: the order is already being processed
"""

from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from connectors.erp_base import ERPConnectionError, ERPConnectorError


class ExportEngineError(Exception):
    """Base exception for export engine failures."""

    error_type = "export_engine_error"
    recoverable = True

    def __init__(
        self,
        message: str,
        raw_message: Optional[str] = None,
        order_number: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.raw_message = raw_message or message
        self.order_number = order_number

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type,
            "message": self.message,
            "raw_message": self.raw_message,
            "order_number": self.order_number,
            "recoverable": self.recoverable,
        }


class CriticalConfigurationError(ExportEngineError):
    """Blocking configuration gap; the order cannot be exported as configured.

    Attributes:
        reason: Resolver failure kind or "erp_configuration"
        details: One line per problem found
        action_required: What the operator has to change
    """

    error_type = "critical_validation_error"
    recoverable = False

    def __init__(
        self,
        message: str,
        reason: str = "configuration",
        details: Optional[List[str]] = None,
        action_required: str = "Update the channel mapping settings and retry",
        channel_id: Optional[str] = None,
        raw_message: Optional[str] = None,
        order_number: Optional[str] = None,
    ):
        super().__init__(message, raw_message=raw_message, order_number=order_number)
        self.reason = reason
        self.details = details or [message]
        self.action_required = action_required
        self.channel_id = channel_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "reason": self.reason,
            "details": self.details,
            "action_required": self.action_required,
            "channel_id": self.channel_id,
        })
        return data


class RecoverableValidationError(ExportEngineError):
    """ERP-side rejection of the composed payload during validation."""
    error_type = "validation_error"


class ExportError(ExportEngineError):
    """Sale order was not created."""
    error_type = "export_error"


class ShipmentError(ExportEngineError):
    """Shipment document was not created."""
    error_type = "shipment_error"


class NetworkError(ExportEngineError):
    """Transport-level failure talking to the ERP."""
    error_type = "network_error"


class ConcurrentRunError(ExportEngineError):
    """Another run for the same order is in progress."""
    error_type = "concurrent_run"


@contextmanager
def translate_connector_errors(rejection_error: type, order_number: Optional[str] = None):
    """Re-raise connector errors as engine errors.

    Transport failures become NetworkError; anything the ERP refused becomes
    rejection_error (the stage-specific error class).
    """
    try:
        yield
    except ERPConnectionError as e:
        raise NetworkError(str(e), raw_message=e.raw_message, order_number=order_number) from e
    except ERPConnectorError as e:
        raise rejection_error(str(e), raw_message=e.raw_message, order_number=order_number) from e
