"""Export Engine Data Models.

- ExportState: states of one order's orchestration run
- IdempotencyToken: NoToken | Token, threaded explicitly between stages
- Stage outcomes and the per-order run report
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from channel_mapping.models import MappingResolution
from core.observability import mask_token


class ExportState(str, Enum):
    """Orchestration states, in pipeline order."""
    PENDING = "PENDING"
    VALIDATING = "VALIDATING"
    VALIDATED = "VALIDATED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    EXPORTED = "EXPORTED"
    EXPORT_FAILED = "EXPORT_FAILED"
    SHIPPED = "SHIPPED"
    SHIPMENT_SKIPPED = "SHIPMENT_SKIPPED"
    SHIPMENT_FAILED = "SHIPMENT_FAILED"


class ExportStage(str, Enum):
    VALIDATE = "validate"
    EXPORT = "export"
    SHIPMENT = "shipment"


# =============================================================================
# Idempotency tokens
# =============================================================================

class TokenKind(str, Enum):
    """What the ERP call that issued the token pre-created."""
    CONTACT = "contact"   # from validate, consumed by export
    SALE = "sale"         # from export, consumed by shipment


@dataclass(frozen=True)
class NoToken:
    """No token available; the next stage re-resolves the contact."""

    def __bool__(self) -> bool:
        return False


@dataclass(frozen=True)
class Token:
    """Single-use token bound to the order it was issued for."""
    value: str
    kind: TokenKind
    order_id: Optional[int] = None

    def __repr__(self) -> str:
        return f"Token(kind={self.kind.value}, order_id={self.order_id}, value={mask_token(self.value)})"

    __str__ = __repr__


IdempotencyToken = Union[NoToken, Token]

NO_TOKEN = NoToken()


def issue_token(value: Optional[str], kind: TokenKind, order_id: Optional[int]) -> IdempotencyToken:
    """Wrap a connector token; empty values become NoToken."""
    if not value:
        return NO_TOKEN
    return Token(value=value, kind=kind, order_id=order_id)


def token_for_stage(token: IdempotencyToken, kind: TokenKind, order_id: Optional[int]) -> Optional[str]:
    """Raw token value if it is the right kind and was issued for this order."""
    if not isinstance(token, Token):
        return None
    if token.kind != kind or token.order_id != order_id:
        return None
    return token.value


# =============================================================================
# Stage outcomes
# =============================================================================

@dataclass
class ValidationOutcome:
    state: ExportState
    resolution: MappingResolution
    token: IdempotencyToken = NO_TOKEN
    warnings: List[str] = field(default_factory=list)


@dataclass
class ExportOutcome:
    """exported=False with a document_id means the sale order already existed."""
    state: ExportState
    exported: bool
    document_id: Optional[str] = None
    export_date: Optional[datetime] = None
    token: IdempotencyToken = NO_TOKEN
    message: str = ""
    warnings: List[str] = field(default_factory=list)


@dataclass
class ShipmentOutcome:
    state: ExportState
    created: bool
    document_id: Optional[str] = None
    message: str = ""


@dataclass
class OrderRunReport:
    """Everything one validate -> export -> shipment run produced."""
    order_id: Optional[int]
    order_number: str
    state: ExportState = ExportState.PENDING
    validation: Optional[ValidationOutcome] = None
    export: Optional[ExportOutcome] = None
    shipment: Optional[ShipmentOutcome] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def export_success(self) -> bool:
        return self.export is not None and self.state not in (
            ExportState.EXPORT_FAILED,
            ExportState.VALIDATION_FAILED,
        )

    @property
    def shipment_success(self) -> bool:
        return self.shipment is not None and self.shipment.created

    @property
    def critical(self) -> bool:
        return any(not error.get("recoverable", True) for error in self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "state": self.state.value,
            "export_success": self.export_success,
            "shipment_success": self.shipment_success,
            "dilovod_doc_id": self.export.document_id if self.export else None,
            "exported": self.export.exported if self.export else False,
            "errors": self.errors,
        }
