"""Export Engine - turns storefront orders into Dilovod documents.

Usage:
    from export_engine import ExportOrchestrator, BulkOperationCoordinator

    orchestrator = ExportOrchestrator(connector, directory_cache, db_path=db_path)
    report = await orchestrator.run(order)
"""

from export_engine.errors import (
    ExportEngineError,
    CriticalConfigurationError,
    RecoverableValidationError,
    ExportError,
    ShipmentError,
    NetworkError,
    ConcurrentRunError,
)
from export_engine.models import (
    ExportState,
    ExportStage,
    TokenKind,
    NoToken,
    Token,
    IdempotencyToken,
    NO_TOKEN,
    ValidationOutcome,
    ExportOutcome,
    ShipmentOutcome,
    OrderRunReport,
)
from export_engine.orchestrator import ExportOrchestrator, OrderLocks
from export_engine.runtime import ExportRuntime, assemble_runtime, build_runtime
from export_engine.bulk import (
    BulkOperationCoordinator,
    BulkOperationKind,
    BulkItemReport,
    BulkReport,
)

__all__ = [
    # Errors
    "ExportEngineError",
    "CriticalConfigurationError",
    "RecoverableValidationError",
    "ExportError",
    "ShipmentError",
    "NetworkError",
    "ConcurrentRunError",
    # Models
    "ExportState",
    "ExportStage",
    "TokenKind",
    "NoToken",
    "Token",
    "IdempotencyToken",
    "NO_TOKEN",
    "ValidationOutcome",
    "ExportOutcome",
    "ShipmentOutcome",
    "OrderRunReport",
    # Orchestration
    "ExportOrchestrator",
    "OrderLocks",
    "BulkOperationCoordinator",
    "BulkOperationKind",
    "BulkItemReport",
    "BulkReport",
    # Wiring
    "ExportRuntime",
    "assemble_runtime",
    "build_runtime",
]
