"""Export Orchestrator.

Turns one storefront order into ERP documents in three stages:

    validate  -> resolve the mapping, dry-run the sale order in the ERP
    export    -> create the sale order (or find the existing one)
    shipment  -> create the shipment document based on the sale order

Each stage can be called on its own (the API does) or chained by run().
Tokens returned by one stage are passed explicitly to the next and never
stored. Export and shipment failures never undo an earlier stage.

Usage:
    orchestrator = ExportOrchestrator(connector, directory_cache, db_path=db_path)
    report = await orchestrator.run(order, ship=True)
"""

from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Hashable, Optional, Set, Union

from channel_mapping.db import load_settings
from channel_mapping.models import MappingResolution, MappingSettings, ResolutionFailure
from channel_mapping.resolver import MappingResolver
from connectors.directory_cache import DirectoryCache
from connectors.erp_base import DocumentRequest, ERPConnector
from core.config import DEFAULT_DB_PATH
from core.observability import get_logger, with_correlation
from export_engine.errors import (
    ConcurrentRunError,
    CriticalConfigurationError,
    ExportEngineError,
    ExportError,
    RecoverableValidationError,
    ShipmentError,
    translate_connector_errors,
)
from export_engine.models import (
    NO_TOKEN,
    ExportOutcome,
    ExportStage,
    ExportState,
    IdempotencyToken,
    OrderRunReport,
    ShipmentOutcome,
    TokenKind,
    ValidationOutcome,
    issue_token,
    token_for_stage,
)
from orders.db import record_export, record_shipment
from orders.models import StorefrontOrder


logger = get_logger(__name__)


# =============================================================================
# Per-order lease
# =============================================================================

class OrderLocks:
    """In-process registry of orders currently being processed.

    A second run for a held order is rejected rather than queued.
    """

    def __init__(self):
        self._held: Set[Hashable] = set()

    def is_held(self, key: Hashable) -> bool:
        return key in self._held

    @asynccontextmanager
    async def hold(self, key: Hashable, order_number: Optional[str] = None):
        if key in self._held:
            raise ConcurrentRunError(
                f"Order {order_number or key} is already being processed",
                order_number=order_number,
            )
        self._held.add(key)
        try:
            yield
        finally:
            self._held.discard(key)


def _order_key(order: StorefrontOrder) -> Hashable:
    return order.id if order.id is not None else (order.channel_id, order.order_number)


def _order_correlation(order: StorefrontOrder, stage: ExportStage):
    return with_correlation(
        order_id=str(order.id) if order.id is not None else None,
        channel_id=order.channel_id,
        stage=stage.value,
    )


# =============================================================================
# Orchestrator
# =============================================================================

class ExportOrchestrator:
    """Validate -> export -> shipment state machine for single orders."""

    def __init__(
        self,
        connector: ERPConnector,
        directory_cache: DirectoryCache,
        db_path: Path = DEFAULT_DB_PATH,
        settings_loader: Optional[Callable[[], MappingSettings]] = None,
        locks: Optional[OrderLocks] = None,
        strict_references: bool = False,
    ):
        """Initialize the orchestrator.

        Args:
            connector: ERP connector
            directory_cache: Cached ERP directories for the resolver
            db_path: Database holding orders and the Mapping Store
            settings_loader: Returns the current Mapping Store (read on every call)
            locks: Shared per-order lease registry
            strict_references: Fail validation on stale mapping references
        """
        self.connector = connector
        self.directory_cache = directory_cache
        self.db_path = db_path
        self.settings_loader = settings_loader or (lambda: load_settings(db_path))
        self.locks = locks or OrderLocks()
        self.strict_references = strict_references

    # =========================================================================
    # Resolution
    # =========================================================================

    async def preview(self, order: StorefrontOrder) -> Union[MappingResolution, ResolutionFailure]:
        """Resolve an order without raising; used for display."""
        with translate_connector_errors(RecoverableValidationError):
            directories = await self.directory_cache.get()
        resolver = MappingResolver(self.settings_loader(), directories, strict=self.strict_references)
        return resolver.resolve_order(order)

    async def resolve(self, order: StorefrontOrder) -> MappingResolution:
        """Resolve an order's mapping.

        Raises:
            CriticalConfigurationError: Channel or payment mapping missing
        """
        result = await self.preview(order)
        if isinstance(result, ResolutionFailure):
            raise CriticalConfigurationError(
                result.message,
                reason=result.kind.value,
                channel_id=result.channel_id,
                order_number=order.order_number,
                action_required=(
                    f"Configure sales channel {result.channel_id} and its payment methods "
                    f"in the Dilovod mapping settings"
                ),
            )
        return result

    @staticmethod
    def build_request(order: StorefrontOrder, resolution: MappingResolution) -> DocumentRequest:
        return DocumentRequest(
            order=order,
            composed_order_number=resolution.composed_order_number,
            payment_form_id=resolution.payment_form_id,
            cash_account_id=resolution.cash_account_id,
            trade_channel_id=resolution.trade_channel_id,
            firm_id=resolution.firm_id,
            delivery_method_id=resolution.delivery_method_id,
            storage_id=resolution.storage_id,
        )

    # =========================================================================
    # Stages (public, each holds the order's lease)
    # =========================================================================

    async def validate(self, order: StorefrontOrder) -> ValidationOutcome:
        async with self.locks.hold(_order_key(order), order.order_number):
            return await self._validate(order)

    async def export(
        self,
        order: StorefrontOrder,
        token: IdempotencyToken = NO_TOKEN,
        resolution: Optional[MappingResolution] = None,
    ) -> ExportOutcome:
        async with self.locks.hold(_order_key(order), order.order_number):
            return await self._export(order, token, resolution)

    async def ship(
        self,
        order: StorefrontOrder,
        token: IdempotencyToken = NO_TOKEN,
        resolution: Optional[MappingResolution] = None,
    ) -> ShipmentOutcome:
        async with self.locks.hold(_order_key(order), order.order_number):
            return await self._ship(order, token, resolution)

    # =========================================================================
    # Stage implementations
    # =========================================================================

    async def _validate(self, order: StorefrontOrder) -> ValidationOutcome:
        with _order_correlation(order, ExportStage.VALIDATE):
            resolution = await self.resolve(order)
            number = resolution.composed_order_number

            with with_correlation(order_number=number):
                request = self.build_request(order, resolution)
                with translate_connector_errors(RecoverableValidationError, number):
                    response = await self.connector.validate_order(request)

                if response.critical_errors:
                    raise CriticalConfigurationError(
                        "; ".join(response.critical_errors),
                        reason="erp_configuration",
                        details=list(response.critical_errors),
                        action_required="Complete the Dilovod export settings and retry",
                        channel_id=order.channel_id,
                        order_number=number,
                    )
                if not response.success:
                    message = "; ".join(response.errors) or "Dilovod rejected the order"
                    raise RecoverableValidationError(message, order_number=number)

                warnings = [warning.message for warning in resolution.warnings] + list(response.warnings)
                logger.info(f"Order {number} validated", extra_fields={"warnings": len(warnings)})
                return ValidationOutcome(
                    state=ExportState.VALIDATED,
                    resolution=resolution,
                    token=issue_token(response.token, TokenKind.CONTACT, order.id),
                    warnings=warnings,
                )

    async def _export(
        self,
        order: StorefrontOrder,
        token: IdempotencyToken,
        resolution: Optional[MappingResolution],
    ) -> ExportOutcome:
        with _order_correlation(order, ExportStage.EXPORT):
            if resolution is None:
                resolution = await self.resolve(order)
            number = resolution.composed_order_number

            with with_correlation(order_number=number):
                request = self.build_request(order, resolution)
                with translate_connector_errors(ExportError, number):
                    response = await self.connector.export_order(
                        request,
                        contact_token=token_for_stage(token, TokenKind.CONTACT, order.id),
                    )

                if not response.success:
                    raise ExportError(response.message or "Dilovod did not create the sale order", order_number=number)

                if response.document_id:
                    self._record_export(order, response.document_id, response.export_date)

                if response.exported:
                    logger.info(f"Sale order {number} created", extra_fields={"dilovod_doc_id": response.document_id})
                else:
                    logger.info(f"Sale order {number} already exists; no changes")

                return ExportOutcome(
                    state=ExportState.EXPORTED,
                    exported=response.exported,
                    document_id=response.document_id,
                    export_date=response.export_date,
                    token=issue_token(response.sale_token, TokenKind.SALE, order.id),
                    message=response.message,
                    warnings=list(response.warnings),
                )

    async def _ship(
        self,
        order: StorefrontOrder,
        token: IdempotencyToken,
        resolution: Optional[MappingResolution],
    ) -> ShipmentOutcome:
        with _order_correlation(order, ExportStage.SHIPMENT):
            base_doc_id = order.export_state.dilovod_doc_id
            if not base_doc_id:
                raise ShipmentError(
                    f"Order {order.order_number} has no sale order in Dilovod; export it first",
                    order_number=order.order_number,
                )

            if resolution is None:
                resolution = await self.resolve(order)
            number = resolution.composed_order_number

            with with_correlation(order_number=number):
                request = self.build_request(order, resolution)
                with translate_connector_errors(ShipmentError, number):
                    response = await self.connector.create_shipment(
                        request,
                        base_doc_id,
                        sale_token=token_for_stage(token, TokenKind.SALE, order.id),
                    )

                if not response.created:
                    raise ShipmentError(response.message or "Dilovod did not create the shipment", order_number=number)

                shipped_at = datetime.utcnow()
                if order.id is not None:
                    record_shipment(order.id, shipped_at, db_path=self.db_path)
                order.export_state = order.export_state.model_copy(update={"dilovod_sale_export_date": shipped_at})

                logger.info(f"Shipment for {number} created", extra_fields={"document_id": response.document_id})
                return ShipmentOutcome(
                    state=ExportState.SHIPPED,
                    created=True,
                    document_id=response.document_id,
                    message=response.message,
                )

    def _record_export(self, order: StorefrontOrder, document_id: str, export_date: Optional[datetime]) -> None:
        state = order.export_state
        if state.dilovod_doc_id == document_id and state.dilovod_export_date is not None:
            return

        exported_at = export_date or state.dilovod_export_date or datetime.utcnow()
        if order.id is not None:
            record_export(order.id, document_id, exported_at, db_path=self.db_path)
        order.export_state = state.model_copy(update={
            "dilovod_doc_id": document_id,
            "dilovod_export_date": exported_at,
        })

    # =========================================================================
    # Full run
    # =========================================================================

    async def run(self, order: StorefrontOrder, ship: bool = True) -> OrderRunReport:
        """Validate, export and (optionally) ship one order.

        Stage failures are recorded in the report, not raised. The run stops
        at the first failed stage. ConcurrentRunError is raised when the
        order is already being processed.
        """
        report = OrderRunReport(order_id=order.id, order_number=order.order_number)

        async with self.locks.hold(_order_key(order), order.order_number):
            report.state = ExportState.VALIDATING
            try:
                report.validation = await self._validate(order)
            except ExportEngineError as e:
                return self._fail(report, ExportState.VALIDATION_FAILED, e)

            resolution = report.validation.resolution
            report.order_number = resolution.composed_order_number
            report.state = ExportState.VALIDATED

            try:
                report.export = await self._export(order, report.validation.token, resolution)
            except ExportEngineError as e:
                return self._fail(report, ExportState.EXPORT_FAILED, e)
            report.state = ExportState.EXPORTED

            if not ship or not order.export_state.dilovod_doc_id:
                report.state = ExportState.SHIPMENT_SKIPPED
                return report

            try:
                report.shipment = await self._ship(order, report.export.token, resolution)
            except ExportEngineError as e:
                return self._fail(report, ExportState.SHIPMENT_FAILED, e)
            report.state = ExportState.SHIPPED

        return report

    @staticmethod
    def _fail(report: OrderRunReport, state: ExportState, error: ExportEngineError) -> OrderRunReport:
        report.state = state
        report.errors.append(error.to_dict())
        log = logger.error if not error.recoverable else logger.warning
        log(
            f"Order {report.order_number}: {state.value}: {error}",
            extra_fields={"error_type": error.error_type, "raw_message": error.raw_message},
        )
        return report
