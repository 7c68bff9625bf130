"""
Export Orchestrator Tests

validate -> export -> shipment against a mocked ERP connector:
- Configuration gaps stop the run before any ERP call
- Composed order numbers reach every ERP call
- Tokens flow stage to stage and are bound to their order
- Shipment needs a sale-order document id
- Connector errors are mapped to engine errors
- One run per order at a time
"""

import asyncio
import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from channel_mapping.db import init_settings_db, save_settings
from channel_mapping.models import ChannelMapping, MappingSettings, PaymentMapping
from connectors.directory_cache import DirectoryCache
from connectors.erp_base import (
    CashAccountRef,
    ERPConnectionError,
    ERPDirectories,
    ERPRejectionError,
    ExportResponse,
    FirmRef,
    PaymentFormRef,
    ShipmentResponse,
    ValidationResponse,
)
from export_engine import (
    ConcurrentRunError,
    CriticalConfigurationError,
    ExportError,
    ExportOrchestrator,
    ExportState,
    NetworkError,
    RecoverableValidationError,
    ShipmentError,
    Token,
    TokenKind,
)
from orders.db import get_order, init_orders_db, upsert_order
from orders.models import StorefrontOrder


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def temp_db():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    init_settings_db(db_path)
    init_orders_db(db_path)

    channel = ChannelMapping(
        channel_id="22",
        prefix_order="RZ-",
        mappings=(
            PaymentMapping(
                id="m1",
                channel_id="22",
                sales_drive_payment_method=5,
                payment_form="card-form",
                cash_account="acc-1",
            ),
        ),
    )
    save_settings(MappingSettings(channel_payment_mapping={"22": channel}), db_path=db_path)

    yield db_path
    try:
        os.unlink(db_path)
    except PermissionError:
        pass


def _directories():
    return ERPDirectories(
        payment_forms=[PaymentFormRef(id="card-form", name="Безготівковий розрахунок")],
        cash_accounts=[CashAccountRef(id="acc-1", name="ПриватБанк", owner="firm-1")],
        firms=[FirmRef(id="firm-1", name="ФОП Іваненко")],
    )


def _connector():
    connector = MagicMock()
    connector.get_directories = AsyncMock(return_value=_directories())
    connector.validate_order = AsyncMock(return_value=ValidationResponse(success=True, token="contact-tok"))
    connector.export_order = AsyncMock(return_value=ExportResponse(
        success=True, exported=True, document_id="D1", sale_token="T1", message="created",
    ))
    connector.create_shipment = AsyncMock(return_value=ShipmentResponse(
        success=True, created=True, document_id="S1",
    ))
    return connector


def _orchestrator(connector, db_path, **kwargs):
    return ExportOrchestrator(connector, DirectoryCache(connector), db_path=db_path, **kwargs)


def _stored_order(db_path, channel_id="22", number="9386", method=5, external_id="sd-1"):
    order = StorefrontOrder(
        external_id=external_id,
        order_number=number,
        channel_id=channel_id,
        payment_method=method,
        customer_name="Іваненко Петро",
    )
    order_id = upsert_order(order, db_path=db_path)
    return get_order(order_id, db_path=db_path)


# =============================================================================
# Configuration gaps
# =============================================================================

class TestConfigurationGaps:

    def test_unknown_channel_is_critical(self, temp_db):
        connector = _connector()
        orchestrator = _orchestrator(connector, temp_db)
        order = _stored_order(temp_db, channel_id="99")

        with pytest.raises(CriticalConfigurationError) as exc:
            asyncio.run(orchestrator.validate(order))

        assert exc.value.reason == "no_channel_mapping"
        assert exc.value.recoverable is False
        assert exc.value.to_dict()["type"] == "critical_validation_error"
        connector.validate_order.assert_not_called()

    def test_run_stops_before_export_and_shipment(self, temp_db):
        """Channel 99 without mapping: no export and no shipment are attempted."""
        connector = _connector()
        order = _stored_order(temp_db, channel_id="99")

        report = asyncio.run(_orchestrator(connector, temp_db).run(order))

        assert report.state == ExportState.VALIDATION_FAILED
        assert report.export_success is False
        assert report.critical is True
        assert report.errors[0]["type"] == "critical_validation_error"
        connector.export_order.assert_not_called()
        connector.create_shipment.assert_not_called()

    def test_erp_critical_errors_are_critical(self, temp_db):
        connector = _connector()
        connector.validate_order.return_value = ValidationResponse(
            success=False, critical_errors=["Storage is not configured"],
        )
        order = _stored_order(temp_db)

        with pytest.raises(CriticalConfigurationError) as exc:
            asyncio.run(_orchestrator(connector, temp_db).validate(order))

        assert exc.value.reason == "erp_configuration"
        assert exc.value.details == ["Storage is not configured"]

    def test_erp_rejection_is_recoverable(self, temp_db):
        connector = _connector()
        connector.validate_order.return_value = ValidationResponse(success=False, errors=["Bad phone"])
        order = _stored_order(temp_db)

        with pytest.raises(RecoverableValidationError) as exc:
            asyncio.run(_orchestrator(connector, temp_db).validate(order))

        assert exc.value.recoverable is True
        assert "Bad phone" in str(exc.value)


# =============================================================================
# Full run
# =============================================================================

class TestRun:

    def test_composed_number_used_for_every_erp_call(self, temp_db):
        """Channel prefix 'RZ-' turns 9386 into RZ-9386 for all ERP calls."""
        connector = _connector()
        order = _stored_order(temp_db, number="9386")

        report = asyncio.run(_orchestrator(connector, temp_db).run(order))

        assert report.state == ExportState.SHIPPED
        assert report.order_number == "RZ-9386"
        for mocked in (connector.validate_order, connector.export_order, connector.create_shipment):
            request = mocked.call_args.args[0]
            assert request.composed_order_number == "RZ-9386"
            assert request.payment_form_id == "card-form"
            assert request.firm_id == "firm-1"

    def test_tokens_flow_between_stages(self, temp_db):
        connector = _connector()
        order = _stored_order(temp_db)

        report = asyncio.run(_orchestrator(connector, temp_db).run(order))

        assert connector.export_order.call_args.kwargs["contact_token"] == "contact-tok"
        assert connector.create_shipment.call_args.args[1] == "D1"
        assert connector.create_shipment.call_args.kwargs["sale_token"] == "T1"
        assert report.export_success is True
        assert report.shipment_success is True

    def test_export_persists_document_id(self, temp_db):
        connector = _connector()
        order = _stored_order(temp_db)

        asyncio.run(_orchestrator(connector, temp_db).run(order, ship=False))

        stored = get_order(order.id, db_path=temp_db)
        assert stored.export_state.dilovod_doc_id == "D1"
        assert stored.export_state.dilovod_export_date is not None
        assert stored.export_state.dilovod_sale_export_date is None

    def test_ship_false_skips_shipment(self, temp_db):
        connector = _connector()
        order = _stored_order(temp_db)

        report = asyncio.run(_orchestrator(connector, temp_db).run(order, ship=False))

        assert report.state == ExportState.SHIPMENT_SKIPPED
        connector.create_shipment.assert_not_called()

    def test_shipment_not_created_keeps_export(self, temp_db):
        connector = _connector()
        connector.create_shipment.return_value = ShipmentResponse(
            success=True, created=False, message="Shipment already exists",
        )
        order = _stored_order(temp_db)

        report = asyncio.run(_orchestrator(connector, temp_db).run(order))

        assert report.state == ExportState.SHIPMENT_FAILED
        assert report.export_success is True
        assert report.shipment_success is False
        assert report.errors[0]["type"] == "shipment_error"
        assert get_order(order.id, db_path=temp_db).export_state.dilovod_doc_id == "D1"

    def test_shipment_records_date(self, temp_db):
        connector = _connector()
        order = _stored_order(temp_db)

        asyncio.run(_orchestrator(connector, temp_db).run(order))

        assert get_order(order.id, db_path=temp_db).export_state.dilovod_sale_export_date is not None


# =============================================================================
# Export and shipment stages
# =============================================================================

class TestStages:

    def test_second_export_is_a_no_op(self, temp_db):
        connector = _connector()
        connector.export_order.side_effect = [
            ExportResponse(success=True, exported=True, document_id="D1", sale_token="T1"),
            ExportResponse(success=True, exported=False, document_id="D1", message="Already exported"),
        ]
        orchestrator = _orchestrator(connector, temp_db)
        order = _stored_order(temp_db)

        async def export_twice():
            first = await orchestrator.export(order)
            second = await orchestrator.export(order)
            return first, second

        first, second = asyncio.run(export_twice())

        assert first.exported is True
        assert second.exported is False
        assert second.document_id == "D1"
        assert not second.token
        assert get_order(order.id, db_path=temp_db).export_state.dilovod_doc_id == "D1"

    def test_shipment_without_document_is_never_attempted(self, temp_db):
        connector = _connector()
        order = _stored_order(temp_db)

        with pytest.raises(ShipmentError):
            asyncio.run(_orchestrator(connector, temp_db).ship(order))

        connector.create_shipment.assert_not_called()

    def test_token_for_another_order_is_ignored(self, temp_db):
        connector = _connector()
        order = _stored_order(temp_db)
        foreign = Token(value="contact-tok", kind=TokenKind.CONTACT, order_id=order.id + 100)

        asyncio.run(_orchestrator(connector, temp_db).export(order, token=foreign))

        assert connector.export_order.call_args.kwargs["contact_token"] is None

    def test_token_of_wrong_kind_is_ignored(self, temp_db):
        connector = _connector()
        order = _stored_order(temp_db)
        sale = Token(value="T1", kind=TokenKind.SALE, order_id=order.id)

        asyncio.run(_orchestrator(connector, temp_db).export(order, token=sale))

        assert connector.export_order.call_args.kwargs["contact_token"] is None

    def test_validate_issues_contact_token(self, temp_db):
        connector = _connector()
        order = _stored_order(temp_db)

        outcome = asyncio.run(_orchestrator(connector, temp_db).validate(order))

        assert outcome.token.kind == TokenKind.CONTACT
        assert outcome.token.order_id == order.id
        assert outcome.resolution.composed_order_number == "RZ-9386"


# =============================================================================
# Error mapping
# =============================================================================

class TestErrorMapping:

    def test_transport_failure_becomes_network_error(self, temp_db):
        connector = _connector()
        connector.export_order.side_effect = ERPConnectionError("timeout", raw_message="Read timed out")
        order = _stored_order(temp_db)

        with pytest.raises(NetworkError) as exc:
            asyncio.run(_orchestrator(connector, temp_db).export(order))

        assert exc.value.raw_message == "Read timed out"
        assert exc.value.order_number == "RZ-9386"

    def test_rejection_becomes_stage_error(self, temp_db):
        connector = _connector()
        connector.export_order.side_effect = ERPRejectionError("rejected", raw_message="Невірна форма оплати")
        order = _stored_order(temp_db)

        report = asyncio.run(_orchestrator(connector, temp_db).run(order))

        assert report.state == ExportState.EXPORT_FAILED
        assert report.validation is not None
        assert report.errors[0]["type"] == "export_error"
        assert report.errors[0]["raw_message"] == "Невірна форма оплати"
        connector.create_shipment.assert_not_called()

    def test_export_not_successful_raises(self, temp_db):
        connector = _connector()
        connector.export_order.return_value = ExportResponse(success=False, message="No goods")
        order = _stored_order(temp_db)

        with pytest.raises(ExportError):
            asyncio.run(_orchestrator(connector, temp_db).export(order))


# =============================================================================
# Per-order lease
# =============================================================================

class TestOrderLease:

    def test_second_concurrent_run_is_rejected(self, temp_db):
        connector = _connector()

        async def slow_validate(request):
            await asyncio.sleep(0.05)
            return ValidationResponse(success=True, token="contact-tok")

        connector.validate_order.side_effect = slow_validate
        orchestrator = _orchestrator(connector, temp_db)
        order = _stored_order(temp_db)

        async def both():
            return await asyncio.gather(
                orchestrator.validate(order),
                orchestrator.validate(order),
                return_exceptions=True,
            )

        first, second = asyncio.run(both())

        assert first.state == ExportState.VALIDATED
        assert isinstance(second, ConcurrentRunError)
        assert orchestrator.locks.is_held(order.id) is False

    def test_different_orders_run_concurrently(self, temp_db):
        connector = _connector()

        async def slow_validate(request):
            await asyncio.sleep(0.01)
            return ValidationResponse(success=True)

        connector.validate_order.side_effect = slow_validate
        orchestrator = _orchestrator(connector, temp_db)
        first = _stored_order(temp_db, number="1", external_id="sd-1")
        second = _stored_order(temp_db, number="2", external_id="sd-2")

        async def both():
            return await asyncio.gather(orchestrator.validate(first), orchestrator.validate(second))

        outcomes = asyncio.run(both())

        assert [o.resolution.composed_order_number for o in outcomes] == ["RZ-1", "RZ-2"]
