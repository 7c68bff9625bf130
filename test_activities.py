"""
Temporal Activity Tests

Runs the export activities in temporalio's ActivityEnvironment against a
runtime built around a mocked Dilovod connector.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from temporalio.exceptions import ApplicationError
from temporalio.testing import ActivityEnvironment

from activities import configure_runtime
from activities.export import (
    OrderNotFoundError,
    OrderStageInput,
    ReconcileOrdersInput,
    export_order_activity,
    reconcile_orders_activity,
    ship_order_activity,
    validate_order_activity,
)
from channel_mapping.db import init_settings_db, save_settings
from channel_mapping.models import ChannelMapping, MappingSettings, PaymentMapping
from connectors.dilovod.dilovod_connector import DilovodConnector
from connectors.dilovod.dilovod_token_cache import PayloadCache
from connectors.erp_base import (
    ERPConfig,
    ERPDirectories,
    ExportResponse,
    PaymentFormRef,
    ShipmentResponse,
    ValidationResponse,
)
from export_engine.errors import CriticalConfigurationError
from export_engine.models import ExportStage
from export_engine.runtime import assemble_runtime
from orders.db import get_order, init_orders_db, upsert_order
from orders.models import OrderItem, StorefrontOrder
from workflows.order_export_workflow import CRITICAL_ERRORS, NON_RETRYABLE_ERRORS, _failure


@pytest.fixture
def temp_db():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    init_settings_db(db_path)
    init_orders_db(db_path)

    channel = ChannelMapping(
        channel_id="22",
        prefix_order="RZ-",
        mappings=(PaymentMapping(id="m1", channel_id="22", sales_drive_payment_method=5, payment_form="pf-card"),),
    )
    save_settings(MappingSettings(channel_payment_mapping={"22": channel}), db_path=db_path)

    yield db_path
    try:
        os.unlink(db_path)
    except PermissionError:
        pass


@pytest.fixture
def connector(temp_db):
    connector = MagicMock()
    connector.get_directories = AsyncMock(return_value=ERPDirectories(
        payment_forms=[PaymentFormRef(id="pf-card", name="Картка")],
    ))
    connector.validate_order = AsyncMock(return_value=ValidationResponse(success=True, token="C"))
    connector.export_order = AsyncMock(return_value=ExportResponse(success=True, exported=True, document_id="D1"))
    connector.create_shipment = AsyncMock(return_value=ShipmentResponse(success=True, created=True, document_id="S1"))
    connector.find_sale_orders = AsyncMock(return_value=[])
    connector.find_documents_by_base_doc = AsyncMock(return_value=[])

    configure_runtime(assemble_runtime(connector, temp_db))
    yield connector
    configure_runtime(None)


def _add_order(db_path, number="9386", channel_id="22"):
    return upsert_order(
        StorefrontOrder(external_id=f"sd-{number}", order_number=number, channel_id=channel_id, payment_method=5),
        db_path=db_path,
    )


def _run(activity_fn, arg):
    return asyncio.run(ActivityEnvironment().run(activity_fn, arg))


class TestExportActivities:

    def test_validate(self, temp_db, connector):
        order_id = _add_order(temp_db)

        result = _run(validate_order_activity, OrderStageInput(order_id=order_id))

        assert result.order_number == "RZ-9386"
        assert result.payment_form_id == "pf-card"

    def test_export_then_ship(self, temp_db, connector):
        order_id = _add_order(temp_db)

        exported = _run(export_order_activity, OrderStageInput(order_id=order_id))
        shipped = _run(ship_order_activity, OrderStageInput(order_id=order_id))

        assert exported.exported is True
        assert exported.dilovod_doc_id == "D1"
        assert shipped.created is True
        assert connector.create_shipment.call_args.args[1] == "D1"
        assert get_order(order_id, db_path=temp_db).export_state.is_shipped

    def test_validate_returns_contact_token(self, temp_db, connector):
        order_id = _add_order(temp_db)

        result = _run(validate_order_activity, OrderStageInput(order_id=order_id))

        assert result.token == "C"

    def test_export_without_token(self, temp_db, connector):
        order_id = _add_order(temp_db)

        _run(export_order_activity, OrderStageInput(order_id=order_id))

        assert connector.export_order.call_args.kwargs["contact_token"] is None

    def test_export_consumes_contact_token(self, temp_db, connector):
        connector.export_order.return_value = ExportResponse(
            success=True, exported=True, document_id="D1", sale_token="S",
        )
        order_id = _add_order(temp_db)

        result = _run(export_order_activity, OrderStageInput(order_id=order_id, token="C"))

        assert connector.export_order.call_args.kwargs["contact_token"] == "C"
        assert result.token == "S"

    def test_ship_consumes_sale_token(self, temp_db, connector):
        order_id = _add_order(temp_db)
        _run(export_order_activity, OrderStageInput(order_id=order_id))

        _run(ship_order_activity, OrderStageInput(order_id=order_id, token="S"))

        assert connector.create_shipment.call_args.kwargs["sale_token"] == "S"

    def test_critical_error_propagates(self, temp_db, connector):
        order_id = _add_order(temp_db, channel_id="99")

        with pytest.raises(CriticalConfigurationError):
            _run(validate_order_activity, OrderStageInput(order_id=order_id))

        connector.validate_order.assert_not_called()

    def test_missing_order(self, temp_db, connector):
        with pytest.raises(OrderNotFoundError):
            _run(export_order_activity, OrderStageInput(order_id=404))

    def test_reconcile(self, temp_db, connector):
        order_id = _add_order(temp_db)

        result = _run(reconcile_orders_activity, ReconcileOrdersInput(order_ids=[order_id]))

        assert result.checked == 1
        assert result.found == 0
        connector.find_sale_orders.assert_awaited_once_with(["RZ-9386"])


class TestTokenHandOff:
    """Validate -> export -> shipment against the real Dilovod connector."""

    @pytest.fixture
    def dilovod(self, temp_db):
        settings = MappingSettings(
            channel_payment_mapping={"22": ChannelMapping(
                channel_id="22",
                prefix_order="RZ-",
                mappings=(PaymentMapping(id="m1", channel_id="22", sales_drive_payment_method=5, payment_form="pf-card"),),
            )},
            storage_id="st-1",
        )
        save_settings(settings, db_path=temp_db)

        api_client = MagicMock()
        api_client.request = AsyncMock(return_value=[])
        api_client.request_in = AsyncMock(return_value=[])
        api_client.find_person_by_phone = AsyncMock(return_value=[])
        api_client.create_person = AsyncMock(return_value={"id": "person-new"})
        api_client.find_goods_by_sku = AsyncMock(return_value={"SKU-1": "good-1"})
        api_client.save_object = AsyncMock(side_effect=[{"id": "doc-1"}, {"id": "ship-1"}])

        tokens = PayloadCache()
        connector = DilovodConnector(
            ERPConfig(connector_type="dilovod", api_key="key"),
            api_client=api_client,
            token_cache=tokens,
        )
        configure_runtime(assemble_runtime(connector, temp_db))
        yield api_client, tokens
        configure_runtime(None)

    def test_customer_created_once_for_order_without_phone(self, temp_db, dilovod):
        api_client, tokens = dilovod
        order_id = upsert_order(
            StorefrontOrder(
                external_id="sd-9400",
                order_number="9400",
                channel_id="22",
                payment_method=5,
                customer_name="Коваль Олена",
                items=[OrderItem(sku="SKU-1", quantity=1, price=250.0)],
            ),
            db_path=temp_db,
        )

        validation = _run(validate_order_activity, OrderStageInput(order_id=order_id))
        export = _run(export_order_activity, OrderStageInput(order_id=order_id, token=validation.token))
        shipment = _run(ship_order_activity, OrderStageInput(order_id=order_id, token=export.token))

        assert export.dilovod_doc_id == "doc-1"
        assert shipment.created is True
        assert api_client.create_person.await_count == 1
        assert len(tokens) == 0


class TestWorkflowFailureReport:

    def test_non_retryable_failure(self):
        error = ApplicationError("Channel 99 is not mapped", type="CriticalConfigurationError")

        failure = _failure(ExportStage.VALIDATE, error)

        assert failure == {
            "stage": "validate",
            "type": "CriticalConfigurationError",
            "message": "Channel 99 is not mapped",
            "recoverable": False,
        }

    def test_retryable_failure(self):
        failure = _failure(ExportStage.EXPORT, ApplicationError("timeout", type="NetworkError"))

        assert failure["recoverable"] is True
        assert "NetworkError" not in NON_RETRYABLE_ERRORS

    def test_rejections_are_not_retried_but_stay_recoverable(self):
        assert {"ShipmentError", "RecoverableValidationError"} <= set(NON_RETRYABLE_ERRORS)
        assert "ShipmentError" not in CRITICAL_ERRORS

        failure = _failure(ExportStage.SHIPMENT, ApplicationError("Shipment already exists", type="ShipmentError"))

        assert failure["recoverable"] is True

    def test_plain_exception(self):
        failure = _failure(ExportStage.SHIPMENT, RuntimeError("boom"))

        assert failure["type"] == "RuntimeError"
        assert failure["recoverable"] is True


class TestTemporalClient:

    def test_local_server_without_api_key(self):
        from core.config import AppConfig
        from temporal_client import get_temporal_client

        with patch("temporal_client.Client.connect", new=AsyncMock(return_value="client")) as connect:
            client = asyncio.run(get_temporal_client(AppConfig(temporal_namespace="dev")))

        assert client == "client"
        connect.assert_awaited_once_with("localhost:7233", namespace="dev")

    def test_cloud_uses_tls_and_api_key(self):
        from core.config import AppConfig
        from temporal_client import get_temporal_client

        config = AppConfig(temporal_endpoint="ns.acct.tmprl.cloud:7233", temporal_api_key="key")
        with patch("temporal_client.Client.connect", new=AsyncMock()) as connect:
            asyncio.run(get_temporal_client(config))

        assert connect.call_args.kwargs["tls"] is True
        assert connect.call_args.kwargs["api_key"] == "key"

    def test_api_key_without_endpoint(self):
        from core.config import AppConfig
        from temporal_client import get_temporal_client

        with pytest.raises(ValueError, match="TEMPORAL_ENDPOINT"):
            asyncio.run(get_temporal_client(AppConfig(temporal_api_key="key")))
