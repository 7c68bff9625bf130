"""
Mapping Resolver Tests

Resolution of (channel, payment method, order number) into ERP ids:
- Typed failures for missing channel / payment mapping
- Cash payment forms never resolve a cash account
- Firm from the cash account owner, then the default firm, then auto
- Delivery method from shipping-method name
- Stale references warn (or fail in strict mode)
"""

import pytest

from channel_mapping import store
from channel_mapping.models import (
    ChannelMapping,
    MappingResolution,
    MappingSettings,
    PaymentMapping,
    ResolutionFailure,
    ResolutionFailureKind,
    StaleReferenceKind,
)
from channel_mapping.resolver import MappingResolver, OrderKey
from connectors.erp_base import (
    CashAccountRef,
    DeliveryMethodRef,
    ERPDirectories,
    FirmRef,
    PaymentFormRef,
    TradeChannelRef,
)
from orders.models import StorefrontOrder


@pytest.fixture
def directories():
    return ERPDirectories(
        payment_forms=[
            PaymentFormRef(id="cash-form-1", name="Оплата готівкою"),
            PaymentFormRef(id="card-form", name="Безготівковий розрахунок"),
        ],
        cash_accounts=[
            CashAccountRef(id="acc-1", name="ПриватБанк", owner="firm-1"),
            CashAccountRef(id="acc-orphan", name="Старий рахунок", owner="firm-gone"),
        ],
        trade_channels=[TradeChannelRef(id="tc-1", name="Сайт")],
        delivery_methods=[DeliveryMethodRef(id="dm-np", name="Нова Пошта")],
        firms=[FirmRef(id="firm-1", name="ФОП Іваненко"), FirmRef(id="firm-default", name="ТОВ Склад")],
    )


def _settings(mappings, prefix="", trade_channel=None, **kwargs):
    channel = ChannelMapping(
        channel_id="22",
        prefix_order=prefix,
        dilovod_trade_channel_id=trade_channel,
        mappings=tuple(mappings),
    )
    return MappingSettings(channel_payment_mapping={"22": channel}, **kwargs)


def _mapping(mapping_id="m1", method=5, form=None, account=None):
    return PaymentMapping(
        id=mapping_id,
        channel_id="22",
        sales_drive_payment_method=method,
        payment_form=form,
        cash_account=account,
    )


def _order(channel_id="22", method=5, number="9386", shipping=None):
    return StorefrontOrder(
        id=1,
        order_number=number,
        channel_id=channel_id,
        payment_method=method,
        shipping_method=shipping,
    )


class TestResolutionFailures:

    def test_unknown_channel(self, directories):
        result = MappingResolver(_settings([_mapping()]), directories).resolve_order(_order(channel_id="99"))

        assert isinstance(result, ResolutionFailure)
        assert result.kind == ResolutionFailureKind.NO_CHANNEL_MAPPING
        assert result.channel_id == "99"
        assert result.is_configuration_gap

    def test_unmapped_payment_method(self, directories):
        result = MappingResolver(_settings([_mapping(method=5)]), directories).resolve_order(_order(method=14))

        assert isinstance(result, ResolutionFailure)
        assert result.kind == ResolutionFailureKind.NO_PAYMENT_MAPPING
        assert result.sales_drive_payment_method == 14

    def test_order_without_payment_method(self, directories):
        result = MappingResolver(_settings([_mapping()]), directories).resolve_order(_order(method=None))

        assert result.kind == ResolutionFailureKind.NO_PAYMENT_MAPPING


class TestCashExclusivity:

    def test_cash_form_has_no_cash_account(self, directories):
        """Channel 22, method 5 -> 'Оплата готівкою' resolves without a cash account."""
        settings = _settings([_mapping(form="cash-form-1")])

        result = MappingResolver(settings, directories).resolve_order(_order())

        assert isinstance(result, MappingResolution)
        assert result.payment_form_id == "cash-form-1"
        assert result.cash_account_id is None
        assert result.is_cash_payment is True

    def test_stored_cash_account_ignored_for_cash_form(self, directories):
        settings = _settings([_mapping(form="cash-form-1", account="acc-1")])

        result = MappingResolver(settings, directories).resolve_order(_order())

        assert result.cash_account_id is None

    def test_non_cash_form_keeps_cash_account(self, directories):
        settings = _settings([_mapping(form="card-form", account="acc-1")])

        result = MappingResolver(settings, directories).resolve_order(_order())

        assert result.cash_account_id == "acc-1"
        assert result.is_cash_payment is False


class TestResolvedIdentifiers:

    def test_composed_number_uses_channel_prefix(self, directories):
        settings = _settings([_mapping(form="card-form")], prefix="RZ-")

        result = MappingResolver(settings, directories).resolve_order(_order(number="9386"))

        assert result.composed_order_number == "RZ-9386"

    def test_firm_from_cash_account_owner(self, directories):
        settings = _settings([_mapping(form="card-form", account="acc-1")], default_firm_id="firm-default")

        assert MappingResolver(settings, directories).resolve_order(_order()).firm_id == "firm-1"

    def test_firm_falls_back_to_default(self, directories):
        settings = _settings([_mapping(form="card-form", account="acc-orphan")], default_firm_id="firm-default")

        assert MappingResolver(settings, directories).resolve_order(_order()).firm_id == "firm-default"

    def test_firm_auto_when_nothing_configured(self, directories):
        result = MappingResolver(_settings([_mapping(form="cash-form-1")]), directories).resolve_order(_order())

        assert result.firm_id is None
        assert result.firm_is_auto

    def test_trade_channel_override_and_auto(self, directories):
        with_override = _settings([_mapping(form="card-form")], trade_channel="tc-1")
        without = _settings([_mapping(form="card-form")])

        assert MappingResolver(with_override, directories).resolve_order(_order()).trade_channel_id == "tc-1"
        assert MappingResolver(without, directories).resolve_order(_order()).trade_channel_id is None

    def test_delivery_method_by_shipping_name(self, directories):
        settings = store.add_delivery_mapping(_settings([_mapping(form="card-form")]), ["Нова Пошта"], "dm-np")
        resolver = MappingResolver(settings, directories)

        assert resolver.resolve_order(_order(shipping="Нова Пошта")).delivery_method_id == "dm-np"
        assert resolver.resolve_order(_order(shipping="Самовивіз")).delivery_method_id is None

    def test_first_duplicate_mapping_wins(self, directories):
        settings = _settings([
            _mapping("m1", 5, form="card-form"),
            _mapping("m2", 5, form="cash-form-1"),
        ])

        assert MappingResolver(settings, directories).resolve_order(_order()).mapping_id == "m1"

    def test_storage_passed_through(self, directories):
        settings = _settings([_mapping(form="card-form")], storage_id="st-1")

        assert MappingResolver(settings, directories).resolve_order(_order()).storage_id == "st-1"

    def test_resolve_by_key(self, directories):
        key = OrderKey(channel_id="22", sales_drive_payment_method=5, storefront_order_number="1")

        result = MappingResolver(_settings([_mapping(form="card-form")]), directories).resolve(key)

        assert result.composed_order_number == "1"


class TestStaleReferences:

    def test_stale_form_warns_but_resolves(self, directories):
        settings = _settings([_mapping(form="form-deleted")])

        result = MappingResolver(settings, directories).resolve_order(_order())

        assert isinstance(result, MappingResolution)
        assert result.payment_form_id == "form-deleted"
        assert [w.kind for w in result.warnings] == [StaleReferenceKind.PAYMENT_FORM]

    def test_strict_mode_fails_on_stale(self, directories):
        settings = _settings([_mapping(form="card-form")], trade_channel="tc-deleted")

        result = MappingResolver(settings, directories, strict=True).resolve_order(_order())

        assert isinstance(result, ResolutionFailure)
        assert result.kind == ResolutionFailureKind.STALE_REFERENCE
        assert result.stale_kind == StaleReferenceKind.TRADE_CHANNEL
        assert not result.is_configuration_gap
