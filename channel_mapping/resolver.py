"""Mapping Resolver.

Turns an order (channel, storefront payment method, order number) into the
ERP identifiers its documents should carry.

Resolution rules:
1. No ChannelMapping for the channel -> NoChannelMapping (blocking)
2. No PaymentMapping for the payment method -> NoPaymentMapping (blocking)
3. Cash-classified payment forms never carry a cash account
4. Firm: owner of the resolved cash account, else the default firm, else auto (None)
5. Trade channel: the channel override, else auto (None)
6. Delivery method: first delivery mapping listing the order's shipping method

Stored ids missing from the current directories are reported as
StaleReferenceWarning and still resolved as-is. With strict=True the first
stale reference becomes a StaleReference failure instead.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from channel_mapping.classify import is_cash_payment_form
from channel_mapping.models import (
    ChannelMapping,
    MappingResolution,
    MappingSettings,
    PaymentMapping,
    ResolutionFailure,
    ResolutionFailureKind,
    StaleReferenceKind,
    StaleReferenceWarning,
)
from channel_mapping.numbering import compose_order_number
from channel_mapping.validator import MappingValidator
from connectors.erp_base import ERPDirectories
from core.observability import get_logger
from orders.models import StorefrontOrder


logger = get_logger(__name__)


ResolverResult = Union[MappingResolution, ResolutionFailure]


@dataclass
class OrderKey:
    """The parts of an order the resolver looks at."""
    channel_id: str
    sales_drive_payment_method: Optional[int]
    storefront_order_number: str
    shipping_method: Optional[str] = None

    @classmethod
    def from_order(cls, order: StorefrontOrder) -> "OrderKey":
        return cls(
            channel_id=str(order.channel_id),
            sales_drive_payment_method=order.payment_method,
            storefront_order_number=order.order_number,
            shipping_method=order.shipping_method,
        )


class MappingResolver:
    """Resolves orders against one Mapping Store snapshot and one set of directories.

    Example:
        resolver = MappingResolver(settings, directories)
        result = resolver.resolve_order(order)

        if isinstance(result, ResolutionFailure):
            print(result.message)
        else:
            print(result.composed_order_number, result.payment_form_id)
    """

    def __init__(
        self,
        settings: MappingSettings,
        directories: ERPDirectories,
        strict: bool = False,
    ):
        """Initialize the resolver.

        Args:
            settings: Mapping Store snapshot (read on every orchestration call)
            directories: Current ERP directories
            strict: Treat stale references as failures instead of warnings
        """
        self.settings = settings
        self.directories = directories
        self.strict = strict
        self.validator = MappingValidator(settings)

    def resolve_order(self, order: StorefrontOrder) -> ResolverResult:
        return self.resolve(OrderKey.from_order(order))

    def resolve(self, key: OrderKey) -> ResolverResult:
        channel_id = str(key.channel_id)
        channel = self.settings.get_channel(channel_id)

        if channel is None:
            return ResolutionFailure(
                kind=ResolutionFailureKind.NO_CHANNEL_MAPPING,
                channel_id=channel_id,
                sales_drive_payment_method=key.sales_drive_payment_method,
                message=f"Sales channel {channel_id} has no mapping configuration",
            )

        mapping = self._find_payment_mapping(channel, key.sales_drive_payment_method)
        if mapping is None:
            return ResolutionFailure(
                kind=ResolutionFailureKind.NO_PAYMENT_MAPPING,
                channel_id=channel_id,
                sales_drive_payment_method=key.sales_drive_payment_method,
                message=(
                    f"Payment method {key.sales_drive_payment_method} is not mapped "
                    f"in sales channel {channel_id}"
                ),
            )

        warnings: List[StaleReferenceWarning] = []

        payment_form = self.directories.payment_form(mapping.payment_form)
        is_cash = bool(payment_form and is_cash_payment_form(payment_form.name))
        cash_account_id = None if is_cash else mapping.cash_account

        delivery_method_id = self._resolve_delivery_method(key.shipping_method)

        stale = self.validator.is_stale(mapping, self.directories, delivery_method_id)
        if stale.payment_form_stale:
            warnings.append(self._stale(StaleReferenceKind.PAYMENT_FORM, mapping.payment_form, mapping))
        if stale.cash_account_stale and cash_account_id:
            warnings.append(self._stale(StaleReferenceKind.CASH_ACCOUNT, mapping.cash_account, mapping))
        if stale.trade_channel_stale:
            warnings.append(self._stale(StaleReferenceKind.TRADE_CHANNEL, channel.dilovod_trade_channel_id, mapping))
        if stale.delivery_method_stale:
            warnings.append(self._stale(StaleReferenceKind.DELIVERY_METHOD, delivery_method_id, mapping))

        if warnings and self.strict:
            first = warnings[0]
            return ResolutionFailure(
                kind=ResolutionFailureKind.STALE_REFERENCE,
                channel_id=channel_id,
                sales_drive_payment_method=key.sales_drive_payment_method,
                stale_kind=first.kind,
                message=first.message,
            )

        for warning in warnings:
            logger.warning(warning.message, extra_fields={"mapping_id": mapping.id})

        return MappingResolution(
            channel_id=channel_id,
            composed_order_number=compose_order_number(key.storefront_order_number, channel),
            mapping_id=mapping.id,
            payment_form_id=mapping.payment_form,
            cash_account_id=cash_account_id,
            trade_channel_id=channel.dilovod_trade_channel_id,
            firm_id=self._resolve_firm(cash_account_id),
            delivery_method_id=delivery_method_id,
            storage_id=self.settings.storage_id,
            is_cash_payment=is_cash,
            warnings=warnings,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _find_payment_mapping(self, channel: ChannelMapping, method: Optional[int]) -> Optional[PaymentMapping]:
        if method is None:
            return None

        matches = [m for m in channel.mappings if m.sales_drive_payment_method == int(method)]
        if len(matches) > 1:
            logger.warning(
                f"Payment method {method} is mapped {len(matches)} times in channel "
                f"{channel.channel_id}; using the first mapping",
                extra_fields={"mapping_ids": [m.id for m in matches]},
            )
        return matches[0] if matches else None

    def _resolve_firm(self, cash_account_id: Optional[str]) -> Optional[str]:
        account = self.directories.cash_account(cash_account_id)
        if account and account.owner and self.directories.firm(account.owner):
            return account.owner
        return self.settings.default_firm_id

    def _resolve_delivery_method(self, shipping_method: Optional[str]) -> Optional[str]:
        if not shipping_method:
            return None
        for delivery in self.settings.delivery_mappings:
            if shipping_method in delivery.sales_drive_shipping_methods:
                return delivery.dilovod_delivery_method_id
        return None

    @staticmethod
    def _stale(kind: StaleReferenceKind, reference_id: str, mapping: PaymentMapping) -> StaleReferenceWarning:
        return StaleReferenceWarning(
            kind=kind,
            reference_id=reference_id,
            channel_id=mapping.channel_id,
            mapping_id=mapping.id,
        )
