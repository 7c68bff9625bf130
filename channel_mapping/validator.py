"""Mapping Validator.

Answers uniqueness and consistency queries over a MappingSettings snapshot.
It never mutates the store; the reducers in channel_mapping.store call it
before they commit a change and the resolver uses it for stale checks.

Checks:
- Values already claimed by other mappings of the same channel
  (payment forms, cash accounts, storefront payment methods)
- Duplicate storefront payment methods inside one channel
- Stored ERP ids missing from the current directories
- Shipping-method names claimed by more than one delivery mapping
"""

from typing import Dict, Iterable, List, Optional, Set, TYPE_CHECKING

from channel_mapping.models import (
    MappingSettings,
    PaymentMapping,
    StaleReferenceKind,
    StaleReferences,
    StaleReferenceWarning,
)

if TYPE_CHECKING:
    from connectors.erp_base import ERPDirectories


def _is_missing(items: Iterable, ref_id: Optional[str]) -> bool:
    """A reference is stale only when the directory was loaded and lacks it."""
    if not ref_id:
        return False
    ids = {item.id for item in items}
    return bool(ids) and ref_id not in ids


class MappingValidator:
    """Read-only queries over one Mapping Store snapshot.

    Usage:
        validator = MappingValidator(settings)
        if validator.is_sales_drive_payment_method_used(5, "22", exclude_mapping_id=editing_id):
            reject()
    """

    def __init__(self, settings: MappingSettings):
        self.settings = settings

    def _other_mappings(self, channel_id: str, exclude_mapping_id: Optional[str]) -> List[PaymentMapping]:
        channel = self.settings.get_channel(channel_id)
        if channel is None:
            return []
        return [m for m in channel.mappings if m.id != exclude_mapping_id]

    # =========================================================================
    # Claimed values
    # =========================================================================

    def used_payment_forms(self, channel_id: str, exclude_mapping_id: Optional[str] = None) -> Set[str]:
        return {
            m.payment_form
            for m in self._other_mappings(channel_id, exclude_mapping_id)
            if m.payment_form
        }

    def used_cash_accounts(self, channel_id: str, exclude_mapping_id: Optional[str] = None) -> Set[str]:
        return {
            m.cash_account
            for m in self._other_mappings(channel_id, exclude_mapping_id)
            if m.cash_account
        }

    def used_sales_drive_payment_methods(
        self, channel_id: str, exclude_mapping_id: Optional[str] = None
    ) -> Set[int]:
        return {
            m.sales_drive_payment_method
            for m in self._other_mappings(channel_id, exclude_mapping_id)
            if m.sales_drive_payment_method is not None
        }

    def is_sales_drive_payment_method_used(
        self,
        method: Optional[int],
        channel_id: str,
        exclude_mapping_id: Optional[str] = None,
    ) -> bool:
        """True if another mapping of the channel already claims this method."""
        if method is None:
            return False
        return int(method) in self.used_sales_drive_payment_methods(channel_id, exclude_mapping_id)

    # =========================================================================
    # Existing violations
    # =========================================================================

    def duplicate_payment_methods(self, channel_id: str) -> Dict[int, List[str]]:
        """Storefront payment methods claimed by more than one mapping of a channel.

        Returns:
            method -> mapping ids, in store order
        """
        claims: Dict[int, List[str]] = {}
        channel = self.settings.get_channel(channel_id)
        if channel is None:
            return {}
        for mapping in channel.mappings:
            if mapping.sales_drive_payment_method is None:
                continue
            claims.setdefault(mapping.sales_drive_payment_method, []).append(mapping.id)
        return {method: ids for method, ids in claims.items() if len(ids) > 1}

    def duplicate_shipping_methods(self) -> Dict[str, List[int]]:
        """Shipping-method names that appear in more than one delivery mapping.

        Returns:
            name -> indexes of the delivery mappings claiming it
        """
        claims: Dict[str, List[int]] = {}
        for index, delivery in enumerate(self.settings.delivery_mappings):
            for name in set(delivery.sales_drive_shipping_methods):
                claims.setdefault(name, []).append(index)
        return {name: indexes for name, indexes in claims.items() if len(indexes) > 1}

    # =========================================================================
    # Referential currency
    # =========================================================================

    def is_stale(
        self,
        mapping: PaymentMapping,
        directories: "ERPDirectories",
        delivery_method_id: Optional[str] = None,
    ) -> StaleReferences:
        """Flag references of a mapping that the current directories no longer contain."""
        channel = self.settings.get_channel(mapping.channel_id)
        trade_channel_id = channel.dilovod_trade_channel_id if channel else None

        return StaleReferences(
            payment_form_stale=_is_missing(directories.payment_forms, mapping.payment_form),
            cash_account_stale=_is_missing(directories.cash_accounts, mapping.cash_account),
            trade_channel_stale=_is_missing(directories.trade_channels, trade_channel_id),
            delivery_method_stale=_is_missing(directories.delivery_methods, delivery_method_id),
        )

    def stale_report(self, directories: "ERPDirectories") -> List[StaleReferenceWarning]:
        """Every stale reference in the whole store."""
        warnings: List[StaleReferenceWarning] = []

        for channel_id, channel in self.settings.channel_payment_mapping.items():
            if _is_missing(directories.trade_channels, channel.dilovod_trade_channel_id):
                warnings.append(StaleReferenceWarning(
                    kind=StaleReferenceKind.TRADE_CHANNEL,
                    reference_id=channel.dilovod_trade_channel_id,
                    channel_id=channel_id,
                ))
            for mapping in channel.mappings:
                if _is_missing(directories.payment_forms, mapping.payment_form):
                    warnings.append(StaleReferenceWarning(
                        kind=StaleReferenceKind.PAYMENT_FORM,
                        reference_id=mapping.payment_form,
                        channel_id=channel_id,
                        mapping_id=mapping.id,
                    ))
                if _is_missing(directories.cash_accounts, mapping.cash_account):
                    warnings.append(StaleReferenceWarning(
                        kind=StaleReferenceKind.CASH_ACCOUNT,
                        reference_id=mapping.cash_account,
                        channel_id=channel_id,
                        mapping_id=mapping.id,
                    ))

        for delivery in self.settings.delivery_mappings:
            if _is_missing(directories.delivery_methods, delivery.dilovod_delivery_method_id):
                warnings.append(StaleReferenceWarning(
                    kind=StaleReferenceKind.DELIVERY_METHOD,
                    reference_id=delivery.dilovod_delivery_method_id,
                ))

        return warnings
