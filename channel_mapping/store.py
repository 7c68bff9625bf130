"""Mapping Store reducers.

Every edit to the Mapping Store goes through one of these functions. Each
takes the current MappingSettings and returns a new one; inputs are never
mutated. Uniqueness (one mapping per storefront payment method per channel)
and channel cleanup (a channel without mappings is dropped) are enforced
here and nowhere else.
"""

import random
import string
import time
from typing import AbstractSet, Dict, Iterable, Optional

from channel_mapping.models import (
    ChannelMapping,
    DeliveryMapping,
    MappingSettings,
    PaymentMapping,
)
from channel_mapping.validator import MappingValidator


_ID_ALPHABET = string.digits + string.ascii_lowercase

# Sentinel for "field not supplied" in partial updates (None clears a field)
_UNSET = object()


# =============================================================================
# Errors
# =============================================================================

class MappingStoreError(Exception):
    """Base exception for rejected Mapping Store edits."""
    pass


class ChannelNotFoundError(MappingStoreError):
    def __init__(self, channel_id: str):
        super().__init__(f"Channel {channel_id} has no mapping configuration")
        self.channel_id = channel_id


class MappingNotFoundError(MappingStoreError):
    def __init__(self, channel_id: str, mapping_id: str):
        super().__init__(f"Mapping {mapping_id} not found in channel {channel_id}")
        self.channel_id = channel_id
        self.mapping_id = mapping_id


class DeliveryMappingNotFoundError(MappingStoreError):
    def __init__(self, index: int):
        super().__init__(f"Delivery mapping #{index} does not exist")
        self.index = index


class DuplicatePaymentMethodError(MappingStoreError):
    """The storefront payment method is already mapped in this channel."""
    def __init__(self, channel_id: str, method: int):
        super().__init__(
            f"Payment method {method} is already mapped in channel {channel_id}"
        )
        self.channel_id = channel_id
        self.method = method


# =============================================================================
# Helpers
# =============================================================================

def generate_mapping_id(now_ms: Optional[int] = None) -> str:
    """Generate a stable mapping id: mapping_<epoch-ms>_<9 base36 chars>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"mapping_{now_ms}_{suffix}"


def _require_channel(settings: MappingSettings, channel_id: str) -> ChannelMapping:
    channel = settings.get_channel(channel_id)
    if channel is None:
        raise ChannelNotFoundError(channel_id)
    return channel


def _with_channels(settings: MappingSettings, channels: Dict[str, ChannelMapping]) -> MappingSettings:
    return settings.model_copy(update={"channel_payment_mapping": channels})


def _put_channel(settings: MappingSettings, channel: ChannelMapping) -> MappingSettings:
    channels = dict(settings.channel_payment_mapping)
    channels[channel.channel_id] = channel
    return _with_channels(settings, channels)


def _check_unique_method(
    settings: MappingSettings,
    channel_id: str,
    method: Optional[int],
    exclude_mapping_id: Optional[str] = None,
) -> None:
    if MappingValidator(settings).is_sales_drive_payment_method_used(method, channel_id, exclude_mapping_id):
        raise DuplicatePaymentMethodError(channel_id, int(method))


def _clear_cash_account(payment_form: Optional[str], cash_account: Optional[str], cash_form_ids: AbstractSet[str]):
    """Cash-type payment forms never carry a cash account."""
    if payment_form and payment_form in cash_form_ids:
        return None
    return cash_account


# =============================================================================
# Channel reducers
# =============================================================================

def add_channel(settings: MappingSettings, channel_id: str) -> MappingSettings:
    """Add a channel with one empty payment mapping ready for editing.

    Adding a channel that already exists returns the settings unchanged.
    """
    channel_id = str(channel_id)
    if settings.get_channel(channel_id) is not None:
        return settings

    channel = ChannelMapping(
        channel_id=channel_id,
        mappings=(PaymentMapping(id=generate_mapping_id(), channel_id=channel_id),),
    )
    return _put_channel(settings, channel)


def remove_channel(settings: MappingSettings, channel_id: str) -> MappingSettings:
    channel_id = str(channel_id)
    _require_channel(settings, channel_id)
    channels = {k: v for k, v in settings.channel_payment_mapping.items() if k != channel_id}
    return _with_channels(settings, channels)


def update_channel(
    settings: MappingSettings,
    channel_id: str,
    *,
    prefix_order=_UNSET,
    suffix_order=_UNSET,
    dilovod_trade_channel_id=_UNSET,
) -> MappingSettings:
    """Change a channel's order-number affixes or trade channel override."""
    channel = _require_channel(settings, str(channel_id))

    update = {}
    if prefix_order is not _UNSET:
        update["prefix_order"] = prefix_order or ""
    if suffix_order is not _UNSET:
        update["suffix_order"] = suffix_order or ""
    if dilovod_trade_channel_id is not _UNSET:
        update["dilovod_trade_channel_id"] = dilovod_trade_channel_id or None

    if not update:
        return settings
    return _put_channel(settings, channel.model_copy(update=update))


# =============================================================================
# Payment mapping reducers
# =============================================================================

def add_payment_mapping(
    settings: MappingSettings,
    channel_id: str,
    *,
    sales_drive_payment_method: Optional[int] = None,
    payment_form: Optional[str] = None,
    cash_account: Optional[str] = None,
    mapping_id: Optional[str] = None,
    cash_form_ids: AbstractSet[str] = frozenset(),
) -> MappingSettings:
    """Append a payment mapping to an existing channel.

    Raises:
        ChannelNotFoundError: Channel has not been added
        DuplicatePaymentMethodError: The method is already mapped in this channel
    """
    channel_id = str(channel_id)
    channel = _require_channel(settings, channel_id)
    _check_unique_method(settings, channel_id, sales_drive_payment_method)

    mapping = PaymentMapping(
        id=mapping_id or generate_mapping_id(),
        channel_id=channel_id,
        sales_drive_payment_method=sales_drive_payment_method,
        payment_form=payment_form or None,
        cash_account=_clear_cash_account(payment_form, cash_account or None, cash_form_ids),
    )
    return _put_channel(settings, channel.model_copy(update={"mappings": channel.mappings + (mapping,)}))


def update_payment_mapping(
    settings: MappingSettings,
    channel_id: str,
    mapping_id: str,
    *,
    sales_drive_payment_method=_UNSET,
    payment_form=_UNSET,
    cash_account=_UNSET,
    cash_form_ids: AbstractSet[str] = frozenset(),
) -> MappingSettings:
    """Edit fields of one payment mapping, keeping its id and position.

    Raises:
        ChannelNotFoundError, MappingNotFoundError, DuplicatePaymentMethodError
    """
    channel_id = str(channel_id)
    channel = _require_channel(settings, channel_id)
    current = channel.find_mapping(mapping_id)
    if current is None:
        raise MappingNotFoundError(channel_id, mapping_id)

    update = {}
    if sales_drive_payment_method is not _UNSET:
        _check_unique_method(settings, channel_id, sales_drive_payment_method, exclude_mapping_id=mapping_id)
        update["sales_drive_payment_method"] = sales_drive_payment_method
    if payment_form is not _UNSET:
        update["payment_form"] = payment_form or None
    if cash_account is not _UNSET:
        update["cash_account"] = cash_account or None

    new_form = update.get("payment_form", current.payment_form)
    new_account = update.get("cash_account", current.cash_account)
    update["cash_account"] = _clear_cash_account(new_form, new_account, cash_form_ids)

    edited = current.model_copy(update=update)
    mappings = tuple(edited if m.id == mapping_id else m for m in channel.mappings)
    return _put_channel(settings, channel.model_copy(update={"mappings": mappings}))


def remove_payment_mapping(settings: MappingSettings, channel_id: str, mapping_id: str) -> MappingSettings:
    """Remove a payment mapping; removing the last one removes the channel."""
    channel_id = str(channel_id)
    channel = _require_channel(settings, channel_id)
    if channel.find_mapping(mapping_id) is None:
        raise MappingNotFoundError(channel_id, mapping_id)

    remaining = tuple(m for m in channel.mappings if m.id != mapping_id)
    if not remaining:
        return remove_channel(settings, channel_id)
    return _put_channel(settings, channel.model_copy(update={"mappings": remaining}))


# =============================================================================
# Delivery mapping reducers
# =============================================================================

def _normalize_methods(methods: Iterable[str]) -> tuple:
    seen = []
    for name in methods:
        name = (name or "").strip()
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


def add_delivery_mapping(
    settings: MappingSettings,
    shipping_methods: Iterable[str],
    dilovod_delivery_method_id: Optional[str] = None,
) -> MappingSettings:
    delivery = DeliveryMapping(
        sales_drive_shipping_methods=_normalize_methods(shipping_methods),
        dilovod_delivery_method_id=dilovod_delivery_method_id or None,
    )
    return settings.model_copy(update={"delivery_mappings": settings.delivery_mappings + (delivery,)})


def update_delivery_mapping(
    settings: MappingSettings,
    index: int,
    *,
    shipping_methods=_UNSET,
    dilovod_delivery_method_id=_UNSET,
) -> MappingSettings:
    if index < 0 or index >= len(settings.delivery_mappings):
        raise DeliveryMappingNotFoundError(index)

    current = settings.delivery_mappings[index]
    update = {}
    if shipping_methods is not _UNSET:
        update["sales_drive_shipping_methods"] = _normalize_methods(shipping_methods)
    if dilovod_delivery_method_id is not _UNSET:
        update["dilovod_delivery_method_id"] = dilovod_delivery_method_id or None

    deliveries = list(settings.delivery_mappings)
    deliveries[index] = current.model_copy(update=update)
    return settings.model_copy(update={"delivery_mappings": tuple(deliveries)})


def remove_delivery_mapping(settings: MappingSettings, index: int) -> MappingSettings:
    if index < 0 or index >= len(settings.delivery_mappings):
        raise DeliveryMappingNotFoundError(index)
    deliveries = settings.delivery_mappings[:index] + settings.delivery_mappings[index + 1:]
    return settings.model_copy(update={"delivery_mappings": deliveries})


# =============================================================================
# Store-wide defaults
# =============================================================================

def set_defaults(
    settings: MappingSettings,
    *,
    default_firm_id=_UNSET,
    storage_id=_UNSET,
) -> MappingSettings:
    update = {}
    if default_firm_id is not _UNSET:
        update["default_firm_id"] = default_firm_id or None
    if storage_id is not _UNSET:
        update["storage_id"] = storage_id or None
    if not update:
        return settings
    return settings.model_copy(update=update)
