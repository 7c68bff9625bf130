"""Channel Mapping - storefront channel/payment configuration and its resolution.

This package holds the Mapping Store (per-channel payment mappings, delivery
mappings, order-number affixes, default firm and storage) and the logic that
reads it.

Key Features:
- Immutable store models edited only through reducer functions
- Uniqueness of storefront payment methods per channel
- Stale reference detection against current ERP directories
- Cash payment forms never carry a cash account

Usage:
    from channel_mapping import MappingResolver, load_settings

    settings = load_settings(db_path)
    result = MappingResolver(settings, directories).resolve_order(order)
"""

from channel_mapping.models import (
    PaymentMapping,
    ChannelMapping,
    DeliveryMapping,
    MappingSettings,
    MappingResolution,
    ResolutionFailure,
    ResolutionFailureKind,
    StaleReferenceKind,
    StaleReferenceWarning,
    StaleReferences,
)
from channel_mapping.classify import is_cash_payment_form, cash_form_ids
from channel_mapping.numbering import compose_order_number
from channel_mapping.validator import MappingValidator
from channel_mapping.resolver import MappingResolver, OrderKey
from channel_mapping.db import (
    init_settings_db,
    load_settings,
    save_settings,
)

__all__ = [
    # Models
    "PaymentMapping",
    "ChannelMapping",
    "DeliveryMapping",
    "MappingSettings",
    "MappingResolution",
    "ResolutionFailure",
    "ResolutionFailureKind",
    "StaleReferenceKind",
    "StaleReferenceWarning",
    "StaleReferences",
    # Rules
    "is_cash_payment_form",
    "cash_form_ids",
    "compose_order_number",
    "MappingValidator",
    "MappingResolver",
    "OrderKey",
    # Database
    "init_settings_db",
    "load_settings",
    "save_settings",
]
