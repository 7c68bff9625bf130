"""Order number composition.

The composed number (prefix + storefront number + suffix) is the identifier
the ERP searches and stores, not the raw storefront number.
"""

from typing import Optional

from channel_mapping.models import ChannelMapping


def compose_order_number(order_number: str, channel: Optional[ChannelMapping] = None) -> str:
    """Apply a channel's prefix and suffix to a storefront order number.

    Args:
        order_number: Storefront order number (e.g. "9386")
        channel: Channel configuration; None composes to the bare number

    Returns:
        prefix + order_number + suffix
    """
    if channel is None:
        return str(order_number)
    return f"{channel.prefix_order or ''}{order_number}{channel.suffix_order or ''}"
