"""Cash payment-form classification.

The ERP exposes no type flag for payment forms, so a form is treated as
cash-type when its display name contains one of the cash words below and
none of the non-cash markers. Non-cash markers are checked first because
"безготівка" contains "готівка".
"""

from typing import Iterable, Optional


CASH_WORDS = (
    "готівк",   # готівка, готівкою
    "наличн",   # наличные, наличными
    "cash",
)

NON_CASH_MARKERS = (
    "безготівк",
    "безналичн",
    "cashless",
    "non-cash",
    "noncash",
)


def is_cash_payment_form(name: Optional[str]) -> bool:
    """Return True if a payment-form display name denotes cash.

    Case-insensitive substring match. An empty or missing name is never cash.
    """
    if not name:
        return False

    normalized = name.casefold()

    if any(marker in normalized for marker in NON_CASH_MARKERS):
        return False

    return any(word in normalized for word in CASH_WORDS)


def cash_form_ids(payment_forms: Iterable) -> set:
    """Ids of every cash-classified form in a payment-form directory."""
    return {form.id for form in payment_forms if is_cash_payment_form(form.name)}
