# core/utils.py

"""
Central utilities for loanbook operations
Prevents code duplication and ensures consistency
"""
from django.conf import settings
from django.core.exceptions import ValidationError
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime
import logging

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')

DEFAULT_SETTINGS = {
    'CURRENCY': 'INR',
    'CURRENCY_SYMBOL': '₹',
    'DEFAULT_EMI_TENURE': 12,
    'FLAT_DEFAULT_RATE': '0.10',
    'DEFAULTER_STREAK_THRESHOLD': 2,
    'RECENT_DEFAULTERS_LIMIT': 4,
    'RECENT_LOANS_LIMIT': 4,
    'UPCOMING_WINDOW_MONTHS': 1,
}


# =============================================================================
# CONFIGURATION
# =============================================================================

def get_setting(name):
    """
    Read a key from the LOANBOOK settings dict, falling back to the default.

    Raises:
        KeyError: if the key is unknown
    """
    configured = getattr(settings, 'LOANBOOK', {}) or {}
    if name in configured:
        return configured[name]
    return DEFAULT_SETTINGS[name]


# =============================================================================
# CURRENCY & MONEY FORMATTING
# =============================================================================

def get_base_currency():
    """
    Get base currency code from settings.

    Returns:
        str: Currency code (defaults to 'INR')
    """
    return get_setting('CURRENCY')


def round_money(amount):
    """Round an amount to 2 decimal places using standard (half-up) rounding"""
    return Decimal(str(amount)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_money(amount, include_symbol=True):
    """
    Format money amount for display.

    Args:
        amount: Decimal or numeric value to format
        include_symbol: Whether to include currency symbol

    Returns:
        str: Formatted money string
    """
    symbol = get_setting('CURRENCY_SYMBOL')
    try:
        amount_decimal = Decimal(str(amount or 0))
        formatted = f"{amount_decimal:,.2f}"
    except (ValueError, TypeError, InvalidOperation):
        formatted = "0.00"
    return f"{symbol}{formatted}" if include_symbol else formatted


def parse_amount(value, field='amount', allow_none=False, positive=True):
    """
    Parse a user supplied amount into a Decimal.

    Args:
        value: str, int, float or Decimal
        field: Field name used in the error message
        allow_none: Return None instead of failing on empty input
        positive: Require the amount to be strictly greater than zero

    Returns:
        Decimal or None

    Raises:
        ValidationError: if the value is missing, non-numeric or not positive
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValidationError({field: "This field is required."})

    if isinstance(value, bool):
        raise ValidationError({field: "Enter a valid amount."})

    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError({field: "Enter a valid amount."})

    if not amount.is_finite():
        raise ValidationError({field: "Enter a valid amount."})

    if positive and amount <= 0:
        raise ValidationError({field: "Amount must be greater than zero."})

    return amount


# =============================================================================
# DATE UTILITIES
# =============================================================================

def get_today():
    """
    Get today's date in the business timezone (settings.TIME_ZONE).

    Always use this instead of date.today() for business logic that
    depends on dates, e.g. deciding whether an installment is overdue.
    """
    from django.utils import timezone
    return timezone.localdate()


def parse_date(value, field='date', allow_none=False):
    """
    Parse a date from a date, datetime or ISO 'YYYY-MM-DD' string.

    Raises:
        ValidationError: if the value is missing or unparseable
    """
    if value is None or value == '':
        if allow_none:
            return None
        raise ValidationError({field: "This field is required."})

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError({field: "Enter a valid date (YYYY-MM-DD)."})
