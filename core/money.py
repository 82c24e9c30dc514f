"""Fixed-point helpers shared by billing and settlement."""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from rest_framework.exceptions import ValidationError

CENT = Decimal('0.01')
RATE_PLACES = Decimal('0.0001')
ZERO = Decimal('0.00')


def to_decimal(value, field='amount'):
    """Coerce ints, strings and Decimals; floats are refused."""
    if isinstance(value, float):
        raise ValidationError({field: 'Floating point values are not accepted for money.'})
    try:
        result = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except (InvalidOperation, TypeError):
        raise ValidationError({field: f'Invalid decimal value: {value!r}'})
    if not result.is_finite():
        raise ValidationError({field: f'Invalid decimal value: {value!r}'})
    return result


def money(value):
    """Round to cents, half up. The only rounding rule used for money."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def rate(value, field='rate'):
    """A fraction in [0, 1] with four decimal places."""
    result = to_decimal(value, field)
    if result < 0 or result > 1:
        raise ValidationError({field: 'Rate must be between 0 and 1.'})
    return result.quantize(RATE_PLACES, rounding=ROUND_HALF_UP)
