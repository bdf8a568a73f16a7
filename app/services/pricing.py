"""Advance/remaining split of a consultation fee."""

from decimal import ROUND_HALF_UP, Decimal

from app.core.exceptions import ValidationException
from app.schemas.appointments import PaymentState


def compute(fee: int, advance_ratio: float) -> PaymentState:
    """
    Split a fee into the advance that secures a booking and the remainder.

    The advance is rounded half up to a whole unit; the remainder absorbs the
    rounding so that advance + remaining == total.
    """
    if fee < 0:
        raise ValidationException("Fee must not be negative")
    if not 0 < advance_ratio < 1:
        raise ValidationException("Advance ratio must be between 0 and 1")

    advance = int((Decimal(fee) * Decimal(str(advance_ratio))).quantize(Decimal(1), ROUND_HALF_UP))
    return PaymentState(
        advance_amount=advance,
        remaining_amount=fee - advance,
        total_amount=fee,
    )
