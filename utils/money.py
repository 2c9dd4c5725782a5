from decimal import ROUND_HALF_UP, Decimal


def percent_of(amount: int, percent) -> int:
    """round(amount * percent / 100), halves rounded away from zero."""
    value = Decimal(int(amount)) * Decimal(str(percent)) / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def fee_percentage_for(hours_before_service: float) -> int:
    if hours_before_service < 4:
        return 50
    if hours_before_service < 12:
        return 25
    if hours_before_service < 24:
        return 10
    return 0


def cancellation_breakdown(total_amount: int, hours_before_service: float, paid: bool) -> dict:
    if not paid:
        return {
            "total_amount": total_amount,
            "fee_percentage": 0,
            "cancellation_fee": 0,
            "refund_amount": 0,
        }
    pct = fee_percentage_for(hours_before_service)
    fee = percent_of(total_amount, pct)
    return {
        "total_amount": total_amount,
        "fee_percentage": pct,
        "cancellation_fee": fee,
        "refund_amount": total_amount - fee,
    }
