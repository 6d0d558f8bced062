from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(amount) -> Decimal:
    """
    Coerce a stored/JSON number into Decimal without float noise.
    None and garbage count as zero.
    """
    if isinstance(amount, Decimal):
        return amount
    try:
        return Decimal(str(amount if amount is not None else 0))
    except (InvalidOperation, ValueError):
        return ZERO


def round_money(amount) -> Decimal:
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_number(amount):
    """
    Decimal -> int when integral, else float rounded to paise.
    Documents and JSON bodies only ever carry plain numbers.
    """
    value = round_money(amount)
    if value == value.to_integral_value():
        return int(value)
    return float(value)
