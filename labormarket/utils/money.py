"""Currency helpers. All amounts are non-negative Decimals with two places."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_amount(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce a stored or submitted amount into a two-decimal Decimal.

    ``None`` counts as zero, matching how missing amounts are summed on the
    dashboards.
    """
    if value is None:
        return Decimal("0.00")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a currency amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(value: Decimal | int | float | str | None) -> str:
    return f"{to_amount(value):.2f}"


def sum_amounts(values) -> Decimal:  # type: ignore[no-untyped-def]
    total = Decimal("0.00")
    for value in values:
        total += to_amount(value)
    return total
