from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")
HUNDRED = Decimal("100")


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal | int | float | str, percent: Decimal | int | float | str) -> Decimal:
    return to_money(Decimal(str(amount)) * Decimal(str(percent)) / HUNDRED)
