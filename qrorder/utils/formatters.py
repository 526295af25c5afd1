"""
Utilidades de formateo para emails.
Formatos de montos en estilo argentino.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union

CENT = Decimal('0.01')


def to_money(value: Union[int, float, Decimal, str, None]) -> Decimal:
    """Convert any numeric input to a Decimal rounded to cents."""
    if value is None or value == "":
        return Decimal('0.00')
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def money_ar(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formatea un monto con separador de miles (.) y dos decimales (,).

    Examples:
        money_ar(1500) -> "$1.500,00"
        money_ar(1500.5) -> "$1.500,50"
        money_ar(None) -> "-"
    """
    if value is None or value == "":
        return "-"
    try:
        num = to_money(value)
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = '-' if num < 0 else ''
    integer_part, decimal_part = f"{abs(num):.2f}".split('.')

    # Agrupar de a 3 desde la derecha
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i + 3] for i in range(0, len(reversed_int), 3)]
    integer_formatted = '.'.join(groups)[::-1]

    return f"{sign}${integer_formatted},{decimal_part}"
