"""Number parsing utilities for quantities and amounts."""
from decimal import Decimal, InvalidOperation

from backoffice.exceptions import ValidationError

ZERO = Decimal('0')


def to_decimal(value, field='valor', allow_negative=True) -> Decimal:
    """
    Convert a request or model value to Decimal.

    Accepts Decimal, int, float and numeric strings. Floats go through str()
    so 0.1 stays 0.1.

    Raises:
        ValidationError: if the value is empty, not numeric, or negative when
        negatives are not allowed.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'El campo {field} es requerido', field=field)

    if isinstance(value, bool):
        raise ValidationError(f'Valor inválido para {field}', field=field)

    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f'Valor inválido para {field}', field=field)

    if not result.is_finite():
        raise ValidationError(f'Valor inválido para {field}', field=field)

    if not allow_negative and result < 0:
        raise ValidationError(f'El campo {field} no puede ser negativo', field=field)

    return result


def fmt_qty(value) -> str:
    """Format a quantity without trailing zeros (12.500 -> 12.5, 3.000 -> 3)."""
    if value is None:
        return '0'
    value = Decimal(value)
    if value == value.to_integral_value():
        return f"{int(value)}"
    return f"{value.normalize():f}"
