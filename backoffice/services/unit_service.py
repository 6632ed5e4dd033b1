"""Unit conversion service."""
from decimal import Decimal
import logging

from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models import Unit
from backoffice.utils.number_format import to_decimal

logger = logging.getLogger(__name__)

ONE = Decimal('1')


def _resolve(session, unit_id):
    """Return (unit, base_unit_id, factor_to_base) for a unit id."""
    unit = session.get(Unit, unit_id)
    if not unit:
        raise NotFoundError(f'Unidad con ID {unit_id} no encontrada')

    if unit.is_base_unit or unit.base_unit_id is None:
        return unit, unit.id, ONE

    return unit, unit.base_unit_id, Decimal(unit.conversion_factor)


def get_conversion_factor(session, from_unit_id, to_unit_id) -> Decimal:
    """
    Factor that turns a quantity in ``from_unit`` into ``to_unit``.

    Both units are resolved to their base unit; conversion is only defined
    between units sharing a base (kg <-> g, lt <-> ml).

    Raises:
        NotFoundError: if either unit does not exist
        ValidationError: if the units belong to different base units
    """
    if from_unit_id == to_unit_id:
        return ONE

    from_unit, from_base, from_factor = _resolve(session, from_unit_id)
    to_unit, to_base, to_factor = _resolve(session, to_unit_id)

    if from_base != to_base:
        raise ValidationError(
            f'No se puede convertir de {from_unit.abbreviation} a {to_unit.abbreviation}',
            field='to_unit_id'
        )

    if to_factor == 0:
        raise ValidationError(f'La unidad {to_unit.abbreviation} tiene factor de conversión 0', field='to_unit_id')

    return from_factor / to_factor


def convert_quantity(session, quantity, from_unit_id, to_unit_id) -> Decimal:
    """Convert a quantity between two units that share a base unit."""
    quantity = to_decimal(quantity, 'quantity')
    factor = get_conversion_factor(session, from_unit_id, to_unit_id)
    converted = quantity * factor
    logger.debug(f"Converted {quantity} from unit {from_unit_id} to unit {to_unit_id}: {converted}")
    return converted
