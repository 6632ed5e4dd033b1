"""
Unit tests for unit conversion.
"""

import pytest
from decimal import Decimal

from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.services.unit_service import convert_quantity, get_conversion_factor


class TestUnitConversion:
    """Tests for conversions through the base unit."""

    def test_grams_to_kilograms(self, session, kg, gram):
        assert convert_quantity(session, 500, gram.id, kg.id) == Decimal('0.5')

    def test_kilograms_to_grams(self, session, kg, gram):
        assert get_conversion_factor(session, kg.id, gram.id) == Decimal('1000')
        assert convert_quantity(session, '1.25', kg.id, gram.id) == Decimal('1250')

    def test_same_unit(self, session, kg):
        assert convert_quantity(session, 3, kg.id, kg.id) == Decimal('3')

    def test_different_base_units(self, session, kg, liter):
        """Test that kilograms cannot be converted into liters."""
        with pytest.raises(ValidationError):
            convert_quantity(session, 1, kg.id, liter.id)

    def test_unknown_unit(self, session, kg):
        with pytest.raises(NotFoundError):
            get_conversion_factor(session, kg.id, 999)

    def test_bad_quantity(self, session, kg, gram):
        with pytest.raises(ValidationError):
            convert_quantity(session, 'mucho', gram.id, kg.id)
