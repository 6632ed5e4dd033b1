"""
Historical stock service.

Rebuilds the stock a warehouse held at a past instant by replaying the
stock movement ledger up to a cutoff. The live material_stock value is never
consulted, so the result only depends on movements dated at or before the
cutoff.
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, date, time
from decimal import Decimal
from typing import Dict, List, Optional, Sequence
import logging
import re

from flask import current_app, has_app_context
from sqlalchemy import or_
from sqlalchemy.orm import joinedload

from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models import Material, MaterialStock, StockCountItem, StockMovement, Warehouse
from backoffice.services.stock_movement_service import replay_movements
from backoffice.utils.number_format import ZERO

logger = logging.getLogger(__name__)

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
TIME_PATTERN = re.compile(r'^\d{2}:\d{2}$')


@dataclass
class HistoricalStock:
    """Stock of one material at a cutoff."""
    material_id: int
    material_name: str
    historical_stock: Decimal
    raw_stock: Decimal
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    main_category_id: Optional[int] = None
    main_category_name: Optional[str] = None
    unit_id: Optional[int] = None
    unit_abbreviation: Optional[str] = None
    last_movement_date: Optional[datetime] = None
    movement_count: int = 0

    def to_dict(self):
        return {
            'material_id': self.material_id,
            'material_name': self.material_name,
            'historical_stock': str(self.historical_stock),
            'raw_stock': str(self.raw_stock),
            'category_id': self.category_id,
            'category_name': self.category_name,
            'main_category_id': self.main_category_id,
            'main_category_name': self.main_category_name,
            'unit_id': self.unit_id,
            'unit_abbreviation': self.unit_abbreviation,
            'last_movement_date': self.last_movement_date.isoformat() if self.last_movement_date else None,
            'movement_count': self.movement_count,
        }


def parse_cutoff(count_date, count_time=None, default_time='23:59') -> datetime:
    """
    Combine a count date (YYYY-MM-DD or date) and time (HH:MM) into a cutoff.

    Raises:
        ValidationError: if either part is missing or malformed
    """
    if isinstance(count_date, datetime):
        count_date = count_date.date()

    if isinstance(count_date, str):
        raw = count_date.strip().split('T')[0]
        if not DATE_PATTERN.match(raw):
            raise ValidationError('La fecha debe tener formato YYYY-MM-DD', field='count_date')
        try:
            count_date = date.fromisoformat(raw)
        except ValueError:
            raise ValidationError('Fecha de conteo inválida', field='count_date')
    elif not isinstance(count_date, date):
        raise ValidationError('La fecha de conteo es requerida', field='count_date')

    count_time = (count_time or default_time).strip()
    if not TIME_PATTERN.match(count_time):
        raise ValidationError('La hora debe tener formato HH:MM', field='count_time')

    hours, minutes = (int(part) for part in count_time.split(':'))
    if hours > 23 or minutes > 59:
        raise ValidationError('Hora de conteo inválida', field='count_time')

    return datetime.combine(count_date, time(hours, minutes))


def validate_cutoff(cutoff: datetime, now: Optional[datetime] = None) -> None:
    """Reject cutoffs in the future."""
    now = now or datetime.now()
    if cutoff > now:
        raise ValidationError('La fecha de conteo no puede ser futura', field='cutoff_datetime')


def resolve_count_cutoff(count_date, count_time=None, now: Optional[datetime] = None,
                         default_time='23:59'):
    """
    Parse a count date/time into ``(requested, effective)`` cutoffs.

    The count date may not be after today. A requested cutoff later today is
    capped at ``now`` in the effective cutoff since no movement can carry a
    future date.
    """
    now = now or datetime.now()
    requested = parse_cutoff(count_date, count_time, default_time)
    if requested.date() > now.date():
        raise ValidationError('La fecha de conteo no puede ser futura', field='count_date')
    return requested, min(requested, now)


def _get_warehouse(session, warehouse_id):
    warehouse = session.get(Warehouse, warehouse_id)
    if not warehouse:
        raise NotFoundError(f'Depósito con ID {warehouse_id} no encontrado')
    return warehouse


def _build_entry(material, movements) -> HistoricalStock:
    raw = replay_movements(movements)
    category = material.category
    main_category = category.main_category if category else None
    unit = material.consumption_unit
    return HistoricalStock(
        material_id=material.id,
        material_name=material.name,
        historical_stock=max(ZERO, raw),
        raw_stock=raw,
        category_id=category.id if category else None,
        category_name=category.name if category else None,
        main_category_id=main_category.id if main_category else None,
        main_category_name=main_category.name if main_category else None,
        unit_id=unit.id if unit else None,
        unit_abbreviation=unit.abbreviation if unit else None,
        last_movement_date=max((m.date for m in movements), default=None),
        movement_count=len(movements),
    )


def calculate_stock_at_datetime(session, warehouse_id, cutoff: datetime,
                                now: Optional[datetime] = None) -> List[HistoricalStock]:
    """
    Reconstruct the stock of every material in a warehouse at ``cutoff``.

    All movements of the warehouse dated at or before the cutoff are fetched
    in one query and grouped by material in memory. Materials with no
    movements up to the cutoff are not returned. Negative replayed stock is
    clamped to zero in ``historical_stock``; the signed value stays in
    ``raw_stock``.

    Raises:
        ValidationError: if the cutoff is in the future
        NotFoundError: if the warehouse does not exist
    """
    validate_cutoff(cutoff, now)
    _get_warehouse(session, warehouse_id)

    movements = session.query(StockMovement).filter(
        StockMovement.warehouse_id == warehouse_id,
        StockMovement.date <= cutoff
    ).order_by(StockMovement.material_id, StockMovement.date.asc(), StockMovement.id.asc()).all()

    by_material: Dict[int, list] = defaultdict(list)
    for movement in movements:
        by_material[movement.material_id].append(movement)

    if not by_material:
        return []

    materials = session.query(Material).options(
        joinedload(Material.category),
        joinedload(Material.consumption_unit)
    ).filter(Material.id.in_(list(by_material.keys()))).order_by(Material.name.asc(), Material.id.asc()).all()

    result = []
    for material in materials:
        entry = _build_entry(material, by_material[material.id])
        if entry.raw_stock < 0:
            logger.warning(
                f"Negative historical stock clamped to 0: material={material.id} "
                f"warehouse={warehouse_id} raw={entry.raw_stock} cutoff={cutoff.isoformat()}"
            )
        result.append(entry)

    logger.debug(
        f"Historical stock for warehouse {warehouse_id} at {cutoff.isoformat()}: "
        f"{len(result)} materials from {len(movements)} movements"
    )
    return result


def calculate_material_stock_at_datetime(session, warehouse_id, material_id, cutoff: datetime) -> Decimal:
    """Signed replayed stock of one material at ``cutoff``; 0 when it has no movements."""
    movements = session.query(StockMovement).filter(
        StockMovement.warehouse_id == warehouse_id,
        StockMovement.material_id == material_id,
        StockMovement.date <= cutoff
    ).order_by(StockMovement.date.asc(), StockMovement.id.asc()).all()
    return replay_movements(movements)


def get_existing_count_material_ids(session, stock_count_id) -> List[int]:
    """Material ids already present in a stock count."""
    rows = session.query(StockCountItem.material_id).filter(
        StockCountItem.stock_count_id == stock_count_id
    ).all()
    return [row.material_id for row in rows]


def search_materials_for_count(session, warehouse_id, query: str = '',
                               category_ids: Sequence[int] = (),
                               sub_category_ids: Sequence[int] = (),
                               exclude_count_id=None,
                               limit: Optional[int] = None) -> List[dict]:
    """
    Search active materials that can be added to a count.

    Text search is a case-insensitive name match; the category filter is the
    union of main and sub category ids. Each result carries the live stock of
    the warehouse for reference.
    """
    _get_warehouse(session, warehouse_id)

    if limit is None:
        limit = current_app.config.get('MATERIAL_SEARCH_LIMIT', 100) if has_app_context() else 100

    q = session.query(Material).options(
        joinedload(Material.category),
        joinedload(Material.consumption_unit)
    ).filter(Material.active.is_(True))

    text = (query or '').strip()
    if text:
        q = q.filter(or_(Material.name.ilike(f'%{text}%'), Material.code.ilike(f'%{text}%')))

    all_category_ids = list(category_ids or []) + list(sub_category_ids or [])
    if all_category_ids:
        q = q.filter(Material.category_id.in_(all_category_ids))

    if exclude_count_id is not None:
        existing = get_existing_count_material_ids(session, exclude_count_id)
        if existing:
            q = q.filter(Material.id.notin_(existing))

    materials = q.order_by(Material.name.asc()).limit(limit).all()

    live = {}
    if materials:
        rows = session.query(MaterialStock).filter(
            MaterialStock.warehouse_id == warehouse_id,
            MaterialStock.material_id.in_([m.id for m in materials])
        ).all()
        live = {row.material_id: Decimal(row.current_stock) for row in rows}

    results = []
    for material in materials:
        category = material.category
        main_category = category.main_category if category else None
        results.append({
            'id': material.id,
            'name': material.name,
            'code': material.code,
            'category_id': category.id if category else None,
            'category_name': category.name if category else None,
            'main_category_id': main_category.id if main_category else None,
            'main_category_name': main_category.name if main_category else None,
            'unit_id': material.consumption_unit_id,
            'unit_abbreviation': material.consumption_unit.abbreviation if material.consumption_unit else None,
            'current_stock': live.get(material.id, ZERO),
        })
    return results
