"""
Stock movement ledger service.

The stock_movement table is the source of truth for stock; material_stock is
a cache of its running total per (material, warehouse). This module posts
ordinary movements, replays the ledger, and checks/fixes the cache.
"""
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional
import logging

from flask import current_app, has_app_context
from sqlalchemy import and_

from backoffice.database import unit_of_work
from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models import Material, MaterialStock, StockMovement, StockMovementType, Warehouse
from backoffice.utils.number_format import to_decimal, ZERO

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal('0.01')
DEFAULT_AVERAGE_COST_WINDOW = 10

# Types whose sign is fixed by the type itself
_INBOUND_TYPES = (StockMovementType.IN,)
_OUTBOUND_TYPES = (StockMovementType.OUT, StockMovementType.WASTE)


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def signed_quantity(movement_type: StockMovementType, quantity) -> Decimal:
    """
    Normalise a quantity to its signed ledger effect.

    IN is always positive, OUT and WASTE always negative; ADJUSTMENT and
    TRANSFER keep the sign they were given.
    """
    quantity = to_decimal(quantity, 'quantity')
    if movement_type in _INBOUND_TYPES:
        return abs(quantity)
    if movement_type in _OUTBOUND_TYPES:
        return -abs(quantity)
    return quantity


def ledger_sort_key(movement):
    """Stable replay order: effective date, then insertion order."""
    return (movement.date, movement.id or 0)


def replay_movements(movements: Iterable, start=ZERO) -> Decimal:
    """Fold signed movement quantities in ledger order starting at ``start``."""
    total = Decimal(start)
    for movement in sorted(movements, key=ledger_sort_key):
        total += Decimal(movement.quantity)
    return total


def get_material_ledger(session, material_id, warehouse_id, until: Optional[datetime] = None) -> List[StockMovement]:
    """Movements for one (material, warehouse) pair in replay order."""
    query = session.query(StockMovement).filter(
        StockMovement.material_id == material_id,
        StockMovement.warehouse_id == warehouse_id
    )
    if until is not None:
        query = query.filter(StockMovement.date <= until)
    return query.order_by(StockMovement.date.asc(), StockMovement.id.asc()).all()


def lock_material_stock(session, material_id, warehouse_id) -> Optional[MaterialStock]:
    """Read the MaterialStock row for update (row lock on PostgreSQL)."""
    return session.query(MaterialStock).filter(
        MaterialStock.material_id == material_id,
        MaterialStock.warehouse_id == warehouse_id
    ).with_for_update().populate_existing().first()


def _post_movement(session, material_id, warehouse_id, movement_type, quantity, user_id=None,
                   unit_id=None, unit_cost=None, reason=None, date=None):
    """Append a movement and move the MaterialStock cache; caller owns the commit."""
    material = session.get(Material, material_id)
    if not material:
        raise NotFoundError(f'Material con ID {material_id} no encontrado')

    if not session.get(Warehouse, warehouse_id):
        raise NotFoundError(f'Depósito con ID {warehouse_id} no encontrado')

    if not isinstance(movement_type, StockMovementType):
        try:
            movement_type = StockMovementType(str(movement_type).upper())
        except ValueError:
            raise ValidationError(f'Tipo de movimiento inválido: {movement_type}', field='type')

    delta = signed_quantity(movement_type, quantity)
    if delta == 0:
        raise ValidationError('La cantidad debe ser distinta de 0', field='quantity')

    stock = lock_material_stock(session, material_id, warehouse_id)
    if stock is None:
        stock = MaterialStock(
            material_id=material_id,
            warehouse_id=warehouse_id,
            current_stock=ZERO,
            available_stock=ZERO,
            reserved_stock=ZERO,
            average_cost=material.average_cost or ZERO
        )
        session.add(stock)
        session.flush()

    stock_before = Decimal(stock.current_stock or 0)
    stock_after = stock_before + delta

    cost = None
    total_cost = None
    if unit_cost is not None:
        cost = to_decimal(unit_cost, 'unit_cost', allow_negative=False)
        total_cost = (abs(delta) * cost).quantize(Decimal('0.01'))

    movement = StockMovement(
        material_id=material_id,
        warehouse_id=warehouse_id,
        unit_id=unit_id or material.consumption_unit_id,
        user_id=user_id,
        type=movement_type,
        quantity=delta,
        unit_cost=cost,
        total_cost=total_cost,
        stock_before=stock_before,
        stock_after=stock_after,
        date=date or datetime.now(),
        reason=reason
    )
    session.add(movement)

    stock.current_stock = stock_after
    stock.available_stock = stock_after - Decimal(stock.reserved_stock or 0)
    stock.last_updated = datetime.now()

    if movement_type == StockMovementType.IN and cost is not None and cost > 0:
        material.last_purchase_price = cost

    session.flush()
    return movement


def record_movement(session, material_id, warehouse_id, movement_type, quantity, user_id=None,
                    unit_id=None, unit_cost=None, reason=None, date=None) -> StockMovement:
    """
    Post an ordinary stock movement (purchase receipt, consumption, waste, transfer leg).

    Locks the MaterialStock row, writes the before/after snapshots and moves
    the cache by the signed quantity, all in one commit.

    Raises:
        NotFoundError: if material or warehouse do not exist
        ValidationError: if type or quantity are invalid
    """
    with unit_of_work(session):
        movement = _post_movement(
            session, material_id, warehouse_id, movement_type, quantity,
            user_id=user_id, unit_id=unit_id, unit_cost=unit_cost, reason=reason, date=date
        )

    logger.info(
        f"Stock movement posted: material={material_id} warehouse={warehouse_id} "
        f"type={movement.type.value} qty={movement.quantity} after={movement.stock_after}"
    )
    return movement


def _ledger_totals(session, material_id=None):
    """Sum of movement quantities keyed by (material_id, warehouse_id)."""
    query = session.query(StockMovement)
    if material_id is not None:
        query = query.filter(StockMovement.material_id == material_id)

    grouped = defaultdict(list)
    for movement in query.all():
        grouped[(movement.material_id, movement.warehouse_id)].append(movement)

    return {key: replay_movements(movements) for key, movements in grouped.items()}


def check_stock_consistency(session, material_id=None) -> List[dict]:
    """
    Compare every MaterialStock row against its replayed ledger.

    Pairs that have movements but no MaterialStock row are reported too, with
    a current stock of 0.
    """
    tolerance = Decimal(str(_config('STOCK_CONSISTENCY_TOLERANCE', DEFAULT_TOLERANCE)))
    totals = _ledger_totals(session, material_id)

    query = session.query(MaterialStock)
    if material_id is not None:
        query = query.filter(MaterialStock.material_id == material_id)
    stocks = {(s.material_id, s.warehouse_id): s for s in query.all()}

    report = []
    for key in sorted(set(stocks) | set(totals)):
        stock = stocks.get(key)
        current = Decimal(stock.current_stock) if stock else ZERO
        ledger = totals.get(key, ZERO)
        difference = ledger - current
        report.append({
            'material_id': key[0],
            'warehouse_id': key[1],
            'current_stock': current,
            'ledger_stock': ledger,
            'difference': difference,
            'is_consistent': abs(difference) < tolerance,
        })
    return report


def fix_stock_inconsistencies(session, material_id=None) -> dict:
    """Rewrite drifted MaterialStock rows to their ledger value in one commit."""
    report = check_stock_consistency(session, material_id)
    inconsistent = [row for row in report if not row['is_consistent']]

    with unit_of_work(session):
        for row in inconsistent:
            stock = lock_material_stock(session, row['material_id'], row['warehouse_id'])
            if stock is None:
                stock = MaterialStock(
                    material_id=row['material_id'],
                    warehouse_id=row['warehouse_id'],
                    reserved_stock=ZERO
                )
                session.add(stock)
            stock.current_stock = row['ledger_stock']
            stock.available_stock = row['ledger_stock'] - Decimal(stock.reserved_stock or 0)
            stock.last_updated = datetime.now()

    if inconsistent:
        logger.warning(f"Fixed {len(inconsistent)} inconsistent material stock rows")

    return {'total': len(inconsistent), 'fixed': len(inconsistent)}


def recalculate_average_costs(session) -> List[dict]:
    """
    Recompute each material's average cost from its recent incoming movements.

    Weighted average of the last AVERAGE_COST_WINDOW IN movements with a unit
    cost. Materials whose cost changed get their recipe costs refreshed in the
    same commit.
    """
    from backoffice.services.recipe_cost_service import propagate_material_costs

    window = int(_config('AVERAGE_COST_WINDOW', DEFAULT_AVERAGE_COST_WINDOW))
    results = []
    changed = []

    with unit_of_work(session):
        for material in session.query(Material).order_by(Material.id).all():
            movements = session.query(StockMovement).filter(
                and_(
                    StockMovement.material_id == material.id,
                    StockMovement.type == StockMovementType.IN,
                    StockMovement.unit_cost > 0
                )
            ).order_by(StockMovement.date.desc(), StockMovement.id.desc()).limit(window).all()

            total_cost = ZERO
            total_qty = ZERO
            for movement in movements:
                qty = Decimal(movement.quantity)
                if qty > 0:
                    total_cost += Decimal(movement.unit_cost) * qty
                    total_qty += qty

            old_cost = Decimal(material.average_cost or 0)
            new_cost = (total_cost / total_qty).quantize(Decimal('0.0001')) if total_qty > 0 else ZERO
            updated = new_cost > 0

            if updated:
                material.average_cost = new_cost
                if new_cost != old_cost:
                    changed.append(material.id)

            results.append({
                'material_id': material.id,
                'material_name': material.name,
                'old_cost': old_cost,
                'new_cost': new_cost,
                'movement_count': len(movements),
                'updated': updated,
            })

        session.flush()
        if changed:
            propagate_material_costs(session, changed)

    logger.info(f"Average costs recalculated: {sum(1 for r in results if r['updated'])}/{len(results)} materials")
    return results
