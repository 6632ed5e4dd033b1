"""
Stock count service - lifecycle of a stock taking exercise.

PLANNING -> IN_PROGRESS -> PENDING_APPROVAL -> COMPLETED

A count is seeded from the historical stock at its cutoff, collects counted
quantities while PLANNING/IN_PROGRESS, and on approval posts one adjustment
and one ADJUSTMENT stock movement per item with a non-zero difference, all in
a single commit.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
import logging

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from backoffice.blueprints.metrics import stock_adjustments_posted_total, stock_counts_approved_total
from backoffice.database import unit_of_work
from backoffice.exceptions import (
    DuplicateError, InvalidStateError, NotFoundError, StorageError, ValidationError
)
from backoffice.models import (
    AppUser, Material, MaterialStock, StockAdjustment, AdjustmentType,
    StockCount, StockCountItem, StockCountStatus, StockMovement, StockMovementType,
    Warehouse, EDITABLE_STATUSES
)
from backoffice.services.historical_stock_service import (
    calculate_material_stock_at_datetime, calculate_stock_at_datetime, resolve_count_cutoff
)
from backoffice.services.stock_movement_service import lock_material_stock
from backoffice.utils.number_format import to_decimal, fmt_qty, ZERO

logger = logging.getLogger(__name__)


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _get_count(session, stock_count_id, lock=False) -> StockCount:
    query = session.query(StockCount).filter(StockCount.id == stock_count_id)
    if lock:
        # Overwrite the identity-map copy with the row as locked
        query = query.with_for_update().populate_existing()
    stock_count = query.first()
    if not stock_count:
        raise NotFoundError(f'Conteo de stock con ID {stock_count_id} no encontrado')
    return stock_count


def _require_user(session, user_id, field):
    if not user_id:
        raise ValidationError(f'El campo {field} es requerido', field=field)
    if not session.get(AppUser, user_id):
        raise NotFoundError(f'Usuario con ID {user_id} no encontrado')


def _require_editable(stock_count, action):
    if stock_count.status not in EDITABLE_STATUSES:
        raise InvalidStateError(
            f'No se puede {action} un conteo en estado {stock_count.status.value}',
            current_state=stock_count.status
        )


def _resolve_cutoff(count_date, count_time, now):
    return resolve_count_cutoff(count_date, count_time, now, _config('DEFAULT_COUNT_TIME', '23:59'))


def _next_count_number(session, prefix: str) -> str:
    """Next ``YYYY-MM-DD-NNN`` number for counts created on ``prefix`` day."""
    rows = session.query(StockCount.count_number).filter(
        StockCount.count_number.like(f'{prefix}-%')
    ).all()

    highest = 0
    for (number,) in rows:
        suffix = number.rsplit('-', 1)[-1]
        if suffix.isdigit():
            highest = max(highest, int(suffix))

    return f'{prefix}-{highest + 1:03d}'


def _seed_item(stock_count_id, material_id, historical_stock, manual=False) -> StockCountItem:
    system_stock = max(ZERO, Decimal(historical_stock))
    return StockCountItem(
        stock_count_id=stock_count_id,
        material_id=material_id,
        system_stock=system_stock,
        counted_stock=ZERO,
        difference=-system_stock,
        is_completed=False,
        is_manually_added=manual
    )


def create_stock_count(session, warehouse_id, counted_by, count_date, count_time=None,
                       notes=None, now: Optional[datetime] = None) -> StockCount:
    """
    Create a count in PLANNING and seed one item per material of the warehouse.

    The count row and all of its items are written in one commit. The count
    number is ``{today}-{NNN}``; a concurrent create that takes the same
    number hits the unique constraint and is retried with the next one.

    Raises:
        ValidationError: missing fields, malformed or future date/time
        NotFoundError: unknown warehouse or user
        DuplicateError: no free count number after the configured retries
    """
    now = now or datetime.now()

    if not warehouse_id:
        raise ValidationError('El depósito es requerido', field='warehouse_id')
    if not count_date:
        raise ValidationError('La fecha de conteo es requerida', field='count_date')

    requested, cutoff = _resolve_cutoff(count_date, count_time, now)
    count_time = requested.strftime('%H:%M')

    if not session.get(Warehouse, warehouse_id):
        raise NotFoundError(f'Depósito con ID {warehouse_id} no encontrado')
    _require_user(session, counted_by, 'counted_by')

    prefix = now.date().isoformat()
    max_retries = int(_config('COUNT_NUMBER_MAX_RETRIES', 5))

    for attempt in range(1, max_retries + 1):
        count_number = _next_count_number(session, prefix)
        try:
            with unit_of_work(session):
                stock_count = StockCount(
                    count_number=count_number,
                    warehouse_id=warehouse_id,
                    status=StockCountStatus.PLANNING,
                    count_date=requested.date(),
                    count_time=count_time,
                    cutoff_datetime=cutoff,
                    counted_by=counted_by,
                    notes=notes or None
                )
                session.add(stock_count)
                session.flush()

                historical = calculate_stock_at_datetime(session, warehouse_id, cutoff, now=now)
                for entry in historical:
                    session.add(_seed_item(stock_count.id, entry.material_id, entry.historical_stock))
        except StorageError as e:
            if not isinstance(e.__cause__, IntegrityError):
                raise
            logger.warning(f"Count number {count_number} already taken (attempt {attempt}/{max_retries})")
            continue

        logger.info(
            f"Stock count {count_number} created for warehouse {warehouse_id} "
            f"at cutoff {cutoff.isoformat()} with {len(historical)} items"
        )
        return stock_count

    raise DuplicateError('No se pudo generar un número de conteo único. Intente nuevamente.')


def add_material(session, stock_count_id, material_id) -> StockCountItem:
    """
    Add a material to an editable count, seeded at the count's own cutoff.

    Raises:
        NotFoundError: count or material missing
        InvalidStateError: count not PLANNING/IN_PROGRESS
        DuplicateError: material already in the count
    """
    stock_count = _get_count(session, stock_count_id)
    _require_editable(stock_count, 'agregar materiales a')

    if not material_id:
        raise ValidationError('El material es requerido', field='material_id')

    material = session.get(Material, material_id)
    if not material:
        raise NotFoundError(f'Material con ID {material_id} no encontrado')

    existing = session.query(StockCountItem).filter(
        StockCountItem.stock_count_id == stock_count_id,
        StockCountItem.material_id == material_id
    ).first()
    if existing:
        raise DuplicateError(f'El material "{material.name}" ya está en el conteo')

    historical = calculate_material_stock_at_datetime(
        session, stock_count.warehouse_id, material_id, stock_count.cutoff_datetime
    )

    with unit_of_work(session):
        item = _seed_item(stock_count_id, material_id, historical, manual=True)
        session.add(item)

    logger.info(f"Material {material_id} added to stock count {stock_count.count_number} (system={item.system_stock})")
    return item


def update_count_item(session, item_id, counted_stock=None, reason=None,
                      now: Optional[datetime] = None) -> StockCountItem:
    """
    Record a counted quantity and/or reason for an item.

    Setting a counted quantity marks the item completed. When the last item of
    an IN_PROGRESS count is completed the count moves to PENDING_APPROVAL.
    """
    item = session.get(StockCountItem, item_id)
    if not item:
        raise NotFoundError(f'Ítem de conteo con ID {item_id} no encontrado')

    stock_count = item.stock_count
    _require_editable(stock_count, 'modificar ítems de')

    counted = None
    if counted_stock is not None:
        counted = to_decimal(counted_stock, 'counted_stock', allow_negative=False)

    with unit_of_work(session):
        if counted is not None:
            item.counted_stock = counted
            item.difference = counted - Decimal(item.system_stock)
            item.counted_at = now or datetime.now()
            item.is_completed = True

        if reason is not None:
            item.reason = str(reason).strip() or None

        session.flush()

        if item.is_completed:
            _promote_if_fully_counted(stock_count)

    return item


def _promote_if_fully_counted(stock_count):
    """IN_PROGRESS -> PENDING_APPROVAL once every item has a counted quantity."""
    if (
        stock_count.status == StockCountStatus.IN_PROGRESS
        and stock_count.items
        and all(i.is_completed for i in stock_count.items)
    ):
        stock_count.status = StockCountStatus.PENDING_APPROVAL
        logger.info(f"Stock count {stock_count.count_number} fully counted, pending approval")


def _transition(session, stock_count_id, expected: StockCountStatus, target: StockCountStatus) -> StockCount:
    stock_count = _get_count(session, stock_count_id)
    if stock_count.status != expected:
        raise InvalidStateError(
            f'El conteo debe estar en estado {expected.value} (actual: {stock_count.status.value})',
            current_state=stock_count.status
        )

    with unit_of_work(session):
        stock_count.status = target
        if target == StockCountStatus.IN_PROGRESS:
            # Items counted during planning may already cover the whole count
            _promote_if_fully_counted(stock_count)

    logger.info(f"Stock count {stock_count.count_number}: {expected.value} -> {stock_count.status.value}")
    return stock_count


def start_count(session, stock_count_id) -> StockCount:
    """PLANNING -> IN_PROGRESS, or straight to PENDING_APPROVAL when every item is already counted."""
    return _transition(session, stock_count_id, StockCountStatus.PLANNING, StockCountStatus.IN_PROGRESS)


def submit_for_approval(session, stock_count_id) -> StockCount:
    """IN_PROGRESS -> PENDING_APPROVAL; uncounted items keep a counted stock of 0."""
    return _transition(
        session, stock_count_id, StockCountStatus.IN_PROGRESS, StockCountStatus.PENDING_APPROVAL
    )


def recalculate_stock_count(session, stock_count_id, count_date=None, count_time=None,
                            now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Re-seed an editable count from the ledger, optionally at a new cutoff.

    Auto-generated items are rebuilt from the historical stock; counted
    quantities, reasons and completion flags entered so far are carried over.
    Manually added items stay and get their system stock refreshed.
    """
    now = now or datetime.now()
    stock_count = _get_count(session, stock_count_id)
    _require_editable(stock_count, 'recalcular')

    cutoff = stock_count.cutoff_datetime
    new_date = None
    if count_date or count_time:
        new_date, cutoff = _resolve_cutoff(count_date or stock_count.count_date, count_time or stock_count.count_time, now)

    with unit_of_work(session):
        if new_date is not None:
            stock_count.count_date = new_date.date()
            stock_count.count_time = new_date.strftime('%H:%M')
            stock_count.cutoff_datetime = cutoff

        historical = calculate_stock_at_datetime(session, stock_count.warehouse_id, cutoff, now=now)
        historical_by_material = {entry.material_id: entry for entry in historical}

        preserved = {}
        manual_items = []
        for item in list(stock_count.items):
            if item.is_manually_added:
                manual_items.append(item)
                continue
            if item.is_completed or Decimal(item.counted_stock) != 0 or item.reason:
                preserved[item.material_id] = (Decimal(item.counted_stock), item.reason, item.is_completed, item.counted_at)
            stock_count.items.remove(item)
        session.flush()

        manual_ids = {item.material_id for item in manual_items}
        new_items = 0
        for entry in historical:
            if entry.material_id in manual_ids:
                continue
            item = _seed_item(stock_count.id, entry.material_id, entry.historical_stock)
            if entry.material_id in preserved:
                counted, reason, completed, counted_at = preserved[entry.material_id]
                item.counted_stock = counted
                item.difference = counted - item.system_stock
                item.reason = reason
                item.is_completed = completed
                item.counted_at = counted_at
            stock_count.items.append(item)
            new_items += 1

        for item in manual_items:
            entry = historical_by_material.get(item.material_id)
            item.system_stock = entry.historical_stock if entry else ZERO
            item.difference = Decimal(item.counted_stock) - Decimal(item.system_stock)

    logger.info(
        f"Stock count {stock_count.count_number} recalculated at {cutoff.isoformat()}: "
        f"{new_items} items rebuilt, {len(manual_items)} manual items refreshed"
    )
    return {
        'stock_count_id': stock_count.id,
        'cutoff_datetime': cutoff,
        'new_items_created': new_items,
        'manual_items_updated': len(manual_items),
        'total_historical_materials': len(historical),
    }


def _post_adjustment(session, stock_count, item, approved_by, posted_at) -> StockAdjustment:
    """
    Post the correction of one counted item.

    Writes the StockAdjustment, sets MaterialStock to the counted quantity
    (absolute assignment, row locked) and appends the ADJUSTMENT movement.
    """
    difference = Decimal(item.difference)
    adjustment_type = AdjustmentType.INCREASE if difference > 0 else AdjustmentType.DECREASE
    quantity = abs(difference)
    counted = Decimal(item.counted_stock)

    adjustment = StockAdjustment(
        stock_count_id=stock_count.id,
        material_id=item.material_id,
        warehouse_id=stock_count.warehouse_id,
        adjustment_type=adjustment_type,
        quantity=quantity,
        reason=item.reason or f'Diferencia de conteo {stock_count.count_number}',
        adjusted_by=approved_by
    )
    session.add(adjustment)

    stock = lock_material_stock(session, item.material_id, stock_count.warehouse_id)
    stock_before = Decimal(stock.current_stock) if stock else ZERO
    if stock:
        stock.current_stock = counted
        stock.available_stock = counted - Decimal(stock.reserved_stock or 0)
        stock.last_updated = posted_at
    else:
        session.add(MaterialStock(
            material_id=item.material_id,
            warehouse_id=stock_count.warehouse_id,
            current_stock=counted,
            available_stock=counted,
            reserved_stock=ZERO,
            last_updated=posted_at
        ))

    material = item.material
    session.add(StockMovement(
        material_id=item.material_id,
        warehouse_id=stock_count.warehouse_id,
        unit_id=material.consumption_unit_id or material.purchase_unit_id,
        user_id=approved_by,
        type=StockMovementType.ADJUSTMENT,
        quantity=quantity if adjustment_type == AdjustmentType.INCREASE else -quantity,
        stock_before=stock_before,
        stock_after=counted,
        date=posted_at,
        reason=f'Conteo de stock: {stock_count.count_number}'
    ))
    session.flush()

    logger.debug(
        f"Adjustment {adjustment_type.value} {fmt_qty(quantity)} for material {item.material_id} "
        f"(count {stock_count.count_number})"
    )
    return adjustment


def approve_stock_count(session, stock_count_id, approved_by, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Approve a PENDING_APPROVAL count and post its corrections atomically.

    Items with a zero difference post nothing. Any failure rolls back the
    status change together with every adjustment and movement.

    Returns:
        dict with ``stock_count`` and ``adjustments_count``

    Raises:
        NotFoundError: count or approving user missing
        InvalidStateError: count not PENDING_APPROVAL
        StorageError: the commit failed; nothing was applied
    """
    stock_count = _get_count(session, stock_count_id)
    _require_user(session, approved_by, 'approved_by')

    if stock_count.status != StockCountStatus.PENDING_APPROVAL:
        raise InvalidStateError(
            'Solo se pueden aprobar conteos pendientes de aprobación',
            current_state=stock_count.status
        )

    posted_at = now or datetime.now()
    adjustments = []

    with unit_of_work(session):
        # Re-read under lock so two approvals of the same count cannot both pass
        stock_count = _get_count(session, stock_count_id, lock=True)
        if stock_count.status != StockCountStatus.PENDING_APPROVAL:
            raise InvalidStateError(
                'Solo se pueden aprobar conteos pendientes de aprobación',
                current_state=stock_count.status
            )

        stock_count.status = StockCountStatus.COMPLETED
        stock_count.approved_by = approved_by
        stock_count.approved_at = posted_at

        for item in stock_count.items:
            if Decimal(item.difference) == 0:
                continue
            adjustments.append(_post_adjustment(session, stock_count, item, approved_by, posted_at))

    stock_counts_approved_total.inc()
    stock_adjustments_posted_total.inc(len(adjustments))
    logger.info(
        f"Stock count {stock_count.count_number} approved by user {approved_by}: "
        f"{len(adjustments)} adjustments posted"
    )
    return {'stock_count': stock_count, 'adjustments_count': len(adjustments)}


def delete_stock_count(session, stock_count_id) -> None:
    """Delete a count that is still in PLANNING (items go with it)."""
    stock_count = _get_count(session, stock_count_id)
    if stock_count.status != StockCountStatus.PLANNING:
        raise InvalidStateError(
            'Solo se pueden eliminar conteos en planificación',
            current_state=stock_count.status
        )

    count_number = stock_count.count_number
    with unit_of_work(session):
        session.delete(stock_count)

    logger.info(f"Stock count {count_number} deleted")


def get_stock_count(session, stock_count_id) -> StockCount:
    return _get_count(session, stock_count_id)


def list_stock_counts(session, warehouse_id=None, status=None) -> List[StockCount]:
    """Counts ordered newest first, optionally filtered by warehouse and status."""
    query = session.query(StockCount)
    if warehouse_id:
        query = query.filter(StockCount.warehouse_id == warehouse_id)
    if status:
        if not isinstance(status, StockCountStatus):
            try:
                status = StockCountStatus(str(status).upper())
            except ValueError:
                raise ValidationError(f'Estado inválido: {status}', field='status')
        query = query.filter(StockCount.status == status)
    return query.order_by(StockCount.created_at.desc(), StockCount.id.desc()).all()
