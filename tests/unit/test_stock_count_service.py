"""
Unit tests for the stock count lifecycle.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from backoffice.exceptions import DuplicateError, InvalidStateError, NotFoundError, ValidationError
from backoffice.models import (
    MaterialStock, StockAdjustment, AdjustmentType, StockCount, StockCountItem,
    StockCountStatus, StockMovement, StockMovementType
)
from backoffice.services import stock_count_service
from backoffice.services.stock_movement_service import check_stock_consistency

NOW = datetime(2024, 2, 1, 9, 0)


def _create(session, warehouse, user, count_date='2024-01-10', count_time=None, now=NOW):
    return stock_count_service.create_stock_count(
        session, warehouse.id, user.id, count_date, count_time, now=now
    )


def _count_everything(session, stock_count, counted):
    """Start the count and record ``counted`` (material_id -> qty) for every item."""
    stock_count_service.start_count(session, stock_count.id)
    for item in list(stock_count.items):
        stock_count_service.update_count_item(session, item.id, counted_stock=counted[item.material_id])
    return session.get(StockCount, stock_count.id)


class TestCreateStockCount:
    """Tests for count creation and item seeding."""

    def test_seeds_items_from_history(self, session, warehouse, user, stocked_material):
        """Test that the item is seeded with the stock at the cutoff."""
        stock_count = _create(session, warehouse, user)

        assert stock_count.status == StockCountStatus.PLANNING
        assert stock_count.cutoff_datetime == datetime(2024, 1, 10, 23, 59)
        assert len(stock_count.items) == 1

        item = stock_count.items[0]
        assert item.material_id == stocked_material.id
        assert item.system_stock == Decimal('70')
        assert item.counted_stock == Decimal('0')
        assert item.difference == Decimal('-70')
        assert item.is_completed is False
        assert item.is_manually_added is False

    def test_cutoff_time_respected(self, session, warehouse, user, stocked_material):
        """Test that the count time is part of the cutoff."""
        stock_count = _create(session, warehouse, user, count_date='2024-01-05', count_time='09:00')

        assert stock_count.items[0].system_stock == Decimal('100')

    def test_count_numbers_per_day(self, session, warehouse, user, stocked_material):
        """Test that numbers follow the creation day with a growing suffix."""
        first = _create(session, warehouse, user)
        second = _create(session, warehouse, user)

        assert first.count_number == '2024-02-01-001'
        assert second.count_number == '2024-02-01-002'

    def test_negative_history_seeds_zero(self, session, warehouse, user, material, post):
        """Test that a negative replayed stock seeds a zero system stock."""
        post(material, 'OUT', 12, datetime(2024, 1, 2))

        stock_count = _create(session, warehouse, user)

        assert stock_count.items[0].system_stock == Decimal('0')
        assert stock_count.items[0].difference == Decimal('0')

    def test_future_date_creates_nothing(self, session, warehouse, user, stocked_material):
        """Test that a future count date fails and leaves no count behind."""
        with pytest.raises(ValidationError):
            _create(session, warehouse, user, count_date='2024-02-02')

        assert session.query(StockCount).count() == 0

    def test_unknown_warehouse(self, session, user):
        with pytest.raises(NotFoundError):
            stock_count_service.create_stock_count(session, 999, user.id, '2024-01-10', now=NOW)

    def test_unknown_user(self, session, warehouse):
        with pytest.raises(NotFoundError):
            stock_count_service.create_stock_count(session, warehouse.id, 999, '2024-01-10', now=NOW)

    def test_count_number_collision_is_retried(self, session, warehouse, user, stocked_material, monkeypatch):
        """Test that a number taken concurrently is retried with the next one."""
        first = _create(session, warehouse, user)
        taken = first.count_number
        original = stock_count_service._next_count_number
        calls = []

        def colliding(session, prefix):
            calls.append(prefix)
            if len(calls) == 1:
                return taken
            return original(session, prefix)

        monkeypatch.setattr(stock_count_service, '_next_count_number', colliding)
        second = _create(session, warehouse, user)

        assert len(calls) == 2
        assert second.count_number == '2024-02-01-002'
        assert len(second.items) == 1
        assert session.query(StockCount).count() == 2

    def test_collision_retries_exhausted(self, app, session, warehouse, user, stocked_material, monkeypatch):
        """Test that DuplicateError is raised when every attempt collides."""
        taken = _create(session, warehouse, user).count_number
        app.config['COUNT_NUMBER_MAX_RETRIES'] = 2
        monkeypatch.setattr(stock_count_service, '_next_count_number', lambda session, prefix: taken)

        with pytest.raises(DuplicateError):
            _create(session, warehouse, user)

        assert session.query(StockCount).count() == 1
        assert session.query(StockCountItem).count() == 1


class TestCountItems:
    """Tests for manual additions and counted quantities."""

    def test_add_material_seeded_at_cutoff(self, session, warehouse, user, stocked_material, make_material, post):
        """Test that a manually added material uses the count's cutoff."""
        stock_count = _create(session, warehouse, user)
        sugar = make_material('Azúcar')
        post(sugar, 'IN', 8, datetime(2024, 1, 20))

        item = stock_count_service.add_material(session, stock_count.id, sugar.id)

        assert item.is_manually_added is True
        assert item.system_stock == Decimal('0')
        assert item.difference == Decimal('0')

    def test_add_material_twice(self, session, warehouse, user, stocked_material):
        stock_count = _create(session, warehouse, user)

        with pytest.raises(DuplicateError):
            stock_count_service.add_material(session, stock_count.id, stocked_material.id)

    def test_add_unknown_material(self, session, warehouse, user, stocked_material):
        stock_count = _create(session, warehouse, user)

        with pytest.raises(NotFoundError):
            stock_count_service.add_material(session, stock_count.id, 999)

    def test_update_item_computes_difference(self, session, warehouse, user, stocked_material):
        """Test that counting 65 against 70 leaves a difference of -5."""
        stock_count = _create(session, warehouse, user)
        item = stock_count.items[0]

        stock_count_service.update_count_item(session, item.id, counted_stock='65', reason='Bolsa rota')

        item = session.get(StockCountItem, item.id)
        assert item.counted_stock == Decimal('65')
        assert item.difference == Decimal('-5')
        assert item.is_completed is True
        assert item.counted_at is not None
        assert item.reason == 'Bolsa rota'

    def test_negative_counted_stock_rejected(self, session, warehouse, user, stocked_material):
        stock_count = _create(session, warehouse, user)

        with pytest.raises(ValidationError):
            stock_count_service.update_count_item(session, stock_count.items[0].id, counted_stock=-1)

    def test_last_item_moves_count_to_pending(self, session, warehouse, user, stocked_material, make_material, post):
        """Test the automatic transition once every item of an IN_PROGRESS count is counted."""
        sugar = make_material('Azúcar')
        post(sugar, 'IN', 10, datetime(2024, 1, 2))
        stock_count = _create(session, warehouse, user)
        stock_count_service.start_count(session, stock_count.id)
        first, second = stock_count.items

        stock_count_service.update_count_item(session, first.id, counted_stock=1)
        assert session.get(StockCount, stock_count.id).status == StockCountStatus.IN_PROGRESS

        stock_count_service.update_count_item(session, second.id, counted_stock=2)
        assert session.get(StockCount, stock_count.id).status == StockCountStatus.PENDING_APPROVAL

    def test_planning_count_stays_in_planning(self, session, warehouse, user, stocked_material):
        """Test that counting every item of a PLANNING count does not move it."""
        stock_count = _create(session, warehouse, user)

        stock_count_service.update_count_item(session, stock_count.items[0].id, counted_stock=70)

        assert session.get(StockCount, stock_count.id).status == StockCountStatus.PLANNING

    def test_items_frozen_after_submit(self, session, warehouse, user, stocked_material):
        """Test that items cannot change once the count left the editable states."""
        stock_count = _create(session, warehouse, user)
        _count_everything(session, stock_count, {stocked_material.id: 65})

        with pytest.raises(InvalidStateError):
            stock_count_service.update_count_item(session, stock_count.items[0].id, counted_stock=60)


class TestTransitions:
    """Tests for explicit lifecycle transitions."""

    def test_start_and_submit(self, session, warehouse, user, stocked_material):
        stock_count = _create(session, warehouse, user)

        stock_count_service.start_count(session, stock_count.id)
        assert stock_count.status == StockCountStatus.IN_PROGRESS

        stock_count_service.submit_for_approval(session, stock_count.id)
        assert stock_count.status == StockCountStatus.PENDING_APPROVAL

    def test_start_fully_counted_goes_pending(self, session, warehouse, user, stocked_material):
        """Test that a count whose items were all counted while planning skips IN_PROGRESS."""
        stock_count = _create(session, warehouse, user)
        stock_count_service.update_count_item(session, stock_count.items[0].id, counted_stock=70)

        stock_count_service.start_count(session, stock_count.id)

        assert session.get(StockCount, stock_count.id).status == StockCountStatus.PENDING_APPROVAL

    def test_start_partially_counted_stays_in_progress(self, session, warehouse, user, stocked_material,
                                                       make_material, post):
        other = make_material('Azúcar')
        post(other, 'IN', 5, datetime(2024, 1, 2))
        stock_count = _create(session, warehouse, user)
        first = next(i for i in stock_count.items if i.material_id == stocked_material.id)
        stock_count_service.update_count_item(session, first.id, counted_stock=70)

        stock_count_service.start_count(session, stock_count.id)

        assert session.get(StockCount, stock_count.id).status == StockCountStatus.IN_PROGRESS

    def test_submit_from_planning_rejected(self, session, warehouse, user, stocked_material):
        stock_count = _create(session, warehouse, user)

        with pytest.raises(InvalidStateError):
            stock_count_service.submit_for_approval(session, stock_count.id)

    def test_delete_only_in_planning(self, session, warehouse, user, stocked_material):
        """Test that a count can be deleted in PLANNING but not afterwards."""
        planning = _create(session, warehouse, user)
        started = _create(session, warehouse, user)
        stock_count_service.start_count(session, started.id)

        planning_id = planning.id
        stock_count_service.delete_stock_count(session, planning_id)
        assert session.get(StockCount, planning_id) is None
        assert session.query(StockCountItem).filter_by(stock_count_id=planning_id).count() == 0

        with pytest.raises(InvalidStateError):
            stock_count_service.delete_stock_count(session, started.id)

    def test_list_filters_by_status(self, session, warehouse, user, stocked_material):
        _create(session, warehouse, user)
        started = _create(session, warehouse, user)
        stock_count_service.start_count(session, started.id)

        counts = stock_count_service.list_stock_counts(session, warehouse_id=warehouse.id, status='in_progress')
        assert [c.id for c in counts] == [started.id]


class TestRecalculateStockCount:
    """Tests for re-seeding an editable count."""

    def test_backdated_movement_picked_up(self, session, warehouse, user, stocked_material, post):
        """Test that a movement backdated before the cutoff refreshes the system stock."""
        stock_count = _create(session, warehouse, user)
        post(stocked_material, 'WASTE', 4, datetime(2024, 1, 8))

        stock_count_service.recalculate_stock_count(session, stock_count.id, now=NOW)

        item = session.get(StockCount, stock_count.id).items[0]
        assert item.system_stock == Decimal('66')

    def test_user_entries_preserved(self, session, warehouse, user, stocked_material, make_material, post):
        """Test that counted quantities, reasons and manual items survive a recalculation."""
        stock_count = _create(session, warehouse, user)
        item = stock_count.items[0]
        stock_count_service.update_count_item(session, item.id, counted_stock=65, reason='Merma')
        sugar = make_material('Azúcar')
        manual = stock_count_service.add_material(session, stock_count.id, sugar.id)
        post(sugar, 'IN', 3, datetime(2024, 1, 9))

        result = stock_count_service.recalculate_stock_count(session, stock_count.id, now=NOW)

        assert result['new_items_created'] == 1
        assert result['manual_items_updated'] == 1
        items = {i.material_id: i for i in session.get(StockCount, stock_count.id).items}
        rebuilt = items[stocked_material.id]
        assert rebuilt.counted_stock == Decimal('65')
        assert rebuilt.difference == Decimal('-5')
        assert rebuilt.reason == 'Merma'
        assert rebuilt.is_completed is True
        assert items[sugar.id].id == manual.id
        assert items[sugar.id].system_stock == Decimal('3')
        assert items[sugar.id].difference == Decimal('-3')

    def test_new_cutoff(self, session, warehouse, user, stocked_material):
        """Test moving the count to an earlier cutoff."""
        stock_count = _create(session, warehouse, user)

        stock_count_service.recalculate_stock_count(session, stock_count.id, count_date='2024-01-03', now=NOW)

        stock_count = session.get(StockCount, stock_count.id)
        assert stock_count.cutoff_datetime == datetime(2024, 1, 3, 23, 59)
        assert stock_count.items[0].system_stock == Decimal('100')

    def test_not_allowed_after_submit(self, session, warehouse, user, stocked_material):
        stock_count = _create(session, warehouse, user)
        _count_everything(session, stock_count, {stocked_material.id: 70})

        with pytest.raises(InvalidStateError):
            stock_count_service.recalculate_stock_count(session, stock_count.id, now=NOW)


class TestApproveStockCount:
    """Tests for the approval reconciliation."""

    def test_approval_posts_adjustment(self, session, warehouse, user, approver, stocked_material):
        """Test that counting 65 against 70 posts a DECREASE of 5 and sets stock to 65."""
        stock_count = _create(session, warehouse, user)
        _count_everything(session, stock_count, {stocked_material.id: 65})

        result = stock_count_service.approve_stock_count(session, stock_count.id, approver.id)

        assert result['adjustments_count'] == 1
        stock_count = session.get(StockCount, stock_count.id)
        assert stock_count.status == StockCountStatus.COMPLETED
        assert stock_count.approved_by == approver.id
        assert stock_count.approved_at is not None

        adjustment = session.query(StockAdjustment).one()
        assert adjustment.adjustment_type == AdjustmentType.DECREASE
        assert adjustment.quantity == Decimal('5')
        assert adjustment.stock_count_id == stock_count.id

        stock = session.query(MaterialStock).filter_by(material_id=stocked_material.id).one()
        assert stock.current_stock == Decimal('65')

        movement = session.query(StockMovement).filter_by(type=StockMovementType.ADJUSTMENT).one()
        assert movement.quantity == Decimal('-5')
        assert movement.stock_before == Decimal('70')
        assert movement.stock_after == Decimal('65')
        assert movement.user_id == approver.id
        assert stock_count.count_number in movement.reason

    def test_ledger_consistent_after_approval(self, session, warehouse, user, approver, stocked_material):
        """Test that the ledger still replays to the stored stock."""
        stock_count = _create(session, warehouse, user)
        _count_everything(session, stock_count, {stocked_material.id: 82})

        stock_count_service.approve_stock_count(session, stock_count.id, approver.id)

        report = check_stock_consistency(session, stocked_material.id)
        assert all(row['is_consistent'] for row in report)
        assert report[0]['current_stock'] == Decimal('82')

    def test_zero_difference_posts_nothing(self, session, warehouse, user, approver, stocked_material):
        """Test that an item counted exactly as expected produces no rows."""
        stock_count = _create(session, warehouse, user)
        _count_everything(session, stock_count, {stocked_material.id: 70})
        movements_before = session.query(StockMovement).count()

        result = stock_count_service.approve_stock_count(session, stock_count.id, approver.id)

        assert result['adjustments_count'] == 0
        assert session.query(StockAdjustment).count() == 0
        assert session.query(StockMovement).count() == movements_before
        assert session.get(StockCount, stock_count.id).status == StockCountStatus.COMPLETED

    def test_in_progress_count_rejected(self, session, warehouse, user, approver, stocked_material,
                                        make_material, post):
        """Test that approving an IN_PROGRESS count fails and changes nothing."""
        sugar = make_material('Azúcar')
        post(sugar, 'IN', 10, datetime(2024, 1, 2))
        stock_count = _create(session, warehouse, user)
        stock_count_service.start_count(session, stock_count.id)
        stock_count_service.update_count_item(session, stock_count.items[0].id, counted_stock=65)
        movements_before = session.query(StockMovement).count()

        with pytest.raises(InvalidStateError):
            stock_count_service.approve_stock_count(session, stock_count.id, approver.id)

        stock_count = session.get(StockCount, stock_count.id)
        assert stock_count.status == StockCountStatus.IN_PROGRESS
        assert stock_count.approved_by is None
        assert session.query(StockAdjustment).count() == 0
        assert session.query(StockMovement).count() == movements_before

    def test_unknown_approver(self, session, warehouse, user, stocked_material):
        stock_count = _create(session, warehouse, user)
        _count_everything(session, stock_count, {stocked_material.id: 65})

        with pytest.raises(NotFoundError):
            stock_count_service.approve_stock_count(session, stock_count.id, 999)

    def test_second_approval_rejected(self, session, warehouse, user, approver, stocked_material):
        stock_count = _create(session, warehouse, user)
        _count_everything(session, stock_count, {stocked_material.id: 65})
        stock_count_service.approve_stock_count(session, stock_count.id, approver.id)

        with pytest.raises(InvalidStateError):
            stock_count_service.approve_stock_count(session, stock_count.id, approver.id)

        assert session.query(StockAdjustment).count() == 1

    def test_approval_committed_by_another_session_rejected(self, session, other_session, warehouse, user,
                                                            approver, stocked_material):
        """Test that a count read as pending but approved elsewhere is not approved again."""
        stock_count = _create(session, warehouse, user)
        stock_count = _count_everything(session, stock_count, {stocked_material.id: 65})
        assert stock_count.status == StockCountStatus.PENDING_APPROVAL

        stock_count_service.approve_stock_count(other_session, stock_count.id, approver.id)

        with pytest.raises(InvalidStateError):
            stock_count_service.approve_stock_count(session, stock_count.id, approver.id)

        assert session.query(StockAdjustment).count() == 1
        assert session.query(StockMovement).filter_by(type=StockMovementType.ADJUSTMENT).count() == 1
        stock = session.query(MaterialStock).filter_by(material_id=stocked_material.id).one()
        assert stock.current_stock == Decimal('65')

    def test_failure_mid_approval_rolls_back(self, session, warehouse, user, approver, make_material, post,
                                            monkeypatch):
        """Test that a failure on the third of five adjustments leaves no trace."""
        materials = []
        for index in range(5):
            material = make_material(f'Material {index}')
            post(material, 'IN', 10, datetime(2024, 1, 1))
            materials.append(material)

        stock_count = _create(session, warehouse, user)
        _count_everything(session, stock_count, {m.id: 3 for m in materials})
        movements_before = session.query(StockMovement).count()

        original = stock_count_service._post_adjustment
        calls = []

        def failing(*args, **kwargs):
            calls.append(1)
            if len(calls) == 3:
                raise RuntimeError('storage went away')
            return original(*args, **kwargs)

        monkeypatch.setattr(stock_count_service, '_post_adjustment', failing)

        with pytest.raises(RuntimeError):
            stock_count_service.approve_stock_count(session, stock_count.id, approver.id)

        assert len(calls) == 3
        stock_count = session.get(StockCount, stock_count.id)
        assert stock_count.status == StockCountStatus.PENDING_APPROVAL
        assert stock_count.approved_by is None
        assert session.query(StockAdjustment).count() == 0
        assert session.query(StockMovement).count() == movements_before
        assert all(
            s.current_stock == Decimal('10') for s in session.query(MaterialStock).all()
        )
