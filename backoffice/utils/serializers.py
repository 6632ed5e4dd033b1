"""JSON serialization of models for the API layer."""


def _num(value):
    return str(value) if value is not None else None


def _dt(value):
    return value.isoformat() if value is not None else None


def stock_count_item_to_dict(item):
    material = item.material
    unit = material.consumption_unit if material else None
    return {
        'id': item.id,
        'stock_count_id': item.stock_count_id,
        'material_id': item.material_id,
        'material_name': material.name if material else None,
        'unit_abbreviation': unit.abbreviation if unit else None,
        'system_stock': _num(item.system_stock),
        'counted_stock': _num(item.counted_stock),
        'difference': _num(item.difference),
        'reason': item.reason,
        'counted_at': _dt(item.counted_at),
        'is_completed': item.is_completed,
        'is_manually_added': item.is_manually_added,
    }


def stock_count_to_dict(stock_count, include_items=False):
    items = stock_count.items
    data = {
        'id': stock_count.id,
        'count_number': stock_count.count_number,
        'warehouse_id': stock_count.warehouse_id,
        'status': stock_count.status.value,
        'count_date': stock_count.count_date.isoformat() if stock_count.count_date else None,
        'count_time': stock_count.count_time,
        'cutoff_datetime': _dt(stock_count.cutoff_datetime),
        'counted_by': stock_count.counted_by,
        'approved_by': stock_count.approved_by,
        'approved_at': _dt(stock_count.approved_at),
        'notes': stock_count.notes,
        'total_items': len(items),
        'completed_items': sum(1 for item in items if item.is_completed),
    }
    if include_items:
        data['items'] = [stock_count_item_to_dict(item) for item in items]
    return data


def stock_movement_to_dict(movement):
    return {
        'id': movement.id,
        'material_id': movement.material_id,
        'warehouse_id': movement.warehouse_id,
        'type': movement.type.value,
        'quantity': _num(movement.quantity),
        'unit_cost': _num(movement.unit_cost),
        'total_cost': _num(movement.total_cost),
        'stock_before': _num(movement.stock_before),
        'stock_after': _num(movement.stock_after),
        'date': _dt(movement.date),
        'reason': movement.reason,
    }


def transaction_to_dict(transaction):
    return {
        'id': transaction.id,
        'current_account_id': transaction.current_account_id,
        'transaction_date': _dt(transaction.transaction_date),
        'type': transaction.type.value,
        'amount': _num(transaction.amount),
        'balance_before': _num(transaction.balance_before),
        'balance_after': _num(transaction.balance_after),
        'description': transaction.description,
        'reference_number': transaction.reference_number,
        'payment_id': transaction.payment_id,
    }


def payment_to_dict(payment):
    return {
        'id': payment.id,
        'current_account_id': payment.current_account_id,
        'amount': _num(payment.amount),
        'payment_date': _dt(payment.payment_date),
        'method': payment.method,
        'status': payment.status.value,
        'notes': payment.notes,
    }


def plain(value):
    """Stringify Decimal/datetime values of a flat service result dict."""
    result = {}
    for key, item in value.items():
        if hasattr(item, 'isoformat'):
            result[key] = item.isoformat()
        elif hasattr(item, 'quantize'):
            result[key] = str(item)
        else:
            result[key] = item
    return result
