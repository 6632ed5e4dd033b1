"""Helpers to read JSON bodies and query arguments."""
from datetime import datetime

from flask import request

from backoffice.exceptions import ValidationError


def json_body():
    """Request JSON object, or an empty dict when there is no body."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('El cuerpo de la solicitud debe ser un objeto JSON')
    return data


def user_id_from(data, field='user_id'):
    """User id from the body field, falling back to the X-User-Id header."""
    value = data.get(field) or request.headers.get('X-User-Id')
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} debe ser un número entero', field=field)


def int_arg(data, field, required=False):
    value = data.get(field)
    if value in (None, ''):
        if required:
            raise ValidationError(f'El campo {field} es requerido', field=field)
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} debe ser un número entero', field=field)


def int_list_arg(args, field):
    """Comma separated or repeated integer query argument."""
    values = []
    for raw in args.getlist(field):
        for part in raw.split(','):
            part = part.strip()
            if not part:
                continue
            try:
                values.append(int(part))
            except ValueError:
                raise ValidationError(f'{field} debe contener números enteros', field=field)
    return values


def datetime_arg(data, field):
    """ISO 8601 datetime (a bare date means midnight); None when absent."""
    value = data.get(field)
    if value in (None, ''):
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f'{field} debe ser una fecha ISO 8601', field=field)
    if parsed.tzinfo is not None:
        # Stored datetimes are naive local time
        parsed = parsed.astimezone()
    return parsed.replace(tzinfo=None)
