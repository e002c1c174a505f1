from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from flask import jsonify, request
from evidence_orders.errors import ValidationError
import logging

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

ERROR_STATUS_CODES = {
    'validation': 400,
    'not_found': 404,
    'conflict': 409,
}


def to_decimal(value, field='amount', allow_none=False):
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f'{field} is required')
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number')
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not result.is_finite():
        raise ValidationError(f'{field} must be a number')
    return result


def to_money(value):
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_hours(value, label):
    hours = to_decimal(value, label)
    if hours <= 0:
        raise ValidationError(f'{label} must be positive')
    return float(hours)


def parse_enum(enum_class, value, label):
    if isinstance(value, enum_class):
        return value
    try:
        return enum_class[str(value).strip().upper()]
    except (KeyError, AttributeError):
        raise ValidationError(f'Invalid {label}: {value}')


def json_body():
    return request.get_json(silent=True) or {}


def result_response(result, key=None, success_status=200, serialize=None):
    if not result.ok:
        status = ERROR_STATUS_CODES.get(result.error_kind, 400)
        return jsonify({'error': result.error}), status

    payload = {'ok': True}
    if key is not None:
        data = result.data
        if serialize is not None:
            data = serialize(data)
        elif hasattr(data, 'to_dict'):
            data = data.to_dict()
        payload[key] = data
    return jsonify(payload), success_status
