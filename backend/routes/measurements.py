"""
Measurement History Route
Lists a user's stored daily measurements with optional date filters
"""

from datetime import datetime, time

from flask import Blueprint, current_app, jsonify, request

from domain.errors import ValidationError

bp = Blueprint('measurements', __name__, url_prefix='/api/measurements')


def parse_date_param(name: str, end_of_day: bool = False):
    """Parse an ISO date or datetime query parameter; None when absent."""
    value = request.args.get(name)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise ValidationError([f"{name} must be an ISO date"])
    if end_of_day and len(value) <= 10:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed


def parse_int_param(name: str, default=None):
    value = request.args.get(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValidationError([f"{name} must be an integer"])
    if parsed < 0:
        raise ValidationError([f"{name} must be >= 0"])
    return parsed


@bp.route('', methods=['GET'])
def list_measurements():
    """
    Query params:
    - userId: required
    - startDate / endDate: ISO dates, inclusive
    - limit (default 50), offset (default 0)
    """
    service = current_app.extensions['rom'].measurements
    records = service.list_measurements(
        request.args.get('userId', ''),
        start=parse_date_param('startDate'),
        end=parse_date_param('endDate', end_of_day=True),
        limit=parse_int_param('limit', 50),
        offset=parse_int_param('offset', 0),
    )
    return jsonify({
        "success": True,
        "total": len(records),
        "measurements": [m.model_dump(mode="json") for m in records],
    })
