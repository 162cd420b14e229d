"""
Calendar Routes
Monthly activity records and daily memos
"""

from datetime import date

from flask import Blueprint, current_app, jsonify, request

from domain.errors import ValidationError

bp = Blueprint('calendar', __name__, url_prefix='/api/calendar')


@bp.route('', methods=['GET'])
def get_month():
    """
    Query params:
    - userId: required
    - year, month: default to the current month
    """
    user_id = request.args.get('userId', '')
    if not user_id:
        raise ValidationError(["userId is required"])

    today = date.today()
    try:
        year = int(request.args.get('year', today.year))
        month = int(request.args.get('month', today.month))
    except ValueError:
        raise ValidationError(["year and month must be integers"])

    records = current_app.extensions['rom'].calendar.get_month(user_id, year, month)
    return jsonify({
        "success": True,
        "year": year,
        "month": month,
        "records": [r.model_dump(mode="json") for r in records],
    })


@bp.route('/memo', methods=['POST'])
def save_memo():
    """
    Body: {"userId", "recordDate": "YYYY-MM-DD", "memo",
           "painLevel"?, "motivationLevel"?, "performanceLevel"?, "rehabCompleted"?}
    """
    data = request.get_json(silent=True) or {}
    user_id = data.get('userId', '')
    if not user_id:
        raise ValidationError(["userId is required"])
    try:
        record_date = date.fromisoformat(data.get('recordDate', ''))
    except (TypeError, ValueError):
        raise ValidationError(["recordDate must be YYYY-MM-DD"])

    record = current_app.extensions['rom'].calendar.save_memo(
        user_id,
        record_date,
        data.get('memo', ''),
        pain_level=data.get('painLevel'),
        motivation_level=data.get('motivationLevel'),
        performance_level=data.get('performanceLevel'),
        rehab_completed=data.get('rehabCompleted'),
    )
    return jsonify({"success": True, "record": record.model_dump(mode="json")})
