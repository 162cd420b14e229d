"""
Progress Route
"""

from flask import Blueprint, current_app, jsonify, request

bp = Blueprint('progress', __name__, url_prefix='/api/progress')


@bp.route('', methods=['GET'])
def get_progress():
    """
    Query params:
    - userId: required
    - period: week | 2weeks | month | 3months | 6months | year (default week)
    - force: recompute even if today's rollup exists
    """
    service = current_app.extensions['rom'].progress
    force = request.args.get('force', 'false').lower() in ('1', 'true', 'yes')
    progress = service.get_progress(
        request.args.get('userId', ''),
        request.args.get('period', 'week'),
        force=force,
    )
    return jsonify({"success": True, "progress": progress.model_dump(mode="json")})
