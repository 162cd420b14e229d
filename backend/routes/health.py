"""
Health Check Route
"""

from flask import Blueprint, current_app, jsonify
from importlib.metadata import version
import numpy as np
import pydantic

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """
    Health check endpoint
    Returns service status, dependency versions and the active capture protocol
    """
    services = current_app.extensions['rom']
    tables = services.tables

    return jsonify({
        "status": "healthy",
        "service": "WristROM Backend",
        "dependencies": {
            "numpy": np.__version__,
            "pydantic": pydantic.VERSION,
            "flask": version("flask"),
        },
        "protocol": {
            "phases": [
                {
                    "phase_id": spec.phase_id.value,
                    "name": spec.name,
                    "target_angle": spec.target_angle,
                }
                for spec in tables.phases
            ],
            "data_folder": current_app.config['DATA_FOLDER'],
        },
    }), 200
