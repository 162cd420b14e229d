"""
Flask Backend for WristROM
Wrist and thumb range-of-motion measurement and progress API
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS
from dotenv import load_dotenv

from domain.clinical_tables import ClinicalTables, load_clinical_tables
from domain.errors import PersistenceError, SessionStateError, ValidationError
from services.calendar_service import CalendarService
from services.json_store import create_repositories
from services.measurement_service import MeasurementService
from services.measurement_writer import MeasurementWriter
from services.progress_aggregator import ProgressAggregator
from services.progress_service import ProgressService

logger = logging.getLogger(__name__)


@dataclass
class RomServices:
    tables: ClinicalTables
    measurements: MeasurementService
    progress: ProgressService
    calendar: CalendarService
    writer: MeasurementWriter


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def build_services(data_folder: str, tables: ClinicalTables) -> RomServices:
    measurement_repo, session_repo, calendar_repo, progress_repo = create_repositories(data_folder)
    writer = MeasurementWriter(measurement_repo)
    calendar = CalendarService(calendar_repo)
    return RomServices(
        tables=tables,
        measurements=MeasurementService(tables, session_repo, measurement_repo, writer, calendar),
        progress=ProgressService(
            measurement_repo,
            calendar_repo,
            progress_repo,
            ProgressAggregator(tables.normal_ranges),
        ),
        calendar=calendar,
        writer=writer,
    )


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        return jsonify({"success": False, "error": str(error), "errors": error.errors}), 400

    @app.errorhandler(SessionStateError)
    def handle_session_state_error(error):
        body = {"success": False, "error": str(error), "sessionId": error.session_id}
        missing = getattr(error, 'missing_phases', None)
        if missing is not None:
            body["missingPhases"] = missing
        return jsonify(body), 404 if error.not_found else 409

    @app.errorhandler(PersistenceError)
    def handle_persistence_error(error):
        logger.error(f"Persistence failure: {error}")
        return jsonify({"success": False, "error": str(error), "retryable": error.retryable}), 503


def create_app(config: Optional[dict] = None) -> Flask:
    # Load environment variables
    load_dotenv()

    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )

    app = Flask(__name__)

    # Configuration
    data_folder = os.getenv('DATA_FOLDER', './data')
    if not os.path.isabs(data_folder):
        data_folder = os.path.abspath(data_folder)
    app.config['DATA_FOLDER'] = data_folder
    app.config['CLINICAL_TABLES_PATH'] = os.getenv('CLINICAL_TABLES_PATH')
    app.config['INCLUDE_FOREARM_ROTATION'] = env_flag('INCLUDE_FOREARM_ROTATION')
    if config:
        app.config.update(config)

    # Enable CORS for the frontend
    CORS(app, resources={
        r"/api/*": {
            "origins": [
                "http://localhost:3000",
                os.getenv("FRONTEND_URL", "http://localhost:3000")
            ]
        }
    })

    os.makedirs(app.config['DATA_FOLDER'], exist_ok=True)
    tables = load_clinical_tables(
        app.config['CLINICAL_TABLES_PATH'],
        include_forearm_rotation=app.config['INCLUDE_FOREARM_ROTATION'],
    )
    app.extensions['rom'] = build_services(app.config['DATA_FOLDER'], tables)

    # Import routes
    from routes import calendar, health, measurements, progress, sessions

    # Register blueprints
    app.register_blueprint(health.bp)
    app.register_blueprint(sessions.bp)
    app.register_blueprint(measurements.bp)
    app.register_blueprint(progress.bp)
    app.register_blueprint(calendar.bp)

    register_error_handlers(app)

    @app.route('/')
    def index():
        """Root endpoint"""
        return jsonify({
            "service": "WristROM Backend",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "/health": "Health check",
                "/api/sessions": "Measurement sessions (start, frames, advance, complete, cancel)",
                "/api/measurements": "Stored daily measurements",
                "/api/progress": "Progress rollup for an analysis period",
                "/api/calendar": "Monthly activity records and memos",
            }
        })

    return app


if __name__ == '__main__':
    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'production') == 'development'

    print(f"\n{'='*50}")
    print(f"[START] WristROM Backend Starting...")
    print(f"{'='*50}")
    print(f"[PORT] Port: {port}")
    print(f"[DEBUG] Debug: {debug}")
    print(f"[FOLDER] Data Folder: {app.config['DATA_FOLDER']}")
    print(f"[PHASES] {', '.join(p.value for p in app.extensions['rom'].tables.phase_ids)}")
    print(f"{'='*50}\n")

    app.run(
        host='0.0.0.0',
        port=port,
        debug=debug,
        use_reloader=False
    )
