import os
import logging
import argparse
import traceback
from flask import Flask, jsonify, request
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

# Import db from models
from models import db
from exceptions import CloTrackerError

# Configure logging level from environment variable
def configure_logging(log_level=None, log_file=None):
    """Configure logging based on environment settings"""
    log_level = (log_level or os.environ.get('LOG_LEVEL', 'WARNING')).upper()
    if log_file is None:
        log_file = os.environ.get('LOG_FILE', 'app.log')

    # Map string levels to logging constants
    level_mapping = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }

    actual_level = level_mapping.get(log_level, logging.WARNING)

    # Setup logging; an empty LOG_FILE logs to stderr
    logging.basicConfig(
        filename=log_file or None,
        level=actual_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logging.getLogger().setLevel(actual_level)

    return actual_level

def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')

def create_app(test_config=None):
    app = Flask(__name__)

    # Get the absolute path to the current directory
    base_dir = os.path.abspath(os.path.dirname(__file__))

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get(
        'DATABASE_URL', f'sqlite:///{os.path.join(base_dir, "instance", "clo_tracker.db")}')
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['JWT_SECRET_KEY'] = os.environ.get('JWT_SECRET_KEY', app.config['SECRET_KEY'])
    app.config['JWT_EXPIRES_HOURS'] = int(os.environ.get('JWT_EXPIRES_HOURS', 24))
    app.config['DEFAULT_TEACHER_PASSWORD'] = os.environ.get('DEFAULT_TEACHER_PASSWORD', 'password123')
    app.config['MAX_CONTENT_LENGTH'] = int(os.environ.get('MAX_CONTENT_LENGTH', 16 * 1024 * 1024))
    app.config['ALLOW_SCHEMA_EDITS_WITH_MARKS'] = _env_flag('ALLOW_SCHEMA_EDITS_WITH_MARKS')
    app.config['LOG_LEVEL'] = os.environ.get('LOG_LEVEL', 'WARNING')
    app.config['LOG_FILE'] = os.environ.get('LOG_FILE', 'app.log')

    if test_config:
        app.config.update(test_config)

    # Ensure instance folder exists
    os.makedirs(os.path.join(base_dir, 'instance'), exist_ok=True)

    # Configure logging
    log_level = configure_logging(app.config['LOG_LEVEL'], app.config['LOG_FILE'])

    # Log the current configuration
    if log_level <= logging.INFO:
        logging.info(f"Application started with log level: {logging.getLevelName(log_level)}")

    # Initialize extensions with app
    db.init_app(app)
    Migrate(app, db)

    # Register blueprints
    from routes.auth_routes import auth_bp
    from routes.admin_routes import admin_bp
    from routes.student_routes import student_bp
    from routes.subject_routes import subject_bp
    from routes.cc_routes import cc_bp
    from routes.utility_routes import utility_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(student_bp)
    app.register_blueprint(subject_bp)
    app.register_blueprint(cc_bp)
    app.register_blueprint(utility_bp)

    # Create tables if they don't exist
    with app.app_context():
        db.create_all()

    @app.route('/api/health')
    def health():
        return jsonify({'success': True, 'status': 'ok'})

    # Error handlers
    @app.errorhandler(CloTrackerError)
    def handle_tracker_error(e):
        if e.status_code >= 500:
            logging.error(f"{e.__class__.__name__}: {e.message}")
        else:
            logging.info(f"{request.method} {request.path} -> {e.status_code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({'success': False, 'message': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_uncaught_exception(e):
        error_traceback = traceback.format_exc()
        error_message = str(e)

        logging.error(f"Uncaught exception: {error_message}\n{error_traceback}")
        db.session.rollback()

        return jsonify({
            'success': False,
            'message': 'Internal server error',
            'error': error_message
        }), 500

    return app

if __name__ == '__main__':
    # Parse command line arguments
    parser = argparse.ArgumentParser(description='CLO Tracker')
    parser.add_argument('port', nargs='?', type=int, default=5000, help='Port to run the application on')
    parser.add_argument('--host', default='127.0.0.1', help='Interface to bind to')
    parser.add_argument('--seed-demo', action='store_true', help='Insert demo departments, users, batches and a subject')
    parser.add_argument('--debug', action='store_true', help='Run with the Flask debugger')
    args = parser.parse_args()

    app = create_app()

    if args.seed_demo:
        from generate_demo_data import seed_demo_data
        with app.app_context():
            summary = seed_demo_data()
        print(f"Demo data inserted: {summary}")

    print("=" * 70)
    print(f"Server started! API available at: http://{args.host}:{args.port}/api")
    print("=" * 70)

    # Run the application
    app.run(host=args.host, port=args.port, debug=args.debug)
