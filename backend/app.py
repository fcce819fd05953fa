import logging
import os

from flask import Flask, jsonify
from flask_cors import CORS

from config import Config
from backend.errors import GardenError
from backend.extensions import limiter

logger = logging.getLogger(__name__)


def create_app(config_overrides=None):
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    )

    app = Flask(__name__)

    # Load configuration
    app.config.from_object(Config())
    if config_overrides:
        app.config.update(config_overrides)

    CORS(app, origins=[app.config['CLIENT_URL']], supports_credentials=True)
    limiter.init_app(app)

    from backend.services.uploads import init_cloudinary
    with app.app_context():
        cloudinary_configured = init_cloudinary()
    if not cloudinary_configured:
        logger.warning("Cloudinary credentials missing; admin uploads are disabled")

    # Register API routes
    from api.routes import api_bp
    from api.auth_routes import auth_bp
    from api.admin_routes import admin_bp
    app.register_blueprint(api_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)

    register_error_handlers(app)

    @app.route('/api/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    return app


def register_error_handlers(app):
    @app.errorhandler(GardenError)
    def handle_garden_error(e):
        return jsonify({'message': e.message}), e.status_code

    @app.errorhandler(404)
    def handle_not_found(e):
        return jsonify({'message': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(e):
        return jsonify({'message': 'Method not allowed'}), 405

    @app.errorhandler(429)
    def handle_rate_limited(e):
        return jsonify({'message': f"Too many requests: {e.description}"}), 429

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        code = getattr(e, 'code', None)
        if isinstance(code, int) and 400 <= code < 500:
            return jsonify({'message': getattr(e, 'description', str(e))}), code
        logger.exception("Unhandled error: %s", e)
        return jsonify({'message': 'Internal server error'}), 500


def init_database():
    """Create every table from database/schema.sql (idempotent)."""
    from database.connection import get_db_cursor, close_db

    schema_path = os.path.join(os.path.dirname(__file__), '..', 'database', 'schema.sql')
    with open(schema_path, 'r') as f:
        schema = f.read()

    conn, cur = get_db_cursor()
    try:
        # Execute schema (split by semicolon for multiple statements)
        statements = [stmt.strip() for stmt in schema.split(';') if stmt.strip()]
        for statement in statements:
            cur.execute(statement)
        conn.commit()
        logger.info("Database initialized from schema.sql (%d statements)", len(statements))
    except Exception as e:
        conn.rollback()
        logger.error("Error executing schema.sql: %s", e)
        raise
    finally:
        close_db(conn, cur)
