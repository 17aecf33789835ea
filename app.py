"""
Guesthouse Reservation Backend
==============================
Room types, rate calendars, bookings, booking groups and payments.
"""

from flask import Flask, jsonify
from flask_cors import CORS
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
import logging
import os
from dotenv import load_dotenv

from errors import BookingError
from models import db
from pricing import parse_weekend_days

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

def database_url():
    """DATABASE_URL with postgres URLs pointed at the psycopg 3 driver"""
    url = os.environ.get('DATABASE_URL')
    if not url:
        return 'sqlite:///guesthouse.db'
    if url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql+psycopg://', 1)
    elif url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+psycopg://', 1)
    return url


def load_config():
    return {
        'SQLALCHEMY_DATABASE_URI': database_url(),
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SQLALCHEMY_ENGINE_OPTIONS': {
            'pool_pre_ping': True,
            'pool_recycle': 300,
        },
        'WEEKEND_DAYS': os.environ.get('WEEKEND_DAYS', 'fri,sat'),
        'DEFAULT_LANGUAGE': os.environ.get('DEFAULT_LANGUAGE', 'en'),
        'CORS_ORIGINS': os.environ.get('CORS_ORIGINS', '*'),
        'LOG_LEVEL': os.environ.get('LOG_LEVEL', 'INFO'),
        'PAGE_SIZE': int(os.environ.get('PAGE_SIZE', 20)),
    }


# ============================================
# APPLICATION FACTORY
# ============================================

def create_app(config=None):
    """Create and configure the Flask application."""
    load_dotenv()

    app = Flask(__name__)
    app.config.update(load_config())
    if config:
        app.config.update(config)
    app.config['WEEKEND_DAYS'] = parse_weekend_days(app.config['WEEKEND_DAYS'])

    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    origins = app.config['CORS_ORIGINS']
    if isinstance(origins, str):
        origins = [o.strip() for o in origins.split(',') if o.strip()]
    CORS(app,
         origins=origins,
         allow_headers=['Content-Type'],
         methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS']
    )

    # Initialize database
    db.init_app(app)
    with app.app_context():
        db.create_all()

    from catalog_router import bp as catalog_bp
    from bookings_router import bp as bookings_bp

    app.register_blueprint(catalog_bp, url_prefix='/api')
    app.register_blueprint(bookings_bp, url_prefix='/api')

    register_error_handlers(app)
    register_health_routes(app)

    logger.info('Guesthouse API ready (database: %s)', app.config['SQLALCHEMY_DATABASE_URI'].split('://')[0])
    return app


# ============================================
# ERROR HANDLERS
# ============================================

def register_error_handlers(app):

    @app.errorhandler(BookingError)
    def handle_booking_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(error):
        db.session.rollback()
        logger.exception('Database error: %s', error)
        return jsonify({'success': False, 'message': 'Database error'}), 500

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'success': False, 'message': 'Not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'success': False, 'message': 'Method not allowed'}), 405


# ============================================
# HEALTH CHECK
# ============================================

def register_health_routes(app):

    @app.route('/health')
    def health_check():
        """Health check endpoint"""
        return jsonify({'status': 'healthy', 'timestamp': datetime.now().isoformat()})

    @app.route('/')
    def index():
        """Root endpoint"""
        return jsonify({'message': 'Guesthouse Reservation API', 'status': 'running'})


# ============================================
# MAIN ENTRY POINT
# ============================================

if __name__ == '__main__':
    app = create_app()

    debug_mode = os.environ.get('FLASK_DEBUG', 'false').lower() == 'true'
    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', 5000))

    logger.info('Running on http://%s:%s (debug=%s)', host, port, debug_mode)
    app.run(debug=debug_mode, host=host, port=port)
