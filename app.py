import logging
import os

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from config import Config
from extensions import cors, db, login_manager, migrate
from storage import LocalStorage


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Set up logging
    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    logger = logging.getLogger(__name__)

    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('postgresql'):
        app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', {
            'pool_recycle': 300,
            'pool_pre_ping': True,
        })
        logger.info("Configured for PostgreSQL")
    else:
        logger.info("Using SQLite (Local Development)")

    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_host=1)  # needed for url_for to generate with https

    # Initialize the extensions
    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)
    cors.init_app(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}}, supports_credentials=True)
    app.extensions['storage'] = LocalStorage(app.config['UPLOAD_FOLDER'])

    # Loaders and signal receivers register themselves on import
    import security  # noqa: F401
    import notification_service  # noqa: F401

    from admin_routes import admin_bp
    from auth_routes import auth_bp
    from booking_routes import bookings_bp
    from commission_routes import commission_bp
    from content_routes import content_bp
    from geo_routes import geo_bp
    from notification_routes import notifications_bp
    from provider_routes import files_bp, provider_bp
    from service_routes import services_bp

    for blueprint in (auth_bp, provider_bp, files_bp, services_bp, bookings_bp,
                      commission_bp, notifications_bp, geo_bp, content_bp, admin_bp):
        app.register_blueprint(blueprint)

    from commands import register_commands
    register_commands(app)

    @app.route('/api/health', methods=['GET'])
    def health_check():
        return jsonify({'status': 'healthy', 'message': 'TaskKarwalo API is running'}), 200

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'success': False, 'message': error.description}), error.code

    with app.app_context():
        # Import the models here so their tables will be created
        import models  # noqa: F401
        db.create_all()

        if app.config['SEED_INITIAL_DATA']:
            from init_data import create_initial_data
            create_initial_data()

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, debug=False)
