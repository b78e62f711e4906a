from flask import Flask
from config import Config
from extensions import db, jwt, socketio, init_redis
from migrate_config import init_migrate
from middleware import register_error_handlers
from utils.monitoring import configure_logging, request_logger_middleware, performance_monitor
from routes.proctoring import proctoring_bp
from routes.notifications import notifications_bp
import services.broadcast  # noqa: F401  registers Socket.IO handlers
import logging

logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    jwt.init_app(app)
    socketio.init_app(
        app,
        cors_allowed_origins=app.config.get('SOCKETIO_CORS_ORIGINS', '*'),
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'threading')
    )
    init_redis(app)
    init_migrate(app)

    # Register middleware
    register_error_handlers(app)
    request_logger_middleware(app)

    # Register blueprints
    app.register_blueprint(proctoring_bp, url_prefix='/api/proctoring')
    app.register_blueprint(notifications_bp, url_prefix='/api/notifications')

    # Create tables
    with app.app_context():
        db.create_all()

    @app.route('/api/health')
    def health_check():
        return {
            'status': 'healthy',
            'message': 'ProctorLens integrity service running',
            'metrics': performance_monitor.get_stats()
        }, 200

    logger.info("ProctorLens app created")
    return app


if __name__ == '__main__':
    app = create_app()
    socketio.run(app, debug=True, host='0.0.0.0', port=5000, allow_unsafe_werkzeug=True)
