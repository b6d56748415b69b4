import os
import logging
import logging.config
from pathlib import Path

from flask import Flask

from config import APP_SECRET_KEY, LOG_FILE, MAX_UPLOAD_BYTES
from routes import games as routes_games
from routes import images as routes_images
from routes import shares as routes_shares
from web.app_factory import AppServices, build_services, create_app

logger = logging.getLogger(__name__)


def _determine_log_level(flask_app: Flask) -> int:
    if flask_app.debug:
        return logging.DEBUG
    if os.environ.get('FLASK_DEBUG', '').lower() in {'1', 'true', 'yes', 'on'}:
        return logging.DEBUG
    return logging.INFO


def _configure_logging(flask_app: Flask) -> None:
    log_level = _determine_log_level(flask_app)
    log_path = Path(LOG_FILE)
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass

    for handler in list(flask_app.logger.handlers):
        flask_app.logger.removeHandler(handler)

    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'standard': {
                    'format': '%(asctime)s %(levelname)s [%(name)s] %(message)s',
                    'datefmt': '%Y-%m-%d %H:%M:%S',
                }
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'standard',
                    'level': log_level,
                    'stream': 'ext://sys.stdout',
                },
                'file': {
                    'class': 'logging.handlers.RotatingFileHandler',
                    'formatter': 'standard',
                    'level': logging.DEBUG,
                    'filename': os.fspath(log_path),
                    'maxBytes': 5 * 1024 * 1024,
                    'backupCount': 5,
                    'encoding': 'utf-8',
                },
            },
            'root': {
                'level': log_level,
                'handlers': ['console', 'file'],
            },
        }
    )

    flask_app.logger = logging.getLogger(flask_app.import_name)
    flask_app.logger.setLevel(log_level)
    logger.setLevel(log_level)


def configure_blueprints(flask_app: Flask, services: AppServices) -> None:
    routes_games.configure({
        'library_store': services.library,
    })

    routes_shares.configure({
        'share_service': services.shares,
        'public_base_url': services.public_base_url,
    })

    routes_images.configure({
        'image_store': services.images,
        'max_cover_edge': services.max_cover_edge,
    })

    if 'games' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_games.games_blueprint)
    if 'shares' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_shares.shares_blueprint)
    if 'images' not in flask_app.blueprints:
        flask_app.register_blueprint(routes_images.images_blueprint)


def build_app(services: AppServices | None = None, *, secret_key: str = APP_SECRET_KEY) -> Flask:
    """Return a fully wired application; ``services`` defaults to ``config``."""

    flask_app = Flask(__name__)
    flask_app.secret_key = secret_key
    flask_app.config['MAX_CONTENT_LENGTH'] = MAX_UPLOAD_BYTES
    flask_app.json.sort_keys = False
    _configure_logging(flask_app)
    return create_app(
        flask_app,
        services=services or build_services(),
        configure_blueprints=configure_blueprints,
    )


app = build_app()


if __name__ == '__main__':
    app.run(debug=True)
