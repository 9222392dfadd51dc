import sys
import logging
from flask import Flask
from dotenv import load_dotenv

from . import config as settings


def create_app(config=None, store_factory=None):
    load_dotenv()
    app = Flask(__name__)

    # =========================================================
    # Configuration (env, then explicit overrides)
    # =========================================================
    wp = settings.wordpress()
    wp.update((config or {}).get("wordpress") or {})
    app.config["QUICKSYNC_WORDPRESS"] = wp

    if store_factory is None:
        from .clients.wordpress import WordPressStore

        def store_factory(credential):
            return WordPressStore(wp["base_url"], wp["taxonomy"], credential)

    app.config["QUICKSYNC_STORE_FACTORY"] = store_factory

    # =========================================================
    # Configure logging so logs show up under gunicorn
    # =========================================================
    gunicorn_error = logging.getLogger("gunicorn.error")
    app.logger.handlers = list(gunicorn_error.handlers)
    app.logger.setLevel(logging.INFO)

    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(logging.INFO)
    sh.setFormatter(logging.Formatter("[%(asctime)s][%(levelname)s] %(message)s", "%H:%M:%S"))
    app.logger.addHandler(sh)

    # =========================================================
    # Blueprints
    # =========================================================
    from .routes.tax_sync import bp as tax_sync_bp

    app.register_blueprint(tax_sync_bp, url_prefix=settings.SYNC_ROUTE_PREFIX)

    # =========================================================
    # Health check
    # =========================================================
    @app.get("/health")
    def health():
        app.logger.info("Health check endpoint called")
        return {"ok": True}, 200

    return app
