"""
Flask Application Factory.

Creates and configures the Flask application for Cloud Run.
"""

import os
import signal
import sys
import weakref
from typing import Optional

from flask import Flask

from followup_engine.api import api_bp
from followup_engine.api.rate_limiting import init_rate_limiter
from followup_engine.api.routes import EXTENSION_KEY
from followup_engine.config import Settings, settings
from followup_engine.infrastructure.logging import log_request_context, logger
from followup_engine.infrastructure.metrics import setup_metrics_middleware
from followup_engine.infrastructure.store import Store, build_store
from followup_engine.services import FollowUpOrchestrator


STORE_EXTENSION_KEY = "followup_engine.store"

# Stores of live applications, closed on shutdown
_stores: "weakref.WeakSet[Store]" = weakref.WeakSet()


def _handle_sigterm(signum: int, frame) -> None:
    """
    Handle SIGTERM for graceful shutdown on Cloud Run.

    Cloud Run sends SIGTERM before stopping the container.
    """
    logger.info(
        "Received SIGTERM, shutting down gracefully",
        extra={"extra_fields": {"signal": signum, "stores": len(_stores)}}
    )
    for store in list(_stores):
        store.close()
    sys.exit(0)


# Register SIGTERM handler for Cloud Run graceful shutdown
signal.signal(signal.SIGTERM, _handle_sigterm)


def create_app(
    config: Optional[dict] = None,
    store: Optional[Store] = None,
    app_settings: Optional[Settings] = None,
) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Optional Flask configuration overrides.
        store: Store to use. Built from STORE_BACKEND when omitted;
            Firestore connects on first use.
        app_settings: Settings to use instead of the environment.

    Returns:
        Configured Flask application.
    """
    app_settings = app_settings or settings

    app = Flask(__name__)
    app.json.sort_keys = False

    if config:
        app.config.update(config)

    store = store or build_store(app_settings.store)
    app.extensions[STORE_EXTENSION_KEY] = store
    _stores.add(store)
    app.extensions[EXTENSION_KEY] = FollowUpOrchestrator(store, app_settings)
    init_rate_limiter(app, app_settings.rate_limit)

    log_request_context(app)
    setup_metrics_middleware(app)

    app.register_blueprint(api_bp)

    logger.info(
        "Application initialized",
        extra={"extra_fields": {
            "environment": os.environ.get("ENVIRONMENT", "development"),
            "store_backend": store.backend_name,
        }}
    )

    return app


app = create_app()


if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=settings.port,
        debug=settings.debug,
    )
