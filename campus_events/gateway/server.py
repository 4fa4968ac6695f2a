"""
API gateway: builds the Flask app and wires the database handle, the
registration coordinator, and the auth, events, registrations, and users
blueprints. This is the entrypoint for development.
"""

import atexit
import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS

from campus_events.database.db_connection import Database, EXTENSION_KEY
from campus_events.database.init_db import ensure_default_admin
from campus_events.registration_service.coordinator import RegistrationCoordinator
from campus_events.registration_service.routes import COORDINATOR_KEY
from campus_events.registration_service.store import RegistrationStore

load_dotenv()

# Basic console logging during API requests
logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(asctime)s - %(message)s")

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> Dict[str, Any]:
    """
    Read settings from the environment (and .env).

    Raises:
        RuntimeError: If DATABASE_URL is not set.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL is not set. Please set the environment variable.")

    return {
        "DATABASE_URL": database_url,
        "DB_POOL_MIN": int(os.getenv("DB_POOL_MIN", 1)),
        "DB_POOL_MAX": int(os.getenv("DB_POOL_MAX", 10)),
        "DB_POOL_TIMEOUT": float(os.getenv("DB_POOL_TIMEOUT", 30)),
        "REGISTRATION_LOCK_TIMEOUT_MS": int(os.getenv("REGISTRATION_LOCK_TIMEOUT_MS", 0)),
        "FRONTEND_ORIGIN": os.getenv("FRONTEND_ORIGIN", "http://localhost:3000"),
        "ADMIN_EMAIL": os.getenv("ADMIN_EMAIL", "admin@college.edu"),
        "ADMIN_PASSWORD": os.getenv("ADMIN_PASSWORD", "admin123"),
        "ALLOW_ADMIN_SIGNUP": _env_flag("ALLOW_ADMIN_SIGNUP"),
        "PORT": int(os.getenv("PORT", 4000)),
    }


def create_app(config: Optional[Dict[str, Any]] = None,
               database: Optional[Database] = None,
               coordinator: Optional[RegistrationCoordinator] = None) -> Flask:
    """
    Application factory for creating the Flask app.

    Args:
        config: Settings; read from the environment when omitted.
        database: An already constructed handle. When omitted one is built
            from DATABASE_URL, opened now, and closed at interpreter exit.
        coordinator: Registration coordinator; built over `database` when
            omitted.

    Returns:
        Flask: The configured Flask application.
    """
    if config is None:
        config = load_config()

    app = Flask(__name__)
    app.config.update(config)

    CORS(app, resources={
        r"/api/*": {
            "origins": [app.config.get("FRONTEND_ORIGIN", "http://localhost:3000")],
            "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization"],
        }
    })

    if database is None:
        database = Database(
            app.config["DATABASE_URL"],
            min_connections=app.config.get("DB_POOL_MIN", 1),
            max_connections=app.config.get("DB_POOL_MAX", 10),
            checkout_timeout=app.config.get("DB_POOL_TIMEOUT", 30.0),
        )
        database.open()
        atexit.register(database.close)

    if coordinator is None:
        store = RegistrationStore(database, lock_timeout_ms=app.config.get("REGISTRATION_LOCK_TIMEOUT_MS", 0))
        coordinator = RegistrationCoordinator(store)

    app.extensions[EXTENSION_KEY] = database
    app.extensions[COORDINATOR_KEY] = coordinator

    # --- REGISTER BLUEPRINTS ---
    from campus_events.auth_service.routes import auth_bp
    from campus_events.events_service.routes import events_bp
    from campus_events.registration_service.routes import registrations_bp
    from campus_events.users_service.routes import users_bp

    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(events_bp, url_prefix="/api/events")
    app.register_blueprint(registrations_bp, url_prefix="/api/events")
    app.register_blueprint(users_bp, url_prefix="/api/users")

    # --- BASIC HEALTH CHECKPOINT ---
    @app.route("/api/health")
    def health():
        """
        Health check endpoint.
        """
        return jsonify({"status": "ok"}), 200

    return app


def main() -> None:
    """Open the database, seed the default admin, and serve until interrupted."""
    config = load_config()
    database = Database(
        config["DATABASE_URL"],
        min_connections=config["DB_POOL_MIN"],
        max_connections=config["DB_POOL_MAX"],
        checkout_timeout=config["DB_POOL_TIMEOUT"],
    )
    database.open()
    try:
        database.ping()
        logger.info("Connected to PostgreSQL")
        ensure_default_admin(database, config["ADMIN_EMAIL"], config["ADMIN_PASSWORD"])

        app = create_app(config, database=database)
        app.run(host="0.0.0.0", port=config["PORT"], debug=False, threaded=True)
    finally:
        database.close()


if __name__ == "__main__":
    main()
